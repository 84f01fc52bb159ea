# latidos/modules/audit/__init__.py
"""
Módulo de Auditoría Colaborativa de Stock

Varios usuarios de una organización cuentan el inventario físico al mismo
tiempo sobre un borrador compartido:
- Contribuciones por participante en cada producto
- Bloqueo suave (foco) por producto
- Propagación de cambios por SSE respaldada en polling
- Finalización con reporte de diferencias e historial

Arquitectura:
- router.py: Endpoints sync / stream / reset / finalize / history
- service.py: Orquestación de los endpoints
- repository.py: Draft Store (acceso a datos)
- merger.py: Fusión de contribuciones (lógica pura)
- locks.py: Coordinador de foco (lógica pura)
- feed.py: Change feed por suscriptor
- schemas.py: Modelos de request/response
"""

from .router import router
from .service import AuditService
from .repository import AuditDraftRepository

__all__ = [
    "router",
    "AuditService",
    "AuditDraftRepository"
]
