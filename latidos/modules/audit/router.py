# latidos/modules/audit/router.py
from fastapi import APIRouter, Depends, Path
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from latidos.config.database import get_db, get_session_factory
from latidos.config.settings import settings
from latidos.core.auth.dependencies import get_current_participant
from latidos.core.auth.schemas import Participant
from .feed import FeedSubscription, PollingChangeSource, active_subscriptions, format_sse
from .service import AuditService
from .schemas import (
    SyncRequest, SyncResponse, ResetResponse, FinalizeRequest,
    StockAuditResponse, StockAuditListResponse
)

router = APIRouter()

# ===== HEALTH CHECK =====

@router.get("/health")
async def audit_health():
    """Health check del módulo de auditoría colaborativa"""
    return {
        "service": "audit",
        "status": "healthy",
        "version": "1.0.0",
        "features": [
            "Conteo colaborativo en tiempo real",
            "Bloqueo suave por producto (foco)",
            "Stream SSE de cambios",
            "Historial de auditorías"
        ],
        "stream": {
            "poll_interval_seconds": settings.audit_poll_interval_seconds,
            "max_lifetime_seconds": settings.audit_stream_max_lifetime_seconds,
            "lock_ttl_seconds": settings.audit_lock_ttl_seconds,
            "active_subscriptions": active_subscriptions.count()
        }
    }

# ===== BORRADOR COLABORATIVO =====

@router.post("/sync", response_model=SyncResponse)
async def sync_draft(
    sync_data: SyncRequest,
    participant: Participant = Depends(get_current_participant),
    db: Session = Depends(get_db)
):
    """
    Sincronizar conteos y foco del participante

    **Body:**
    ```json
    {"updates": [{"productId": "p1", "physicalCount": 10, "isFocused": true}]}
    ```

    **Reglas:**
    - `physicalCount` / `observations`: actualizan la contribución del participante
    - `isFocused: true`: toma el foco (aunque otro lo tenga)
    - `isFocused: false`: suelta el foco solo si es suyo
    - Campos omitidos no se modifican

    La confirmación llega por el stream, no en la respuesta.
    """
    service = AuditService(db)
    return await service.sync(participant, sync_data)

@router.get("/stream")
async def stream_draft(
    participant: Participant = Depends(get_current_participant),
    session_factory = Depends(get_session_factory)
):
    """
    Stream SSE de cambios del borrador

    **Eventos:**
    - `{"type": "connected"}` al conectar
    - `{"type": "update", "items": [{productId, lockedByUserId, contributions}]}`

    La conexión se cierra sola al llegar al tope de vida configurado.
    """
    subscription = FeedSubscription(
        source=PollingChangeSource(session_factory),
        organization_id=participant.organization_id,
        poll_interval=settings.audit_poll_interval_seconds,
        max_lifetime=settings.audit_stream_max_lifetime_seconds,
        lock_ttl_seconds=settings.audit_lock_ttl_seconds
    )

    async def event_stream():
        active_subscriptions.register(subscription)
        try:
            async for payload in subscription.events():
                yield format_sse(payload)
        finally:
            subscription.close("disconnected")

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache, no-transform",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no"
        }
    )

@router.post("/reset", response_model=ResetResponse)
async def reset_draft(
    participant: Participant = Depends(get_current_participant),
    db: Session = Depends(get_db)
):
    """Reiniciar la auditoría: borra el conteo de todos los participantes"""
    service = AuditService(db)
    return await service.reset(participant)

# ===== FINALIZACIÓN E HISTORIAL =====

@router.post("/finalize", response_model=StockAuditResponse)
async def finalize_audit(
    finalize_data: FinalizeRequest,
    participant: Participant = Depends(get_current_participant),
    db: Session = Depends(get_db)
):
    """
    Finalizar auditoría y generar reporte de diferencias

    **Funcionalidad:**
    - Conteo canónico por producto: gana la contribución más reciente
    - Diferencia = conteo físico - stock del sistema
    - Guarda el registro permanente y elimina el borrador
    """
    service = AuditService(db)
    return await service.finalize(participant, finalize_data)

@router.get("/history", response_model=StockAuditListResponse)
async def list_audit_history(
    participant: Participant = Depends(get_current_participant),
    db: Session = Depends(get_db)
):
    """Historial de auditorías finalizadas de la organización"""
    service = AuditService(db)
    return await service.list_history(participant)

@router.get("/history/{audit_id}", response_model=StockAuditResponse)
async def get_audit_history(
    audit_id: str = Path(..., description="ID de la auditoría"),
    participant: Participant = Depends(get_current_participant),
    db: Session = Depends(get_db)
):
    """Detalle de una auditoría finalizada"""
    service = AuditService(db)
    return await service.get_history(participant, audit_id)
