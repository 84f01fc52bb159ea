# latidos/modules/audit/locks.py
"""
Bloqueo suave (foco) por producto.

Es cooperativo: pedir el foco siempre lo concede, aunque otro lo tenga.
Soltarlo solo tiene efecto si lo pide el dueño actual, así un "soltar"
tardío no pisa a un dueño más nuevo.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional


@dataclass(frozen=True)
class LockState:
    locked_by: Optional[str] = None
    locked_at: Optional[datetime] = None

    @property
    def is_locked(self) -> bool:
        return self.locked_by is not None


UNLOCKED = LockState()


def request_focus(lock: LockState, participant_id: str, now: datetime) -> LockState:
    return LockState(locked_by=participant_id, locked_at=now)


def release_focus(lock: LockState, participant_id: str) -> LockState:
    if lock.locked_by == participant_id:
        return UNLOCKED
    return lock


def apply_focus(
    lock: LockState,
    participant_id: str,
    is_focused: Optional[bool],
    now: datetime
) -> LockState:
    """None deja el bloqueo igual; True lo pide; False lo suelta"""
    if is_focused is None:
        return lock
    if is_focused:
        return request_focus(lock, participant_id, now)
    return release_focus(lock, participant_id)


def effective_lock_owner(
    lock: LockState,
    now: datetime,
    ttl_seconds: Optional[float] = None
) -> Optional[str]:
    """
    Dueño visible del bloqueo en lectura.

    Con TTL configurado, un bloqueo más viejo que el TTL se muestra como
    libre. No se escribe nada: el siguiente foco lo reemplaza.
    """
    if not lock.is_locked:
        return None
    if ttl_seconds is None or lock.locked_at is None:
        return lock.locked_by
    if now - lock.locked_at > timedelta(seconds=ttl_seconds):
        return None
    return lock.locked_by
