# latidos/modules/audit/feed.py
"""
Change feed del borrador de auditoría.

Cada conexión del stream tiene su propia ``FeedSubscription`` con su marca
de agua. La lectura de cambios está detrás de ``ChangeSource``: hoy es
polling sobre la base de datos, mañana puede ser LISTEN/NOTIFY sin tocar
los endpoints.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Set, Tuple
import asyncio
import json
import logging
import time

from fastapi.concurrency import run_in_threadpool

from latidos.shared.database.models import AuditDraftItem, EPOCH, utcnow
from .locks import LockState, effective_lock_owner
from .repository import AuditDraftRepository
from .schemas import StreamItem

logger = logging.getLogger(__name__)


class SubscriptionState(str, Enum):
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    POLLING = "POLLING"
    IDLE = "IDLE"
    PUSHING = "PUSHING"
    CLOSED = "CLOSED"


@dataclass(frozen=True)
class ItemSnapshot:
    """Copia de un ítem desacoplada de la sesión que lo leyó"""
    product_id: str
    locked_by: Optional[str]
    locked_at: Optional[datetime]
    updated_at: datetime
    contributions: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_item(cls, item: AuditDraftItem) -> "ItemSnapshot":
        return cls(
            product_id=item.product_id,
            locked_by=item.locked_by_participant_id,
            locked_at=item.locked_at,
            updated_at=item.updated_at,
            contributions=list(item.contributions or [])
        )


class ChangeSource(ABC):
    """Origen de cambios del borrador"""

    @abstractmethod
    def find_draft_id(self, organization_id: str) -> Optional[str]:
        ...

    @abstractmethod
    def changed_since(self, draft_id: str, watermark: datetime) -> List[ItemSnapshot]:
        """Ítems con updated_at mayor o igual a la marca de agua"""


class PollingChangeSource(ChangeSource):
    """Lee el Draft Store con una sesión corta por llamada"""

    def __init__(self, session_factory: Callable):
        self.session_factory = session_factory

    def find_draft_id(self, organization_id: str) -> Optional[str]:
        db = self.session_factory()
        try:
            draft = AuditDraftRepository(db).get_draft(organization_id)
            return draft.id if draft else None
        finally:
            db.close()

    def changed_since(self, draft_id: str, watermark: datetime) -> List[ItemSnapshot]:
        db = self.session_factory()
        try:
            items = AuditDraftRepository(db).list_items_changed_since(
                draft_id, watermark, inclusive=True
            )
            return [ItemSnapshot.from_item(item) for item in items]
        finally:
            db.close()


class FeedSubscription:
    """
    Suscripción de un cliente al change feed.

    Estados: CONNECTING -> CONNECTED -> (POLLING -> IDLE | PUSHING)* -> CLOSED.
    La marca de agua arranca en la época, así el primer polling entrega el
    estado completo del borrador. Dos escrituras entre polls se colapsan en
    un solo push con el estado final.

    El polling incluye el instante exacto de la marca de agua; los ítems ya
    enviados en ese instante se recuerdan para no repetirlos.
    """

    def __init__(
        self,
        source: ChangeSource,
        organization_id: str,
        poll_interval: float = 1.0,
        max_lifetime: float = 3600.0,
        lock_ttl_seconds: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.source = source
        self.organization_id = organization_id
        self.poll_interval = poll_interval
        self.max_lifetime = max_lifetime
        self.lock_ttl_seconds = lock_ttl_seconds
        self.clock = clock

        self.state = SubscriptionState.CONNECTING
        self.watermark = EPOCH
        self.sent_at_watermark: Set[Tuple[str, datetime]] = set()
        self.draft_id: Optional[str] = None
        self.close_reason: Optional[str] = None
        self._cleanups: List[Callable[[], None]] = []

    @property
    def closed(self) -> bool:
        return self.state == SubscriptionState.CLOSED

    def add_cleanup(self, callback: Callable[[], None]):
        self._cleanups.append(callback)

    def connect(self) -> Dict[str, Any]:
        self.state = SubscriptionState.CONNECTED
        logger.info(f"Stream de auditoría conectado para organización {self.organization_id}")
        return {"type": "connected"}

    def close(self, reason: str = "cancelled"):
        """Cerrar la suscripción. Las limpiezas corren una sola vez"""
        if self.closed:
            return
        self.state = SubscriptionState.CLOSED
        self.close_reason = reason

        cleanups, self._cleanups = self._cleanups, []
        for callback in cleanups:
            try:
                callback()
            except Exception:
                logger.exception("Error en limpieza del stream de auditoría")

        logger.info(f"Stream de auditoría cerrado ({reason}) para organización {self.organization_id}")

    def serialize(self, snapshot: ItemSnapshot, now: datetime) -> Dict[str, Any]:
        lock = LockState(locked_by=snapshot.locked_by, locked_at=snapshot.locked_at)
        return StreamItem(
            product_id=snapshot.product_id,
            locked_by_user_id=effective_lock_owner(lock, now, self.lock_ttl_seconds),
            contributions=snapshot.contributions
        ).model_dump(by_alias=True)

    async def poll_once(self) -> Optional[Dict[str, Any]]:
        """Un ciclo de polling. Devuelve el payload a enviar o None"""
        if self.closed:
            return None

        self.state = SubscriptionState.POLLING
        try:
            draft_id = await run_in_threadpool(self.source.find_draft_id, self.organization_id)
            if draft_id is None:
                # Todavía no hay borrador (o se reinició): esperar
                self.state = SubscriptionState.IDLE
                return None

            if draft_id != self.draft_id:
                # Borrador nuevo tras un reset: volver a enviar todo
                self.draft_id = draft_id
                self.watermark = EPOCH
                self.sent_at_watermark = set()

            snapshots = await run_in_threadpool(self.source.changed_since, draft_id, self.watermark)
        except Exception:
            logger.exception(f"Error en polling del stream de auditoría ({self.organization_id})")
            self.state = SubscriptionState.IDLE
            return None

        snapshots = [
            s for s in snapshots
            if s.updated_at > self.watermark
            or (s.updated_at == self.watermark
                and (s.product_id, s.updated_at) not in self.sent_at_watermark)
        ]
        if not snapshots:
            self.state = SubscriptionState.IDLE
            return None

        self.state = SubscriptionState.PUSHING
        latest = max(s.updated_at for s in snapshots)
        if latest != self.watermark:
            self.watermark = latest
            self.sent_at_watermark = set()
        self.sent_at_watermark.update(
            (s.product_id, s.updated_at) for s in snapshots if s.updated_at == latest
        )
        now = self.clock()
        return {
            "type": "update",
            "items": [self.serialize(s, now) for s in snapshots]
        }

    async def events(self) -> AsyncIterator[Dict[str, Any]]:
        """Eventos del stream hasta desconexión o hasta el tope de vida"""
        deadline = time.monotonic() + self.max_lifetime
        try:
            yield self.connect()

            while not self.closed:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self.close("lifetime")
                    break

                await asyncio.sleep(min(self.poll_interval, remaining))
                if time.monotonic() >= deadline:
                    self.close("lifetime")
                    break

                payload = await self.poll_once()
                if payload is not None:
                    yield payload
        finally:
            self.close("disconnected")


class SubscriptionRegistry:
    """Suscripciones abiertas por organización"""

    def __init__(self):
        self._subscriptions: Dict[str, Set[FeedSubscription]] = {}

    def register(self, subscription: FeedSubscription):
        """Registrar una suscripción; se da de baja sola al cerrarse"""
        self._subscriptions.setdefault(subscription.organization_id, set()).add(subscription)
        subscription.add_cleanup(lambda: self.unregister(subscription))

    def unregister(self, subscription: FeedSubscription):
        subscriptions = self._subscriptions.get(subscription.organization_id)
        if not subscriptions:
            return
        subscriptions.discard(subscription)
        if not subscriptions:
            del self._subscriptions[subscription.organization_id]

    def count(self, organization_id: Optional[str] = None) -> int:
        if organization_id is not None:
            return len(self._subscriptions.get(organization_id, ()))
        return sum(len(s) for s in self._subscriptions.values())


active_subscriptions = SubscriptionRegistry()


def format_sse(payload: Dict[str, Any]) -> str:
    """Evento en formato text/event-stream"""
    return f"data: {json.dumps(payload, default=str)}\n\n"
