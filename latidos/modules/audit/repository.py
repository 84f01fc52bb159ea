# latidos/modules/audit/repository.py
from sqlalchemy.orm import Session
from sqlalchemy import and_, desc
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from typing import List, Dict, Any, Optional
from datetime import datetime
import logging

from latidos.core.exceptions import PersistenceError
from latidos.shared.database.models import (
    AuditDraft, AuditDraftItem, StockAudit, DraftStatus, utcnow, new_id
)

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class AuditDraftRepository:
    """
    Almacén del borrador de auditoría por organización.

    Único dueño de ``AuditDraft`` y ``AuditDraftItem``. Cualquier error de
    base de datos se revierte y se propaga como ``PersistenceError``.
    """

    def __init__(self, db: Session):
        self.db = db

    def _fail(self, action: str, error: SQLAlchemyError):
        self.db.rollback()
        logger.error(f"Error de persistencia ({action}): {error}")
        raise PersistenceError(f"Error {action}", original=error) from error

    def _insert_for_dialect(self, table):
        """INSERT con ON CONFLICT del dialecto, o None si no lo soporta"""
        factory = _UPSERT_DIALECTS.get(self.db.get_bind().dialect.name)
        return factory(table) if factory else None

    # ===== DRAFT =====

    def get_draft(self, organization_id: str) -> Optional[AuditDraft]:
        """Obtener el borrador activo de la organización"""
        try:
            return self.db.query(AuditDraft).filter(
                AuditDraft.organization_id == organization_id
            ).first()
        except SQLAlchemyError as e:
            self._fail("obteniendo borrador", e)

    def get_or_create_draft(self, organization_id: str) -> AuditDraft:
        """
        Obtener o crear el borrador de la organización.

        La unicidad la garantiza la restricción sobre ``organization_id``:
        dos primeros escritores simultáneos terminan con el mismo borrador.
        """
        draft = self.get_draft(organization_id)
        if draft:
            return draft

        now = utcnow()
        values = {
            "id": new_id(),
            "organization_id": organization_id,
            "status": DraftStatus.ACTIVE.value,
            "created_at": now,
            "updated_at": now,
        }

        try:
            stmt = self._insert_for_dialect(AuditDraft.__table__)
            if stmt is not None:
                self.db.execute(
                    stmt.values(**values).on_conflict_do_nothing(index_elements=["organization_id"])
                )
                self.db.commit()
            else:
                try:
                    self.db.add(AuditDraft(**values))
                    self.db.commit()
                except IntegrityError:
                    # Otro escritor lo creó primero
                    self.db.rollback()
        except SQLAlchemyError as e:
            self._fail("creando borrador", e)

        draft = self.get_draft(organization_id)
        if draft is None:
            raise PersistenceError(f"No se pudo crear el borrador de {organization_id}")

        logger.info(f"Borrador de auditoría listo para organización {organization_id}: {draft.id}")
        return draft

    def delete_draft(self, organization_id: str) -> bool:
        """Eliminar borrador e ítems. Idempotente: False si no existía"""
        try:
            draft = self.db.query(AuditDraft).filter(
                AuditDraft.organization_id == organization_id
            ).first()

            if not draft:
                return False

            self._delete_draft_rows(draft)
            self.db.commit()
            return True
        except SQLAlchemyError as e:
            self._fail("eliminando borrador", e)

    def _delete_draft_rows(self, draft: AuditDraft):
        self.db.query(AuditDraftItem).filter(
            AuditDraftItem.draft_id == draft.id
        ).delete(synchronize_session=False)
        self.db.delete(draft)

    # ===== ITEMS =====

    def get_item(self, draft_id: str, product_id: str) -> Optional[AuditDraftItem]:
        """Obtener ítem del borrador por producto"""
        try:
            return self.db.query(AuditDraftItem).filter(
                and_(
                    AuditDraftItem.draft_id == draft_id,
                    AuditDraftItem.product_id == product_id
                )
            ).first()
        except SQLAlchemyError as e:
            self._fail("obteniendo ítem", e)

    def upsert_item(
        self,
        draft_id: str,
        product_id: str,
        contributions: List[Dict[str, Any]],
        locked_by: Optional[str],
        locked_at: Optional[datetime],
        now: Optional[datetime] = None
    ) -> AuditDraftItem:
        """
        Reemplazar contribuciones y bloqueo de un producto en una sola operación.

        Siempre avanza ``updated_at``, que es la marca de agua del stream.
        """
        now = now or utcnow()
        contributions = list(contributions or [])

        try:
            stmt = self._insert_for_dialect(AuditDraftItem.__table__)
            if stmt is not None:
                stmt = stmt.values(
                    id=new_id(),
                    draft_id=draft_id,
                    product_id=product_id,
                    contributions=contributions,
                    locked_by_participant_id=locked_by,
                    locked_at=locked_at,
                    updated_at=now
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["draft_id", "product_id"],
                    set_={
                        "contributions": stmt.excluded.contributions,
                        "locked_by_participant_id": stmt.excluded.locked_by_participant_id,
                        "locked_at": stmt.excluded.locked_at,
                        "updated_at": stmt.excluded.updated_at,
                    }
                )
                self.db.execute(stmt)
            else:
                item = self.get_item(draft_id, product_id)
                if item is None:
                    item = AuditDraftItem(draft_id=draft_id, product_id=product_id)
                    self.db.add(item)
                item.contributions = contributions
                item.locked_by_participant_id = locked_by
                item.locked_at = locked_at
                item.updated_at = now
            self.db.commit()
        except SQLAlchemyError as e:
            self._fail(f"guardando ítem {product_id}", e)

        return self.get_item(draft_id, product_id)

    def list_items(self, draft_id: str) -> List[AuditDraftItem]:
        """Todos los ítems del borrador"""
        try:
            return self.db.query(AuditDraftItem).filter(
                AuditDraftItem.draft_id == draft_id
            ).order_by(AuditDraftItem.product_id).all()
        except SQLAlchemyError as e:
            self._fail("listando ítems", e)

    def list_items_changed_since(
        self,
        draft_id: str,
        watermark: datetime,
        inclusive: bool = False
    ) -> List[AuditDraftItem]:
        """
        Ítems con updated_at posterior a la marca de agua.

        Con ``inclusive`` también entran los que tienen updated_at igual a
        la marca; el change feed los usa para no perder escrituras del
        mismo instante.
        """
        if inclusive:
            since = AuditDraftItem.updated_at >= watermark
        else:
            since = AuditDraftItem.updated_at > watermark
        try:
            return self.db.query(AuditDraftItem).filter(
                and_(AuditDraftItem.draft_id == draft_id, since)
            ).order_by(AuditDraftItem.updated_at).all()
        except SQLAlchemyError as e:
            self._fail("consultando cambios", e)

    # ===== HISTORIAL =====

    def finalize_draft(
        self,
        draft: AuditDraft,
        participant_id: str,
        participant_name: str,
        details: List[Dict[str, Any]],
        discrepancies_found: int,
        notes: Optional[str] = None
    ) -> StockAudit:
        """Guardar la auditoría permanente y eliminar el borrador (una transacción)"""
        try:
            audit = StockAudit(
                organization_id=draft.organization_id,
                participant_id=participant_id,
                participant_name=participant_name,
                products_counted=len(details),
                discrepancies_found=discrepancies_found,
                details=details,
                notes=notes,
                created_at=utcnow()
            )
            self.db.add(audit)
            self._delete_draft_rows(draft)
            self.db.commit()
            self.db.refresh(audit)
            return audit
        except SQLAlchemyError as e:
            self._fail("finalizando auditoría", e)

    def list_stock_audits(self, organization_id: str, limit: int = 50) -> List[StockAudit]:
        """Auditorías finalizadas de la organización, más recientes primero"""
        try:
            return self.db.query(StockAudit).filter(
                StockAudit.organization_id == organization_id
            ).order_by(desc(StockAudit.created_at)).limit(limit).all()
        except SQLAlchemyError as e:
            self._fail("listando auditorías", e)

    def get_stock_audit(self, organization_id: str, audit_id: str) -> Optional[StockAudit]:
        """Auditoría finalizada - solo de la organización"""
        try:
            return self.db.query(StockAudit).filter(
                and_(
                    StockAudit.id == audit_id,
                    StockAudit.organization_id == organization_id
                )
            ).first()
        except SQLAlchemyError as e:
            self._fail("obteniendo auditoría", e)
