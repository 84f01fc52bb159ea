# latidos/modules/audit/service.py
from typing import Dict, Any, List
from fastapi import HTTPException
from sqlalchemy.orm import Session
import logging

from latidos.config.settings import settings
from latidos.core.auth.schemas import Participant
from latidos.core.exceptions import PersistenceError
from latidos.shared.database.models import utcnow, StockAudit
from .locks import LockState, apply_focus
from .merger import merge_contribution, resolve_physical_count, combine_observations
from .repository import AuditDraftRepository
from .schemas import (
    SyncRequest, SyncResponse, ResetResponse, FinalizeRequest,
    StockAuditResponse, StockAuditListResponse, StockAuditSummary, StockAuditDetail
)

logger = logging.getLogger(__name__)


class AuditService:
    def __init__(self, db: Session):
        self.db = db
        self.repository = AuditDraftRepository(db)

    async def sync(self, participant: Participant, sync_data: SyncRequest) -> SyncResponse:
        """
        Aplicar un lote de actualizaciones de un participante.

        Cada producto se guarda de forma independiente y en orden. Ante el
        primer fallo se detiene el lote y se informa cuántos se aplicaron.
        """
        if not sync_data.updates:
            return SyncResponse(success=True, message="Sin cambios", applied=0)

        applied = 0
        current_product = None
        try:
            draft = self.repository.get_or_create_draft(participant.organization_id)

            for update in sync_data.updates:
                current_product = update.product_id
                now = utcnow()

                item = self.repository.get_item(draft.id, update.product_id)
                contributions = list(item.contributions or []) if item else []
                lock = LockState(
                    locked_by=item.locked_by_participant_id,
                    locked_at=item.locked_at
                ) if item else LockState()

                changes = update.contribution_changes()
                if changes:
                    contributions = merge_contribution(
                        contributions,
                        participant.participant_id,
                        participant.participant_name,
                        changes,
                        now
                    )

                lock = apply_focus(lock, participant.participant_id, update.focus_signal, now)

                self.repository.upsert_item(
                    draft_id=draft.id,
                    product_id=update.product_id,
                    contributions=contributions,
                    locked_by=lock.locked_by,
                    locked_at=lock.locked_at,
                    now=now
                )
                applied += 1

        except PersistenceError as e:
            logger.error(
                f"Error sincronizando borrador de {participant.organization_id} "
                f"({applied}/{len(sync_data.updates)} aplicados): {e}"
            )
            raise HTTPException(
                status_code=500,
                detail={
                    "message": "Error sincronizando borrador",
                    "applied": applied,
                    "failed_product_id": current_product
                }
            )

        logger.debug(
            f"Sync de {participant.participant_id} en {participant.organization_id}: {applied} ítems"
        )
        return SyncResponse(
            success=True,
            message="Borrador sincronizado",
            applied=applied
        )

    async def reset(self, participant: Participant) -> ResetResponse:
        """Descartar el borrador de la organización (idempotente)"""
        try:
            deleted = self.repository.delete_draft(participant.organization_id)
        except PersistenceError as e:
            raise HTTPException(
                status_code=500,
                detail=f"Error reiniciando borrador: {str(e)}"
            )

        if deleted:
            logger.info(
                f"Borrador de auditoría reiniciado por {participant.participant_id} "
                f"en {participant.organization_id}"
            )

        return ResetResponse(
            success=True,
            message="Auditoría reiniciada" if deleted else "No había borrador activo",
            deleted=deleted
        )

    async def finalize(self, participant: Participant, finalize_data: FinalizeRequest) -> StockAuditResponse:
        """
        Cerrar la auditoría: resolver el conteo canónico de cada producto,
        calcular diferencias contra el stock del sistema y guardar el historial.
        """
        try:
            draft = self.repository.get_draft(participant.organization_id)
            items = self.repository.list_items(draft.id) if draft else []
        except PersistenceError as e:
            raise HTTPException(
                status_code=500,
                detail=f"Error leyendo borrador: {str(e)}"
            )

        system_stock = {entry.product_id: entry.system_stock for entry in finalize_data.items}

        details = []
        discrepancies = 0
        for item in items:
            physical_count = resolve_physical_count(item.contributions)
            if physical_count is None:
                continue

            expected = system_stock.get(item.product_id)
            difference = physical_count - expected if expected is not None else None
            if difference:
                discrepancies += 1

            details.append({
                "productId": item.product_id,
                "systemStock": expected,
                "physicalCount": physical_count,
                "difference": difference,
                "observations": combine_observations(item.contributions),
                "contributions": list(item.contributions or [])
            })

        if not details:
            raise HTTPException(
                status_code=400,
                detail="No hay datos para guardar"
            )

        try:
            audit = self.repository.finalize_draft(
                draft=draft,
                participant_id=participant.participant_id,
                participant_name=participant.participant_name,
                details=details,
                discrepancies_found=discrepancies,
                notes=finalize_data.notes
            )
        except PersistenceError as e:
            raise HTTPException(
                status_code=500,
                detail=f"Error al guardar la auditoría: {str(e)}"
            )

        logger.info(
            f"[AUDIT] {participant.participant_id} finalizó auditoría {audit.id} en "
            f"{participant.organization_id}: {len(details)} productos, {discrepancies} descuadres"
        )
        return self._audit_response(audit, "Auditoría guardada exitosamente")

    async def list_history(self, participant: Participant) -> StockAuditListResponse:
        """Historial de auditorías finalizadas"""
        try:
            audits = self.repository.list_stock_audits(
                participant.organization_id,
                limit=settings.audit_history_limit
            )
        except PersistenceError as e:
            raise HTTPException(
                status_code=500,
                detail=f"Error obteniendo historial: {str(e)}"
            )

        return StockAuditListResponse(
            success=True,
            message="Historial de auditorías",
            audits=[StockAuditSummary.model_validate(audit) for audit in audits],
            total=len(audits)
        )

    async def get_history(self, participant: Participant, audit_id: str) -> StockAuditResponse:
        """Detalle de una auditoría finalizada"""
        try:
            audit = self.repository.get_stock_audit(participant.organization_id, audit_id)
        except PersistenceError as e:
            raise HTTPException(
                status_code=500,
                detail=f"Error obteniendo auditoría: {str(e)}"
            )

        if not audit:
            raise HTTPException(
                status_code=404,
                detail="Auditoría no encontrada"
            )

        return self._audit_response(audit, "Auditoría encontrada")

    def _audit_response(self, audit: StockAudit, message: str) -> StockAuditResponse:
        details: List[Dict[str, Any]] = audit.details or []
        return StockAuditResponse(
            success=True,
            message=message,
            audit=StockAuditSummary.model_validate(audit),
            details=[StockAuditDetail.model_validate(detail) for detail in details],
            notes=audit.notes
        )
