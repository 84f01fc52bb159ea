# latidos/modules/audit/schemas.py
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict, Any
from datetime import datetime
from latidos.shared.schemas.common import BaseResponse

# ===== SYNC SCHEMAS =====

class AuditUpdate(BaseModel):
    """
    Actualización de un participante sobre un producto.

    Los campos omitidos no se tocan: un update con solo ``isFocused`` es
    una señal de foco y no altera las contribuciones.
    """
    product_id: str = Field(..., min_length=1, alias="productId", description="ID del producto")
    physical_count: Optional[int] = Field(None, ge=0, alias="physicalCount", description="Conteo físico")
    observations: Optional[str] = Field(None, max_length=1000, description="Observaciones del conteo")
    is_focused: Optional[bool] = Field(None, alias="isFocused", description="Tomar (true) o soltar (false) el foco")

    @field_validator('physical_count', mode='before')
    @classmethod
    def blank_count_is_cleared(cls, v):
        # El input vacío del cliente llega como "" y significa "borrar mi conteo"
        if isinstance(v, str) and not v.strip():
            return None
        return v

    def contribution_changes(self) -> Dict[str, Any]:
        """Solo los campos de datos que el cliente envió realmente"""
        changes = {}
        if "physical_count" in self.model_fields_set:
            changes["count"] = self.physical_count
        if "observations" in self.model_fields_set:
            changes["observations"] = self.observations
        return changes

    @property
    def focus_signal(self) -> Optional[bool]:
        if "is_focused" not in self.model_fields_set:
            return None
        return self.is_focused

    class Config:
        populate_by_name = True


class SyncRequest(BaseModel):
    """Lote de actualizaciones de un participante"""
    updates: List[AuditUpdate] = Field(default_factory=list)

    class Config:
        json_schema_extra = {
            "example": {
                "updates": [
                    {"productId": "p1", "physicalCount": 10, "isFocused": True}
                ]
            }
        }


class SyncResponse(BaseResponse):
    applied: int = 0


class ResetResponse(BaseResponse):
    deleted: bool = False


# ===== STREAM SCHEMAS =====

class StreamItem(BaseModel):
    """Estado de un producto enviado por el stream"""
    product_id: str = Field(..., alias="productId")
    locked_by_user_id: Optional[str] = Field(None, alias="lockedByUserId")
    contributions: List[Dict[str, Any]] = Field(default_factory=list)

    class Config:
        populate_by_name = True


# ===== FINALIZE / HISTORY SCHEMAS =====

class SystemStockEntry(BaseModel):
    product_id: str = Field(..., min_length=1, alias="productId")
    system_stock: int = Field(..., alias="systemStock", description="Stock según el sistema")

    class Config:
        populate_by_name = True


class FinalizeRequest(BaseModel):
    """Cierre de la auditoría con el stock del sistema por producto"""
    items: List[SystemStockEntry] = Field(default_factory=list)
    notes: Optional[str] = Field(None, max_length=2000)


class StockAuditDetail(BaseModel):
    product_id: str = Field(..., alias="productId")
    system_stock: Optional[int] = Field(None, alias="systemStock")
    physical_count: int = Field(..., alias="physicalCount")
    difference: Optional[int] = None
    observations: str = ""
    contributions: List[Dict[str, Any]] = Field(default_factory=list)

    class Config:
        populate_by_name = True


class StockAuditSummary(BaseModel):
    id: str
    participant_id: str
    participant_name: Optional[str] = None
    products_counted: int
    discrepancies_found: int
    created_at: datetime

    class Config:
        from_attributes = True


class StockAuditResponse(BaseResponse):
    audit: StockAuditSummary
    details: List[StockAuditDetail] = Field(default_factory=list)
    notes: Optional[str] = None


class StockAuditListResponse(BaseResponse):
    audits: List[StockAuditSummary] = Field(default_factory=list)
    total: int = 0
