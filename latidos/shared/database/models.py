# latidos/shared/database/models.py
from sqlalchemy import (
    Column, Integer, String, DateTime, Text, JSON,
    ForeignKey, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship, declarative_base
from sqlalchemy.dialects.postgresql import JSONB
from datetime import datetime, timezone
from enum import Enum
import uuid

Base = declarative_base()

# JSONB en PostgreSQL, JSON genérico en el resto (SQLite para pruebas)
JSONType = JSON().with_variant(JSONB(), "postgresql")

# Marca de agua inicial del change feed
EPOCH = datetime(1970, 1, 1)


def utcnow() -> datetime:
    """Hora UTC sin zona horaria, el formato que guardan todas las tablas"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


class DraftStatus(str, Enum):
    ACTIVE = "ACTIVE"


# =====================================================
# MIXIN PARA TIMESTAMPS
# =====================================================
class TimestampMixin:
    """Mixin que agrega campos created_at y updated_at"""
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


# =====================================================
# AUDITORÍA COLABORATIVA (BORRADOR)
# =====================================================

class AuditDraft(Base, TimestampMixin):
    """Borrador activo de auditoría - uno por organización"""
    __tablename__ = "audit_drafts"

    id = Column(String(36), primary_key=True, default=new_id)
    # unique: impide borradores duplicados con escritores concurrentes
    organization_id = Column(String(64), nullable=False, unique=True, index=True)
    status = Column(String(20), nullable=False, default=DraftStatus.ACTIVE.value)

    # Relationships
    items = relationship(
        "AuditDraftItem",
        back_populates="draft",
        cascade="all, delete-orphan"
    )


class AuditDraftItem(Base):
    """Estado de conteo de un producto dentro del borrador"""
    __tablename__ = "audit_draft_items"
    __table_args__ = (
        UniqueConstraint("draft_id", "product_id", name="uq_audit_draft_items_draft_product"),
        Index("ix_audit_draft_items_draft_updated", "draft_id", "updated_at"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    draft_id = Column(String(36), ForeignKey("audit_drafts.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(String(64), nullable=False)

    # [{participantId, participantName, count?, observations?, updatedAt, countedAt?}]
    contributions = Column(JSONType, nullable=False, default=list)

    # Foco (bloqueo suave)
    locked_by_participant_id = Column(String(64))
    locked_at = Column(DateTime)

    # Marca de agua del change feed
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    # Relationships
    draft = relationship("AuditDraft", back_populates="items")


# =====================================================
# HISTORIAL DE AUDITORÍAS
# =====================================================

class StockAudit(Base):
    """Auditoría finalizada - registro permanente"""
    __tablename__ = "stock_audits"

    id = Column(String(36), primary_key=True, default=new_id)
    organization_id = Column(String(64), nullable=False, index=True)
    participant_id = Column(String(64), nullable=False)
    participant_name = Column(String(255))

    products_counted = Column(Integer, nullable=False, default=0)
    discrepancies_found = Column(Integer, nullable=False, default=0)

    # [{productId, systemStock, physicalCount, difference, observations, contributions}]
    details = Column(JSONType, nullable=False, default=list)
    notes = Column(Text)

    created_at = Column(DateTime, nullable=False, default=utcnow)
