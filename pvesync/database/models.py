"""
SQLAlchemy database models for the pvesync state store.

One row per managed resource, holding the fingerprint of the last applied
descriptor and the outcome of the last attempt.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import Boolean, DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.dialects.sqlite import JSON as SQLiteJSON
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models."""

    type_annotation_map = {
        dict: SQLiteJSON,
        Dict[str, Any]: SQLiteJSON,
    }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReconciliationRecordRow(Base):
    """
    Last-applied state of one managed resource.

    Rows are keyed by (kind, key). The descriptor snapshot lets a resource be
    destroyed after it has left the declared configuration.
    """
    __tablename__ = "reconciliation_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kind: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        comment="Resource kind (ClusterCreate, StorageNFS, ...)"
    )
    key: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Identity key, unique within kind"
    )
    fingerprint: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        comment="SHA256 of the last attempted descriptor"
    )
    last_state: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default="unknown",
        comment="absent, present, conflicting or unknown"
    )
    last_outcome: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        comment="succeeded, skipped or failed"
    )
    descriptor: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        SQLiteJSON,
        nullable=True,
        comment="Descriptor snapshot used for later destroy"
    )
    owned: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Whether pvesync converged or modified the resource"
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    __table_args__ = (
        UniqueConstraint("kind", "key", name="uq_reconciliation_kind_key"),
        Index("idx_reconciliation_outcome", "last_outcome"),
    )

    def __repr__(self) -> str:
        return f"<ReconciliationRecordRow({self.kind}/{self.key} {self.last_outcome})>"
