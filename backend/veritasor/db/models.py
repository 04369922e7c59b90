"""
SQLAlchemy ORM models for attestation records.

Only commitment metadata is persisted (business, period, root, ledger
transaction); raw revenue and leaf values never reach the database.
"""

from datetime import datetime
from enum import Enum as PyEnum
from uuid import UUID, uuid4

from sqlalchemy import DateTime, Enum, Index, Integer, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class AttestationStatus(str, PyEnum):
    """Lifecycle status of an attestation record."""

    ACTIVE = "active"
    REVOKED = "revoked"


class Attestation(Base):
    """
    A Merkle root committed to the ledger for one business and period.

    Revocation flips ``status`` and stamps ``revoked_at``; the root and
    transaction hash are never rewritten.
    """

    __tablename__ = "attestations"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    business_id: Mapped[str] = mapped_column(String(255), nullable=False)
    period: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        comment="Attestation period: YYYY-MM or YYYY-Qn",
    )
    merkle_root: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="SHA-256 Merkle root over the period's revenue leaves",
    )
    tx_hash: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        comment="Ledger transaction that anchored the root",
    )
    leaf_count: Mapped[int] = mapped_column(Integer, nullable=False)
    leaf_encoding: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Version tag of the leaf canonicalization",
    )
    status: Mapped[AttestationStatus] = mapped_column(
        Enum(AttestationStatus, values_callable=lambda e: [m.value for m in e]),
        default=AttestationStatus.ACTIVE,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (Index("ix_attestations_business_period", "business_id", "period"),)
