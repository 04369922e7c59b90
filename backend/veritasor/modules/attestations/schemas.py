"""Pydantic schemas for the attestation API."""

from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from veritasor.db.models import AttestationStatus


class AttestationSubmitRequest(BaseModel):
    """Request to commit a business's revenue for one period."""

    business_id: str = Field(min_length=1, max_length=255)
    period: str = Field(
        min_length=7,
        max_length=16,
        description="YYYY-MM or YYYY-Qn",
        examples=["2025-10", "2025-Q4"],
    )


class AttestationSubmitResponse(BaseModel):
    attestation_id: UUID
    tx_hash: str


class AttestationResponse(BaseModel):
    """Stored attestation record."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    business_id: str
    period: str
    merkle_root: str
    tx_hash: str
    leaf_count: int
    leaf_encoding: str
    status: AttestationStatus
    created_at: datetime | None = None
    revoked_at: datetime | None = None


class AttestationRevokeRequest(BaseModel):
    business_id: str = Field(min_length=1, max_length=255)


class OnChainAttestationResponse(BaseModel):
    business_id: str
    period: str
    merkle_root: str
    timestamp: int
    version: int | None = None


class ProofStepSchema(BaseModel):
    sibling: str = Field(min_length=1)
    position: Literal["left", "right"]


class ProofRequest(BaseModel):
    """Leaves in commitment order plus the index to prove."""

    leaves: list[str] = Field(min_length=1)
    index: int


class ProofResponse(BaseModel):
    root: str
    leaf: str
    index: int
    proof: list[ProofStepSchema]


class ProofVerifyRequest(BaseModel):
    leaf: str
    proof: list[ProofStepSchema]
    root: str


class ProofVerifyResponse(BaseModel):
    valid: bool
