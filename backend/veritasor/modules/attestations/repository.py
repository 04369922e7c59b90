"""Attestation record storage (SQL-backed and in-memory)."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Protocol
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from veritasor.db.models import Attestation, AttestationStatus


class AttestationRepository(Protocol):
    async def create(
        self,
        *,
        business_id: str,
        period: str,
        merkle_root: str,
        tx_hash: str,
        leaf_count: int,
        leaf_encoding: str,
    ) -> Attestation: ...

    async def find_by_id(self, attestation_id: UUID) -> Attestation | None: ...

    async def update_status(
        self,
        attestation_id: UUID,
        status: AttestationStatus,
        *,
        revoked_at: datetime | None = None,
    ) -> Attestation | None: ...

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...


def _new_attestation(
    *,
    business_id: str,
    period: str,
    merkle_root: str,
    tx_hash: str,
    leaf_count: int,
    leaf_encoding: str,
) -> Attestation:
    return Attestation(
        id=uuid4(),
        business_id=business_id,
        period=period,
        merkle_root=merkle_root,
        tx_hash=tx_hash,
        leaf_count=leaf_count,
        leaf_encoding=leaf_encoding,
        status=AttestationStatus.ACTIVE,
        created_at=datetime.now(UTC),
    )


class SqlAttestationRepository:
    """Store attestations through a request- or job-scoped ``AsyncSession``.

    Writes are flushed as they happen; ``commit`` ends the unit of work and
    ``rollback`` discards it after a failed flush.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        *,
        business_id: str,
        period: str,
        merkle_root: str,
        tx_hash: str,
        leaf_count: int,
        leaf_encoding: str,
    ) -> Attestation:
        attestation = _new_attestation(
            business_id=business_id,
            period=period,
            merkle_root=merkle_root,
            tx_hash=tx_hash,
            leaf_count=leaf_count,
            leaf_encoding=leaf_encoding,
        )
        self._session.add(attestation)
        await self._session.flush()
        return attestation

    async def find_by_id(self, attestation_id: UUID) -> Attestation | None:
        return await self._session.get(Attestation, attestation_id)

    async def update_status(
        self,
        attestation_id: UUID,
        status: AttestationStatus,
        *,
        revoked_at: datetime | None = None,
    ) -> Attestation | None:
        attestation = await self._session.get(Attestation, attestation_id)
        if attestation is None:
            return None
        attestation.status = status
        attestation.revoked_at = revoked_at
        await self._session.flush()
        return attestation

    async def commit(self) -> None:
        await self._session.commit()

    async def rollback(self) -> None:
        await self._session.rollback()


class InMemoryAttestationRepository:
    """Process-local store for development and tests."""

    def __init__(self) -> None:
        self._records: dict[UUID, Attestation] = {}

    def __len__(self) -> int:
        return len(self._records)

    async def create(
        self,
        *,
        business_id: str,
        period: str,
        merkle_root: str,
        tx_hash: str,
        leaf_count: int,
        leaf_encoding: str,
    ) -> Attestation:
        attestation = _new_attestation(
            business_id=business_id,
            period=period,
            merkle_root=merkle_root,
            tx_hash=tx_hash,
            leaf_count=leaf_count,
            leaf_encoding=leaf_encoding,
        )
        self._records[attestation.id] = attestation
        return attestation

    async def find_by_id(self, attestation_id: UUID) -> Attestation | None:
        return self._records.get(attestation_id)

    async def update_status(
        self,
        attestation_id: UUID,
        status: AttestationStatus,
        *,
        revoked_at: datetime | None = None,
    ) -> Attestation | None:
        attestation = self._records.get(attestation_id)
        if attestation is None:
            return None
        attestation.status = status
        attestation.revoked_at = revoked_at
        return attestation

    async def commit(self) -> None:
        return None

    async def rollback(self) -> None:
        return None
