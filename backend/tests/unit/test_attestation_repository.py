"""Unit tests for attestation repositories."""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from veritasor.db.models import Attestation, AttestationStatus
from veritasor.modules.attestations.repository import (
    InMemoryAttestationRepository,
    SqlAttestationRepository,
)

_FIELDS = {
    "business_id": "biz-1",
    "period": "2025-01",
    "merkle_root": "a" * 64,
    "tx_hash": "tx-1",
    "leaf_count": 1,
    "leaf_encoding": "period-amount-2dp-v1",
}


class TestSqlAttestationRepository:
    @pytest.mark.asyncio
    async def test_create_adds_and_flushes(self) -> None:
        session = AsyncMock()
        session.add = MagicMock()

        attestation = await SqlAttestationRepository(session).create(**_FIELDS)

        assert attestation.id is not None
        assert attestation.status == AttestationStatus.ACTIVE
        assert attestation.created_at is not None
        session.add.assert_called_once_with(attestation)
        session.flush.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_find_by_id(self) -> None:
        stored = Attestation(id=uuid4(), **_FIELDS)
        session = AsyncMock()
        session.get.return_value = stored

        found = await SqlAttestationRepository(session).find_by_id(stored.id)

        assert found is stored
        session.get.assert_awaited_once_with(Attestation, stored.id)

    @pytest.mark.asyncio
    async def test_update_status(self) -> None:
        stored = Attestation(id=uuid4(), status=AttestationStatus.ACTIVE, **_FIELDS)
        session = AsyncMock()
        session.get.return_value = stored
        revoked_at = datetime(2025, 3, 1, tzinfo=UTC)

        updated = await SqlAttestationRepository(session).update_status(
            stored.id, AttestationStatus.REVOKED, revoked_at=revoked_at
        )

        assert updated is stored
        assert stored.status == AttestationStatus.REVOKED
        assert stored.revoked_at == revoked_at
        session.flush.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_update_status_missing(self) -> None:
        session = AsyncMock()
        session.get.return_value = None
        repo = SqlAttestationRepository(session)
        assert await repo.update_status(uuid4(), AttestationStatus.REVOKED) is None
        session.flush.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_commit_and_rollback_delegate_to_session(self) -> None:
        session = AsyncMock()
        repo = SqlAttestationRepository(session)

        await repo.commit()
        await repo.rollback()

        session.commit.assert_awaited_once()
        session.rollback.assert_awaited_once()


class TestInMemoryAttestationRepository:
    @pytest.mark.asyncio
    async def test_create_and_find(self) -> None:
        repo = InMemoryAttestationRepository()
        created = await repo.create(**_FIELDS)
        assert len(repo) == 1
        assert await repo.find_by_id(created.id) is created
        assert await repo.find_by_id(uuid4()) is None

    @pytest.mark.asyncio
    async def test_ids_are_unique(self) -> None:
        repo = InMemoryAttestationRepository()
        first = await repo.create(**_FIELDS)
        second = await repo.create(**_FIELDS)
        assert first.id != second.id
        assert len(repo) == 2

    @pytest.mark.asyncio
    async def test_update_status(self) -> None:
        repo = InMemoryAttestationRepository()
        created = await repo.create(**_FIELDS)
        updated = await repo.update_status(created.id, AttestationStatus.REVOKED)
        assert updated is not None
        assert updated.status == AttestationStatus.REVOKED
        assert await repo.update_status(uuid4(), AttestationStatus.REVOKED) is None
