"""Router tests for the attestation API using an in-memory app."""

from __future__ import annotations

import hashlib
from uuid import uuid4

import pytest
from fastapi import FastAPI
from httpx import AsyncClient

from veritasor.core.crypto.merkle import build_tree
from veritasor.modules.attestations.repository import InMemoryAttestationRepository
from veritasor.modules.ledger.client import InMemoryLedgerClient, LedgerClientError
from veritasor.modules.revenue.sources import StaticRevenueSource

API_PREFIX = "/api/v1/attestations"


def _h(data: str) -> str:
    return hashlib.sha256(data.encode()).hexdigest()


class _CommitFailsOnceRepository(InMemoryAttestationRepository):
    def __init__(self) -> None:
        super().__init__()
        self.commits = 0
        self.rollbacks = 0

    async def commit(self) -> None:
        self.commits += 1
        if self.commits == 1:
            raise RuntimeError("could not serialize access")

    async def rollback(self) -> None:
        self.rollbacks += 1


async def _submit(
    client: AsyncClient,
    *,
    period: str = "2025-01",
    business_id: str = "biz-1",
    key: str | None = "key-1",
):
    headers = {"Idempotency-Key": key} if key is not None else {}
    return await client.post(
        API_PREFIX,
        json={"business_id": business_id, "period": period},
        headers=headers,
    )


class TestSubmitEndpoint:
    @pytest.mark.asyncio
    async def test_missing_idempotency_key(
        self, test_client: AsyncClient, ledger_client: InMemoryLedgerClient
    ) -> None:
        response = await _submit(test_client, key=None)
        assert response.status_code == 400
        assert "Idempotency-Key" in response.json()["detail"]
        assert ledger_client.call_count == 0

    @pytest.mark.asyncio
    async def test_blank_idempotency_key(self, test_client: AsyncClient) -> None:
        response = await _submit(test_client, key="   ")
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_submit_created(
        self, test_client: AsyncClient, ledger_client: InMemoryLedgerClient
    ) -> None:
        response = await _submit(test_client)

        assert response.status_code == 201
        body = response.json()
        root = build_tree(["2025-01:150.00", "2025-02:-10.00"]).root
        assert body["tx_hash"] == _h(f"biz-1:2025-01:{root}")
        assert body["attestation_id"]
        assert ledger_client.call_count == 1

    @pytest.mark.asyncio
    async def test_replay_returns_first_response(
        self, test_client: AsyncClient, ledger_client: InMemoryLedgerClient
    ) -> None:
        first = await _submit(test_client)
        second = await _submit(test_client)

        assert second.status_code == 201
        assert second.json() == first.json()
        assert ledger_client.call_count == 1

    @pytest.mark.asyncio
    async def test_new_key_runs_again(
        self, test_client: AsyncClient, ledger_client: InMemoryLedgerClient
    ) -> None:
        first = await _submit(test_client, key="key-1")
        second = await _submit(test_client, key="key-2")

        assert first.json()["attestation_id"] != second.json()["attestation_id"]
        assert ledger_client.call_count == 2

    @pytest.mark.asyncio
    async def test_invalid_period(self, test_client: AsyncClient) -> None:
        response = await _submit(test_client, period="2025-13")
        assert response.status_code == 400
        assert response.json()["stage"] == "period_resolution"

    @pytest.mark.asyncio
    async def test_request_validation(self, test_client: AsyncClient) -> None:
        response = await _submit(test_client, business_id="")
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_no_revenue_is_cached(
        self,
        test_app: FastAPI,
        test_client: AsyncClient,
        ledger_client: InMemoryLedgerClient,
    ) -> None:
        source = StaticRevenueSource([])
        test_app.state.revenue_source = source

        first = await _submit(test_client)
        second = await _submit(test_client)

        assert first.status_code == 422
        assert first.json()["stage"] == "revenue_fetch"
        assert "No revenue found" in first.json()["detail"]
        assert second.json() == first.json()
        assert source.call_count == 1
        assert ledger_client.call_count == 0

    @pytest.mark.asyncio
    async def test_ledger_failure_not_cached(
        self, test_app: FastAPI, test_client: AsyncClient
    ) -> None:
        ledger = InMemoryLedgerClient(error=LedgerClientError("rpc down", "NETWORK_ERROR"))
        test_app.state.ledger_client = ledger

        first = await _submit(test_client)
        second = await _submit(test_client)

        assert first.status_code == 502
        assert first.json()["stage"] == "ledger_submission"
        assert second.status_code == 502
        assert ledger.call_count == 2

    @pytest.mark.asyncio
    async def test_revenue_source_failure(
        self, test_app: FastAPI, test_client: AsyncClient
    ) -> None:
        test_app.state.revenue_source = StaticRevenueSource(error=RuntimeError("timeout"))

        response = await _submit(test_client)

        assert response.status_code == 502
        assert "Failed to fetch revenue" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_commit_failure_is_not_reported_or_cached(
        self,
        test_app: FastAPI,
        test_client: AsyncClient,
        ledger_client: InMemoryLedgerClient,
    ) -> None:
        repository = _CommitFailsOnceRepository()
        test_app.state.attestation_repository = repository

        first = await _submit(test_client)

        assert first.status_code == 500
        assert first.json()["stage"] == "persistence"
        assert "attestation_id" not in first.json()
        assert repository.rollbacks == 1

        second = await _submit(test_client)

        assert second.status_code == 201
        assert second.json()["attestation_id"]
        assert repository.commits == 2
        assert ledger_client.call_count == 2


class TestReadAndRevoke:
    @pytest.mark.asyncio
    async def test_get_attestation(self, test_client: AsyncClient) -> None:
        created = (await _submit(test_client)).json()

        response = await test_client.get(f"{API_PREFIX}/{created['attestation_id']}")

        assert response.status_code == 200
        body = response.json()
        assert body["business_id"] == "biz-1"
        assert body["period"] == "2025-01"
        assert body["tx_hash"] == created["tx_hash"]
        assert body["status"] == "active"
        assert body["leaf_count"] == 2

    @pytest.mark.asyncio
    async def test_get_unknown(self, test_client: AsyncClient) -> None:
        response = await test_client.get(f"{API_PREFIX}/{uuid4()}")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_revoke_flow(self, test_client: AsyncClient) -> None:
        created = (await _submit(test_client)).json()
        url = f"{API_PREFIX}/{created['attestation_id']}/revoke"

        wrong_owner = await test_client.post(url, json={"business_id": "biz-2"})
        revoked = await test_client.post(url, json={"business_id": "biz-1"})
        again = await test_client.post(url, json={"business_id": "biz-1"})

        assert wrong_owner.status_code == 403
        assert revoked.status_code == 200
        assert revoked.json()["status"] == "revoked"
        assert revoked.json()["revoked_at"] is not None
        assert again.status_code == 409

    @pytest.mark.asyncio
    async def test_revoke_unknown(self, test_client: AsyncClient) -> None:
        response = await test_client.post(
            f"{API_PREFIX}/{uuid4()}/revoke", json={"business_id": "biz-1"}
        )
        assert response.status_code == 404


class TestOnChainEndpoint:
    @pytest.mark.asyncio
    async def test_read_after_submit(self, test_client: AsyncClient) -> None:
        await _submit(test_client)

        response = await test_client.get(
            f"{API_PREFIX}/on-chain", params={"business_id": "biz-1", "period": "2025-01"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["merkle_root"] == build_tree(["2025-01:150.00", "2025-02:-10.00"]).root
        assert body["version"] == 1

    @pytest.mark.asyncio
    async def test_missing(self, test_client: AsyncClient) -> None:
        response = await test_client.get(
            f"{API_PREFIX}/on-chain", params={"business_id": "biz-9", "period": "2025-01"}
        )
        assert response.status_code == 404


class TestProofEndpoints:
    @pytest.mark.asyncio
    async def test_create_and_verify(self, test_client: AsyncClient) -> None:
        leaves = ["2025-01:150.00", "2025-02:-10.00", "2025-03:75.25"]

        created = await test_client.post(f"{API_PREFIX}/proofs", json={"leaves": leaves, "index": 2})
        assert created.status_code == 200
        proof = created.json()
        assert proof["root"] == build_tree(leaves).root
        assert proof["leaf"] == "2025-03:75.25"
        assert [step["position"] for step in proof["proof"]] == ["right", "left"]

        verified = await test_client.post(
            f"{API_PREFIX}/proofs/verify",
            json={"leaf": proof["leaf"], "proof": proof["proof"], "root": proof["root"]},
        )
        assert verified.json() == {"valid": True}

    @pytest.mark.asyncio
    async def test_verify_tampered_leaf(self, test_client: AsyncClient) -> None:
        leaves = ["a", "b"]
        proof = (
            await test_client.post(f"{API_PREFIX}/proofs", json={"leaves": leaves, "index": 0})
        ).json()

        verified = await test_client.post(
            f"{API_PREFIX}/proofs/verify",
            json={"leaf": "x", "proof": proof["proof"], "root": proof["root"]},
        )
        assert verified.json() == {"valid": False}

    @pytest.mark.asyncio
    async def test_index_out_of_range(self, test_client: AsyncClient) -> None:
        response = await test_client.post(
            f"{API_PREFIX}/proofs", json={"leaves": ["a"], "index": 3}
        )
        assert response.status_code == 422
        assert "out of range" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_empty_leaves_rejected(self, test_client: AsyncClient) -> None:
        response = await test_client.post(f"{API_PREFIX}/proofs", json={"leaves": [], "index": 0})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_bad_position_rejected(self, test_client: AsyncClient) -> None:
        response = await test_client.post(
            f"{API_PREFIX}/proofs/verify",
            json={"leaf": "a", "proof": [{"sibling": "00", "position": "up"}], "root": "00"},
        )
        assert response.status_code == 422
