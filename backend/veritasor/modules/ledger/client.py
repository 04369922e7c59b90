"""
Ledger (settlement) clients that anchor attestation roots on-chain.

``HttpLedgerClient`` talks to the settlement gateway that builds, signs and
broadcasts the ``submit_attestation`` contract call. ``InMemoryLedgerClient``
is the deterministic stand-in used by tests and local development. Which one
runs is decided by :func:`build_ledger_client` from configuration.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Protocol, cast
from urllib.parse import quote

import httpx

from veritasor.core.config import Settings
from veritasor.core.crypto.merkle import sha256_hex
from veritasor.core.logging import get_logger

logger = get_logger(__name__)

ATTESTATION_SCHEMA_VERSION = 1


class LedgerClientError(RuntimeError):
    """Raised when a ledger call fails; ``code`` classifies the failure."""

    def __init__(self, message: str, code: str = "LEDGER_ERROR") -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class LedgerReceipt:
    tx_hash: str


@dataclass(frozen=True)
class OnChainAttestation:
    """Attestation as stored by the contract."""

    merkle_root: str
    timestamp: int
    version: int | None = None


class LedgerClient(Protocol):
    async def submit_root(self, root: str, business_id: str, period: str) -> LedgerReceipt: ...

    async def get_attestation(self, business_id: str, period: str) -> OnChainAttestation | None: ...

    async def close(self) -> None: ...


@dataclass
class LedgerConfig:
    """Connection settings for the settlement gateway."""

    gateway_url: str
    api_key: str = ""
    contract_id: str = ""
    network_passphrase: str = ""
    timeout: float = 30.0


class HttpLedgerClient:
    """
    Client for the settlement gateway REST API.

    Authenticates with an ``X-Api-Key`` header. Every failure (transport,
    rejection, malformed response) surfaces as :class:`LedgerClientError`.
    """

    def __init__(self, config: LedgerConfig, *, http_client: httpx.AsyncClient | None = None):
        self._config = config
        self._http_client = http_client

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            base = (self._config.gateway_url or "").strip()
            if not base:
                raise LedgerClientError("Ledger gateway URL is required", "VALIDATION_ERROR")
            headers = {"Content-Type": "application/json"}
            if self._config.api_key:
                headers["X-Api-Key"] = self._config.api_key
            self._http_client = httpx.AsyncClient(
                base_url=base.rstrip("/"),
                headers=headers,
                timeout=self._config.timeout,
            )
        return self._http_client

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def submit_root(self, root: str, business_id: str, period: str) -> LedgerReceipt:
        client = self._get_client()
        body: dict[str, Any] = {
            "contract_id": self._config.contract_id,
            "network_passphrase": self._config.network_passphrase,
            "business": business_id,
            "period": period,
            "merkle_root": root,
            "timestamp": int(time.time()),
            "version": ATTESTATION_SCHEMA_VERSION,
        }

        logger.info("ledger_submitting_root", business_id=business_id, period=period, root=root)
        try:
            response = await client.post("/attestations", json=body)
        except httpx.HTTPError as exc:
            raise LedgerClientError(
                f"Ledger gateway unreachable: {exc}", "NETWORK_ERROR"
            ) from exc

        if response.status_code in (429, 503):
            raise LedgerClientError(
                "Ledger gateway asked to retry later. The network may be overloaded.",
                "TRY_AGAIN_LATER",
            )
        if response.is_error:
            raise LedgerClientError(
                f"Ledger gateway rejected the transaction (HTTP {response.status_code}): "
                f"{response.text[:200]}",
                "SUBMIT_FAILED",
            )

        try:
            data = cast(dict[str, Any], response.json())
            tx_hash = str(data["tx_hash"])
        except (ValueError, KeyError, TypeError) as exc:
            raise LedgerClientError(
                "Ledger gateway response did not include a tx_hash", "INVALID_RESPONSE"
            ) from exc

        logger.info("ledger_root_submitted", business_id=business_id, period=period, tx_hash=tx_hash)
        return LedgerReceipt(tx_hash=tx_hash)

    async def get_attestation(self, business_id: str, period: str) -> OnChainAttestation | None:
        """Read an attestation back; ``None`` when none exists for the pair."""
        client = self._get_client()
        try:
            path = f"/attestations/{quote(business_id, safe='')}/{quote(period, safe='')}"
            response = await client.get(path)
            if response.status_code == 404:
                return None
            response.raise_for_status()
            data = cast(dict[str, Any], response.json())
        except (httpx.HTTPError, ValueError) as exc:
            logger.error(
                "ledger_get_attestation_failed",
                business_id=business_id,
                period=period,
                error=str(exc),
            )
            raise LedgerClientError(f"Ledger read failed: {exc}", "NETWORK_ERROR") from exc

        if not data or data.get("merkle_root") is None:
            return None
        version = data.get("version")
        return OnChainAttestation(
            merkle_root=str(data["merkle_root"]),
            timestamp=int(data.get("timestamp") or 0),
            version=int(version) if version is not None else None,
        )


@dataclass
class _StoredAttestation:
    root: str
    tx_hash: str
    timestamp: int


@dataclass
class InMemoryLedgerClient:
    """
    Deterministic ledger double.

    Transaction hashes are ``sha256(business:period:root)`` so identical
    submissions yield identical hashes. Set ``error`` to make the next calls
    fail.
    """

    error: Exception | None = None
    submissions: list[tuple[str, str, str]] = field(default_factory=list)
    _store: dict[tuple[str, str], _StoredAttestation] = field(default_factory=dict)

    @property
    def call_count(self) -> int:
        return len(self.submissions)

    async def submit_root(self, root: str, business_id: str, period: str) -> LedgerReceipt:
        self.submissions.append((root, business_id, period))
        if self.error is not None:
            raise self.error
        tx_hash = sha256_hex(f"{business_id}:{period}:{root}")
        self._store[(business_id, period)] = _StoredAttestation(
            root=root, tx_hash=tx_hash, timestamp=int(time.time())
        )
        return LedgerReceipt(tx_hash=tx_hash)

    async def get_attestation(self, business_id: str, period: str) -> OnChainAttestation | None:
        stored = self._store.get((business_id, period))
        if stored is None:
            return None
        return OnChainAttestation(
            merkle_root=stored.root,
            timestamp=stored.timestamp,
            version=ATTESTATION_SCHEMA_VERSION,
        )

    async def close(self) -> None:
        return None


def build_ledger_client(settings: Settings) -> LedgerClient:
    """Select the ledger implementation from configuration."""
    if settings.ledger_backend == "http":
        return HttpLedgerClient(
            LedgerConfig(
                gateway_url=settings.ledger_url,
                api_key=settings.ledger_api_key,
                contract_id=settings.ledger_contract_id,
                network_passphrase=settings.ledger_network_passphrase,
                timeout=settings.ledger_timeout_seconds,
            )
        )
    return InMemoryLedgerClient()
