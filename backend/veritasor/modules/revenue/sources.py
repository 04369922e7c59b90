"""
Revenue source adapters.

A revenue source returns raw records for an inclusive ISO-8601 range. An empty
list is a valid answer; transport failures raise :class:`RevenueSourceError`.

HTTP-backed sources create their ``httpx.AsyncClient`` lazily and must be
closed by the owner.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any, Protocol, cast

import httpx

from veritasor.core.config import Settings
from veritasor.core.logging import get_logger
from veritasor.modules.revenue.aggregator import RawRevenueRecord

logger = get_logger(__name__)

# Minor-unit exponents that differ from the default of 2
_CURRENCY_EXPONENTS: dict[str, int] = {
    "JPY": 0,
    "KRW": 0,
    "VND": 0,
    "BHD": 3,
    "KWD": 3,
    "OMR": 3,
}


class RevenueSourceError(RuntimeError):
    """Raised when a revenue source cannot be reached or returns garbage."""


class RevenueSource(Protocol):
    async def fetch(self, start_iso: str, end_iso: str) -> list[RawRevenueRecord]: ...

    async def close(self) -> None: ...


def _iso_to_unix(value: str) -> int:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return int(parsed.timestamp())


def _from_minor_units(amount: int, currency: str) -> Decimal:
    exponent = _CURRENCY_EXPONENTS.get(currency.upper(), 2)
    return Decimal(amount).scaleb(-exponent)


@dataclass
class RazorpayConfig:
    """Credentials and paging for the Razorpay REST API."""

    key_id: str
    key_secret: str
    base_url: str = "https://api.razorpay.com/v1"
    timeout: float = 30.0
    page_size: int = 100


class RazorpayRevenueSource:
    """
    Fetch captured payments and processed refunds from Razorpay.

    Amounts arrive in minor units and are converted to major units; refunds
    are negated so they reduce the month they fall in.
    """

    def __init__(self, config: RazorpayConfig, *, http_client: httpx.AsyncClient | None = None):
        self._config = config
        self._http_client = http_client

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            if not self._config.key_id or not self._config.key_secret:
                raise RevenueSourceError("Razorpay key id and secret are required")
            self._http_client = httpx.AsyncClient(
                base_url=self._config.base_url.rstrip("/"),
                auth=(self._config.key_id, self._config.key_secret),
                timeout=self._config.timeout,
            )
        return self._http_client

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def fetch(self, start_iso: str, end_iso: str) -> list[RawRevenueRecord]:
        from_ts = _iso_to_unix(start_iso)
        to_ts = _iso_to_unix(end_iso)

        payments = await self._fetch_collection("/payments", from_ts, to_ts)
        refunds = await self._fetch_collection("/refunds", from_ts, to_ts)

        records = [
            *self._payments_to_records(payments),
            *self._refunds_to_records(refunds),
        ]
        logger.info(
            "razorpay_revenue_fetched",
            payment_count=len(payments),
            refund_count=len(refunds),
            record_count=len(records),
        )
        return records

    async def _fetch_collection(self, path: str, from_ts: int, to_ts: int) -> list[dict[str, Any]]:
        client = self._get_client()
        items: list[dict[str, Any]] = []
        skip = 0
        while True:
            try:
                response = await client.get(
                    path,
                    params={
                        "from": from_ts,
                        "to": to_ts,
                        "count": self._config.page_size,
                        "skip": skip,
                    },
                )
                response.raise_for_status()
                payload = cast(dict[str, Any], response.json())
            except httpx.HTTPStatusError as exc:
                raise RevenueSourceError(
                    f"Razorpay {path} returned HTTP {exc.response.status_code}"
                ) from exc
            except httpx.HTTPError as exc:
                raise RevenueSourceError(f"Razorpay {path} request failed: {exc}") from exc
            except ValueError as exc:
                raise RevenueSourceError(f"Razorpay {path} returned invalid JSON") from exc

            page = payload.get("items") or []
            items.extend(page)
            if len(page) < self._config.page_size:
                return items
            skip += len(page)

    @staticmethod
    def _payments_to_records(payments: Iterable[dict[str, Any]]) -> list[RawRevenueRecord]:
        records: list[RawRevenueRecord] = []
        for payment in payments:
            if payment.get("status") != "captured":
                continue
            currency = str(payment.get("currency") or "INR")
            records.append(
                RawRevenueRecord(
                    id=str(payment.get("id") or ""),
                    amount=_from_minor_units(int(payment["amount"]), currency),
                    currency=currency,
                    date=payment.get("created_at"),
                    source="razorpay",
                )
            )
        return records

    @staticmethod
    def _refunds_to_records(refunds: Iterable[dict[str, Any]]) -> list[RawRevenueRecord]:
        records: list[RawRevenueRecord] = []
        for refund in refunds:
            if refund.get("status") == "failed":
                continue
            currency = str(refund.get("currency") or "INR")
            records.append(
                RawRevenueRecord(
                    id=str(refund.get("id") or ""),
                    amount=-_from_minor_units(int(refund["amount"]), currency),
                    currency=currency,
                    date=refund.get("created_at"),
                    source="razorpay",
                )
            )
        return records


class StaticRevenueSource:
    """Serve a fixed record set for any range; records each requested range."""

    def __init__(
        self,
        records: Iterable[RawRevenueRecord] = (),
        *,
        error: Exception | None = None,
    ) -> None:
        self._records = list(records)
        self._error = error
        self.calls: list[tuple[str, str]] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def fetch(self, start_iso: str, end_iso: str) -> list[RawRevenueRecord]:
        self.calls.append((start_iso, end_iso))
        if self._error is not None:
            raise self._error
        return list(self._records)

    async def close(self) -> None:
        return None


def build_revenue_source(settings: Settings) -> RevenueSource:
    """Select the revenue source implementation from configuration."""
    if settings.revenue_source == "razorpay":
        return RazorpayRevenueSource(
            RazorpayConfig(
                key_id=settings.razorpay_key_id,
                key_secret=settings.razorpay_key_secret,
                base_url=settings.razorpay_base_url,
                timeout=settings.revenue_timeout_seconds,
            )
        )
    return StaticRevenueSource()
