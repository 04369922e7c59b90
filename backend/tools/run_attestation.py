"""Submit revenue attestations from the command line (for cron/CronJob execution)."""

from __future__ import annotations

import argparse
import asyncio
import json
from datetime import UTC, datetime

from veritasor.core.config import Settings, get_settings
from veritasor.core.logging import configure_logging
from veritasor.db.session import close_db, get_background_session, init_db
from veritasor.modules.attestations.errors import AttestationSubmissionError
from veritasor.modules.attestations.repository import (
    AttestationRepository,
    InMemoryAttestationRepository,
    SqlAttestationRepository,
)
from veritasor.modules.attestations.service import AttestationSubmissionPipeline
from veritasor.modules.ledger.client import LedgerClient, build_ledger_client
from veritasor.modules.revenue.aggregator import PeriodAggregator
from veritasor.modules.revenue.sources import RevenueSource, build_revenue_source


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Commit and anchor revenue attestations.")
    parser.add_argument("--business-id", required=True, help="Business to attest for.")
    parser.add_argument(
        "--period",
        action="append",
        required=True,
        help="Period to attest (YYYY-MM or YYYY-Qn). Repeat for several periods.",
    )
    return parser.parse_args(argv)


async def _submit_periods(
    *,
    business_id: str,
    periods: list[str],
    revenue_source: RevenueSource,
    ledger_client: LedgerClient,
    repository: AttestationRepository,
    settings: Settings,
) -> dict[str, object]:
    pipeline = AttestationSubmissionPipeline(
        revenue_source=revenue_source,
        ledger_client=ledger_client,
        repository=repository,
        aggregator=PeriodAggregator(strict_dates=settings.revenue_strict_dates),
    )
    submitted: list[dict[str, str]] = []
    errors: list[dict[str, str]] = []
    for period in periods:
        try:
            result = await pipeline.submit(business_id, period)
        except AttestationSubmissionError as exc:
            errors.append({"period": period, "stage": exc.stage, "error": str(exc)})
            continue
        submitted.append(
            {
                "period": period,
                "attestation_id": str(result.attestation_id),
                "tx_hash": result.tx_hash,
            }
        )
    return {
        "ran_at": datetime.now(UTC).isoformat(),
        "business_id": business_id,
        "submitted": submitted,
        "errors": errors,
    }


async def _main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    settings = get_settings()
    configure_logging(settings)

    revenue_source = build_revenue_source(settings)
    ledger_client = build_ledger_client(settings)
    try:
        if settings.attestation_store == "memory":
            summary = await _submit_periods(
                business_id=args.business_id,
                periods=args.period,
                revenue_source=revenue_source,
                ledger_client=ledger_client,
                repository=InMemoryAttestationRepository(),
                settings=settings,
            )
        else:
            await init_db(settings)
            async with get_background_session() as session:
                summary = await _submit_periods(
                    business_id=args.business_id,
                    periods=args.period,
                    revenue_source=revenue_source,
                    ledger_client=ledger_client,
                    repository=SqlAttestationRepository(session),
                    settings=settings,
                )
        print(json.dumps(summary, indent=2))
        return 0 if not summary["errors"] else 1
    finally:
        await revenue_source.close()
        await ledger_client.close()
        await close_db()


if __name__ == "__main__":
    raise SystemExit(asyncio.run(_main()))
