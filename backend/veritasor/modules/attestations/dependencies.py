"""FastAPI dependencies resolving the collaborators built at application start."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Request

from veritasor.core.config import get_settings
from veritasor.core.idempotency import IdempotencyStore
from veritasor.db.session import get_db_session
from veritasor.modules.attestations.repository import (
    AttestationRepository,
    SqlAttestationRepository,
)
from veritasor.modules.attestations.service import AttestationSubmissionPipeline
from veritasor.modules.ledger.client import LedgerClient
from veritasor.modules.revenue.aggregator import PeriodAggregator
from veritasor.modules.revenue.sources import RevenueSource


def get_ledger_client(request: Request) -> LedgerClient:
    return request.app.state.ledger_client  # type: ignore[no-any-return]


def get_revenue_source(request: Request) -> RevenueSource:
    return request.app.state.revenue_source  # type: ignore[no-any-return]


def get_idempotency_store(request: Request) -> IdempotencyStore:
    return request.app.state.idempotency_store  # type: ignore[no-any-return]


async def get_attestation_repository(
    request: Request,
) -> AsyncGenerator[AttestationRepository, None]:
    """Yield the in-memory store when configured, else a session-backed one."""
    repository = getattr(request.app.state, "attestation_repository", None)
    if repository is not None:
        yield repository
        return

    async for session in get_db_session():
        yield SqlAttestationRepository(session)


def get_submission_pipeline(
    revenue_source: Annotated[RevenueSource, Depends(get_revenue_source)],
    ledger_client: Annotated[LedgerClient, Depends(get_ledger_client)],
    repository: Annotated[AttestationRepository, Depends(get_attestation_repository)],
) -> AttestationSubmissionPipeline:
    settings = get_settings()
    return AttestationSubmissionPipeline(
        revenue_source=revenue_source,
        ledger_client=ledger_client,
        repository=repository,
        aggregator=PeriodAggregator(strict_dates=settings.revenue_strict_dates),
    )


Ledger = Annotated[LedgerClient, Depends(get_ledger_client)]
IdempotencyStoreDep = Annotated[IdempotencyStore, Depends(get_idempotency_store)]
Repository = Annotated[AttestationRepository, Depends(get_attestation_repository)]
SubmissionPipeline = Annotated[AttestationSubmissionPipeline, Depends(get_submission_pipeline)]
