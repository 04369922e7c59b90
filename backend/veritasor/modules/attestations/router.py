"""Attestation endpoints: submission, lookup, revocation and proof tooling."""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Header, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from veritasor.core.config import get_settings
from veritasor.core.crypto.merkle import (
    IndexOutOfRangeError,
    ProofStep,
    build_tree,
    verify_proof,
)
from veritasor.core.idempotency import (
    IDEMPOTENCY_KEY_HEADER,
    IdempotencyEntry,
    build_idempotency_key,
)
from veritasor.core.logging import get_logger
from veritasor.modules.attestations.dependencies import (
    IdempotencyStoreDep,
    Ledger,
    Repository,
    SubmissionPipeline,
)
from veritasor.modules.attestations.errors import (
    AttestationAlreadyRevokedError,
    AttestationNotFoundError,
    AttestationOwnershipError,
    AttestationSubmissionError,
    CommitmentBuildError,
    LedgerSubmissionError,
    NoRevenueDataError,
    RevenueFetchError,
)
from veritasor.modules.attestations.schemas import (
    AttestationResponse,
    AttestationRevokeRequest,
    AttestationSubmitRequest,
    AttestationSubmitResponse,
    OnChainAttestationResponse,
    ProofRequest,
    ProofResponse,
    ProofStepSchema,
    ProofVerifyRequest,
    ProofVerifyResponse,
)
from veritasor.modules.attestations.service import revoke_attestation
from veritasor.modules.ledger.client import LedgerClientError
from veritasor.modules.revenue.aggregator import InvalidRevenueRecordError
from veritasor.modules.revenue.periods import InvalidPeriodError

logger = get_logger(__name__)
router = APIRouter()

IDEMPOTENCY_SCOPE = "attestations"

# First matching cause wins; order subclasses before their bases.
_STATUS_BY_CAUSE: tuple[tuple[type[Exception], int], ...] = (
    (InvalidPeriodError, status.HTTP_400_BAD_REQUEST),
    (InvalidRevenueRecordError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NoRevenueDataError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (RevenueFetchError, status.HTTP_502_BAD_GATEWAY),
    (LedgerSubmissionError, status.HTTP_502_BAD_GATEWAY),
    (CommitmentBuildError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def _caller_key(request: Request) -> str:
    return request.client.host if request.client else "anonymous"


def _status_for_failure(exc: AttestationSubmissionError) -> int:
    for cause_type, status_code in _STATUS_BY_CAUSE:
        if isinstance(exc.cause, cause_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=AttestationSubmitResponse,
)
async def submit_attestation(
    payload: AttestationSubmitRequest,
    request: Request,
    pipeline: SubmissionPipeline,
    store: IdempotencyStoreDep,
    idempotency_key: Annotated[str | None, Header(alias=IDEMPOTENCY_KEY_HEADER)] = None,
) -> JSONResponse:
    """Commit revenue for a period and anchor the root (idempotent per key)."""
    token = (idempotency_key or "").strip()
    if not token:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Missing {IDEMPOTENCY_KEY_HEADER} header",
        )

    storage_key = build_idempotency_key(IDEMPOTENCY_SCOPE, _caller_key(request), token)
    cached = await store.get(storage_key)
    if cached is not None:
        logger.info("attestation_idempotent_replay", business_id=payload.business_id)
        return JSONResponse(status_code=cached.status, content=cached.body)

    ttl = get_settings().idempotency_ttl_seconds
    try:
        result = await pipeline.submit(payload.business_id, payload.period)
    except AttestationSubmissionError as exc:
        status_code = _status_for_failure(exc)
        body = {"detail": str(exc), "stage": exc.stage}
        # Server-side failures are not cached so the same key can be retried
        if status_code < status.HTTP_500_INTERNAL_SERVER_ERROR:
            await store.set(storage_key, IdempotencyEntry(status=status_code, body=body), ttl)
        return JSONResponse(status_code=status_code, content=body)

    body = AttestationSubmitResponse(
        attestation_id=result.attestation_id,
        tx_hash=result.tx_hash,
    ).model_dump(mode="json")
    await store.set(
        storage_key,
        IdempotencyEntry(status=status.HTTP_201_CREATED, body=body),
        ttl,
    )
    return JSONResponse(status_code=status.HTTP_201_CREATED, content=body)


@router.get("/on-chain", response_model=OnChainAttestationResponse)
async def get_on_chain_attestation(
    ledger: Ledger,
    business_id: str = Query(..., min_length=1, description="Business identifier"),
    period: str = Query(..., min_length=7, description="YYYY-MM or YYYY-Qn"),
) -> OnChainAttestationResponse:
    """Read the attestation stored on the ledger for a business and period."""
    try:
        stored = await ledger.get_attestation(business_id, period)
    except LedgerClientError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Ledger read failed: {exc}",
        ) from exc
    if stored is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No on-chain attestation for this business and period",
        )
    return OnChainAttestationResponse(
        business_id=business_id,
        period=period,
        merkle_root=stored.merkle_root,
        timestamp=stored.timestamp,
        version=stored.version,
    )


@router.post("/proofs", response_model=ProofResponse)
async def create_proof(payload: ProofRequest) -> ProofResponse:
    """Build the tree for the given leaves and prove one of them."""
    tree = build_tree(payload.leaves)
    try:
        steps = tree.proof(payload.index)
    except IndexOutOfRangeError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc
    return ProofResponse(
        root=tree.root,
        leaf=payload.leaves[payload.index],
        index=payload.index,
        proof=[ProofStepSchema(sibling=s.sibling, position=s.position) for s in steps],
    )


@router.post("/proofs/verify", response_model=ProofVerifyResponse)
async def verify_inclusion(payload: ProofVerifyRequest) -> ProofVerifyResponse:
    """Check a leaf's inclusion proof against a published root."""
    steps = [ProofStep(sibling=s.sibling, position=s.position) for s in payload.proof]
    return ProofVerifyResponse(valid=verify_proof(payload.leaf, steps, payload.root))


@router.get("/{attestation_id}", response_model=AttestationResponse)
async def get_attestation(attestation_id: UUID, repository: Repository) -> AttestationResponse:
    attestation = await repository.find_by_id(attestation_id)
    if attestation is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Attestation not found",
        )
    return AttestationResponse.model_validate(attestation)


@router.post("/{attestation_id}/revoke", response_model=AttestationResponse)
async def revoke(
    attestation_id: UUID,
    payload: AttestationRevokeRequest,
    repository: Repository,
) -> AttestationResponse:
    """Revoke an attestation owned by the given business."""
    try:
        attestation = await revoke_attestation(
            repository,
            attestation_id,
            business_id=payload.business_id,
        )
    except AttestationNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except AttestationOwnershipError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except AttestationAlreadyRevokedError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return AttestationResponse.model_validate(attestation)
