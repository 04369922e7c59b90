"""
Attestation submission pipeline and revocation.

A submission turns a business's revenue for one period into a Merkle root and
anchors that root on the ledger:

1. resolve the period into a date range
2. fetch raw revenue for the range
3. normalize, aggregate per month and encode leaves
4. build the Merkle tree and take its root
5. submit the root to the ledger client
6. persist the attestation record and commit it

The run stops at the first failure. Nothing is persisted unless the ledger
accepted the root, and the ledger is never called for an empty period. A
success is only reported once the record is committed; a failed persistence
step is rolled back so the repository stays usable for the next submission.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from uuid import UUID

from veritasor.core.crypto.canonicalization import to_decimal
from veritasor.core.crypto.merkle import MerkleError, MerkleTree, build_tree
from veritasor.core.logging import attestation_log_context, get_logger
from veritasor.db.models import Attestation, AttestationStatus
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
from veritasor.modules.attestations.repository import AttestationRepository
from veritasor.modules.ledger.client import LedgerClient, LedgerReceipt
from veritasor.modules.revenue.aggregator import (
    CanonicalRevenueRecord,
    PeriodAggregator,
    RawRevenueRecord,
)
from veritasor.modules.revenue.anomaly import MonthlyRevenue, detect_revenue_anomaly
from veritasor.modules.revenue.periods import PeriodRange, parse_period
from veritasor.modules.revenue.sources import RevenueSource

logger = get_logger(__name__)


@dataclass(frozen=True)
class AttestationResult:
    """Outcome of one successful submission."""

    attestation_id: UUID
    tx_hash: str


class AttestationSubmissionPipeline:
    """Drive one revenue commitment from raw records to a ledger transaction."""

    def __init__(
        self,
        *,
        revenue_source: RevenueSource,
        ledger_client: LedgerClient,
        repository: AttestationRepository,
        aggregator: PeriodAggregator | None = None,
    ) -> None:
        self._revenue_source = revenue_source
        self._ledger_client = ledger_client
        self._repository = repository
        self._aggregator = aggregator or PeriodAggregator()

    async def submit(self, business_id: str, period: str) -> AttestationResult:
        """Run the pipeline for ``business_id`` and ``period``.

        Raises
        ------
        AttestationSubmissionError
            On any failure; the stage error is on ``.cause``.
        """
        with attestation_log_context(business_id=business_id, period=period):
            stage = "period_resolution"
            try:
                period_range = parse_period(period)

                stage = "revenue_fetch"
                raw_records = await self._fetch_revenue(period_range)

                stage = "normalization"
                normalized = self._aggregator.normalize(raw_records)
                aggregated = self._aggregator.aggregate(normalized)
                self._inspect(normalized, aggregated)
                leaves = self._aggregator.to_leaves(aggregated)

                stage = "commitment_build"
                tree = self._build_commitment(leaves)

                stage = "ledger_submission"
                receipt = await self._submit_root(tree.root, business_id, period_range.period)

                stage = "persistence"
                attestation = await self._repository.create(
                    business_id=business_id,
                    period=period_range.period,
                    merkle_root=tree.root,
                    tx_hash=receipt.tx_hash,
                    leaf_count=tree.leaf_count,
                    leaf_encoding=self._aggregator.encoding,
                )
                await self._repository.commit()
            except Exception as exc:
                if stage == "persistence":
                    await self._rollback()
                logger.warning(
                    "attestation_submission_failed",
                    stage=stage,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                raise AttestationSubmissionError(exc, stage=stage) from exc

            logger.info(
                "attestation_submitted",
                attestation_id=str(attestation.id),
                merkle_root=tree.root,
                leaf_count=tree.leaf_count,
                tx_hash=receipt.tx_hash,
            )
            return AttestationResult(attestation_id=attestation.id, tx_hash=receipt.tx_hash)

    async def _fetch_revenue(self, period_range: PeriodRange) -> list[RawRevenueRecord]:
        try:
            records = await self._revenue_source.fetch(period_range.start_iso, period_range.end_iso)
        except Exception as exc:
            raise RevenueFetchError(f"Failed to fetch revenue: {exc}") from exc

        if not records:
            raise NoRevenueDataError(f"No revenue found for the period {period_range.period}")
        logger.debug("revenue_fetched", record_count=len(records))
        return list(records)

    @staticmethod
    def _build_commitment(leaves: Sequence[str]) -> MerkleTree:
        try:
            return build_tree(leaves)
        except MerkleError as exc:
            raise CommitmentBuildError(
                f"Failed to generate Merkle root from aggregated data: {exc}"
            ) from exc

    async def _submit_root(self, root: str, business_id: str, period: str) -> LedgerReceipt:
        try:
            return await self._ledger_client.submit_root(root, business_id, period)
        except Exception as exc:
            raise LedgerSubmissionError(f"Ledger submission failed: {exc}") from exc

    async def _rollback(self) -> None:
        """Discard a failed write; the persistence error is what the caller sees."""
        try:
            await self._repository.rollback()
        except Exception as rollback_exc:
            logger.error(
                "attestation_rollback_failed",
                error=str(rollback_exc),
                error_type=type(rollback_exc).__name__,
            )

    @staticmethod
    def _inspect(
        normalized: Sequence[CanonicalRevenueRecord],
        aggregated: Mapping[str, Decimal | float],
    ) -> None:
        """Log advisory findings; never alters what gets committed."""
        currencies = sorted({record.currency for record in normalized})
        if len(currencies) > 1:
            logger.warning("revenue_mixed_currencies", currencies=currencies)

        series = [
            MonthlyRevenue(period=month, amount=to_decimal(amount))
            for month, amount in aggregated.items()
        ]
        anomaly = detect_revenue_anomaly(series)
        if anomaly.flag in ("unusual_drop", "unusual_spike"):
            logger.warning(
                "revenue_anomaly_detected",
                flag=anomaly.flag,
                score=anomaly.score,
                detail=anomaly.detail,
            )


async def revoke_attestation(
    repository: AttestationRepository,
    attestation_id: UUID,
    *,
    business_id: str,
) -> Attestation:
    """Mark an attestation revoked after checking existence and ownership.

    The on-chain record is left untouched; revocation is recorded in the
    attestation store only.
    """
    attestation = await repository.find_by_id(attestation_id)
    if attestation is None:
        raise AttestationNotFoundError(f"Attestation not found: {attestation_id}")
    if attestation.business_id != business_id:
        raise AttestationOwnershipError("Attestation does not belong to this business")
    if attestation.status == AttestationStatus.REVOKED:
        raise AttestationAlreadyRevokedError(f"Attestation {attestation_id} is already revoked")

    updated = await repository.update_status(
        attestation_id,
        AttestationStatus.REVOKED,
        revoked_at=datetime.now(UTC),
    )
    if updated is None:
        raise AttestationNotFoundError(f"Attestation not found: {attestation_id}")
    await repository.commit()

    logger.info(
        "attestation_revoked",
        attestation_id=str(attestation_id),
        business_id=business_id,
        period=updated.period,
    )
    return updated
