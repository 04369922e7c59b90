"""Error taxonomy for attestation submission and revocation."""

from __future__ import annotations


class AttestationStageError(RuntimeError):
    """A pipeline stage failed; ``stage`` names which one."""

    stage = "unknown"


class RevenueFetchError(AttestationStageError):
    """The revenue source could not be read."""

    stage = "revenue_fetch"


class NoRevenueDataError(AttestationStageError):
    """The revenue source returned no records for the period."""

    stage = "revenue_fetch"


class CommitmentBuildError(AttestationStageError):
    """The Merkle commitment could not be built from the leaves."""

    stage = "commitment_build"


class LedgerSubmissionError(AttestationStageError):
    """The ledger client failed to anchor the root."""

    stage = "ledger_submission"


class AttestationSubmissionError(RuntimeError):
    """
    Single error type surfaced by the submission pipeline.

    The stage error (or the raw exception for stages without one) is kept on
    ``cause`` and as ``__cause__``; callers branch on ``cause`` to tell, for
    example, missing data apart from a ledger outage.
    """

    def __init__(self, cause: Exception, *, stage: str) -> None:
        super().__init__(f"Attestation submission failed: {cause}")
        self.cause = cause
        self.stage = stage


class AttestationNotFoundError(LookupError):
    """No attestation exists with the given id."""


class AttestationOwnershipError(PermissionError):
    """The attestation belongs to a different business."""


class AttestationAlreadyRevokedError(ValueError):
    """The attestation has already been revoked."""
