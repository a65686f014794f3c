"""
Verification Oracle

Compares a request's claimed quantity with the aggregated measurement for the
claimed window and produces a verdict.
"""

import math

from hc_registry.core.models.base import MEASUREMENT_KIND_BY_REQUEST_TYPE, Verdict
from hc_registry.measurement.services import MeasurementSnapshot
from hc_registry.settings import settings
from hc_registry.utils import ensure_utc
from hc_registry.verification.schemas import VerificationClaim, VerificationResult


class VerificationOracle:
    """Pure verdict computation over a measurement snapshot"""

    def __init__(
        self,
        relative_tolerance: float = settings.VERIFICATION_RELATIVE_TOLERANCE,
        absolute_tolerance: float = settings.VERIFICATION_ABSOLUTE_TOLERANCE,
    ):
        """
        Initialize oracle.

        Args:
            relative_tolerance: Allowed excess of the claim as a fraction of the
                measured quantity (default 0.05 = 5%)
            absolute_tolerance: Minimum allowed excess in kg
        """
        if relative_tolerance < 0 or absolute_tolerance < 0:
            raise ValueError("Tolerances must be non-negative")
        self.relative_tolerance = relative_tolerance
        self.absolute_tolerance = absolute_tolerance

    def allowance(self, measured: float) -> float:
        return max(self.absolute_tolerance, self.relative_tolerance * measured)

    def verify(
        self,
        request_id: str,
        claim: VerificationClaim,
        snapshot: MeasurementSnapshot,
    ) -> VerificationResult:
        """
        Produce a verdict for a claim.

        - unverified: the claim is not linked to a usable measurement window
        - anomalous: no measurements in the window, or the claim exceeds the
          measured quantity by more than the allowance
        - verified: otherwise

        Args:
            request_id: Request the verdict belongs to
            claim: The claim to check
            snapshot: Measurement data to check it against

        Returns:
            VerificationResult
        """
        linkage_error = self._linkage_error(claim)
        if linkage_error:
            return VerificationResult(
                request_id=request_id,
                verdict=Verdict.UNVERIFIED,
                claimed_amount=claim.amount,
                rationale=linkage_error,
            )

        kind = MEASUREMENT_KIND_BY_REQUEST_TYPE[claim.request_type]
        aggregate = snapshot.aggregate(
            claim.actor_id, kind, claim.window_start, claim.window_end
        )

        if aggregate.row_count == 0:
            return VerificationResult(
                request_id=request_id,
                verdict=Verdict.ANOMALOUS,
                claimed_amount=claim.amount,
                measured_amount=None,
                measurement_reference=aggregate.reference,
                rationale=f"No {kind.value} measurements for {claim.actor_id} in the claimed window",
            )

        measured = aggregate.total
        allowance = self.allowance(measured)
        if claim.amount > measured + allowance:
            return VerificationResult(
                request_id=request_id,
                verdict=Verdict.ANOMALOUS,
                claimed_amount=claim.amount,
                measured_amount=measured,
                measurement_reference=aggregate.reference,
                rationale=(
                    f"Claimed {claim.amount:.4f} kg exceeds measured {kind.value} "
                    f"{measured:.4f} kg by more than {allowance:.4f} kg"
                ),
            )

        return VerificationResult(
            request_id=request_id,
            verdict=Verdict.VERIFIED,
            claimed_amount=claim.amount,
            measured_amount=measured,
            measurement_reference=aggregate.reference,
            rationale=(
                f"Claimed {claim.amount:.4f} kg within tolerance of measured "
                f"{kind.value} {measured:.4f} kg"
            ),
        )

    @staticmethod
    def _linkage_error(claim: VerificationClaim) -> str | None:
        if claim.amount is None or not math.isfinite(claim.amount) or claim.amount <= 0:
            return "Claim has no positive finite amount"
        if claim.window_start is None or claim.window_end is None:
            return "Claim is not linked to a measurement window"
        if ensure_utc(claim.window_end) <= ensure_utc(claim.window_start):
            return "Measurement window must end after it starts"
        return None
