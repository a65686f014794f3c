import datetime

from pydantic import BaseModel, ConfigDict, Field

from hc_registry.core.models.base import RequestType, Verdict


class VerificationClaim(BaseModel):
    """What a request asserts, linked to the measurement window backing it."""

    request_type: RequestType
    actor_id: str
    amount: float | None = None
    window_start: datetime.datetime | None = None
    window_end: datetime.datetime | None = None


class VerificationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    request_id: str
    verdict: Verdict
    claimed_amount: float | None = None
    measured_amount: float | None = None
    measurement_reference: str | None = Field(
        default=None,
        description="Identifies the measurement aggregate the claim was checked against.",
    )
    rationale: str
