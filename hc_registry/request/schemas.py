import datetime

from pydantic import BaseModel, Field, model_validator

from hc_registry.core.models.base import (
    ReconciliationOutcome,
    RequestStatus,
    RequestType,
    utc_datetime_now,
)
from hc_registry.verification.schemas import VerificationResult


class RequestCreate(BaseModel):
    """An Issue, Transfer or Retire request as submitted by a Plant or Industry actor."""

    request_type: RequestType
    credit_id: str | None = Field(
        default=None,
        min_length=1,
        description="""The credit the request acts on. For Issue requests this is the identifier
        to be created on the ledger; if omitted one is generated at submission.""",
    )
    amount: float | None = Field(
        default=None,
        description="""Claimed quantity in kg. Required for Issue. For Transfer and Retire it
        defaults to the amount of the credit and must match it when given.""",
    )
    counterparty: str | None = Field(
        default=None, description="Receiving actor of a Transfer request."
    )
    window_start: datetime.datetime | None = Field(
        default=None,
        description="Start of the measurement window backing the claim.",
    )
    window_end: datetime.datetime | None = Field(
        default=None,
        description="End of the measurement window backing the claim.",
    )

    @model_validator(mode="after")
    def check_variant_fields(self) -> "RequestCreate":
        if self.request_type == RequestType.ISSUE and self.amount is None:
            raise ValueError("Issue requests require an amount")
        if self.request_type != RequestType.ISSUE and not self.credit_id:
            raise ValueError(f"{self.request_type.value} requests require a credit_id")
        if self.request_type == RequestType.TRANSFER and not self.counterparty:
            raise ValueError("Transfer requests require a counterparty")
        if self.request_type != RequestType.TRANSFER and self.counterparty:
            raise ValueError("Only transfer requests take a counterparty")
        return self


class DecisionSubmit(BaseModel):
    approve: bool
    rationale: str = ""

    @model_validator(mode="after")
    def check_rationale(self) -> "DecisionSubmit":
        if not self.approve and not self.rationale.strip():
            raise ValueError("A rationale is required to reject a request")
        return self


class Decision(BaseModel):
    actor_id: str
    approved: bool
    rationale: str
    decided_at: datetime.datetime = Field(default_factory=utc_datetime_now)


class StatusTransition(BaseModel):
    status: RequestStatus
    at: datetime.datetime = Field(default_factory=utc_datetime_now)


class Reconciliation(BaseModel):
    outcome: ReconciliationOutcome
    actor_id: str
    ledger_event_sequences: list[int] = Field(default_factory=list)
    reconciled_at: datetime.datetime = Field(default_factory=utc_datetime_now)


class CreditRequest(BaseModel):
    request_id: str
    request_type: RequestType
    requester: str
    credit_id: str
    amount: float
    counterparty: str | None = None
    window_start: datetime.datetime | None = None
    window_end: datetime.datetime | None = None

    status: RequestStatus = RequestStatus.CREATED
    verification: VerificationResult | None = None
    anomaly_flag: bool = False
    assigned_auditor: str | None = None
    decision: Decision | None = None
    rejection_reason: str | None = None

    tx_ref: str | None = None
    failure_code: str | None = None
    failure_reason: str | None = None
    reconciliation_required: bool = False
    reconciliation: Reconciliation | None = None
    stats_recorded: bool = False

    transitions: list[StatusTransition] = Field(default_factory=list)
    created_at: datetime.datetime = Field(default_factory=utc_datetime_now)
