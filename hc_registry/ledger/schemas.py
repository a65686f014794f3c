import datetime
from typing import Any

from pydantic import BaseModel, Field

from hc_registry.core.models.base import (
    LedgerEventType,
    RequestType,
    utc_datetime_now,
)


class CreditRecord(BaseModel):
    """A green-hydrogen credit as held on the ledger.

    Only the CreditLedger creates or mutates records; every other component
    works on copies returned by the ledger's read operations.
    """

    credit_id: str = Field(
        min_length=1,
        description="Globally unique identifier chosen by the issuing request.",
    )
    issuer: str = Field(description="The Plant actor that originated the credit.")
    holder: str = Field(
        description="The actor that last successfully received the credit."
    )
    amount: float = Field(
        gt=0, allow_inf_nan=False, description="Quantity of hydrogen in kg."
    )
    issued_at: datetime.datetime = Field(default_factory=utc_datetime_now)
    retired: bool = Field(
        default=False,
        description="Monotonic: once True the credit can no longer move.",
    )


class LedgerEvent(BaseModel):
    sequence: int
    credit_id: str
    event_type: LedgerEventType
    request_id: str | None = None
    tx_ref: str | None = None
    attributes_before: dict[str, Any] | None = None
    attributes_after: dict[str, Any] | None = None
    timestamp: datetime.datetime = Field(default_factory=utc_datetime_now)


class LedgerOperation(BaseModel):
    """A ledger-mutating call handed from the workflow to the ledger client."""

    operation: RequestType
    credit_id: str
    requester: str
    new_holder: str | None = None
    amount: float | None = None
    request_id: str | None = None


class TransactionReceipt(BaseModel):
    tx_ref: str
    confirmed: bool
    record: CreditRecord | None = None
    error_code: str | None = None
    error_message: str | None = None


class LedgerStatistics(BaseModel):
    total_credits: int
    active_credits: int
    retired_credits: int
    total_amount: float
    retired_amount: float
    total_holders: int
    total_events: int
