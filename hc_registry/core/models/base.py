import datetime
import enum
from enum import Enum
from functools import partial

from pydantic import BaseModel

utc_datetime_now = partial(datetime.datetime.now, datetime.timezone.utc)


class ActorRole(str, Enum):
    PLANT = "plant"
    INDUSTRY = "industry"
    AUDITOR = "auditor"

    def __str__(self):
        return self.value


class RequestType(str, Enum):
    ISSUE = "issue"
    TRANSFER = "transfer"
    RETIRE = "retire"


class RequestStatus(str, Enum):
    CREATED = "Created"
    AUTO_VERIFYING = "AutoVerifying"
    PENDING_REVIEW = "PendingReview"
    APPROVED = "Approved"
    COMMITTING = "Committing"
    FINALIZED = "Finalized"
    REJECTED = "Rejected"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {RequestStatus.FINALIZED, RequestStatus.REJECTED, RequestStatus.FAILED}
)

# Forward-only transition table for every request type
ALLOWED_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.CREATED: frozenset({RequestStatus.AUTO_VERIFYING}),
    RequestStatus.AUTO_VERIFYING: frozenset(
        {RequestStatus.PENDING_REVIEW, RequestStatus.REJECTED}
    ),
    RequestStatus.PENDING_REVIEW: frozenset(
        {RequestStatus.APPROVED, RequestStatus.REJECTED}
    ),
    RequestStatus.APPROVED: frozenset({RequestStatus.COMMITTING}),
    RequestStatus.COMMITTING: frozenset(
        {RequestStatus.FINALIZED, RequestStatus.FAILED}
    ),
    RequestStatus.FINALIZED: frozenset(),
    RequestStatus.REJECTED: frozenset(),
    RequestStatus.FAILED: frozenset(),
}


class Verdict(str, Enum):
    VERIFIED = "verified"
    UNVERIFIED = "unverified"
    ANOMALOUS = "anomalous"


class MeasurementKind(str, enum.Enum):
    PRODUCTION = "production"
    DELIVERY = "delivery"
    CONSUMPTION = "consumption"

    @classmethod
    def values(cls):
        return [e.value for e in cls]


# The measured quantity each request type is checked against
MEASUREMENT_KIND_BY_REQUEST_TYPE = {
    RequestType.ISSUE: MeasurementKind.PRODUCTION,
    RequestType.TRANSFER: MeasurementKind.DELIVERY,
    RequestType.RETIRE: MeasurementKind.CONSUMPTION,
}


class LedgerEventType(str, Enum):
    ISSUED = "issued"
    TRANSFERRED = "transferred"
    RETIRED = "retired"


class CommitStatus(str, Enum):
    SUCCESS = "success"
    PERMANENT_FAILURE = "permanent_failure"
    INDETERMINATE = "indeterminate"


class ReconciliationOutcome(str, Enum):
    APPLIED = "applied"
    NOT_APPLIED = "not_applied"


class AnomalyPolicy(str, Enum):
    ESCALATE = "escalate"
    REJECT = "reject"


class logging_levels(str, enum.Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LoggingLevelRequest(BaseModel):
    level: logging_levels
