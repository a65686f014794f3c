from pydantic import BaseModel

from hc_registry.core.models.base import CommitStatus
from hc_registry.ledger.schemas import CreditRecord


class CommitOutcome(BaseModel):
    """Result of one ledger commit, as reported back to the workflow engine."""

    status: CommitStatus
    credit_id: str
    tx_ref: str | None = None
    record: CreditRecord | None = None
    error_code: str | None = None
    reason: str | None = None
    submit_attempts: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == CommitStatus.SUCCESS
