"""
Request Workflow Engine

Drives Issue, Transfer and Retire requests through automatic verification,
auditor decision and ledger commitment:

    Created -> AutoVerifying -> PendingReview | Rejected
    PendingReview -> Approved | Rejected
    Approved -> Committing -> Finalized | Failed

Requests only ever move forward. Every status change is a compare-and-set
against the expected prior status, so a losing concurrent decision fails with
InvalidState instead of overwriting the winner. Ledger failures are final: a
failed request is never retried, a fresh request must be submitted.
"""

import asyncio
import uuid
from functools import partial
from typing import Dict, List

from hc_registry.actor.services import ActorDirectory, require_role
from hc_registry.core.exceptions import (
    AlreadyRetired,
    DuplicateIdentifier,
    InvalidState,
    NotFound,
    Unauthorized,
    ValidationFailure,
)
from hc_registry.core.models.base import (
    ALLOWED_TRANSITIONS,
    ActorRole,
    AnomalyPolicy,
    CommitStatus,
    ReconciliationOutcome,
    RequestStatus,
    RequestType,
    Verdict,
)
from hc_registry.ledger.client import AbstractLedgerClient
from hc_registry.ledger.schemas import LedgerOperation
from hc_registry.logging_config import logger
from hc_registry.measurement.services import MeasurementStore
from hc_registry.request.schemas import (
    CreditRequest,
    Decision,
    Reconciliation,
    RequestCreate,
    StatusTransition,
)
from hc_registry.settings import settings
from hc_registry.sync.schemas import CommitOutcome
from hc_registry.sync.services import LedgerSyncCoordinator
from hc_registry.verification.schemas import VerificationClaim
from hc_registry.verification.services import VerificationOracle

AUTO_REJECTION_RATIONALE = "failed automatic verification"
COMMIT_ABORTED = "commit_aborted"

REQUESTER_ROLES = {
    RequestType.ISSUE: (ActorRole.PLANT,),
    RequestType.TRANSFER: (ActorRole.PLANT, ActorRole.INDUSTRY),
    RequestType.RETIRE: (ActorRole.PLANT, ActorRole.INDUSTRY),
}


def create_request_id() -> str:
    return f"REQ-{uuid.uuid4().hex[:16].upper()}"


def create_credit_id() -> str:
    return f"H2-{uuid.uuid4().hex[:16].upper()}"


class RequestWorkflowEngine:
    """Coordinates verification, auditor review and ledger commitment"""

    def __init__(
        self,
        ledger_client: AbstractLedgerClient,
        coordinator: LedgerSyncCoordinator,
        oracle: VerificationOracle,
        measurements: MeasurementStore,
        actors: ActorDirectory,
        anomaly_policy: AnomalyPolicy | str = settings.ANOMALY_POLICY,
    ):
        self.ledger_client = ledger_client
        self.coordinator = coordinator
        self.oracle = oracle
        self.measurements = measurements
        self.actors = actors
        self.anomaly_policy = AnomalyPolicy(anomaly_policy)
        self._requests: Dict[str, CreditRequest] = {}
        # Issue identifiers whose request reached a terminal state
        self._burned_issue_ids: set[str] = set()
        self._commits: Dict[str, asyncio.Task] = {}

    async def create_request(self, actor_id: str, payload: RequestCreate) -> CreditRequest:
        """
        Submit a request and run automatic verification.

        Validation and authorization errors are raised before anything is
        stored. Once stored, the request is verified immediately and leaves in
        PendingReview (verified, or anomalous and escalated) or Rejected.

        Args:
            actor_id: Authenticated requester
            payload: The request submission

        Returns:
            CreditRequest: A snapshot of the request after verification
        """
        requester = self.actors.get(actor_id)
        require_role(requester, *REQUESTER_ROLES[payload.request_type])
        auditor = self.actors.auditor_for(actor_id)

        if payload.request_type == RequestType.ISSUE:
            credit_id = payload.credit_id or create_credit_id()
            amount = payload.amount
            await self._check_issue_identifier(credit_id)
        else:
            credit_id = payload.credit_id
            amount = await self._check_held_credit(actor_id, credit_id, payload.amount)

        if payload.request_type == RequestType.TRANSFER:
            self._check_counterparty(actor_id, payload.counterparty)

        request = CreditRequest(
            request_id=create_request_id(),
            request_type=payload.request_type,
            requester=actor_id,
            credit_id=credit_id,
            amount=amount,
            counterparty=payload.counterparty,
            window_start=payload.window_start,
            window_end=payload.window_end,
            transitions=[StatusTransition(status=RequestStatus.CREATED)],
        )
        self._requests[request.request_id] = request
        logger.info(
            f"Created {request.request_type.value} request {request.request_id} "
            f"by {actor_id} for credit {credit_id}"
        )

        self._auto_verify(request, auditor.actor_id)
        return self._snapshot(request)

    async def decide(
        self,
        request_id: str,
        actor_id: str,
        approve: bool,
        rationale: str = "",
    ) -> CreditRequest:
        """
        Record the assigned auditor's decision.

        Rejection is terminal and never touches the ledger. Approval moves the
        request to Committing and waits for the ledger outcome.

        Raises:
            Unauthorized: If the actor is not the assigned auditor
            InvalidState: If the request is not awaiting review
        """
        request = self._get(request_id)
        actor = self.actors.get(actor_id)
        require_role(actor, ActorRole.AUDITOR)
        if request.assigned_auditor != actor_id:
            raise Unauthorized(
                f"Actor {actor_id} is not the assigned auditor of request {request_id}",
                request_id=request_id,
            )

        decision = Decision(actor_id=actor_id, approved=approve, rationale=rationale)

        if not approve:
            self._transition(request, RequestStatus.PENDING_REVIEW, RequestStatus.REJECTED)
            request.decision = decision
            request.rejection_reason = rationale
            self._burn_issue_identifier(request)
            return self._snapshot(request)

        self._transition(request, RequestStatus.PENDING_REVIEW, RequestStatus.APPROVED)
        request.decision = decision
        await self._commit(request)
        return self._snapshot(request)

    async def reconcile(self, request_id: str, actor_id: str) -> CreditRequest:
        """
        Check the authoritative ledger for the outcome of an unconfirmed commit.

        The request stays Failed; the finding is recorded on it.

        Raises:
            Unauthorized: If the actor is not the assigned auditor
            InvalidState: If the request does not need reconciliation
        """
        request = self._get(request_id)
        actor = self.actors.get(actor_id)
        require_role(actor, ActorRole.AUDITOR)
        if request.assigned_auditor != actor_id:
            raise Unauthorized(
                f"Actor {actor_id} is not the assigned auditor of request {request_id}",
                request_id=request_id,
            )
        if request.status != RequestStatus.FAILED or not request.reconciliation_required:
            raise InvalidState(
                f"Request {request_id} does not require reconciliation",
                request_id=request_id,
                status=request.status.value,
            )
        if request.reconciliation is not None:
            raise InvalidState(
                f"Request {request_id} has already been reconciled", request_id=request_id
            )

        events = await self.ledger_client.get_events_for_request(request_id)
        outcome = ReconciliationOutcome.APPLIED if events else ReconciliationOutcome.NOT_APPLIED
        request.reconciliation = Reconciliation(
            outcome=outcome,
            actor_id=actor_id,
            ledger_event_sequences=[event.sequence for event in events],
        )
        logger.info(f"Reconciled request {request_id}: {outcome.value}")
        return self._snapshot(request)

    def get_request(self, request_id: str, actor_id: str | None = None) -> CreditRequest:
        request = self._get(request_id)
        if actor_id is not None and not self._is_visible_to(request, actor_id):
            raise Unauthorized(
                f"Request {request_id} is not visible to {actor_id}", request_id=request_id
            )
        return self._snapshot(request)

    def list_requests(
        self,
        actor_id: str,
        status: RequestStatus | None = None,
        request_type: RequestType | None = None,
    ) -> List[CreditRequest]:
        """Auditors see requests assigned to them, other actors their own"""
        self.actors.get(actor_id)
        return [
            self._snapshot(request)
            for request in sorted(self._requests.values(), key=lambda r: r.created_at)
            if self._is_visible_to(request, actor_id)
            and (status is None or request.status == status)
            and (request_type is None or request.request_type == request_type)
        ]

    def pending_commits(self) -> List[str]:
        return list(self._commits)

    def _auto_verify(self, request: CreditRequest, auditor_id: str) -> None:
        self._transition(request, RequestStatus.CREATED, RequestStatus.AUTO_VERIFYING)

        claim = VerificationClaim(
            request_type=request.request_type,
            actor_id=request.requester,
            amount=request.amount,
            window_start=request.window_start,
            window_end=request.window_end,
        )
        result = self.oracle.verify(request.request_id, claim, self.measurements.snapshot())
        request.verification = result
        logger.info(f"Request {request.request_id} verdict: {result.verdict.value} ({result.rationale})")

        escalate_anomaly = (
            result.verdict == Verdict.ANOMALOUS
            and self.anomaly_policy == AnomalyPolicy.ESCALATE
        )
        if result.verdict == Verdict.VERIFIED or escalate_anomaly:
            request.anomaly_flag = escalate_anomaly
            request.assigned_auditor = auditor_id
            self._transition(
                request, RequestStatus.AUTO_VERIFYING, RequestStatus.PENDING_REVIEW
            )
            return

        request.rejection_reason = f"{AUTO_REJECTION_RATIONALE}: {result.rationale}"
        self._transition(request, RequestStatus.AUTO_VERIFYING, RequestStatus.REJECTED)
        self._burn_issue_identifier(request)

    async def _commit(self, request: CreditRequest) -> None:
        self._transition(request, RequestStatus.APPROVED, RequestStatus.COMMITTING)
        handle = self.coordinator.submit(self._operation_for(request))
        self._commits[request.request_id] = handle

        try:
            # Shielded so an abandoned caller does not cancel the ledger commit
            outcome = await asyncio.shield(handle)
        except asyncio.CancelledError:
            handle.add_done_callback(partial(self._finish_commit, request.request_id))
            raise
        except Exception as e:
            self._commits.pop(request.request_id, None)
            self._fail_aborted_commit(request, e)
            raise

        self._commits.pop(request.request_id, None)
        self._apply_outcome(request, outcome)

    def _finish_commit(self, request_id: str, handle: asyncio.Task) -> None:
        self._commits.pop(request_id, None)
        request = self._requests[request_id]
        if handle.cancelled():
            self._fail_aborted_commit(request, None)
        elif handle.exception() is not None:
            self._fail_aborted_commit(request, handle.exception())
        else:
            self._apply_outcome(request, handle.result())

    def _fail_aborted_commit(self, request: CreditRequest, error: BaseException | None) -> None:
        if request.status != RequestStatus.COMMITTING:
            return
        logger.error(f"Commit for request {request.request_id} aborted: {error!r}")
        request.failure_code = COMMIT_ABORTED
        request.failure_reason = f"Commit aborted before a ledger outcome was known: {error!r}"
        request.reconciliation_required = True
        self._transition(request, RequestStatus.COMMITTING, RequestStatus.FAILED)
        self._burn_issue_identifier(request)

    def _apply_outcome(self, request: CreditRequest, outcome: CommitOutcome) -> None:
        if request.status != RequestStatus.COMMITTING:
            return

        request.tx_ref = outcome.tx_ref
        if outcome.succeeded:
            if outcome.record is not None:
                request.credit_id = outcome.record.credit_id
            self._transition(request, RequestStatus.COMMITTING, RequestStatus.FINALIZED)
            self._record_stats(request)
        else:
            request.failure_code = outcome.error_code
            request.failure_reason = outcome.reason
            request.reconciliation_required = outcome.status == CommitStatus.INDETERMINATE
            self._transition(request, RequestStatus.COMMITTING, RequestStatus.FAILED)

        self._burn_issue_identifier(request)

    def _record_stats(self, request: CreditRequest) -> None:
        if request.stats_recorded:
            return
        request.stats_recorded = True

        if request.request_type == RequestType.ISSUE:
            self.actors.increment_stats(request.requester, generated=request.amount)
        elif request.request_type == RequestType.TRANSFER:
            self.actors.increment_stats(request.requester, transferred=request.amount)
            self.actors.increment_stats(request.counterparty, bought=request.amount)
        else:
            self.actors.increment_stats(request.requester, retired=request.amount)

    def _transition(
        self,
        request: CreditRequest,
        expected: RequestStatus,
        new_status: RequestStatus,
    ) -> None:
        """Compare-and-set the request status."""
        if request.status != expected:
            raise InvalidState(
                f"Request {request.request_id} is {request.status.value}, expected {expected.value}",
                request_id=request.request_id,
                status=request.status.value,
            )
        if new_status not in ALLOWED_TRANSITIONS[expected]:
            raise InvalidState(
                f"Transition {expected.value} -> {new_status.value} is not allowed",
                request_id=request.request_id,
            )
        request.status = new_status
        request.transitions.append(StatusTransition(status=new_status))
        logger.info(f"Request {request.request_id}: {expected.value} -> {new_status.value}")

    def _operation_for(self, request: CreditRequest) -> LedgerOperation:
        operation = LedgerOperation(
            operation=request.request_type,
            credit_id=request.credit_id,
            requester=request.requester,
            request_id=request.request_id,
        )
        if request.request_type == RequestType.ISSUE:
            # Issued credits start with the issuing plant
            operation.new_holder = request.requester
            operation.amount = request.amount
        elif request.request_type == RequestType.TRANSFER:
            operation.new_holder = request.counterparty
        return operation

    async def _check_issue_identifier(self, credit_id: str) -> None:
        if credit_id in self._burned_issue_ids:
            raise DuplicateIdentifier(
                f"Credit identifier {credit_id} was already claimed by a closed request",
                credit_id=credit_id,
            )
        try:
            await self.ledger_client.get_credit(credit_id)
        except NotFound:
            return
        raise DuplicateIdentifier(
            f"Credit {credit_id} already exists on the ledger", credit_id=credit_id
        )

    async def _check_held_credit(
        self, actor_id: str, credit_id: str, amount: float | None
    ) -> float:
        record = await self.ledger_client.get_credit(credit_id)
        if record.holder != actor_id:
            raise Unauthorized(
                f"Credit {credit_id} is not held by {actor_id}",
                credit_id=credit_id,
                requester=actor_id,
            )
        if record.retired:
            raise AlreadyRetired(
                f"Credit {credit_id} has already been retired", credit_id=credit_id
            )
        if amount is not None and amount != record.amount:
            raise ValidationFailure(
                f"Claimed amount {amount} does not match credit amount {record.amount}",
                credit_id=credit_id,
            )
        return record.amount

    def _check_counterparty(self, actor_id: str, counterparty: str) -> None:
        if counterparty == actor_id:
            raise ValidationFailure("A credit cannot be transferred to its holder")
        receiver = self.actors.get(counterparty)
        if receiver.role == ActorRole.AUDITOR:
            raise ValidationFailure(
                f"Auditor {counterparty} cannot receive credits", counterparty=counterparty
            )

    def _burn_issue_identifier(self, request: CreditRequest) -> None:
        if request.request_type == RequestType.ISSUE and request.status.is_terminal:
            self._burned_issue_ids.add(request.credit_id)

    def _is_visible_to(self, request: CreditRequest, actor_id: str) -> bool:
        actor = self.actors.get(actor_id)
        if actor.role == ActorRole.AUDITOR:
            return request.assigned_auditor == actor_id
        return request.requester == actor_id

    def _get(self, request_id: str) -> CreditRequest:
        request = self._requests.get(request_id)
        if request is None:
            raise NotFound(f"Request {request_id} not found", request_id=request_id)
        return request

    @staticmethod
    def _snapshot(request: CreditRequest) -> CreditRequest:
        return request.model_copy(deep=True)
