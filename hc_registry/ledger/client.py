import asyncio
from abc import ABC, abstractmethod
from hashlib import sha256

from hc_registry.core.exceptions import LedgerUnavailable, RegistryError
from hc_registry.core.models.base import RequestType
from hc_registry.ledger.schemas import (
    CreditRecord,
    LedgerEvent,
    LedgerOperation,
    TransactionReceipt,
)
from hc_registry.ledger.services import CreditLedger
from hc_registry.logging_config import logger


def create_transaction_hash(operation: LedgerOperation, nonce: str | None = "") -> str:
    """
    Given a ledger operation and the hash of the previous transaction, return
    the transaction reference for the operation. Chaining the previous hash in
    as a nonce keeps references unique when the same operation is resubmitted.
    """
    operation_json = operation.model_dump_json()
    return sha256(f"{operation_json}{nonce}".encode()).hexdigest()


class AbstractLedgerClient(ABC):
    """Contract of the external ledger: submit a write, then poll its receipt.

    ``submit`` raises LedgerUnavailable only when the write was definitely not
    accepted. ``get_receipt`` returns None while the transaction is unconfirmed.
    """

    @abstractmethod
    async def submit(self, operation: LedgerOperation) -> str:
        pass

    @abstractmethod
    async def get_receipt(self, tx_ref: str) -> TransactionReceipt | None:
        pass

    @abstractmethod
    async def get_credit(self, credit_id: str) -> CreditRecord:
        pass

    @abstractmethod
    async def get_events_for_request(self, request_id: str) -> list[LedgerEvent]:
        pass


class InMemoryLedgerClient(AbstractLedgerClient):
    """Ledger client applying operations to a local CreditLedger.

    Confirmation arrives ``confirmation_delay`` seconds after submission. The
    failure knobs simulate an unreliable chain:

    - ``unavailable_submissions``: refuse the next N submissions
    - ``drop_confirmations``: never publish a receipt for new submissions
    - ``apply_unconfirmed``: with dropped confirmations, still apply the write
    """

    def __init__(self, ledger: CreditLedger, confirmation_delay: float = 0.0):
        self.ledger = ledger
        self.confirmation_delay = confirmation_delay
        self.unavailable_submissions = 0
        self.drop_confirmations = False
        self.apply_unconfirmed = False
        self.submitted: list[LedgerOperation] = []
        self._receipts: dict[str, TransactionReceipt] = {}
        self._tasks: set[asyncio.Task] = set()
        self._last_tx_ref = ""

    async def submit(self, operation: LedgerOperation) -> str:
        if self.unavailable_submissions > 0:
            self.unavailable_submissions -= 1
            raise LedgerUnavailable(
                "Ledger did not accept the submission", credit_id=operation.credit_id
            )

        tx_ref = create_transaction_hash(operation, self._last_tx_ref)
        self._last_tx_ref = tx_ref
        self.submitted.append(operation)
        logger.debug(f"Submitted {operation.operation.value} for {operation.credit_id} as {tx_ref}")

        if self.drop_confirmations:
            if self.apply_unconfirmed:
                self._apply(tx_ref, operation)
            return tx_ref

        task = asyncio.create_task(self._confirm_after_delay(tx_ref, operation))
        self._tasks.add(task)
        task.add_done_callback(self._confirmation_done)
        return tx_ref

    async def get_receipt(self, tx_ref: str) -> TransactionReceipt | None:
        return self._receipts.get(tx_ref)

    async def get_credit(self, credit_id: str) -> CreditRecord:
        return self.ledger.get(credit_id)

    async def get_events_for_request(self, request_id: str) -> list[LedgerEvent]:
        return self.ledger.events(request_id=request_id)

    def _confirmation_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                f"Confirmation task {task.get_name()} failed", exc_info=task.exception()
            )

    async def _confirm_after_delay(self, tx_ref: str, operation: LedgerOperation):
        await asyncio.sleep(self.confirmation_delay)
        self._receipts[tx_ref] = self._apply(tx_ref, operation)

    def _apply(self, tx_ref: str, operation: LedgerOperation) -> TransactionReceipt:
        try:
            if operation.operation == RequestType.ISSUE:
                record = self.ledger.issue(
                    operation.credit_id,
                    operation.requester,
                    operation.new_holder or operation.requester,
                    operation.amount,
                    request_id=operation.request_id,
                    tx_ref=tx_ref,
                )
            elif operation.operation == RequestType.TRANSFER:
                record = self.ledger.transfer(
                    operation.credit_id,
                    operation.requester,
                    operation.new_holder,
                    request_id=operation.request_id,
                    tx_ref=tx_ref,
                )
            else:
                record = self.ledger.retire(
                    operation.credit_id,
                    operation.requester,
                    request_id=operation.request_id,
                    tx_ref=tx_ref,
                )
        except RegistryError as e:
            logger.warning(f"Ledger reverted {tx_ref}: {e.code} ({e.message})")
            return TransactionReceipt(
                tx_ref=tx_ref,
                confirmed=False,
                error_code=e.code,
                error_message=e.message,
            )

        return TransactionReceipt(tx_ref=tx_ref, confirmed=True, record=record)
