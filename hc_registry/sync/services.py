"""
Ledger Sync Coordinator

Serializes ledger-mutating calls per credit identifier, retries submissions the
ledger never accepted, waits for confirmation up to a deadline and translates
the ledger's answer into a CommitOutcome.
"""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List

from hc_registry.core.exceptions import LedgerUnavailable
from hc_registry.core.models.base import CommitStatus
from hc_registry.ledger.client import AbstractLedgerClient
from hc_registry.ledger.schemas import LedgerOperation, TransactionReceipt
from hc_registry.logging_config import logger
from hc_registry.settings import settings
from hc_registry.sync.schemas import CommitOutcome

UNCONFIRMED = "unconfirmed"


class KeyedLock:
    """Arena of asyncio locks keyed by credit identifier.

    Locks are created on first use and dropped once no task holds or waits on
    them, so the arena only grows with the number of identifiers in flight.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                self._locks.pop(key, None)

    def locked_keys(self) -> List[str]:
        return sorted(key for key, lock in self._locks.items() if lock.locked())


class LedgerSyncCoordinator:
    """Commits operations to the ledger one at a time per credit identifier"""

    def __init__(
        self,
        client: AbstractLedgerClient,
        confirmation_timeout: float = settings.LEDGER_CONFIRMATION_TIMEOUT_SECONDS,
        poll_interval: float = settings.LEDGER_POLL_INTERVAL_SECONDS,
        max_submit_attempts: int = settings.LEDGER_SUBMIT_MAX_ATTEMPTS,
        submit_backoff: float = settings.LEDGER_SUBMIT_BACKOFF_SECONDS,
    ):
        if max_submit_attempts < 1:
            raise ValueError("max_submit_attempts must be at least 1")
        self.client = client
        self.confirmation_timeout = confirmation_timeout
        self.poll_interval = poll_interval
        self.max_submit_attempts = max_submit_attempts
        self.submit_backoff = submit_backoff
        self._locks = KeyedLock()

    def submit(self, operation: LedgerOperation) -> "asyncio.Task[CommitOutcome]":
        """Schedule a commit and return its handle.

        The handle can be awaited, wrapped in ``asyncio.wait_for`` or cancelled;
        cancelling releases the identifier lock.
        """
        return asyncio.create_task(
            self.commit(operation), name=f"commit-{operation.credit_id}"
        )

    async def commit(self, operation: LedgerOperation) -> CommitOutcome:
        """
        Commit an operation to the ledger.

        Waits for any earlier commit on the same identifier, submits the
        operation and polls for its receipt until the confirmation deadline.

        Args:
            operation: The ledger call to make

        Returns:
            CommitOutcome: success, permanent failure or indeterminate
        """
        async with self._locks.hold(operation.credit_id):
            logger.info(
                f"Committing {operation.operation.value} for credit {operation.credit_id} "
                f"(request {operation.request_id})"
            )
            try:
                tx_ref, attempts = await self._submit_with_retry(operation)
            except LedgerUnavailable as e:
                logger.error(
                    f"Ledger unavailable after {self.max_submit_attempts} attempts "
                    f"for credit {operation.credit_id}"
                )
                return CommitOutcome(
                    status=CommitStatus.PERMANENT_FAILURE,
                    credit_id=operation.credit_id,
                    error_code=e.code,
                    reason=e.message,
                    submit_attempts=self.max_submit_attempts,
                )

            receipt = await self._await_receipt(tx_ref)

        return self._to_outcome(operation, tx_ref, receipt, attempts)

    def in_flight(self) -> List[str]:
        """Credit identifiers with a commit currently holding the lock"""
        return self._locks.locked_keys()

    async def _submit_with_retry(self, operation: LedgerOperation) -> tuple[str, int]:
        for attempt in range(1, self.max_submit_attempts + 1):
            try:
                tx_ref = await self.client.submit(operation)
                return tx_ref, attempt
            except LedgerUnavailable:
                if attempt == self.max_submit_attempts:
                    raise
                delay = self.submit_backoff * 2 ** (attempt - 1)
                logger.warning(
                    f"Submission {attempt}/{self.max_submit_attempts} for credit "
                    f"{operation.credit_id} not accepted, retrying in {delay:.2f}s"
                )
                await asyncio.sleep(delay)

        raise LedgerUnavailable("No submission attempts made")

    async def _await_receipt(self, tx_ref: str) -> TransactionReceipt | None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.confirmation_timeout

        while True:
            receipt = await self.client.get_receipt(tx_ref)
            if receipt is not None:
                return receipt

            remaining = deadline - loop.time()
            if remaining <= 0:
                return None
            await asyncio.sleep(min(self.poll_interval, remaining))

    def _to_outcome(
        self,
        operation: LedgerOperation,
        tx_ref: str,
        receipt: TransactionReceipt | None,
        attempts: int,
    ) -> CommitOutcome:
        if receipt is None:
            logger.error(
                f"Transaction {tx_ref} for credit {operation.credit_id} unconfirmed "
                f"after {self.confirmation_timeout}s, manual reconciliation required"
            )
            return CommitOutcome(
                status=CommitStatus.INDETERMINATE,
                credit_id=operation.credit_id,
                tx_ref=tx_ref,
                error_code=UNCONFIRMED,
                reason=(
                    f"Ledger confirmation not received within "
                    f"{self.confirmation_timeout}s"
                ),
                submit_attempts=attempts,
            )

        if receipt.confirmed:
            logger.info(f"Transaction {tx_ref} confirmed for credit {operation.credit_id}")
            return CommitOutcome(
                status=CommitStatus.SUCCESS,
                credit_id=operation.credit_id,
                tx_ref=tx_ref,
                record=receipt.record,
                submit_attempts=attempts,
            )

        logger.warning(
            f"Transaction {tx_ref} for credit {operation.credit_id} reverted: "
            f"{receipt.error_code}"
        )
        return CommitOutcome(
            status=CommitStatus.PERMANENT_FAILURE,
            credit_id=operation.credit_id,
            tx_ref=tx_ref,
            error_code=receipt.error_code,
            reason=receipt.error_message,
            submit_attempts=attempts,
        )
