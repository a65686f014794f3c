"""
Credit Ledger

Authoritative store of hydrogen credits. Enforces identifier uniqueness,
holder-only transfer and retirement, and the one-way retired flag, and keeps an
append-only event log of every successful mutation.
"""

import threading
from collections import defaultdict
from typing import Dict, List, Set

from pydantic import ValidationError

from hc_registry.core.exceptions import (
    AlreadyRetired,
    DuplicateIdentifier,
    NotFound,
    Unauthorized,
    ValidationFailure,
)
from hc_registry.core.models.base import LedgerEventType
from hc_registry.ledger.schemas import CreditRecord, LedgerEvent, LedgerStatistics
from hc_registry.logging_config import logger


class CreditLedger:
    """In-process ledger mirroring the on-chain registry contract"""

    def __init__(self):
        self._records: Dict[str, CreditRecord] = {}
        self._events: List[LedgerEvent] = []
        self._credits_by_holder: Dict[str, Set[str]] = defaultdict(set)
        # Check-and-write happens under this lock so no interleaving
        # mutation is observable between the checks and the write
        self._lock = threading.RLock()

    def issue(
        self,
        credit_id: str,
        issuer: str,
        holder: str,
        amount: float,
        *,
        request_id: str | None = None,
        tx_ref: str | None = None,
    ) -> CreditRecord:
        """
        Append a new credit record.

        Args:
            credit_id: Identifier claimed by the issuing request
            issuer: Plant actor originating the credit
            holder: First holder of the credit
            amount: Quantity in kg
            request_id: Workflow request that caused the issuance, if any
            tx_ref: Ledger transaction reference, if any

        Returns:
            A copy of the stored record

        Raises:
            DuplicateIdentifier: If the identifier already exists
            ValidationFailure: If the record is malformed, e.g. a non-positive
                or non-finite amount
        """
        try:
            record = CreditRecord(
                credit_id=credit_id, issuer=issuer, holder=holder, amount=amount
            )
        except ValidationError as e:
            raise ValidationFailure(
                f"Invalid credit record for {credit_id}: {e.errors()[0]['msg']}",
                credit_id=credit_id,
            ) from e
        with self._lock:
            if credit_id in self._records:
                raise DuplicateIdentifier(
                    f"Credit {credit_id} already exists", credit_id=credit_id
                )
            self._records[credit_id] = record
            self._credits_by_holder[holder].add(credit_id)
            self._append_event(
                credit_id,
                LedgerEventType.ISSUED,
                None,
                record.model_dump(mode="json"),
                request_id,
                tx_ref,
            )
            logger.info(f"Issued credit {credit_id} ({amount} kg) to {holder}")
            return record.model_copy()

    def transfer(
        self,
        credit_id: str,
        requester: str,
        new_holder: str,
        *,
        request_id: str | None = None,
        tx_ref: str | None = None,
    ) -> CreditRecord:
        """
        Move a credit to a new holder.

        Raises:
            NotFound: If the identifier is absent
            Unauthorized: If the requester is not the current holder
            AlreadyRetired: If the credit has been retired
        """
        with self._lock:
            record = self._checked_record(credit_id, requester)
            before = record.model_dump(mode="json")

            self._credits_by_holder[record.holder].discard(credit_id)
            record.holder = new_holder
            self._credits_by_holder[new_holder].add(credit_id)

            self._append_event(
                credit_id,
                LedgerEventType.TRANSFERRED,
                before,
                record.model_dump(mode="json"),
                request_id,
                tx_ref,
            )
            logger.info(f"Transferred credit {credit_id} from {requester} to {new_holder}")
            return record.model_copy()

    def retire(
        self,
        credit_id: str,
        requester: str,
        *,
        request_id: str | None = None,
        tx_ref: str | None = None,
    ) -> CreditRecord:
        """
        Permanently retire a credit.

        Raises:
            NotFound: If the identifier is absent
            Unauthorized: If the requester is not the current holder
            AlreadyRetired: If the credit has already been retired
        """
        with self._lock:
            record = self._checked_record(credit_id, requester)
            before = record.model_dump(mode="json")
            record.retired = True

            self._append_event(
                credit_id,
                LedgerEventType.RETIRED,
                before,
                record.model_dump(mode="json"),
                request_id,
                tx_ref,
            )
            logger.info(f"Retired credit {credit_id} held by {requester}")
            return record.model_copy()

    def get(self, credit_id: str) -> CreditRecord:
        """Get a snapshot of a credit record"""
        with self._lock:
            return self._get_record(credit_id).model_copy()

    def exists(self, credit_id: str) -> bool:
        with self._lock:
            return credit_id in self._records

    def list_all(self) -> List[CreditRecord]:
        """Snapshot of every record in issuance order"""
        with self._lock:
            return [record.model_copy() for record in self._records.values()]

    def list_by_holder(self, holder: str) -> List[CreditRecord]:
        with self._lock:
            return [
                self._records[credit_id].model_copy()
                for credit_id in sorted(self._credits_by_holder.get(holder, set()))
            ]

    def events(
        self, credit_id: str | None = None, request_id: str | None = None
    ) -> List[LedgerEvent]:
        """Get ledger events, optionally filtered by credit or request"""
        with self._lock:
            return [
                event.model_copy()
                for event in self._events
                if (credit_id is None or event.credit_id == credit_id)
                and (request_id is None or event.request_id == request_id)
            ]

    def get_statistics(self) -> LedgerStatistics:
        with self._lock:
            records = list(self._records.values())
            retired = [record for record in records if record.retired]
            return LedgerStatistics(
                total_credits=len(records),
                active_credits=len(records) - len(retired),
                retired_credits=len(retired),
                total_amount=sum(record.amount for record in records),
                retired_amount=sum(record.amount for record in retired),
                total_holders=sum(
                    1 for credit_ids in self._credits_by_holder.values() if credit_ids
                ),
                total_events=len(self._events),
            )

    def _get_record(self, credit_id: str) -> CreditRecord:
        record = self._records.get(credit_id)
        if record is None:
            raise NotFound(f"Credit {credit_id} not found", credit_id=credit_id)
        return record

    def _checked_record(self, credit_id: str, requester: str) -> CreditRecord:
        record = self._get_record(credit_id)
        if record.holder != requester:
            raise Unauthorized(
                f"Credit {credit_id} is not held by {requester}",
                credit_id=credit_id,
                requester=requester,
            )
        if record.retired:
            raise AlreadyRetired(
                f"Credit {credit_id} has already been retired", credit_id=credit_id
            )
        return record

    def _append_event(
        self,
        credit_id: str,
        event_type: LedgerEventType,
        attributes_before: dict | None,
        attributes_after: dict | None,
        request_id: str | None,
        tx_ref: str | None,
    ) -> None:
        self._events.append(
            LedgerEvent(
                sequence=len(self._events) + 1,
                credit_id=credit_id,
                event_type=event_type,
                request_id=request_id,
                tx_ref=tx_ref,
                attributes_before=attributes_before,
                attributes_after=attributes_after,
            )
        )
