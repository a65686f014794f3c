from fastapi import APIRouter, Depends

from hc_registry.core.services import RegistryServices, get_registry_services
from hc_registry.ledger.schemas import CreditRecord, LedgerEvent, LedgerStatistics

# Router initialisation
router = APIRouter(tags=["Ledger"])


@router.get("/credits", response_model=list[CreditRecord])
def list_credits(
    holder: str | None = None,
    registry: RegistryServices = Depends(get_registry_services),
):
    if holder is not None:
        return registry.ledger.list_by_holder(holder)
    return registry.ledger.list_all()


@router.get("/credits/{credit_id}", response_model=CreditRecord)
def read_credit(
    credit_id: str,
    registry: RegistryServices = Depends(get_registry_services),
):
    return registry.ledger.get(credit_id)


@router.get("/events", response_model=list[LedgerEvent])
def list_events(
    credit_id: str | None = None,
    request_id: str | None = None,
    registry: RegistryServices = Depends(get_registry_services),
):
    return registry.ledger.events(credit_id=credit_id, request_id=request_id)


@router.get("/statistics", response_model=LedgerStatistics)
def ledger_statistics(registry: RegistryServices = Depends(get_registry_services)):
    return registry.ledger.get_statistics()
