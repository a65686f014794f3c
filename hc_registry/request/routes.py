from fastapi import APIRouter, Depends

from hc_registry.actor.schemas import Actor
from hc_registry.core.models.base import RequestStatus, RequestType
from hc_registry.core.services import (
    RegistryServices,
    get_current_actor,
    get_registry_services,
)
from hc_registry.request.schemas import CreditRequest, DecisionSubmit, RequestCreate

# Router initialisation
router = APIRouter(tags=["Requests"])


@router.post("", response_model=CreditRequest, status_code=201)
async def create_request(
    payload: RequestCreate,
    current_actor: Actor = Depends(get_current_actor),
    registry: RegistryServices = Depends(get_registry_services),
):
    """Submit an Issue, Transfer or Retire request and run automatic verification."""
    return await registry.engine.create_request(current_actor.actor_id, payload)


@router.get("", response_model=list[CreditRequest])
def list_requests(
    status: RequestStatus | None = None,
    request_type: RequestType | None = None,
    current_actor: Actor = Depends(get_current_actor),
    registry: RegistryServices = Depends(get_registry_services),
):
    """List own requests, or for auditors the requests assigned to them."""
    return registry.engine.list_requests(
        current_actor.actor_id, status=status, request_type=request_type
    )


@router.get("/{request_id}", response_model=CreditRequest)
def read_request(
    request_id: str,
    current_actor: Actor = Depends(get_current_actor),
    registry: RegistryServices = Depends(get_registry_services),
):
    return registry.engine.get_request(request_id, current_actor.actor_id)


@router.post("/{request_id}/decision", response_model=CreditRequest)
async def decide_request(
    request_id: str,
    decision: DecisionSubmit,
    current_actor: Actor = Depends(get_current_actor),
    registry: RegistryServices = Depends(get_registry_services),
):
    """Approve or reject a request awaiting review. Approval waits for the ledger outcome."""
    return await registry.engine.decide(
        request_id, current_actor.actor_id, decision.approve, decision.rationale
    )


@router.post("/{request_id}/reconcile", response_model=CreditRequest)
async def reconcile_request(
    request_id: str,
    current_actor: Actor = Depends(get_current_actor),
    registry: RegistryServices = Depends(get_registry_services),
):
    """Record whether an unconfirmed commit landed on the ledger."""
    return await registry.engine.reconcile(request_id, current_actor.actor_id)
