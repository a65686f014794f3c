from fastapi import APIRouter, Depends

from hc_registry.actor.schemas import ActorRead
from hc_registry.core.services import RegistryServices, get_registry_services

# Router initialisation
router = APIRouter(tags=["Actors"])


@router.get("/{actor_id}", response_model=ActorRead)
def read_actor(
    actor_id: str,
    registry: RegistryServices = Depends(get_registry_services),
):
    """Actor profile with lifetime generated, transferred, retired and bought totals."""
    return registry.actors.read(actor_id)
