from pydantic import BaseModel, Field

from hc_registry.core.models.base import ActorRole


class ActorStats(BaseModel):
    """Lifetime totals in kg, incremented once per finalized request."""

    generated: float = 0.0
    transferred: float = 0.0
    retired: float = 0.0
    bought: float = 0.0


class Actor(BaseModel):
    actor_id: str = Field(min_length=1)
    name: str
    role: ActorRole
    auditor_id: str | None = Field(
        default=None,
        description="The Auditor reviewing this actor's requests. Required for Plant and Industry actors to submit requests.",
    )


class ActorRead(Actor):
    stats: ActorStats
