import json
import threading
from pathlib import Path
from typing import Dict, List

from hc_registry.actor.schemas import Actor, ActorRead, ActorStats
from hc_registry.core.exceptions import NotFound, Unauthorized, ValidationFailure
from hc_registry.core.models.base import ActorRole
from hc_registry.logging_config import logger


def require_role(actor: Actor, *roles: ActorRole) -> None:
    """Raise Unauthorized unless the actor holds one of the given roles."""
    if actor.role not in roles:
        allowed = ", ".join(role.value for role in roles)
        raise Unauthorized(
            f"Actor {actor.actor_id} with role {actor.role.value} is not permitted; requires one of: {allowed}",
            actor_id=actor.actor_id,
        )


class ActorDirectory:
    """Actor profiles, auditor assignment and lifetime statistics.

    Profiles come from the identity layer; this directory is the narrow view of
    them that the workflow needs.
    """

    def __init__(self):
        self._actors: Dict[str, Actor] = {}
        self._stats: Dict[str, ActorStats] = {}
        self._lock = threading.Lock()

    def register(self, actor: Actor) -> Actor:
        with self._lock:
            self._actors[actor.actor_id] = actor
            self._stats.setdefault(actor.actor_id, ActorStats())
        logger.debug(f"Registered actor {actor.actor_id} ({actor.role.value})")
        return actor

    def register_many(self, actors: List[Actor]) -> int:
        for actor in actors:
            self.register(actor)
        return len(actors)

    def load_file(self, file_path: str | Path) -> int:
        """Load a JSON array of actor profiles"""
        raw = json.loads(Path(file_path).read_text(encoding="utf-8"))
        if not isinstance(raw, list):
            raise ValueError("Actor file must contain a JSON array")
        return self.register_many([Actor.model_validate(item) for item in raw])

    def get(self, actor_id: str) -> Actor:
        actor = self._actors.get(actor_id)
        if actor is None:
            raise NotFound(f"Actor {actor_id} not found", actor_id=actor_id)
        return actor

    def exists(self, actor_id: str) -> bool:
        return actor_id in self._actors

    def list_all(self) -> List[Actor]:
        return list(self._actors.values())

    def auditor_for(self, actor_id: str) -> Actor:
        """
        Resolve the auditor assigned to an actor.

        Raises:
            ValidationFailure: If no valid auditor is assigned
        """
        actor = self.get(actor_id)
        if not actor.auditor_id:
            raise ValidationFailure(
                f"Actor {actor_id} has no assigned auditor", actor_id=actor_id
            )
        auditor = self._actors.get(actor.auditor_id)
        if auditor is None or auditor.role != ActorRole.AUDITOR:
            raise ValidationFailure(
                f"Assigned auditor {actor.auditor_id} of actor {actor_id} is not a registered auditor",
                actor_id=actor_id,
            )
        return auditor

    def get_stats(self, actor_id: str) -> ActorStats:
        self.get(actor_id)
        with self._lock:
            return self._stats[actor_id].model_copy()

    def read(self, actor_id: str) -> ActorRead:
        actor = self.get(actor_id)
        return ActorRead(**actor.model_dump(), stats=self.get_stats(actor_id))

    def increment_stats(
        self,
        actor_id: str,
        *,
        generated: float = 0.0,
        transferred: float = 0.0,
        retired: float = 0.0,
        bought: float = 0.0,
    ) -> ActorStats:
        self.get(actor_id)
        with self._lock:
            stats = self._stats[actor_id]
            stats.generated += generated
            stats.transferred += transferred
            stats.retired += retired
            stats.bought += bought
            return stats.model_copy()
