"""
shared/models/actor.py
The (actor_id, role) pair supplied by the identity service for every call.
"""

from dataclasses import dataclass

from shared.models.models import ActorRole


@dataclass(frozen=True)
class Actor:
    actor_id: str
    role: ActorRole

    @property
    def is_privileged(self) -> bool:
        return self.role in (ActorRole.SYSTEM, ActorRole.ADMIN)


SYSTEM_ACTOR = Actor(actor_id="system", role=ActorRole.SYSTEM)
