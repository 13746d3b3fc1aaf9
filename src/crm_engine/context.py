"""Caller context passed into every mutating operation."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Actor:
    """The user performing a mutation.

    There is no implicit user: unattended work passes SYSTEM_ACTOR.
    """

    user_id: int | None

    @property
    def is_system(self) -> bool:
        return self.user_id is None


SYSTEM_ACTOR = Actor(user_id=None)
