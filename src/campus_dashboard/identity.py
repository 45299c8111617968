from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class Actor:
    id: str
    display_name: str


@runtime_checkable
class IdentityProvider(Protocol):
    async def current_actor(self) -> Actor | None: ...


class StaticIdentityProvider:
    def __init__(self, actor: Actor | None):
        self._actor = actor

    async def current_actor(self) -> Actor | None:
        return self._actor

    def sign_in(self, actor: Actor) -> None:
        self._actor = actor

    def sign_out(self) -> None:
        self._actor = None


class EnvIdentityProvider:
    """Reads the signed-in actor from ``PORTAL_ACTOR_ID`` / ``PORTAL_ACTOR_NAME``."""

    def __init__(self, id_var: str = "PORTAL_ACTOR_ID", name_var: str = "PORTAL_ACTOR_NAME"):
        self._id_var = id_var
        self._name_var = name_var

    async def current_actor(self) -> Actor | None:
        actor_id = os.environ.get(self._id_var, "").strip()
        if not actor_id:
            return None
        display_name = os.environ.get(self._name_var, "").strip() or actor_id
        return Actor(id=actor_id, display_name=display_name)
