"""Identity store interface and the in-memory reference backend.

The engine consumes persistence only through ``IdentityStore``. Each
request wraps the store in a ``BoundedStore`` so that every call runs
under the caller's deadline and infrastructure failures surface as
``UnavailableError`` instead of being mistaken for a security decision.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Iterable

from .exceptions import (
    AccessError,
    IdentityAlreadyBoundError,
    InvariantViolationError,
    StoreUnavailableError,
    UnavailableError,
)
from .hierarchy.models import Account, Actor, Level, Organization, Profile, ProfileStatus

logger = logging.getLogger(__name__)


class IdentityStore(ABC):
    """Durable records for actors, profiles, organizations and accounts.

    ``update_profile_conditional`` must be a single compare-and-swap: it
    applies ``changes`` only if the stored profile currently has
    ``expected_status`` AND ``expected_token``, and returns ``None``
    otherwise. This is the only concurrency control the engine relies on.
    """

    # Actors
    @abstractmethod
    async def get_actor(self, actor_id: str) -> Actor | None: ...

    @abstractmethod
    async def get_actor_by_external_id(self, external_id: str) -> Actor | None: ...

    @abstractmethod
    async def create_actor(self, actor: Actor) -> Actor: ...

    @abstractmethod
    async def delete_actor(self, actor_id: str) -> bool:
        """Remove an actor that has no profile. Returns False if nothing was removed."""

    @abstractmethod
    async def set_actor_active(self, actor_id: str, active: bool) -> Actor | None: ...

    @abstractmethod
    async def bind_external_identity(self, actor_id: str, external_id: str) -> Actor:
        """Bind ``external_id`` to the actor and mark it active.

        Raises:
            IdentityAlreadyBoundError: if another actor already holds it.
        """

    # Profiles
    @abstractmethod
    async def get_profile(self, profile_id: str) -> Profile | None: ...

    @abstractmethod
    async def get_profile_by_actor(self, actor_id: str) -> Profile | None: ...

    @abstractmethod
    async def get_profile_by_token(self, token: str) -> Profile | None: ...

    @abstractmethod
    async def create_profile(self, profile: Profile) -> Profile: ...

    @abstractmethod
    async def update_profile_conditional(
        self,
        profile_id: str,
        expected_status: ProfileStatus,
        expected_token: str | None,
        changes: dict[str, Any],
    ) -> Profile | None: ...

    @abstractmethod
    async def list_profiles(
        self,
        *,
        status: ProfileStatus | None = None,
        level: Level | None = None,
    ) -> list[Profile]: ...

    # Organizations and accounts
    @abstractmethod
    async def get_organization(self, organization_id: str) -> Organization | None: ...

    @abstractmethod
    async def get_account(self, account_id: str) -> Account | None: ...

    @abstractmethod
    async def list_accounts(self) -> list[Account]: ...


class InMemoryIdentityStore(IdentityStore):
    """Thread-safe in-memory backend.

    Used by tests and single-process deployments. The conditional update
    runs under the store's own lock, which is what a database's
    ``UPDATE ... WHERE status = ? AND invite_token = ?`` gives a real backend.

    Every call yields to the event loop once (after ``latency`` seconds)
    before touching state, so concurrent requests interleave the way they
    would against a networked backend.
    """

    def __init__(self, latency: float = 0.0) -> None:
        self.latency = latency
        self._lock = threading.Lock()
        self._actors: dict[str, Actor] = {}
        self._profiles: dict[str, Profile] = {}
        self._organizations: dict[str, Organization] = {}
        self._accounts: dict[str, Account] = {}

    async def _pause(self) -> None:
        await asyncio.sleep(self.latency)

    # ── Seeding helpers (not part of the interface) ──────────────

    def add_organization(self, organization: Organization) -> Organization:
        with self._lock:
            self._organizations[organization.id] = organization
        return organization

    def remove_organization(self, organization_id: str) -> None:
        with self._lock:
            self._organizations.pop(organization_id, None)

    def add_account(self, account: Account) -> Account:
        with self._lock:
            self._accounts[account.id] = account
        return account

    def add_actor(self, actor: Actor) -> Actor:
        with self._lock:
            self._actors[actor.id] = actor
        return actor

    def put_profile(self, profile: Profile) -> Profile:
        """Write a profile unconditionally (seeding and fixtures only)."""
        with self._lock:
            self._profiles[profile.id] = profile
        return profile

    def remove_profile(self, profile_id: str) -> None:
        with self._lock:
            self._profiles.pop(profile_id, None)

    # ── Actors ───────────────────────────────────────────────────

    async def get_actor(self, actor_id: str) -> Actor | None:
        await self._pause()
        return self._actors.get(actor_id)

    async def get_actor_by_external_id(self, external_id: str) -> Actor | None:
        await self._pause()
        with self._lock:
            for actor in self._actors.values():
                if actor.external_id == external_id:
                    return actor
        return None

    async def create_actor(self, actor: Actor) -> Actor:
        await self._pause()
        with self._lock:
            if actor.id in self._actors:
                raise InvariantViolationError("Actor already exists", actor_id=actor.id)
            self._actors[actor.id] = actor
        return actor

    async def delete_actor(self, actor_id: str) -> bool:
        await self._pause()
        with self._lock:
            if actor_id not in self._actors:
                return False
            if any(p.actor_id == actor_id for p in self._profiles.values()):
                raise InvariantViolationError("Actor still has a profile", actor_id=actor_id)
            del self._actors[actor_id]
        return True

    async def set_actor_active(self, actor_id: str, active: bool) -> Actor | None:
        await self._pause()
        with self._lock:
            actor = self._actors.get(actor_id)
            if actor is None:
                return None
            updated = actor.model_copy(update={"active": active})
            self._actors[actor_id] = updated
        return updated

    async def bind_external_identity(self, actor_id: str, external_id: str) -> Actor:
        await self._pause()
        with self._lock:
            for other in self._actors.values():
                if other.external_id == external_id and other.id != actor_id:
                    raise IdentityAlreadyBoundError(actor_id=actor_id)
            actor = self._actors.get(actor_id)
            if actor is None:
                raise InvariantViolationError("Actor does not exist", actor_id=actor_id)
            if actor.external_id is not None and actor.external_id != external_id:
                raise IdentityAlreadyBoundError(actor_id=actor_id)
            updated = actor.model_copy(update={"external_id": external_id, "active": True})
            self._actors[actor_id] = updated
        return updated

    # ── Profiles ─────────────────────────────────────────────────

    async def get_profile(self, profile_id: str) -> Profile | None:
        await self._pause()
        return self._profiles.get(profile_id)

    async def get_profile_by_actor(self, actor_id: str) -> Profile | None:
        await self._pause()
        with self._lock:
            for profile in self._profiles.values():
                if profile.actor_id == actor_id:
                    return profile
        return None

    async def get_profile_by_token(self, token: str) -> Profile | None:
        await self._pause()
        with self._lock:
            for profile in self._profiles.values():
                if profile.invite_token is not None and profile.invite_token == token:
                    return profile
        return None

    async def create_profile(self, profile: Profile) -> Profile:
        await self._pause()
        with self._lock:
            if profile.id in self._profiles:
                raise InvariantViolationError("Profile already exists", profile_id=profile.id)
            for existing in self._profiles.values():
                if existing.business_key == profile.business_key:
                    raise InvariantViolationError("Business key already in use", business_key=profile.business_key)
                if existing.actor_id == profile.actor_id:
                    raise InvariantViolationError("Actor already has a profile", actor_id=profile.actor_id)
            self._profiles[profile.id] = profile
        return profile

    async def update_profile_conditional(
        self,
        profile_id: str,
        expected_status: ProfileStatus,
        expected_token: str | None,
        changes: dict[str, Any],
    ) -> Profile | None:
        await self._pause()
        with self._lock:
            current = self._profiles.get(profile_id)
            if current is None:
                return None
            if current.status != expected_status or current.invite_token != expected_token:
                return None
            updated = current.model_copy(update=changes)
            self._profiles[profile_id] = updated
        return updated

    async def list_profiles(
        self,
        *,
        status: ProfileStatus | None = None,
        level: Level | None = None,
    ) -> list[Profile]:
        await self._pause()
        with self._lock:
            profiles = list(self._profiles.values())
        return [
            p
            for p in profiles
            if (status is None or p.status == status) and (level is None or p.level == level)
        ]

    # ── Organizations and accounts ───────────────────────────────

    async def get_organization(self, organization_id: str) -> Organization | None:
        await self._pause()
        return self._organizations.get(organization_id)

    async def get_account(self, account_id: str) -> Account | None:
        await self._pause()
        return self._accounts.get(account_id)

    async def list_accounts(self) -> list[Account]:
        await self._pause()
        with self._lock:
            return list(self._accounts.values())


class BoundedStore:
    """Deadline-bounded view of an ``IdentityStore`` for one request.

    Every call shares one absolute deadline computed at construction.
    Timeouts and backend outages become ``UnavailableError``; engine
    errors raised by the backend (e.g. ``IdentityAlreadyBoundError``)
    pass through untouched.
    """

    def __init__(self, store: IdentityStore, timeout: float) -> None:
        self._store = store
        self._timeout = timeout
        self._deadline = asyncio.get_running_loop().time() + timeout

    @property
    def inner(self) -> IdentityStore:
        return self._store

    def remaining(self) -> float:
        return max(0.0, self._deadline - asyncio.get_running_loop().time())

    async def _call(self, name: str, *args: Any, **kwargs: Any) -> Any:
        remaining = self.remaining()
        if remaining <= 0:
            raise UnavailableError(operation=name, reason="deadline exceeded")
        try:
            return await asyncio.wait_for(getattr(self._store, name)(*args, **kwargs), timeout=remaining)
        except AccessError:
            raise
        except asyncio.TimeoutError:
            logger.error("Identity store call %s exceeded its deadline (%.3fs)", name, self._timeout)
            raise UnavailableError(operation=name, reason="timeout")
        except (StoreUnavailableError, ConnectionError, OSError) as e:
            logger.error("Identity store call %s failed: %s", name, e)
            raise UnavailableError(operation=name, reason=str(e)) from e

    async def get_actor(self, actor_id: str) -> Actor | None:
        return await self._call("get_actor", actor_id)

    async def get_actor_by_external_id(self, external_id: str) -> Actor | None:
        return await self._call("get_actor_by_external_id", external_id)

    async def create_actor(self, actor: Actor) -> Actor:
        return await self._call("create_actor", actor)

    async def delete_actor(self, actor_id: str) -> bool:
        return await self._call("delete_actor", actor_id)

    async def set_actor_active(self, actor_id: str, active: bool) -> Actor | None:
        return await self._call("set_actor_active", actor_id, active)

    async def bind_external_identity(self, actor_id: str, external_id: str) -> Actor:
        return await self._call("bind_external_identity", actor_id, external_id)

    async def get_profile(self, profile_id: str) -> Profile | None:
        return await self._call("get_profile", profile_id)

    async def get_profile_by_actor(self, actor_id: str) -> Profile | None:
        return await self._call("get_profile_by_actor", actor_id)

    async def get_profile_by_token(self, token: str) -> Profile | None:
        return await self._call("get_profile_by_token", token)

    async def create_profile(self, profile: Profile) -> Profile:
        return await self._call("create_profile", profile)

    async def update_profile_conditional(
        self,
        profile_id: str,
        expected_status: ProfileStatus,
        expected_token: str | None,
        changes: dict[str, Any],
    ) -> Profile | None:
        return await self._call(
            "update_profile_conditional", profile_id, expected_status, expected_token, changes
        )

    async def list_profiles(
        self,
        *,
        status: ProfileStatus | None = None,
        level: Level | None = None,
    ) -> list[Profile]:
        return await self._call("list_profiles", status=status, level=level)

    async def get_organization(self, organization_id: str) -> Organization | None:
        return await self._call("get_organization", organization_id)

    async def get_account(self, account_id: str) -> Account | None:
        return await self._call("get_account", account_id)

    async def list_accounts(self) -> list[Account]:
        return await self._call("list_accounts")


def seed(store: InMemoryIdentityStore, records: Iterable[Any]) -> None:
    """Load a mixed iterable of records into an in-memory store."""
    for record in records:
        if isinstance(record, Organization):
            store.add_organization(record)
        elif isinstance(record, Account):
            store.add_account(record)
        elif isinstance(record, Actor):
            store.add_actor(record)
        elif isinstance(record, Profile):
            store.put_profile(record)
        else:
            raise TypeError(f"Cannot seed record of type {type(record).__name__}")


__all__ = [
    "BoundedStore",
    "IdentityStore",
    "InMemoryIdentityStore",
    "seed",
]
