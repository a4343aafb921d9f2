"""Read-only scope views used by the permission resolver.

The resolver never sees store records directly. ``HierarchyReader`` turns
records into ``ActorScope`` / ``ScopeView`` values, resolving the
organization and parent references once per authorization check.
A reference that points to a record which no longer exists resolves to
``None``: the resource becomes unscoped and only an Admin can reach it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

from ..exceptions import InvariantViolationError
from .models import Account, Actor, EntityType, Level, Organization, Profile

logger = logging.getLogger(__name__)

# Client -> Subclient is the deepest chain the level system allows.
MAX_HIERARCHY_DEPTH = 2


class HierarchyLookup(Protocol):
    """The subset of the identity store the hierarchy reader needs."""

    async def get_profile(self, profile_id: str) -> Profile | None: ...

    async def get_organization(self, organization_id: str) -> Organization | None: ...

    async def get_account(self, account_id: str) -> Account | None: ...


@dataclass(frozen=True)
class ActorScope:
    """What the resolver knows about the acting party."""

    actor_id: str
    profile_id: str
    level: Level
    organization_id: str | None = None


@dataclass(frozen=True)
class ResourceKey:
    """Reference to a resource a caller wants to act on."""

    entity_type: EntityType
    entity_id: str

    @classmethod
    def profile(cls, profile_id: str) -> ResourceKey:
        return cls(EntityType.PROFILE, profile_id)

    @classmethod
    def account(cls, account_id: str) -> ResourceKey:
        return cls(EntityType.ACCOUNT, account_id)


@dataclass(frozen=True)
class ScopeView:
    """Denormalized scoping facts of one resource.

    ``owner_profile_id`` is the profile the resource belongs to (the
    profile itself for profile resources, ``None`` for Master accounts).
    """

    entity_type: EntityType
    entity_id: str
    owner_profile_id: str | None = None
    owner_parent_id: str | None = None
    organization_id: str | None = None
    level: Level | None = None
    is_master: bool = False


@dataclass(frozen=True)
class CreationTarget:
    """The profile an admission action would create."""

    level: Level
    organization_id: str | None = None
    parent_id: str | None = None


class HierarchyReader:
    """Builds scope views from store records.

    One reader serves one authorization check: lookups are memoized for
    the reader's lifetime and never shared across requests.
    """

    def __init__(self, lookup: HierarchyLookup) -> None:
        self._lookup = lookup
        self._memo: dict[tuple[str, str], Any] = {}

    async def _cached(self, kind: str, key: str, loader) -> Any:
        memo_key = (kind, key)
        if memo_key not in self._memo:
            self._memo[memo_key] = await loader(key)
        return self._memo[memo_key]

    async def profile(self, profile_id: str | None) -> Profile | None:
        if profile_id is None:
            return None
        return await self._cached("profile", profile_id, self._lookup.get_profile)

    async def organization_id(self, organization_id: str | None) -> str | None:
        """Return the id if the organization still exists, else ``None``."""
        if organization_id is None:
            return None
        org = await self._cached("organization", organization_id, self._lookup.get_organization)
        if org is None:
            logger.warning("Dangling organization reference %s treated as unscoped", organization_id)
            return None
        return org.id

    async def parent_id(self, parent_id: str | None) -> str | None:
        parent = await self.profile(parent_id)
        if parent_id is not None and parent is None:
            logger.warning("Dangling parent reference %s treated as unscoped", parent_id)
        return parent.id if parent is not None else None

    async def actor_scope(self, actor: Actor, profile: Profile) -> ActorScope:
        return ActorScope(
            actor_id=actor.id,
            profile_id=profile.id,
            level=profile.level,
            organization_id=await self.organization_id(profile.organization_id),
        )

    async def profile_scope(self, profile: Profile) -> ScopeView:
        if profile.parent_id is not None and await self.parent_id(profile.parent_id) is None:
            # Orphaned subclient: no scoping reference, Admin only
            return ScopeView(EntityType.PROFILE, profile.id, level=profile.level)
        return ScopeView(
            entity_type=EntityType.PROFILE,
            entity_id=profile.id,
            owner_profile_id=profile.id,
            owner_parent_id=profile.parent_id,
            organization_id=await self.organization_id(profile.organization_id),
            level=profile.level,
        )

    async def account_scope(self, account: Account) -> ScopeView:
        if account.is_master:
            return ScopeView(
                entity_type=EntityType.ACCOUNT,
                entity_id=account.id,
                organization_id=await self.organization_id(account.organization_id),
                is_master=True,
            )

        owner = await self.profile(account.owner_profile_id)
        if owner is None:
            return ScopeView(EntityType.ACCOUNT, account.id)
        owner_view = await self.profile_scope(owner)
        return ScopeView(
            entity_type=EntityType.ACCOUNT,
            entity_id=account.id,
            owner_profile_id=owner_view.owner_profile_id,
            owner_parent_id=owner_view.owner_parent_id,
            organization_id=owner_view.organization_id,
            level=owner.level,
        )

    async def scope_of(self, key: ResourceKey) -> ScopeView | None:
        """Resolve a resource key; ``None`` when the resource does not exist."""
        if key.entity_type == EntityType.PROFILE:
            profile = await self.profile(key.entity_id)
            return await self.profile_scope(profile) if profile is not None else None
        if key.entity_type == EntityType.ACCOUNT:
            account = await self._cached("account", key.entity_id, self._lookup.get_account)
            return await self.account_scope(account) if account is not None else None
        return None


async def validate_parent_assignment(
    lookup: HierarchyLookup | HierarchyReader,
    profile_id: str | None,
    parent_id: str,
) -> Profile:
    """Check that ``parent_id`` may become the parent of ``profile_id``.

    Walks the ancestor chain starting at the proposed parent. Meeting
    ``profile_id`` on the way is a cycle; a chain longer than
    ``MAX_HIERARCHY_DEPTH`` is rejected even if the level tags look right.

    Returns:
        The parent profile.

    Raises:
        InvariantViolationError: on a missing/non-Client parent, a cycle or
            an over-deep chain.
    """
    get_profile = lookup.profile if isinstance(lookup, HierarchyReader) else lookup.get_profile

    parent = await get_profile(parent_id)
    if parent is None:
        raise InvariantViolationError("Parent profile does not exist", parent_id=parent_id)
    if parent.level != Level.CLIENT:
        raise InvariantViolationError("Parent profile must be a Client", parent_id=parent_id)

    node: Profile | None = parent
    chain = 1  # the profile being placed
    while node is not None:
        if profile_id is not None and node.id == profile_id:
            raise InvariantViolationError(
                "A profile cannot be its own ancestor", profile_id=profile_id, parent_id=parent_id
            )
        chain += 1
        if chain > MAX_HIERARCHY_DEPTH:
            raise InvariantViolationError(
                "Hierarchy deeper than allowed", profile_id=profile_id, parent_id=parent_id
            )
        node = await get_profile(node.parent_id) if node.parent_id else None

    return parent


async def resolve_creation_target(reader: HierarchyReader, target: CreationTarget) -> CreationTarget:
    """Fill in derived hierarchy fields and reject impossible shapes.

    A Subclient's organization always comes from its parent Client; a
    caller-supplied organization that disagrees is rejected.

    Raises:
        InvariantViolationError: missing or non-Client parent, organization
            mismatch, unknown organization, or an Agent without one.
    """
    if target.level == Level.SUBCLIENT:
        if target.parent_id is None:
            raise InvariantViolationError("Subclient invitations require a parent")
        parent = await validate_parent_assignment(reader, None, target.parent_id)
        organization_id = await reader.organization_id(parent.organization_id)
        if target.organization_id is not None and target.organization_id != organization_id:
            raise InvariantViolationError("Subclient organization must match its parent's")
        return CreationTarget(Level.SUBCLIENT, organization_id, parent.id)

    if target.parent_id is not None:
        raise InvariantViolationError(f"{target.level.value} profiles cannot have a parent")

    if target.organization_id is not None:
        if await reader.organization_id(target.organization_id) is None:
            raise InvariantViolationError("Organization does not exist", organization_id=target.organization_id)
    elif target.level == Level.AGENT:
        raise InvariantViolationError("Agent invitations require an organization")

    return target


__all__ = [
    "ActorScope",
    "CreationTarget",
    "HierarchyLookup",
    "HierarchyReader",
    "MAX_HIERARCHY_DEPTH",
    "ResourceKey",
    "ScopeView",
    "resolve_creation_target",
    "validate_parent_assignment",
]
