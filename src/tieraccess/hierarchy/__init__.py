"""Hierarchy model: actors, profiles, organizations, accounts and their scopes.

Defines:
- Records: Actor, Profile, Organization, Account (frozen Pydantic models)
- Enums: Level, ProfileStatus, AccountVariant, EntityType
- Invariant checks: validate_profile(), validate_account(),
  validate_parent_assignment()
- Scope views: ActorScope, ScopeView, ResourceKey, CreationTarget,
  HierarchyReader
"""

from .models import (
    Account,
    AccountVariant,
    Actor,
    EntityType,
    Level,
    Organization,
    Profile,
    ProfileStatus,
    new_id,
    utcnow,
    validate_account,
    validate_profile,
)
from .scope import (
    MAX_HIERARCHY_DEPTH,
    ActorScope,
    CreationTarget,
    HierarchyLookup,
    HierarchyReader,
    ResourceKey,
    ScopeView,
    resolve_creation_target,
    validate_parent_assignment,
)

__all__ = [
    "MAX_HIERARCHY_DEPTH",
    "Account",
    "AccountVariant",
    "Actor",
    "ActorScope",
    "CreationTarget",
    "EntityType",
    "HierarchyLookup",
    "HierarchyReader",
    "Level",
    "Organization",
    "Profile",
    "ProfileStatus",
    "ResourceKey",
    "ScopeView",
    "new_id",
    "resolve_creation_target",
    "utcnow",
    "validate_account",
    "validate_parent_assignment",
    "validate_profile",
]
