"""Declarative visibility filters.

A filter describes which resources an actor may see without loading them.
Storage layers translate ``as_query()`` into their own query language;
in-memory callers use ``matches()``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..hierarchy.scope import ScopeView


class ResourceFilter:
    """Base class for visibility predicates."""

    kind: str = "none"

    def matches(self, view: ScopeView) -> bool:
        raise NotImplementedError

    def as_query(self) -> dict[str, Any]:
        raise NotImplementedError


@dataclass(frozen=True)
class AllResources(ResourceFilter):
    """Everything (Admin)."""

    kind = "all"

    def matches(self, view: ScopeView) -> bool:
        return True

    def as_query(self) -> dict[str, Any]:
        return {"kind": self.kind}


@dataclass(frozen=True)
class NoResources(ResourceFilter):
    """Nothing. Used when the actor has no usable scoping reference."""

    kind = "none"

    def matches(self, view: ScopeView) -> bool:
        return False

    def as_query(self) -> dict[str, Any]:
        return {"kind": self.kind}


@dataclass(frozen=True)
class OrganizationFilter(ResourceFilter):
    """Resources of one organization, optionally plus every scoped Master account.

    A resource without a resolvable organization never matches.
    """

    organization_id: str
    include_master: bool = False

    kind = "organization"

    def matches(self, view: ScopeView) -> bool:
        if view.organization_id is None:
            return False
        if view.organization_id == self.organization_id:
            return True
        return self.include_master and view.is_master

    def as_query(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "organization_id": self.organization_id,
            "include_master": self.include_master,
        }


@dataclass(frozen=True)
class OwnerFilter(ResourceFilter):
    """Resources owned by a profile, optionally plus those of its direct children."""

    profile_id: str
    include_children: bool = False

    kind = "owner"

    def matches(self, view: ScopeView) -> bool:
        if view.owner_profile_id is None:
            return False
        if view.owner_profile_id == self.profile_id:
            return True
        return self.include_children and view.owner_parent_id == self.profile_id

    def as_query(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "owner_profile_id": self.profile_id,
            "include_children": self.include_children,
        }


__all__ = [
    "AllResources",
    "NoResources",
    "OrganizationFilter",
    "OwnerFilter",
    "ResourceFilter",
]
