"""Action and capability constants.

Provides:
- ``Action``: operations the resolver decides on.
- ``Capability``: resource-less, level-wide privileges.
- ``ScopeRule``: how far a level reaches for a given action.
"""

from __future__ import annotations

from enum import Enum


class Action(str, Enum):
    """Operations checked by ``can_perform``.

    ``CREATE`` is an admission action (its resource is a ``CreationTarget``);
    every other action is resource-scoped (its resource is a ``ScopeView``).
    """

    CREATE = "create"
    VIEW = "view"
    UPDATE = "update"
    DELETE = "delete"
    SUSPEND = "suspend"
    REACTIVATE = "reactivate"


MUTATING_ACTIONS = frozenset(
    {Action.CREATE, Action.UPDATE, Action.DELETE, Action.SUSPEND, Action.REACTIVATE}
)


class Capability(str, Enum):
    """Level-wide privileges that are not tied to one resource."""

    MANAGE_USERS = "manage_users"
    MANAGE_ORGANIZATION = "manage_organization"
    VIEW_AUDIT_LOGS = "view_audit_logs"
    EXPORT_DATA = "export_data"
    CREATE_REPORTS = "create_reports"
    POST_TRANSACTIONS = "post_transactions"


class ScopeRule(str, Enum):
    """Reach of a level for one action."""

    ALL = "all"
    ORGANIZATION = "organization"
    ORGANIZATION_OR_MASTER = "organization_or_master"
    SELF_OR_CHILDREN = "self_or_children"
    SELF = "self"
    OWN_CHILD = "own_child"  # admission only: create a direct child of oneself
    NONE = "none"


__all__ = [
    "Action",
    "Capability",
    "MUTATING_ACTIONS",
    "ScopeRule",
]
