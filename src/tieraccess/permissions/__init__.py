"""Permission tables and the pure resolver.

Defines:
- Action, Capability, ScopeRule: decision vocabulary
- CREATION_TABLE, RESOURCE_SCOPE, CAPABILITY_TABLE: level tables
- can_perform(), can_create(), has_capability(): allow/deny decisions
- visible_resource_filter(): declarative listing filters
"""

from .constants import MUTATING_ACTIONS, Action, Capability, ScopeRule
from .filters import (
    AllResources,
    NoResources,
    OrganizationFilter,
    OwnerFilter,
    ResourceFilter,
)
from .policy import (
    CAPABILITY_TABLE,
    CREATION_SCOPE,
    CREATION_TABLE,
    RESOURCE_SCOPE,
    check_tables_exhaustive,
)
from .resolver import (
    can_create,
    can_perform,
    filter_for_rule,
    has_capability,
    visible_resource_filter,
)

__all__ = [
    "CAPABILITY_TABLE",
    "CREATION_SCOPE",
    "CREATION_TABLE",
    "MUTATING_ACTIONS",
    "RESOURCE_SCOPE",
    "Action",
    "AllResources",
    "Capability",
    "NoResources",
    "OrganizationFilter",
    "OwnerFilter",
    "ResourceFilter",
    "ScopeRule",
    "can_create",
    "can_perform",
    "check_tables_exhaustive",
    "filter_for_rule",
    "has_capability",
    "visible_resource_filter",
]
