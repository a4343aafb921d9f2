"""Pure permission resolution.

Nothing in this module touches storage, clocks or globals, so it is safe
to call from any number of tasks or threads concurrently. Activity and
status of the actor are NOT checked here; the façade rejects ineligible
actors before calling in.
"""

from __future__ import annotations

from ..hierarchy.models import Level
from ..hierarchy.scope import ActorScope, CreationTarget, ScopeView
from .constants import Action, Capability, ScopeRule
from .filters import AllResources, NoResources, OrganizationFilter, OwnerFilter, ResourceFilter
from .policy import CAPABILITY_TABLE, CREATION_SCOPE, CREATION_TABLE, RESOURCE_SCOPE


def filter_for_rule(rule: ScopeRule, actor: ActorScope) -> ResourceFilter:
    """Translate a scope rule into a filter anchored at ``actor``."""
    if rule == ScopeRule.ALL:
        return AllResources()
    if rule in (ScopeRule.ORGANIZATION, ScopeRule.ORGANIZATION_OR_MASTER):
        if actor.organization_id is None:
            return NoResources()
        return OrganizationFilter(
            actor.organization_id,
            include_master=rule == ScopeRule.ORGANIZATION_OR_MASTER,
        )
    if rule == ScopeRule.SELF_OR_CHILDREN:
        return OwnerFilter(actor.profile_id, include_children=True)
    if rule == ScopeRule.SELF:
        return OwnerFilter(actor.profile_id)
    return NoResources()


def can_create(actor: ActorScope | None, target: CreationTarget) -> bool:
    """Check an admission action against the creation table.

    - Admin creates any level anywhere.
    - Agent creates Clients and Subclients inside its own organization.
    - Client creates Subclients only as its own direct children.
    - Subclient creates nothing.
    """
    if actor is None:
        return False
    if target.level not in CREATION_TABLE.get(actor.level, frozenset()):
        return False

    rule = CREATION_SCOPE.get(actor.level, ScopeRule.NONE)
    if rule == ScopeRule.ALL:
        return True
    if rule == ScopeRule.ORGANIZATION:
        return actor.organization_id is not None and target.organization_id == actor.organization_id
    if rule == ScopeRule.OWN_CHILD:
        return target.level == Level.SUBCLIENT and target.parent_id == actor.profile_id
    return False


def can_perform(
    actor: ActorScope | None,
    action: Action,
    resource: ScopeView | CreationTarget | None,
) -> bool:
    """Decide whether ``actor`` may perform ``action`` on ``resource``.

    Default-deny: any combination missing from the tables, a missing actor
    or a resource of the wrong shape yields False. Never raises.

    Example::

        can_perform(admin, Action.CREATE, CreationTarget(Level.ADMIN))    # True
        can_perform(agent, Action.CREATE, CreationTarget(Level.ADMIN))    # False
        can_perform(client, Action.VIEW, subclient_account_view)          # True
    """
    if actor is None or resource is None:
        return False

    if action == Action.CREATE:
        return isinstance(resource, CreationTarget) and can_create(actor, resource)

    if not isinstance(resource, ScopeView):
        return False

    table = RESOURCE_SCOPE.get(action)
    if table is None:
        return False
    rule = table.get(actor.level, ScopeRule.NONE)
    return filter_for_rule(rule, actor).matches(resource)


def visible_resource_filter(actor: ActorScope | None) -> ResourceFilter:
    """Filter describing every resource ``actor`` may list.

    - Admin → all
    - Agent → organization == actor.organization OR resource is Master
    - Client → owner == actor.profile OR owner.parent == actor.profile
    - Subclient → owner == actor.profile
    """
    if actor is None:
        return NoResources()
    rule = RESOURCE_SCOPE[Action.VIEW].get(actor.level, ScopeRule.NONE)
    return filter_for_rule(rule, actor)


def has_capability(actor: ActorScope | None, capability: Capability) -> bool:
    """Check a level-wide privilege (audit logs, exports, ...)."""
    if actor is None:
        return False
    return capability in CAPABILITY_TABLE.get(actor.level, frozenset())


__all__ = [
    "can_create",
    "can_perform",
    "filter_for_rule",
    "has_capability",
    "visible_resource_filter",
]
