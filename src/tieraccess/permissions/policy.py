"""Level decision tables.

Every table is keyed by ``Level``. ``check_tables_exhaustive()`` runs at
import so a new level cannot be added without touching every table.
"""

from __future__ import annotations

from ..hierarchy.models import Level
from .constants import Action, Capability, ScopeRule

# ── Admission ───────────────────────────────────────────
# Which levels each level may create, and within what reach.

CREATION_TABLE: dict[Level, frozenset[Level]] = {
    Level.ADMIN: frozenset({Level.CLIENT, Level.SUBCLIENT, Level.AGENT, Level.ADMIN}),
    Level.AGENT: frozenset({Level.CLIENT, Level.SUBCLIENT}),
    Level.CLIENT: frozenset({Level.SUBCLIENT}),
    Level.SUBCLIENT: frozenset(),
}

CREATION_SCOPE: dict[Level, ScopeRule] = {
    Level.ADMIN: ScopeRule.ALL,
    Level.AGENT: ScopeRule.ORGANIZATION,
    Level.CLIENT: ScopeRule.OWN_CHILD,
    Level.SUBCLIENT: ScopeRule.NONE,
}

# ── Resource-scoped actions ─────────────────────────────

_READ_SCOPE: dict[Level, ScopeRule] = {
    Level.ADMIN: ScopeRule.ALL,
    Level.AGENT: ScopeRule.ORGANIZATION_OR_MASTER,
    Level.CLIENT: ScopeRule.SELF_OR_CHILDREN,
    Level.SUBCLIENT: ScopeRule.SELF,
}

_WRITE_SCOPE: dict[Level, ScopeRule] = {
    Level.ADMIN: ScopeRule.ALL,
    Level.AGENT: ScopeRule.ORGANIZATION,
    Level.CLIENT: ScopeRule.SELF_OR_CHILDREN,
    Level.SUBCLIENT: ScopeRule.SELF,
}

_STATUS_SCOPE: dict[Level, ScopeRule] = {
    Level.ADMIN: ScopeRule.ALL,
    Level.AGENT: ScopeRule.ORGANIZATION,
    Level.CLIENT: ScopeRule.NONE,
    Level.SUBCLIENT: ScopeRule.NONE,
}

RESOURCE_SCOPE: dict[Action, dict[Level, ScopeRule]] = {
    Action.VIEW: _READ_SCOPE,
    Action.UPDATE: _WRITE_SCOPE,
    Action.DELETE: _WRITE_SCOPE,
    Action.SUSPEND: _STATUS_SCOPE,
    Action.REACTIVATE: _STATUS_SCOPE,
}

# ── Capabilities ────────────────────────────────────────

CAPABILITY_TABLE: dict[Level, frozenset[Capability]] = {
    Level.ADMIN: frozenset(Capability),
    Level.AGENT: frozenset(
        {Capability.EXPORT_DATA, Capability.CREATE_REPORTS, Capability.POST_TRANSACTIONS}
    ),
    Level.CLIENT: frozenset({Capability.EXPORT_DATA, Capability.CREATE_REPORTS}),
    Level.SUBCLIENT: frozenset(),
}


def check_tables_exhaustive() -> None:
    """Fail loudly if any table misses a level or an action."""
    tables: dict[str, dict] = {
        "CREATION_TABLE": CREATION_TABLE,
        "CREATION_SCOPE": CREATION_SCOPE,
        "CAPABILITY_TABLE": CAPABILITY_TABLE,
    }
    for action, table in RESOURCE_SCOPE.items():
        tables[f"RESOURCE_SCOPE[{action.value}]"] = table

    for name, table in tables.items():
        missing = set(Level) - set(table)
        if missing:
            raise RuntimeError(f"{name} has no entry for {sorted(m.value for m in missing)}")

    scoped = set(Action) - {Action.CREATE}
    missing_actions = scoped - set(RESOURCE_SCOPE)
    if missing_actions:
        raise RuntimeError(f"RESOURCE_SCOPE has no entry for {sorted(a.value for a in missing_actions)}")


check_tables_exhaustive()


__all__ = [
    "CAPABILITY_TABLE",
    "CREATION_SCOPE",
    "CREATION_TABLE",
    "RESOURCE_SCOPE",
    "check_tables_exhaustive",
]
