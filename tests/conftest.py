"""Shared fixtures: a seeded two-organization hierarchy, a controllable clock
and recording notification/audit sinks."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import pytest

from tieraccess.config import AccessConfig
from tieraccess.facade import AuthorizationFacade, RequestContext
from tieraccess.hierarchy import (
    Account,
    AccountVariant,
    Actor,
    ActorScope,
    Level,
    Organization,
    Profile,
    ProfileStatus,
)
from tieraccess.invitations import InvitationEngine
from tieraccess.sinks import AuditEvent, AuditSink, EventDispatcher, NotificationSink
from tieraccess.store import InMemoryIdentityStore

ACME = "org-acme"
OTHER = "org-other"


class FakeClock:
    """Callable UTC clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class RecordingNotifications(NotificationSink):
    def __init__(self) -> None:
        self.invitations: list[tuple[Profile, str, datetime, str | None]] = []
        self.welcomes: list[Profile] = []

    async def send_invitation(self, profile, token, expiry, *, email=None) -> None:
        self.invitations.append((profile, token, expiry, email))

    async def send_welcome(self, profile) -> None:
        self.welcomes.append(profile)


class RecordingAudit(AuditSink):
    def __init__(self) -> None:
        self.events: list[AuditEvent] = []

    async def record(self, event: AuditEvent) -> None:
        self.events.append(event)

    def actions(self) -> list[str]:
        return [e.action for e in self.events]


@dataclass
class World:
    """Handles to the seeded records, keyed by short name."""

    store: InMemoryIdentityStore
    actors: dict[str, Actor] = field(default_factory=dict)
    profiles: dict[str, Profile] = field(default_factory=dict)
    accounts: dict[str, Account] = field(default_factory=dict)

    def add(
        self,
        name: str,
        level: Level,
        *,
        org: str | None = None,
        parent: str | None = None,
        status: ProfileStatus = ProfileStatus.ACTIVE,
        active: bool = True,
    ) -> Profile:
        actor = self.store.add_actor(
            Actor(id=f"a-{name}", external_id=f"ext-{name}", level=level, active=active)
        )
        profile = self.store.put_profile(
            Profile(
                id=f"p-{name}",
                actor_id=actor.id,
                level=level,
                business_key=f"BK-{name.upper()}",
                organization_id=org,
                parent_id=f"p-{parent}" if parent else None,
                status=status,
            )
        )
        self.actors[name] = actor
        self.profiles[name] = profile
        return profile

    def account(self, name: str, *, owner: str | None = None, org: str | None = None) -> Account:
        if owner is None:
            account = Account(id=f"acc-{name}", variant=AccountVariant.MASTER, organization_id=org)
        else:
            account = Account(id=f"acc-{name}", variant=AccountVariant.CLIENT, owner_profile_id=f"p-{owner}")
        self.accounts[name] = self.store.add_account(account)
        return account

    def scope(self, name: str) -> ActorScope:
        profile = self.profiles[name]
        return ActorScope(
            actor_id=profile.actor_id,
            profile_id=profile.id,
            level=profile.level,
            organization_id=profile.organization_id,
        )


def ctx(name: str | None, **kwargs) -> RequestContext:
    """Request context for a seeded actor (``None`` for an anonymous caller)."""
    return RequestContext(external_id=f"ext-{name}" if name else None, **kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryIdentityStore:
    return InMemoryIdentityStore()


@pytest.fixture
def world(store: InMemoryIdentityStore) -> World:
    """Two organizations with a full hierarchy in Acme.

    admin                       (no org)
    agent_acme / agent_other    (Agent per org)
    client_a ── sub_a           (Acme)
    client_b ── sub_b           (Acme)
    client_other                (Other)
    """
    store.add_organization(Organization(id=ACME, name="Acme"))
    store.add_organization(Organization(id=OTHER, name="Other"))

    w = World(store)
    w.add("admin", Level.ADMIN)
    w.add("agent_acme", Level.AGENT, org=ACME)
    w.add("agent_other", Level.AGENT, org=OTHER)
    w.add("client_a", Level.CLIENT, org=ACME)
    w.add("client_b", Level.CLIENT, org=ACME)
    w.add("client_other", Level.CLIENT, org=OTHER)
    w.add("sub_a", Level.SUBCLIENT, org=ACME, parent="client_a")
    w.add("sub_b", Level.SUBCLIENT, org=ACME, parent="client_b")

    w.account("master_acme", org=ACME)
    w.account("master_other", org=OTHER)
    w.account("client_a", owner="client_a")
    w.account("sub_a", owner="sub_a")
    w.account("sub_b", owner="sub_b")
    w.account("client_other", owner="client_other")
    return w


@pytest.fixture
def notifications() -> RecordingNotifications:
    return RecordingNotifications()


@pytest.fixture
def audit() -> RecordingAudit:
    return RecordingAudit()


@pytest.fixture
def dispatcher(notifications: RecordingNotifications, audit: RecordingAudit) -> EventDispatcher:
    return EventDispatcher(notifications=notifications, audit=audit)


@pytest.fixture
def config() -> AccessConfig:
    return AccessConfig(token_failure_floor_ms=0)


@pytest.fixture
def engine(world: World, dispatcher: EventDispatcher, config: AccessConfig, clock: FakeClock) -> InvitationEngine:
    return InvitationEngine(world.store, dispatcher, config, clock)


@pytest.fixture
def facade(world: World, dispatcher: EventDispatcher, config: AccessConfig, clock: FakeClock) -> AuthorizationFacade:
    return AuthorizationFacade(world.store, dispatcher, config, clock)
