"""Tests for the authorization façade."""

from __future__ import annotations

import asyncio

import pytest

from conftest import ACME, OTHER, FakeClock, RecordingAudit, World, ctx

from tieraccess.config import AccessConfig
from tieraccess.exceptions import GENERIC_TOKEN_MESSAGE, ErrorKind
from tieraccess.facade import AuthorizationFacade
from tieraccess.hierarchy import CreationTarget, Level, ProfileStatus, ResourceKey
from tieraccess.permissions import Action, Capability, OwnerFilter
from tieraccess.sinks import EventDispatcher
from tieraccess.store import InMemoryIdentityStore


class TestAuthorizeEligibility:
    """Tests for the actor → active → profile-status check order."""

    @pytest.mark.asyncio
    async def test_unknown_identity(self, facade: AuthorizationFacade) -> None:
        result = await facade.authorize(ctx("nobody"), Action.VIEW, ResourceKey.account("acc-client_a"))
        assert result.denied
        assert result.error.kind == ErrorKind.NOT_FOUND_ACTOR

    @pytest.mark.asyncio
    async def test_anonymous(self, facade: AuthorizationFacade) -> None:
        result = await facade.authorize(ctx(None), Action.VIEW, ResourceKey.account("acc-client_a"))
        assert result.error.kind == ErrorKind.NOT_FOUND_ACTOR

    @pytest.mark.asyncio
    async def test_inactive_actor(self, facade: AuthorizationFacade, world: World) -> None:
        world.add("ghost", Level.CLIENT, org=ACME, active=False)
        result = await facade.authorize(ctx("ghost"), Action.VIEW, ResourceKey.profile("p-ghost"))
        assert result.error.kind == ErrorKind.ACTOR_INACTIVE

    @pytest.mark.asyncio
    async def test_suspended_blocks_every_action(self, facade: AuthorizationFacade, world: World) -> None:
        """Even reads the tables would allow are refused for a suspended profile."""
        world.add("frozen", Level.ADMIN, status=ProfileStatus.SUSPENDED)
        for action in Action:
            resource = CreationTarget(Level.CLIENT, ACME) if action == Action.CREATE else ResourceKey.profile("p-frozen")
            result = await facade.authorize(ctx("frozen"), action, resource)
            assert result.error.kind == ErrorKind.PROFILE_NOT_ACTIVE, action
            assert result.error.detail == {"status": "SUSPENDED"}

    @pytest.mark.asyncio
    async def test_pending_profile_detail(self, facade: AuthorizationFacade, world: World) -> None:
        world.add("halfway", Level.CLIENT, org=ACME, status=ProfileStatus.PENDING_ACTIVATION)
        result = await facade.authorize(ctx("halfway"), Action.VIEW, ResourceKey.profile("p-halfway"))
        assert result.error.kind == ErrorKind.PROFILE_NOT_ACTIVE
        assert result.error.detail == {"status": "PENDING_ACTIVATION"}

    @pytest.mark.asyncio
    async def test_check_profile(self, facade: AuthorizationFacade) -> None:
        allowed = await facade.check_profile(ctx("sub_a"))
        assert allowed.allowed
        assert allowed.profile.id == "p-sub_a"
        assert (await facade.check_profile(ctx("nobody"))).error.kind == ErrorKind.NOT_FOUND_ACTOR


class TestAuthorizeDecisions:
    """Tests for delegation to the resolver."""

    @pytest.mark.asyncio
    async def test_client_views_child_account(self, facade: AuthorizationFacade) -> None:
        result = await facade.authorize(ctx("client_a"), Action.VIEW, ResourceKey.account("acc-sub_a"))
        assert result.allowed
        assert result.error is None
        assert result.profile.id == "p-client_a"

    @pytest.mark.asyncio
    async def test_denied_read_not_audited(
        self, facade: AuthorizationFacade, dispatcher: EventDispatcher, audit: RecordingAudit
    ) -> None:
        result = await facade.authorize(ctx("client_a"), Action.VIEW, ResourceKey.account("acc-sub_b"))
        await dispatcher.drain()
        assert result.error.kind == ErrorKind.DENY
        assert result.profile.id == "p-client_a"
        assert audit.events == []

    @pytest.mark.asyncio
    async def test_denied_mutation_audited(
        self, facade: AuthorizationFacade, dispatcher: EventDispatcher, audit: RecordingAudit
    ) -> None:
        result = await facade.authorize(ctx("client_a"), Action.UPDATE, ResourceKey.account("acc-sub_b"))
        await dispatcher.drain()
        assert result.error.kind == ErrorKind.DENY
        [event] = audit.events
        assert event.action == "DENIED"
        assert event.actor == "a-client_a"
        assert event.entity_id == "acc-sub_b"
        assert event.metadata["action"] == "update"

    @pytest.mark.asyncio
    async def test_unknown_resource_denied(self, facade: AuthorizationFacade) -> None:
        result = await facade.authorize(ctx("admin"), Action.VIEW, ResourceKey.account("acc-missing"))
        assert result.error.kind == ErrorKind.DENY

    @pytest.mark.asyncio
    async def test_create_admin_only_by_admin(self, facade: AuthorizationFacade) -> None:
        target = CreationTarget(Level.ADMIN)
        assert (await facade.authorize(ctx("admin"), Action.CREATE, target)).allowed
        assert (await facade.authorize(ctx("agent_acme"), Action.CREATE, target)).error.kind == ErrorKind.DENY

    @pytest.mark.asyncio
    async def test_subclient_organization_comes_from_parent(self, facade: AuthorizationFacade) -> None:
        """An agent cannot reach another organization's client by claiming its own organization."""
        own = CreationTarget(Level.SUBCLIENT, parent_id="p-client_a")
        foreign = CreationTarget(Level.SUBCLIENT, ACME, "p-client_other")
        assert (await facade.authorize(ctx("agent_acme"), Action.CREATE, own)).allowed
        assert (await facade.authorize(ctx("agent_acme"), Action.CREATE, foreign)).error.kind == ErrorKind.DENY
        assert (await facade.authorize(ctx("agent_other"), Action.CREATE, foreign)).error.kind == ErrorKind.DENY

    @pytest.mark.asyncio
    async def test_create_under_missing_parent_denied(
        self, facade: AuthorizationFacade, dispatcher: EventDispatcher, audit: RecordingAudit
    ) -> None:
        target = CreationTarget(Level.SUBCLIENT, parent_id="p-missing")
        result = await facade.authorize(ctx("admin"), Action.CREATE, target)
        await dispatcher.drain()
        assert result.error.kind == ErrorKind.DENY
        assert [e.action for e in audit.events] == ["DENIED"]

    @pytest.mark.asyncio
    async def test_capabilities(self, facade: AuthorizationFacade) -> None:
        assert (await facade.authorize_capability(ctx("agent_acme"), Capability.EXPORT_DATA)).allowed
        denied = await facade.authorize_capability(ctx("agent_acme"), Capability.MANAGE_USERS)
        assert denied.error.kind == ErrorKind.DENY


class TestVisibility:
    """Tests for listing visibility."""

    @pytest.mark.asyncio
    async def test_visible_filter(self, facade: AuthorizationFacade) -> None:
        result = await facade.visible_filter(ctx("client_a"))
        assert result.value == OwnerFilter("p-client_a", include_children=True)

    @pytest.mark.asyncio
    async def test_client_and_subclient(self, facade: AuthorizationFacade) -> None:
        """A client sees its subclient's accounts; the subclient never sees the client's."""
        client = await facade.list_visible_accounts(ctx("client_a"))
        sub = await facade.list_visible_accounts(ctx("sub_a"))
        assert {a.id for a in client.value} == {"acc-client_a", "acc-sub_a"}
        assert {a.id for a in sub.value} == {"acc-sub_a"}

    @pytest.mark.asyncio
    async def test_agent_sees_org_and_masters(self, facade: AuthorizationFacade) -> None:
        result = await facade.list_visible_accounts(ctx("agent_acme"))
        assert {a.id for a in result.value} == {
            "acc-client_a",
            "acc-sub_a",
            "acc-sub_b",
            "acc-master_acme",
            "acc-master_other",
        }

    @pytest.mark.asyncio
    async def test_admin_sees_everything(self, facade: AuthorizationFacade, world: World) -> None:
        result = await facade.list_visible_accounts(ctx("admin"))
        assert {a.id for a in result.value} == {a.id for a in world.accounts.values()}

    @pytest.mark.asyncio
    async def test_dangling_org_hidden_from_agent(self, facade: AuthorizationFacade, world: World) -> None:
        world.store.remove_organization(OTHER)
        result = await facade.list_visible_accounts(ctx("agent_acme"))
        assert "acc-master_other" not in {a.id for a in result.value}


class TestInvitationFlow:
    """End-to-end admission through the façade."""

    @pytest.mark.asyncio
    async def test_issue_validate_activate(self, facade: AuthorizationFacade) -> None:
        issued = await facade.issue_invitation(
            ctx("agent_acme"), CreationTarget(Level.CLIENT, ACME), business_key="BK-NEW"
        )
        assert issued.ok
        token = issued.value.token

        validated = await facade.validate_token(ctx(None), token)
        assert validated.value.status == ProfileStatus.PENDING_ACTIVATION

        activated = await facade.activate_invitation(ctx("newcomer"), token)
        assert activated.value.status == ProfileStatus.ACTIVE

        result = await facade.authorize(ctx("newcomer"), Action.VIEW, ResourceKey.profile(activated.value.id))
        assert result.allowed

    @pytest.mark.asyncio
    async def test_issue_denied(self, facade: AuthorizationFacade) -> None:
        result = await facade.issue_invitation(ctx("client_a"), CreationTarget(Level.CLIENT, ACME), business_key="BK-X")
        assert not result.ok
        assert result.error.kind == ErrorKind.DENY

    @pytest.mark.asyncio
    async def test_token_errors_are_generic(self, facade: AuthorizationFacade, clock: FakeClock) -> None:
        issued = await facade.issue_invitation(ctx("admin"), CreationTarget(Level.CLIENT, ACME), business_key="BK-T")
        clock.advance(days=8)

        kinds = set()
        for token in ("not-a-token", "0" * 64, issued.value.token):
            result = await facade.activate_invitation(ctx("late"), token)
            assert result.error.message == GENERIC_TOKEN_MESSAGE
            assert result.error.detail == {}
            assert result.error.is_token_error
            kinds.add(result.error.kind)
        assert kinds == {ErrorKind.TOKEN_MALFORMED, ErrorKind.TOKEN_NOT_FOUND, ErrorKind.TOKEN_EXPIRED}

    @pytest.mark.asyncio
    async def test_token_failure_floor(self, world: World, clock: FakeClock) -> None:
        """A malformed token takes as long to reject as a lookup miss."""
        facade = AuthorizationFacade(world.store, config=AccessConfig(token_failure_floor_ms=30), clock=clock)
        loop = asyncio.get_running_loop()

        started = loop.time()
        result = await facade.validate_token(ctx(None), "x")
        assert result.error.kind == ErrorKind.TOKEN_MALFORMED
        assert loop.time() - started >= 0.029

    @pytest.mark.asyncio
    async def test_pending_invitations(self, facade: AuthorizationFacade) -> None:
        await facade.issue_invitation(ctx("admin"), CreationTarget(Level.CLIENT, OTHER), business_key="BK-O")
        assert (await facade.pending_invitations(ctx("agent_acme"))).value == []
        assert len((await facade.pending_invitations(ctx("agent_other"))).value) == 1
        assert (await facade.pending_invitations(ctx("sub_a"))).error.kind == ErrorKind.DENY

    @pytest.mark.asyncio
    async def test_bootstrap_admin(self, facade: AuthorizationFacade) -> None:
        result = await facade.bootstrap_admin()
        assert result.value.status == "ACTIVE"


class TestStatusFlow:
    """Suspension, reactivation and actor deactivation through the façade."""

    @pytest.mark.asyncio
    async def test_suspend_blocks_then_reactivate_restores(self, facade: AuthorizationFacade) -> None:
        resource = ResourceKey.account("acc-client_a")

        suspended = await facade.suspend(ctx("agent_acme"), "p-client_a")
        assert suspended.value.status == ProfileStatus.SUSPENDED
        blocked = await facade.authorize(ctx("client_a"), Action.VIEW, resource)
        assert blocked.error.kind == ErrorKind.PROFILE_NOT_ACTIVE

        again = await facade.suspend(ctx("agent_acme"), "p-client_a")
        assert again.ok

        await facade.reactivate(ctx("agent_acme"), "p-client_a")
        assert (await facade.authorize(ctx("client_a"), Action.VIEW, resource)).allowed

    @pytest.mark.asyncio
    async def test_invalid_transition_typed(self, facade: AuthorizationFacade) -> None:
        issued = await facade.issue_invitation(ctx("admin"), CreationTarget(Level.CLIENT, ACME), business_key="BK-P")
        result = await facade.suspend(ctx("admin"), issued.value.profile.id)
        assert result.error.kind == ErrorKind.INVALID_TRANSITION
        assert result.error.detail["requested"] == "SUSPENDED"

    @pytest.mark.asyncio
    async def test_deactivated_actor_locked_out(self, facade: AuthorizationFacade) -> None:
        result = await facade.set_actor_active(ctx("admin"), "a-client_a", False)
        assert result.value.active is False
        blocked = await facade.authorize(ctx("client_a"), Action.VIEW, ResourceKey.profile("p-client_a"))
        assert blocked.error.kind == ErrorKind.ACTOR_INACTIVE

    @pytest.mark.asyncio
    async def test_reassign_parent(self, facade: AuthorizationFacade) -> None:
        result = await facade.reassign_parent(ctx("agent_acme"), "p-sub_a", "p-client_b")
        assert result.value.parent_id == "p-client_b"
        moved = await facade.authorize(ctx("client_b"), Action.VIEW, ResourceKey.account("acc-sub_a"))
        assert moved.allowed


class TestFailureIsolation:
    """Collaborator failures come back as typed results."""

    @pytest.mark.asyncio
    async def test_slow_store_unavailable(self, clock: FakeClock) -> None:
        store = InMemoryIdentityStore(latency=1.0)
        World(store).add("admin", Level.ADMIN)
        facade = AuthorizationFacade(store, config=AccessConfig(token_failure_floor_ms=0), clock=clock)

        result = await facade.authorize(ctx("admin", timeout=0.01), Action.VIEW, ResourceKey.profile("p-admin"))
        assert result.denied
        assert result.error.kind == ErrorKind.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_unexpected_error_contained(
        self, facade: AuthorizationFacade, world: World, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        async def _boom(external_id: str):
            raise RuntimeError("driver bug")

        monkeypatch.setattr(world.store, "get_actor_by_external_id", _boom)
        result = await facade.list_visible_accounts(ctx("admin"))
        assert result.error.kind == ErrorKind.UNAVAILABLE
