"""Authorization façade: the single entry point for request handlers.

Each call gets its own deadline-bounded store view and hierarchy reader,
checks that the caller is eligible (known, active actor with an active
profile), then asks the pure resolver or the invitation engine. Results
come back as typed values; no ``AccessError`` crosses this boundary.

Usage::

    facade = AuthorizationFacade(store)
    ctx = RequestContext(external_id="auth0|42")

    result = await facade.authorize(ctx, Action.VIEW, ResourceKey.account(acc_id))
    if not result.allowed:
        return error_response(result.error)
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar, Union

from .config import AccessConfig
from .exceptions import (
    AccessError,
    AccessFailure,
    ActorInactiveError,
    DenyError,
    InvariantViolationError,
    NotFoundActorError,
    ProfileNotActiveError,
    TokenError,
    UnavailableError,
)
from .hierarchy.models import Account, Actor, EntityType, Profile, ProfileStatus, new_id, utcnow
from .hierarchy.scope import ActorScope, CreationTarget, HierarchyReader, ResourceKey, resolve_creation_target
from .invitations import BootstrapResult, Clock, Invitation, InvitationEngine, PendingInvitation
from .logging import get_access_logger
from .permissions import (
    MUTATING_ACTIONS,
    Action,
    Capability,
    ResourceFilter,
    can_perform,
    has_capability,
    visible_resource_filter,
)
from .sinks import AuditEvent, EventDispatcher
from .store import BoundedStore, IdentityStore

T = TypeVar("T")


# ── Request / result values ──────────────────────────────────────


@dataclass(frozen=True)
class RequestContext:
    """Per-request caller identity and deadline.

    Attributes:
        external_id: Identity asserted by the upstream authentication layer.
        timeout: Deadline in seconds for all store calls of this request
            (defaults to ``AccessConfig.store_timeout_seconds``).
        request_id: Correlation id for logs.
    """

    external_id: Optional[str] = None
    timeout: Optional[float] = None
    request_id: str = field(default_factory=new_id)


@dataclass
class AuthorizationResult:
    """Result of an authorization check."""

    allowed: bool = False
    profile: Optional[Profile] = None
    error: Optional[AccessFailure] = None

    @property
    def denied(self) -> bool:
        return not self.allowed


@dataclass
class OperationResult(Generic[T]):
    """Result of an engine operation: either ``value`` or ``error``."""

    value: Optional[T] = None
    error: Optional[AccessFailure] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class _Session:
    store: BoundedStore
    reader: HierarchyReader
    log: Any
    engine: InvitationEngine


# ── Façade ───────────────────────────────────────────────────────


class AuthorizationFacade:
    """Stateless orchestration over the identity store and the engine.

    Args:
        store: Backend identity store, shared across requests.
        dispatcher: Notification/audit delivery (logging sinks by default).
        config: Engine configuration.
        clock: UTC clock, injectable for tests.
    """

    def __init__(
        self,
        store: IdentityStore,
        dispatcher: EventDispatcher | None = None,
        config: AccessConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self.dispatcher = dispatcher or EventDispatcher()
        self.config = config or AccessConfig()
        self._clock = clock or utcnow

    def _session(self, ctx: RequestContext) -> _Session:
        bounded = BoundedStore(self._store, ctx.timeout or self.config.store_timeout_seconds)
        return _Session(
            store=bounded,
            reader=HierarchyReader(bounded),
            log=get_access_logger(__name__, request_id=ctx.request_id),
            engine=InvitationEngine(bounded, self.dispatcher, self.config, self._clock),
        )

    async def _eligible(self, ctx: RequestContext, session: _Session) -> tuple[Actor, Profile, ActorScope]:
        """Resolve the caller and reject it unless actor and profile are both active."""
        if not ctx.external_id:
            raise NotFoundActorError()
        actor = await session.store.get_actor_by_external_id(ctx.external_id)
        if actor is None:
            raise NotFoundActorError()
        if not actor.active:
            raise ActorInactiveError(actor_id=actor.id)
        profile = await session.store.get_profile_by_actor(actor.id)
        if profile is None:
            raise NotFoundActorError(actor_id=actor.id)
        if profile.status != ProfileStatus.ACTIVE:
            raise ProfileNotActiveError(status=profile.status.value, actor_id=actor.id)
        return actor, profile, await session.reader.actor_scope(actor, profile)

    @staticmethod
    def _failure(session: _Session, operation: str, error: AccessError) -> AccessFailure:
        session.log.log(error.log_level, "%s failed: %s (%s)", operation, error.code, error.message)
        return error.to_failure()

    @staticmethod
    def _unexpected(session: _Session, operation: str, error: Exception) -> AccessFailure:
        session.log.exception("%s failed unexpectedly: %s", operation, error)
        return UnavailableError(operation=operation).to_failure()

    async def _pad(self, started: float) -> None:
        """Stretch a failed token check to the configured floor duration."""
        floor = self.config.token_failure_floor_ms / 1000.0
        elapsed = asyncio.get_running_loop().time() - started
        if elapsed < floor:
            await asyncio.sleep(floor - elapsed)

    async def _run(
        self,
        ctx: RequestContext,
        operation: str,
        body: Callable[[_Session], Awaitable[T]],
    ) -> OperationResult[T]:
        started = asyncio.get_running_loop().time()
        session = self._session(ctx)
        try:
            return OperationResult(value=await body(session))
        except TokenError as e:
            await self._pad(started)
            return OperationResult(error=self._failure(session, operation, e))
        except AccessError as e:
            return OperationResult(error=self._failure(session, operation, e))
        except Exception as e:
            return OperationResult(error=self._unexpected(session, operation, e))

    # ── Authorization ────────────────────────────────────────────

    async def authorize(
        self,
        ctx: RequestContext,
        action: Action,
        resource: Union[ResourceKey, CreationTarget],
    ) -> AuthorizationResult:
        """Decide whether the caller may perform ``action`` on ``resource``.

        Checks run in a fixed order: actor exists, actor is active, profile
        is active, then the permission tables. A denied mutating intent is
        audited.
        """
        session = self._session(ctx)
        profile: Profile | None = None
        try:
            actor, profile, scope = await self._eligible(ctx, session)
            if isinstance(resource, CreationTarget):
                try:
                    view = await resolve_creation_target(session.reader, resource)
                except InvariantViolationError:
                    view = None
                entity_type, entity_id = EntityType.PROFILE, resource.level.value
            else:
                view = await session.reader.scope_of(resource)
                entity_type, entity_id = resource.entity_type, resource.entity_id

            if can_perform(scope, action, view):
                session.log.debug("Allowed %s on %s/%s", action.value, entity_type.value, entity_id, actor_id=actor.id)
                return AuthorizationResult(allowed=True, profile=profile)

            if action in MUTATING_ACTIONS:
                self.dispatcher.audit_event(
                    AuditEvent(
                        actor=actor.id,
                        action="DENIED",
                        entity_type=entity_type,
                        entity_id=entity_id,
                        timestamp=self._clock(),
                        metadata={"action": action.value, "level": scope.level.value},
                    )
                )
            raise DenyError(actor_id=actor.id, action=action.value)
        except AccessError as e:
            return AuthorizationResult(allowed=False, profile=profile, error=self._failure(session, "authorize", e))
        except Exception as e:
            return AuthorizationResult(allowed=False, profile=profile, error=self._unexpected(session, "authorize", e))

    async def authorize_capability(self, ctx: RequestContext, capability: Capability) -> AuthorizationResult:
        """Check a level-wide privilege for an eligible caller."""
        session = self._session(ctx)
        profile: Profile | None = None
        try:
            actor, profile, scope = await self._eligible(ctx, session)
            if not has_capability(scope, capability):
                raise DenyError(actor_id=actor.id, capability=capability.value)
            return AuthorizationResult(allowed=True, profile=profile)
        except AccessError as e:
            return AuthorizationResult(allowed=False, profile=profile, error=self._failure(session, "capability", e))
        except Exception as e:
            return AuthorizationResult(allowed=False, profile=profile, error=self._unexpected(session, "capability", e))

    async def check_profile(self, ctx: RequestContext) -> AuthorizationResult:
        """Eligibility only: known identity, active actor, active profile."""
        session = self._session(ctx)
        try:
            _, profile, _ = await self._eligible(ctx, session)
            return AuthorizationResult(allowed=True, profile=profile)
        except AccessError as e:
            return AuthorizationResult(allowed=False, error=self._failure(session, "check_profile", e))
        except Exception as e:
            return AuthorizationResult(allowed=False, error=self._unexpected(session, "check_profile", e))

    # ── Visibility ───────────────────────────────────────────────

    async def visible_filter(self, ctx: RequestContext) -> OperationResult[ResourceFilter]:
        async def body(session: _Session) -> ResourceFilter:
            _, _, scope = await self._eligible(ctx, session)
            return visible_resource_filter(scope)

        return await self._run(ctx, "visible_filter", body)

    async def list_visible_accounts(self, ctx: RequestContext) -> OperationResult[list[Account]]:
        async def body(session: _Session) -> list[Account]:
            _, _, scope = await self._eligible(ctx, session)
            visible = visible_resource_filter(scope)
            accounts = []
            for account in await session.store.list_accounts():
                if visible.matches(await session.reader.account_scope(account)):
                    accounts.append(account)
            return accounts

        return await self._run(ctx, "list_visible_accounts", body)

    # ── Invitation lifecycle ─────────────────────────────────────

    async def issue_invitation(
        self,
        ctx: RequestContext,
        target: CreationTarget,
        *,
        business_key: str,
        email: str | None = None,
        ttl: timedelta | None = None,
    ) -> OperationResult[Invitation]:
        async def body(session: _Session) -> Invitation:
            _, _, scope = await self._eligible(ctx, session)
            return await session.engine.issue(scope, target, business_key=business_key, email=email, ttl=ttl)

        return await self._run(ctx, "issue_invitation", body)

    async def validate_token(self, ctx: RequestContext, token: str) -> OperationResult[Profile]:
        """Check a token before showing the sign-up step. Needs no caller identity."""

        async def body(session: _Session) -> Profile:
            return await session.engine.validate(token)

        return await self._run(ctx, "validate_token", body)

    async def activate_invitation(self, ctx: RequestContext, token: str) -> OperationResult[Profile]:
        """Consume ``token`` and bind the caller's external identity to it."""

        async def body(session: _Session) -> Profile:
            return await session.engine.activate(token, ctx.external_id or "")

        return await self._run(ctx, "activate_invitation", body)

    async def suspend(self, ctx: RequestContext, profile_id: str) -> OperationResult[Profile]:
        async def body(session: _Session) -> Profile:
            _, _, scope = await self._eligible(ctx, session)
            return await session.engine.suspend(scope, profile_id)

        return await self._run(ctx, "suspend", body)

    async def reactivate(self, ctx: RequestContext, profile_id: str) -> OperationResult[Profile]:
        async def body(session: _Session) -> Profile:
            _, _, scope = await self._eligible(ctx, session)
            return await session.engine.reactivate(scope, profile_id)

        return await self._run(ctx, "reactivate", body)

    async def pending_invitations(self, ctx: RequestContext) -> OperationResult[list[PendingInvitation]]:
        async def body(session: _Session) -> list[PendingInvitation]:
            _, _, scope = await self._eligible(ctx, session)
            return await session.engine.pending(scope)

        return await self._run(ctx, "pending_invitations", body)

    async def reassign_parent(self, ctx: RequestContext, profile_id: str, parent_id: str) -> OperationResult[Profile]:
        async def body(session: _Session) -> Profile:
            _, _, scope = await self._eligible(ctx, session)
            return await session.engine.reassign_parent(scope, profile_id, parent_id)

        return await self._run(ctx, "reassign_parent", body)

    async def set_actor_active(self, ctx: RequestContext, actor_id: str, active: bool) -> OperationResult[Actor]:
        async def body(session: _Session) -> Actor:
            _, _, scope = await self._eligible(ctx, session)
            return await session.engine.set_actor_active(scope, actor_id, active)

        return await self._run(ctx, "set_actor_active", body)

    async def bootstrap_admin(
        self,
        ctx: RequestContext | None = None,
        email: str | None = None,
    ) -> OperationResult[BootstrapResult]:
        """Ensure an administrator exists or is invited (run at startup)."""

        async def body(session: _Session) -> BootstrapResult:
            return await session.engine.bootstrap_admin(email)

        return await self._run(ctx or RequestContext(), "bootstrap_admin", body)


__all__ = [
    "AuthorizationFacade",
    "AuthorizationResult",
    "OperationResult",
    "RequestContext",
]
