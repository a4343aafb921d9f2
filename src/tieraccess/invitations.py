"""Invitation lifecycle engine.

Drives a profile through its status machine::

    PENDING_ACTIVATION ──token──▶ ACTIVE ◀──▶ SUSPENDED

``PENDING_ACTIVATION → SUSPENDED`` is not a legal move: an invitation that
was never used can only expire or be activated.

Concurrency: activation relies on exactly one compare-and-swap against the
identity store, keyed on (status, token). There is no application lock;
the loser of a race observes ``TokenAlreadyUsedError``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, Union

from .config import AccessConfig
from .exceptions import (
    AccessError,
    DenyError,
    IdentityAlreadyBoundError,
    InvalidTransitionError,
    InvariantViolationError,
    TokenAlreadyUsedError,
    TokenExpiredError,
    TokenMalformedError,
    TokenNotFoundError,
)
from .hierarchy.models import (
    Actor,
    EntityType,
    Level,
    Profile,
    ProfileStatus,
    utcnow,
    validate_profile,
)
from .hierarchy.scope import (
    ActorScope,
    CreationTarget,
    HierarchyReader,
    resolve_creation_target,
    validate_parent_assignment,
)
from .permissions import Action, Capability, can_create, can_perform, has_capability, visible_resource_filter
from .sinks import AuditEvent, EventDispatcher
from .store import BoundedStore, IdentityStore
from .tokens import is_expired, is_well_formed, mint_invitation_token, tokens_match

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
StoreLike = Union[IdentityStore, BoundedStore]

# Transitions an authorized actor may request directly. PENDING -> ACTIVE
# happens only through token consumption.
MANUAL_TRANSITIONS: dict[ProfileStatus, frozenset[ProfileStatus]] = {
    ProfileStatus.PENDING_ACTIVATION: frozenset(),
    ProfileStatus.ACTIVE: frozenset({ProfileStatus.SUSPENDED}),
    ProfileStatus.SUSPENDED: frozenset({ProfileStatus.ACTIVE}),
}

SYSTEM_ACTOR_ID = "system"
SYSTEM_SCOPE = ActorScope(actor_id=SYSTEM_ACTOR_ID, profile_id=SYSTEM_ACTOR_ID, level=Level.ADMIN)
BOOTSTRAP_ADMIN_KEY = "ADMIN-BOOTSTRAP"


@dataclass(frozen=True)
class Invitation:
    """An issued invitation. ``token`` is only ever handed to the caller."""

    profile: Profile
    token: str
    expires_at: datetime
    created: bool = True


@dataclass(frozen=True)
class PendingInvitation:
    profile: Profile
    expired: bool


@dataclass(frozen=True)
class BootstrapResult:
    """Outcome of ``bootstrap_admin``.

    ``status`` is ``ACTIVE`` when an admin already exists, otherwise
    ``PENDING`` with the (existing, renewed or new) invitation.
    """

    status: str
    profile: Profile
    invitation: Optional[Invitation] = None


class InvitationEngine:
    """Issues, validates and consumes invitation tokens; drives status changes.

    Args:
        store: Identity store (usually a request-scoped ``BoundedStore``).
        dispatcher: Fire-and-forget notification/audit delivery.
        config: Engine configuration.
        clock: Returns the current UTC time. Injected so tests can move time.
    """

    def __init__(
        self,
        store: StoreLike,
        dispatcher: EventDispatcher | None = None,
        config: AccessConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher or EventDispatcher()
        self._config = config or AccessConfig()
        self._clock = clock or utcnow

    # ── Issue ────────────────────────────────────────────────────

    async def issue(
        self,
        issuer: ActorScope,
        target: CreationTarget,
        *,
        business_key: str,
        email: str | None = None,
        ttl: timedelta | None = None,
    ) -> Invitation:
        """Create a pending profile and its single-use invitation token.

        Raises:
            InvariantViolationError: bad ttl, business key or hierarchy shape.
            DenyError: the issuer may not create this level here.
        """
        ttl = self._config.invitation_ttl if ttl is None else ttl
        if ttl <= timedelta(0):
            raise InvariantViolationError("Invitation ttl must be positive")
        if not business_key:
            raise InvariantViolationError("Business key is required")

        reader = HierarchyReader(self._store)
        resolved = await resolve_creation_target(reader, target)
        if not can_create(issuer, resolved):
            raise DenyError(actor_id=issuer.actor_id, level=resolved.level.value)

        now = self._clock()
        token = mint_invitation_token(self._config.token_bytes)
        expires_at = now + ttl

        actor = Actor(level=resolved.level, active=False)
        profile = validate_profile(
            Profile(
                actor_id=actor.id,
                level=resolved.level,
                business_key=business_key,
                organization_id=resolved.organization_id,
                parent_id=resolved.parent_id,
                status=ProfileStatus.PENDING_ACTIVATION,
                invite_token=token,
                invite_expiry=expires_at,
                invited_by=issuer.actor_id,
                created_at=now,
            ),
            now=now,
        )

        await self._store.create_actor(actor)
        try:
            profile = await self._store.create_profile(profile)
        except AccessError:
            await self._discard_actor(actor.id)
            raise

        logger.info(
            "Issued %s invitation for profile %s (expires %s)",
            profile.level.value,
            profile.id,
            expires_at.isoformat(),
        )
        self._dispatcher.send_invitation(profile, token, expires_at, email=email)
        self._audit(issuer.actor_id, "INVITE", profile, None, ProfileStatus.PENDING_ACTIVATION)
        return Invitation(profile=profile, token=token, expires_at=expires_at)

    async def _discard_actor(self, actor_id: str) -> None:
        """Remove the actor of an invitation whose profile could not be written."""
        try:
            await self._store.delete_actor(actor_id)
        except AccessError as e:
            logger.error("Could not remove orphaned actor %s: %s", actor_id, e.message)

    # ── Validate / activate ──────────────────────────────────────

    async def validate(self, token: str) -> Profile:
        """Resolve a token to its pending profile without changing anything.

        Raises:
            TokenMalformedError, TokenNotFoundError, TokenAlreadyUsedError,
            TokenExpiredError.
        """
        if not is_well_formed(token, self._config.token_bytes):
            raise TokenMalformedError()

        profile = await self._store.get_profile_by_token(token)
        if profile is None or not tokens_match(token, profile.invite_token):
            raise TokenNotFoundError()
        if profile.status != ProfileStatus.PENDING_ACTIVATION:
            raise TokenAlreadyUsedError(profile_id=profile.id)
        if is_expired(profile.invite_expiry, now=self._clock()):
            raise TokenExpiredError(profile_id=profile.id)
        return profile

    async def activate(self, token: str, external_id: str) -> Profile:
        """Consume a token and bind ``external_id`` to the profile's actor.

        Exactly one of any number of concurrent calls for the same token
        succeeds; the others raise ``TokenAlreadyUsedError``.
        """
        if not external_id:
            raise InvariantViolationError("An external identity is required to activate")

        profile = await self.validate(token)

        bound = await self._store.get_actor_by_external_id(external_id)
        if bound is not None and bound.id != profile.actor_id:
            raise IdentityAlreadyBoundError(profile_id=profile.id)

        activated = await self._store.update_profile_conditional(
            profile.id,
            ProfileStatus.PENDING_ACTIVATION,
            token,
            {
                "status": ProfileStatus.ACTIVE,
                "invite_token": None,
                "invite_expiry": None,
                "activated_at": self._clock(),
            },
        )
        if activated is None:
            raise TokenAlreadyUsedError(profile_id=profile.id)

        try:
            await self._store.bind_external_identity(profile.actor_id, external_id)
        except AccessError:
            await self._restore_pending(activated, token, profile.invite_expiry)
            raise

        logger.info("Activated profile %s", activated.id)
        self._dispatcher.send_welcome(activated)
        self._audit(
            activated.actor_id,
            "ACTIVATE",
            activated,
            ProfileStatus.PENDING_ACTIVATION,
            ProfileStatus.ACTIVE,
        )
        return activated

    async def _restore_pending(self, profile: Profile, token: str, expiry: datetime | None) -> None:
        """Undo an activation whose identity binding failed."""
        try:
            restored = await self._store.update_profile_conditional(
                profile.id,
                ProfileStatus.ACTIVE,
                None,
                {
                    "status": ProfileStatus.PENDING_ACTIVATION,
                    "invite_token": token,
                    "invite_expiry": expiry,
                    "activated_at": None,
                },
            )
        except AccessError as e:
            logger.error("Could not restore profile %s to pending: %s", profile.id, e.message)
            return
        if restored is None:
            logger.error("Profile %s changed before it could be restored to pending", profile.id)

    # ── Suspend / reactivate ─────────────────────────────────────

    async def suspend(self, actor: ActorScope, profile_id: str) -> Profile:
        return await self._change_status(actor, profile_id, Action.SUSPEND, ProfileStatus.SUSPENDED)

    async def reactivate(self, actor: ActorScope, profile_id: str) -> Profile:
        return await self._change_status(actor, profile_id, Action.REACTIVATE, ProfileStatus.ACTIVE)

    async def _change_status(
        self,
        actor: ActorScope,
        profile_id: str,
        action: Action,
        target: ProfileStatus,
    ) -> Profile:
        reader = HierarchyReader(self._store)
        profile = await reader.profile(profile_id)
        if profile is None:
            raise DenyError(actor_id=actor.actor_id, profile_id=profile_id)
        if not can_perform(actor, action, await reader.profile_scope(profile)):
            raise DenyError(actor_id=actor.actor_id, profile_id=profile_id)

        verb = action.value.upper()
        if profile.status == target:
            # Idempotent: report the call, change nothing
            self._audit(actor.actor_id, verb, profile, profile.status, profile.status)
            return profile

        if target not in MANUAL_TRANSITIONS[profile.status]:
            raise InvalidTransitionError(profile.status.value, target.value, profile_id=profile.id)

        updated = await self._store.update_profile_conditional(
            profile.id, profile.status, profile.invite_token, {"status": target}
        )
        if updated is None:
            current = await self._store.get_profile(profile.id)
            if current is not None and current.status == target:
                self._audit(actor.actor_id, verb, current, target, target)
                return current
            raise InvalidTransitionError(
                current.status.value if current else profile.status.value,
                target.value,
                profile_id=profile.id,
            )

        logger.info("Profile %s %s -> %s", profile.id, profile.status.value, target.value)
        self._audit(actor.actor_id, verb, updated, profile.status, target)
        return updated

    # ── Listing and maintenance ──────────────────────────────────

    async def pending(self, actor: ActorScope) -> list[PendingInvitation]:
        """Pending invitations visible to an Admin or Agent."""
        if actor.level not in (Level.ADMIN, Level.AGENT):
            raise DenyError(actor_id=actor.actor_id)

        visible = visible_resource_filter(actor)
        reader = HierarchyReader(self._store)
        now = self._clock()
        result = []
        for profile in await self._store.list_profiles(status=ProfileStatus.PENDING_ACTIVATION):
            if visible.matches(await reader.profile_scope(profile)):
                result.append(PendingInvitation(profile, is_expired(profile.invite_expiry, now=now)))
        result.sort(key=lambda p: p.profile.created_at, reverse=True)
        return result

    async def bootstrap_admin(self, email: str | None = None) -> BootstrapResult:
        """Make sure the system can be entered by an administrator.

        Returns the active admin if one exists; otherwise the pending admin
        invitation (renewing its token if it expired); otherwise a new admin
        invitation issued on behalf of the system.
        """
        email = email or self._config.admin_email
        admins = await self._store.list_profiles(level=Level.ADMIN)

        for profile in admins:
            if profile.status == ProfileStatus.ACTIVE:
                return BootstrapResult(status="ACTIVE", profile=profile)

        for profile in admins:
            if profile.status != ProfileStatus.PENDING_ACTIVATION or profile.invite_token is None:
                continue
            if not is_expired(profile.invite_expiry, now=self._clock()):
                invitation = Invitation(profile, profile.invite_token, profile.invite_expiry, created=False)
                return BootstrapResult(status="PENDING", profile=profile, invitation=invitation)
            return BootstrapResult(status="PENDING", profile=profile, invitation=await self._renew(profile, email))

        invitation = await self.issue(
            SYSTEM_SCOPE,
            CreationTarget(Level.ADMIN),
            business_key=BOOTSTRAP_ADMIN_KEY,
            email=email,
            ttl=self._config.bootstrap_admin_ttl,
        )
        return BootstrapResult(status="PENDING", profile=invitation.profile, invitation=invitation)

    async def _renew(self, profile: Profile, email: str | None) -> Invitation:
        now = self._clock()
        token = mint_invitation_token(self._config.token_bytes)
        expires_at = now + self._config.bootstrap_admin_ttl
        renewed = await self._store.update_profile_conditional(
            profile.id,
            ProfileStatus.PENDING_ACTIVATION,
            profile.invite_token,
            {"invite_token": token, "invite_expiry": expires_at},
        )
        if renewed is None:
            raise TokenAlreadyUsedError(profile_id=profile.id)
        self._dispatcher.send_invitation(renewed, token, expires_at, email=email)
        self._audit(SYSTEM_ACTOR_ID, "RENEW", renewed, renewed.status, renewed.status)
        return Invitation(renewed, token, expires_at, created=False)

    async def reassign_parent(self, actor: ActorScope, profile_id: str, parent_id: str) -> Profile:
        """Move a Subclient under another Client.

        The actor must be allowed to update the profile and to create a
        Subclient under the new parent.
        """
        reader = HierarchyReader(self._store)
        profile = await reader.profile(profile_id)
        if profile is None or not can_perform(actor, Action.UPDATE, await reader.profile_scope(profile)):
            raise DenyError(actor_id=actor.actor_id, profile_id=profile_id)
        if profile.level != Level.SUBCLIENT:
            raise InvariantViolationError("Only subclient profiles have a parent", profile_id=profile_id)

        parent = await validate_parent_assignment(reader, profile.id, parent_id)
        organization_id = await reader.organization_id(parent.organization_id)
        if not can_create(actor, CreationTarget(Level.SUBCLIENT, organization_id, parent.id)):
            raise DenyError(actor_id=actor.actor_id, parent_id=parent_id)

        changes = {"parent_id": parent.id, "organization_id": organization_id}
        validate_profile(profile.model_copy(update=changes))
        updated = await self._store.update_profile_conditional(
            profile.id, profile.status, profile.invite_token, changes
        )
        if updated is None:
            raise InvariantViolationError("Profile changed during reassignment", profile_id=profile_id)

        self._audit(
            actor.actor_id,
            "REASSIGN",
            updated,
            updated.status,
            updated.status,
            old_parent_id=profile.parent_id,
            new_parent_id=parent.id,
        )
        return updated

    async def set_actor_active(self, actor: ActorScope, actor_id: str, active: bool) -> Actor:
        """Deactivate (revoke all access) or reactivate an actor. Admin only."""
        if not has_capability(actor, Capability.MANAGE_USERS):
            raise DenyError(actor_id=actor.actor_id)
        updated = await self._store.set_actor_active(actor_id, active)
        if updated is None:
            raise InvariantViolationError("Actor does not exist", actor_id=actor_id)

        self._dispatcher.audit_event(
            AuditEvent(
                actor=actor.actor_id,
                action="ACTOR_ACTIVATE" if active else "ACTOR_DEACTIVATE",
                entity_type=EntityType.ACTOR,
                entity_id=actor_id,
                timestamp=self._clock(),
            )
        )
        return updated

    # ── Helpers ──────────────────────────────────────────────────

    def _audit(
        self,
        actor_id: str,
        action: str,
        profile: Profile,
        old_status: ProfileStatus | None,
        new_status: ProfileStatus | None,
        **metadata,
    ) -> None:
        self._dispatcher.audit_event(
            AuditEvent(
                actor=actor_id,
                action=action,
                entity_type=EntityType.PROFILE,
                entity_id=profile.id,
                old_status=old_status,
                new_status=new_status,
                timestamp=self._clock(),
                metadata=metadata,
            )
        )


__all__ = [
    "BOOTSTRAP_ADMIN_KEY",
    "MANUAL_TRANSITIONS",
    "SYSTEM_SCOPE",
    "BootstrapResult",
    "Invitation",
    "InvitationEngine",
    "PendingInvitation",
]
