"""Typed records of the trust hierarchy.

These are Pydantic models mirroring what the identity store persists.
They are frozen: the engine never mutates a record in place, it asks the
store for a new version.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from ..exceptions import InvariantViolationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid4().hex


class Level(str, Enum):
    """Actor/profile level. Closed set; not a numeric power ordering."""

    CLIENT = "L2_CLIENT"
    SUBCLIENT = "L3_SUBCLIENT"
    AGENT = "L4_AGENT"
    ADMIN = "L5_ADMIN"


class ProfileStatus(str, Enum):
    PENDING_ACTIVATION = "PENDING_ACTIVATION"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"


class AccountVariant(str, Enum):
    MASTER = "MASTER"
    CLIENT = "CLIENT"


class EntityType(str, Enum):
    ACTOR = "ACTOR"
    PROFILE = "PROFILE"
    ACCOUNT = "ACCOUNT"
    ORGANIZATION = "ORGANIZATION"


class Actor(BaseModel):
    """An authenticated identity."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    external_id: str | None = None
    level: Level
    active: bool = False


class Organization(BaseModel):
    """Tenant boundary. Pure container."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    name: str
    active: bool = True


class Profile(BaseModel):
    """Business/trust record bound 1:1 to an Actor."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    actor_id: str
    level: Level
    business_key: str
    organization_id: str | None = None
    parent_id: str | None = None
    status: ProfileStatus = ProfileStatus.PENDING_ACTIVATION
    invite_token: str | None = None
    invite_expiry: datetime | None = None
    invited_by: str | None = None
    activated_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_active(self) -> bool:
        return self.status == ProfileStatus.ACTIVE


class Account(BaseModel):
    """Master or Client account whose visibility the engine governs."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    variant: AccountVariant
    owner_profile_id: str | None = None
    organization_id: str | None = None
    active: bool = True

    @property
    def is_master(self) -> bool:
        return self.variant == AccountVariant.MASTER


def validate_profile(profile: Profile, *, now: datetime | None = None) -> Profile:
    """Check the single-record invariants of a profile.

    ``now`` is given at creation time, when a pending invitation must not
    already be expired.

    Raises:
        InvariantViolationError: if any invariant is broken.
    """
    if profile.parent_id is not None and profile.parent_id == profile.id:
        raise InvariantViolationError("A profile cannot be its own parent", profile_id=profile.id)

    if profile.level == Level.SUBCLIENT:
        if profile.parent_id is None:
            raise InvariantViolationError("Subclient profiles require a parent", profile_id=profile.id)
    elif profile.level == Level.AGENT:
        if profile.organization_id is None:
            raise InvariantViolationError("Agent profiles require an organization", profile_id=profile.id)
        if profile.parent_id is not None:
            raise InvariantViolationError("Agent profiles cannot have a parent", profile_id=profile.id)
    elif profile.level == Level.CLIENT:
        if profile.parent_id is not None:
            raise InvariantViolationError("Client profiles cannot have a parent", profile_id=profile.id)
    elif profile.level == Level.ADMIN:
        if profile.parent_id is not None:
            raise InvariantViolationError("Admin profiles cannot have a parent", profile_id=profile.id)

    if profile.status == ProfileStatus.PENDING_ACTIVATION:
        if not profile.invite_token or profile.invite_expiry is None:
            raise InvariantViolationError(
                "Pending profiles require an invitation token and expiry", profile_id=profile.id
            )
        if now is not None and profile.invite_expiry <= now:
            raise InvariantViolationError("Invitation expiry must be in the future", profile_id=profile.id)
    elif profile.invite_token is not None or profile.invite_expiry is not None:
        raise InvariantViolationError(
            f"{profile.status.value} profiles cannot carry an invitation token", profile_id=profile.id
        )

    return profile


def validate_account(account: Account) -> Account:
    """Check the variant/ownership invariant of an account."""
    if account.variant == AccountVariant.CLIENT and account.owner_profile_id is None:
        raise InvariantViolationError("Client accounts must reference a profile", account_id=account.id)
    if account.variant == AccountVariant.MASTER:
        if account.owner_profile_id is not None:
            raise InvariantViolationError("Master accounts cannot reference a profile", account_id=account.id)
        if account.organization_id is None:
            raise InvariantViolationError("Master accounts must belong to an organization", account_id=account.id)
    return account


__all__ = [
    "Account",
    "AccountVariant",
    "Actor",
    "EntityType",
    "Level",
    "Organization",
    "Profile",
    "ProfileStatus",
    "new_id",
    "utcnow",
    "validate_account",
    "validate_profile",
]
