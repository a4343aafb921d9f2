"""Error taxonomy for the authorization and invitation engine.

Every failure the engine can report has a stable ``ErrorKind`` and a
matching exception class. Inside the package errors are raised; the
``AuthorizationFacade`` converts them into ``AccessFailure`` values so that
nothing crosses the façade boundary as an exception.

Usage:
    from tieraccess.exceptions import AccessError, TokenExpiredError

    try:
        await engine.validate(token)
    except AccessError as e:
        failure = e.to_failure()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, TypeVar, cast

__all__ = [
    "ErrorKind",
    "AccessFailure",
    # Base hierarchy
    "AccessError",
    "NotFoundActorError",
    "ActorInactiveError",
    "ProfileNotActiveError",
    "DenyError",
    "TokenError",
    "TokenNotFoundError",
    "TokenExpiredError",
    "TokenAlreadyUsedError",
    "TokenMalformedError",
    "IdentityAlreadyBoundError",
    "InvalidTransitionError",
    "UnavailableError",
    "InvariantViolationError",
    "StoreUnavailableError",
    # Registry
    "ErrorRegistry",
    "error_registry",
    "register_error",
    # Protocol mapping
    "GENERIC_TOKEN_MESSAGE",
    "get_grpc_status_code",
]

logger = logging.getLogger(__name__)

GENERIC_TOKEN_MESSAGE = "Invitation is invalid or expired"


class ErrorKind(str, Enum):
    """Stable error kinds callers branch on."""

    NOT_FOUND_ACTOR = "NOT_FOUND_ACTOR"
    ACTOR_INACTIVE = "ACTOR_INACTIVE"
    PROFILE_NOT_ACTIVE = "PROFILE_NOT_ACTIVE"
    DENY = "DENY"
    TOKEN_NOT_FOUND = "TOKEN_NOT_FOUND"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    TOKEN_ALREADY_USED = "TOKEN_ALREADY_USED"
    TOKEN_MALFORMED = "TOKEN_MALFORMED"
    IDENTITY_ALREADY_BOUND = "IDENTITY_ALREADY_BOUND"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    UNAVAILABLE = "UNAVAILABLE"
    INVARIANT_VIOLATION = "INVARIANT_VIOLATION"


@dataclass(frozen=True)
class AccessFailure:
    """Typed failure value returned across the façade boundary."""

    kind: ErrorKind
    message: str
    detail: dict[str, Any] = field(default_factory=dict)

    @property
    def is_token_error(self) -> bool:
        return self.kind in TOKEN_KINDS


# ---- Exception Hierarchy ----------------------------------------------------


class AccessError(Exception):
    """Base exception for the authorization engine.

    Attributes:
        kind: Stable ``ErrorKind`` for callers and protocol mapping.
        message: Human-readable description, safe to show to the end actor.
        log_level: Severity the façade logs this error at.
        details: Additional context as keyword arguments (never shown to
            the end actor).
    """

    kind: ErrorKind = ErrorKind.DENY
    message: str = "Access denied"
    log_level: int = logging.INFO

    def __init__(self, message: str | None = None, **kwargs: Any) -> None:
        self.message = message or self.message
        self.details = kwargs
        super().__init__(self.message)

    @property
    def code(self) -> str:
        return self.kind.value

    def public_detail(self) -> dict[str, Any]:
        """Detail safe to hand back to callers (empty unless overridden)."""
        return {}

    def to_failure(self) -> AccessFailure:
        return AccessFailure(kind=self.kind, message=self.message, detail=self.public_detail())


class NotFoundActorError(AccessError):
    """No actor is bound to the external identity."""

    kind = ErrorKind.NOT_FOUND_ACTOR
    message = "Unknown identity"
    log_level = logging.WARNING


class ActorInactiveError(AccessError):
    """The actor has been deactivated."""

    kind = ErrorKind.ACTOR_INACTIVE
    message = "Account is inactive"


class ProfileNotActiveError(AccessError):
    """The actor's profile is pending activation or suspended."""

    kind = ErrorKind.PROFILE_NOT_ACTIVE
    message = "Profile is not active"

    def __init__(self, message: str | None = None, *, status: str, **kwargs: Any) -> None:
        super().__init__(message, status=status, **kwargs)
        self.status = status

    def public_detail(self) -> dict[str, Any]:
        # Detail drives the UI redirect (pending-activation vs account-suspended)
        return {"status": self.status}


class DenyError(AccessError):
    """The permission tables do not allow the operation."""

    kind = ErrorKind.DENY
    message = "Access denied"


class TokenError(AccessError):
    """Base for invitation token failures. All share one public message."""

    message = GENERIC_TOKEN_MESSAGE

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(GENERIC_TOKEN_MESSAGE, **kwargs)


class TokenNotFoundError(TokenError):
    kind = ErrorKind.TOKEN_NOT_FOUND
    log_level = logging.WARNING


class TokenExpiredError(TokenError):
    kind = ErrorKind.TOKEN_EXPIRED


class TokenAlreadyUsedError(TokenError):
    kind = ErrorKind.TOKEN_ALREADY_USED


class TokenMalformedError(TokenError):
    kind = ErrorKind.TOKEN_MALFORMED
    log_level = logging.WARNING


class IdentityAlreadyBoundError(AccessError):
    """The external identity already belongs to a different actor."""

    kind = ErrorKind.IDENTITY_ALREADY_BOUND
    message = "This identity is already registered"
    log_level = logging.WARNING


class InvalidTransitionError(AccessError):
    """Profile status change not allowed by the lifecycle."""

    kind = ErrorKind.INVALID_TRANSITION
    message = "Invalid status transition"
    log_level = logging.WARNING

    def __init__(self, current: str, requested: str, **kwargs: Any) -> None:
        super().__init__(f"Cannot move profile from {current} to {requested}", **kwargs)
        self.current = current
        self.requested = requested

    def public_detail(self) -> dict[str, Any]:
        return {"current": self.current, "requested": self.requested}


class UnavailableError(AccessError):
    """A collaborator timed out or is down. Never a security decision."""

    kind = ErrorKind.UNAVAILABLE
    message = "Service temporarily unavailable"
    log_level = logging.ERROR


class InvariantViolationError(AccessError):
    """A write would break a hierarchy or lifecycle invariant."""

    kind = ErrorKind.INVARIANT_VIOLATION
    message = "Invariant violation"
    log_level = logging.ERROR


class StoreUnavailableError(Exception):
    """Raised by ``IdentityStore`` backends when the storage engine is unreachable."""


TOKEN_KINDS = frozenset(
    {
        ErrorKind.TOKEN_NOT_FOUND,
        ErrorKind.TOKEN_EXPIRED,
        ErrorKind.TOKEN_ALREADY_USED,
        ErrorKind.TOKEN_MALFORMED,
    }
)


# ---- Error Registry for Protocol Mapping ------------------------------------

_E = TypeVar("_E", bound=type[AccessError])


class ErrorRegistry:
    """Registry for mapping error kinds to exception classes."""

    def __init__(self) -> None:
        self._errors: dict[ErrorKind, type[AccessError]] = {}

    def register(self, kind: ErrorKind, error_cls: type[AccessError]) -> None:
        self._errors[kind] = error_cls

    def get(self, kind: ErrorKind | str) -> type[AccessError] | None:
        return self._errors.get(ErrorKind(kind))

    def all(self) -> dict[ErrorKind, type[AccessError]]:
        return dict(self._errors)


error_registry = ErrorRegistry()


def register_error(kind: ErrorKind) -> Callable[[_E], _E]:
    """Decorator to register an error type under its kind.

    Usage:
        @register_error(ErrorKind.DENY)
        class ReportDenied(DenyError):
            message = "Report access denied"
    """

    def decorator(cls: _E) -> _E:
        error_registry.register(kind, cls)
        return cls

    return cast(Callable[[_E], _E], decorator)


for _cls in (
    NotFoundActorError,
    ActorInactiveError,
    ProfileNotActiveError,
    DenyError,
    TokenNotFoundError,
    TokenExpiredError,
    TokenAlreadyUsedError,
    TokenMalformedError,
    IdentityAlreadyBoundError,
    InvalidTransitionError,
    UnavailableError,
    InvariantViolationError,
):
    error_registry.register(_cls.kind, _cls)


# ---- gRPC Status Mapping ----------------------------------------------------


def get_grpc_status_code(kind: ErrorKind | str):
    """Map an error kind to a gRPC status code.

    Import grpc locally to avoid hard dependency at module level.
    """
    import grpc

    kind_to_status = {
        ErrorKind.NOT_FOUND_ACTOR: grpc.StatusCode.UNAUTHENTICATED,
        ErrorKind.ACTOR_INACTIVE: grpc.StatusCode.PERMISSION_DENIED,
        ErrorKind.PROFILE_NOT_ACTIVE: grpc.StatusCode.PERMISSION_DENIED,
        ErrorKind.DENY: grpc.StatusCode.PERMISSION_DENIED,
        ErrorKind.TOKEN_NOT_FOUND: grpc.StatusCode.INVALID_ARGUMENT,
        ErrorKind.TOKEN_EXPIRED: grpc.StatusCode.INVALID_ARGUMENT,
        ErrorKind.TOKEN_ALREADY_USED: grpc.StatusCode.INVALID_ARGUMENT,
        ErrorKind.TOKEN_MALFORMED: grpc.StatusCode.INVALID_ARGUMENT,
        ErrorKind.IDENTITY_ALREADY_BOUND: grpc.StatusCode.ALREADY_EXISTS,
        ErrorKind.INVALID_TRANSITION: grpc.StatusCode.FAILED_PRECONDITION,
        ErrorKind.UNAVAILABLE: grpc.StatusCode.UNAVAILABLE,
        ErrorKind.INVARIANT_VIOLATION: grpc.StatusCode.FAILED_PRECONDITION,
    }
    return kind_to_status.get(ErrorKind(kind), grpc.StatusCode.INTERNAL)
