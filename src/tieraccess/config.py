"""Configuration contract for the authorization engine.

This module provides a Pydantic-validated configuration model for every
tunable of the engine (invitation lifetimes, token size, collaborator
deadlines, logging). Components receive an ``AccessConfig`` instance;
direct os.environ/os.getenv usage is limited to
``load_access_config_from_env``.
"""

from __future__ import annotations

from datetime import timedelta
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

DAY_SECONDS = 24 * 60 * 60


class LogLevel(str, Enum):
    """Standard log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class EnforcementMode(str, Enum):
    """Three-state enforcement toggle for the gRPC adapter.

    - ``off``: no checks, only caller-identity logging.
    - ``warn``: check eligibility, log denials as WARNING, allow through.
    - ``enforce``: check eligibility, abort on failure (production).
    """

    OFF = "off"
    WARN = "warn"
    ENFORCE = "enforce"


class AccessConfig(BaseModel):
    """Settings for the authorization and invitation engine.

    RULE: All settings MUST come through this config object.
    """

    # Logging
    log_level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Logging level for the engine",
    )
    log_json: bool = Field(
        default=False,
        description="Use JSON log format (default: plain text)",
    )
    service_name: Optional[str] = Field(
        default=None,
        description="Service name used as the logger namespace",
    )

    # Invitations
    invitation_ttl_seconds: int = Field(
        default=7 * DAY_SECONDS,
        gt=0,
        description="Default invitation lifetime (7 days)",
    )
    bootstrap_admin_ttl_seconds: int = Field(
        default=30 * DAY_SECONDS,
        gt=0,
        description="Lifetime of the bootstrap admin invitation (30 days)",
    )
    token_bytes: int = Field(
        default=32,
        ge=32,
        description="Random bytes per invitation token (rendered as 2x hex chars)",
    )
    token_failure_floor_ms: int = Field(
        default=50,
        ge=0,
        description="Minimum duration of a failed token check, hides lookup timing",
    )
    admin_email: str = Field(
        default="admin@example.com",
        description="Recipient of the bootstrap admin invitation",
    )

    # Collaborators
    store_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Default deadline for identity-store calls of one request",
    )

    # gRPC adapter
    enforcement: EnforcementMode = Field(
        default=EnforcementMode.WARN,
        description="Interceptor enforcement mode: off | warn | enforce",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: str | LogLevel) -> LogLevel:
        """Convert string to LogLevel enum."""
        if isinstance(v, LogLevel):
            return v
        if isinstance(v, str):
            try:
                return LogLevel[v.upper()]
            except KeyError:
                raise ValueError(f"Invalid log level: {v}. Must be one of {[e.value for e in LogLevel]}")
        raise ValueError(f"Log level must be string or LogLevel enum, got {type(v)}")

    @field_validator("enforcement", mode="before")
    @classmethod
    def validate_enforcement(cls, v: str | EnforcementMode) -> EnforcementMode:
        if isinstance(v, EnforcementMode):
            return v
        try:
            return EnforcementMode(str(v).strip().lower())
        except ValueError:
            raise ValueError(f"Invalid enforcement mode: {v}. Must be one of {[e.value for e in EnforcementMode]}")

    @property
    def invitation_ttl(self) -> timedelta:
        return timedelta(seconds=self.invitation_ttl_seconds)

    @property
    def bootstrap_admin_ttl(self) -> timedelta:
        return timedelta(seconds=self.bootstrap_admin_ttl_seconds)

    model_config = {
        "extra": "forbid",  # Prevent accidental extra fields
    }


_TRUTHY = ("true", "1", "yes", "on")


def load_access_config_from_env() -> AccessConfig:
    """Load engine configuration from environment variables.

    This is the ONLY place where os.getenv is allowed.

    Environment variables:
    - LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - LOG_JSON: Use JSON log format (true/false, default: false)
    - SERVICE_NAME: Service name for logging
    - TIERACCESS_INVITATION_TTL_SECONDS: Default invitation lifetime
    - TIERACCESS_BOOTSTRAP_ADMIN_TTL_SECONDS: Bootstrap admin invitation lifetime
    - TIERACCESS_TOKEN_BYTES: Random bytes per token
    - TIERACCESS_TOKEN_FAILURE_FLOOR_MS: Minimum duration of failed token checks
    - TIERACCESS_ADMIN_EMAIL: Bootstrap admin recipient
    - TIERACCESS_STORE_TIMEOUT_SECONDS: Identity-store deadline
    - TIERACCESS_ENFORCEMENT: off | warn | enforce

    Returns:
        AccessConfig instance with values from environment or defaults.
    """
    import os

    defaults = AccessConfig()
    return AccessConfig(
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_json=os.getenv("LOG_JSON", "false").lower() in _TRUTHY,
        service_name=os.getenv("SERVICE_NAME"),
        invitation_ttl_seconds=int(
            os.getenv("TIERACCESS_INVITATION_TTL_SECONDS", str(defaults.invitation_ttl_seconds))
        ),
        bootstrap_admin_ttl_seconds=int(
            os.getenv("TIERACCESS_BOOTSTRAP_ADMIN_TTL_SECONDS", str(defaults.bootstrap_admin_ttl_seconds))
        ),
        token_bytes=int(os.getenv("TIERACCESS_TOKEN_BYTES", str(defaults.token_bytes))),
        token_failure_floor_ms=int(
            os.getenv("TIERACCESS_TOKEN_FAILURE_FLOOR_MS", str(defaults.token_failure_floor_ms))
        ),
        admin_email=os.getenv("TIERACCESS_ADMIN_EMAIL", defaults.admin_email),
        store_timeout_seconds=float(
            os.getenv("TIERACCESS_STORE_TIMEOUT_SECONDS", str(defaults.store_timeout_seconds))
        ),
        enforcement=os.getenv("TIERACCESS_ENFORCEMENT", defaults.enforcement.value),
    )


__all__ = [
    "AccessConfig",
    "EnforcementMode",
    "LogLevel",
    "load_access_config_from_env",
]
