from .config import AccessConfig, EnforcementMode, LogLevel, load_access_config_from_env
from .exceptions import (
    AccessError,
    AccessFailure,
    ErrorKind,
    GENERIC_TOKEN_MESSAGE,
)
from .hierarchy import (
    Account,
    AccountVariant,
    Actor,
    ActorScope,
    CreationTarget,
    EntityType,
    Level,
    Organization,
    Profile,
    ProfileStatus,
    ResourceKey,
    ScopeView,
)
from .permissions import (
    Action,
    Capability,
    ResourceFilter,
    can_create,
    can_perform,
    has_capability,
    visible_resource_filter,
)
from .invitations import BootstrapResult, Invitation, InvitationEngine, PendingInvitation
from .sinks import AuditEvent, AuditSink, EventDispatcher, NotificationSink
from .store import BoundedStore, IdentityStore, InMemoryIdentityStore
from .facade import AuthorizationFacade, AuthorizationResult, OperationResult, RequestContext
from .logging import (
    safe_preview,
    redact_secrets,
    safe_log_value,
    AccessLogFormatter,
    AccessLoggerAdapter,
    setup_logging,
    get_access_logger,
)

__all__ = [
    'AccessConfig',
    'EnforcementMode',
    'LogLevel',
    'load_access_config_from_env',
    'AccessError',
    'AccessFailure',
    'ErrorKind',
    'GENERIC_TOKEN_MESSAGE',
    'Account',
    'AccountVariant',
    'Actor',
    'ActorScope',
    'CreationTarget',
    'EntityType',
    'Level',
    'Organization',
    'Profile',
    'ProfileStatus',
    'ResourceKey',
    'ScopeView',
    'Action',
    'Capability',
    'ResourceFilter',
    'can_create',
    'can_perform',
    'has_capability',
    'visible_resource_filter',
    'BootstrapResult',
    'Invitation',
    'InvitationEngine',
    'PendingInvitation',
    'AuditEvent',
    'AuditSink',
    'EventDispatcher',
    'NotificationSink',
    'BoundedStore',
    'IdentityStore',
    'InMemoryIdentityStore',
    'AuthorizationFacade',
    'AuthorizationResult',
    'OperationResult',
    'RequestContext',
    'safe_preview',
    'redact_secrets',
    'safe_log_value',
    'AccessLogFormatter',
    'AccessLoggerAdapter',
    'setup_logging',
    'get_access_logger',
]
