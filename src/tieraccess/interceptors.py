"""gRPC server adapter for the authorization façade.

Provides:
- ``AuthorizationInterceptor``: rejects calls from callers that are not
  eligible (unknown identity, inactive actor, non-active profile) and,
  for mapped RPCs, callers lacking a level capability.
- ``_extract_rpc_name``, ``_should_skip``: helper utilities.

The caller identity comes from the ``x-external-identity`` metadata key,
set by the authentication proxy in front of the service.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

import grpc

from .config import EnforcementMode
from .exceptions import get_grpc_status_code
from .facade import AuthorizationFacade, AuthorizationResult, RequestContext
from .hierarchy.models import new_id
from .permissions import Capability

logger = logging.getLogger(__name__)

IDENTITY_METADATA_KEY = "x-external-identity"
REQUEST_ID_METADATA_KEY = "x-request-id"

# Method prefixes that bypass authorization
_SKIP_PREFIXES = (
    "grpc.health.v1",
    "grpc.reflection.v1",
)


# ── Helpers ──────────────────────────────────────────────────────


def _extract_rpc_name(full_method: str) -> str:
    """Extract RPC name from fully-qualified method string.

    ``/accounts.AccountService/ListAccounts`` → ``ListAccounts``
    """
    return full_method.rsplit("/", 1)[-1] if "/" in full_method else full_method


def _should_skip(method: str) -> bool:
    """Check if this method should skip authorization."""
    return any(prefix in method for prefix in _SKIP_PREFIXES)


# ── Interceptor ──────────────────────────────────────────────────


class AuthorizationInterceptor(grpc.aio.ServerInterceptor):
    """gRPC server interceptor enforcing caller eligibility.

    Sits before all handlers and:
    1. Logs caller identity (always, even when enforcement is off)
    2. Reads the external identity from gRPC metadata
    3. Asks the façade whether actor and profile are both active
    4. For RPCs in ``rpc_capability_map``, also checks the level capability
    5. Aborts with the status mapped from the failure kind

    Resource-level decisions stay in the handlers (``facade.authorize``):
    the interceptor cannot know which resource a request targets.

    Args:
        facade: The authorization façade.
        rpc_capability_map: Mapping of RPC name → required capability.
        public_rpcs: RPC names reachable without an eligible profile
            (e.g. invitation validation and activation).
        service_name: Human-readable service name for log messages.
        enforcement: Three-state mode (off / warn / enforce). Defaults to
            ``facade.config.enforcement``.
    """

    def __init__(
        self,
        facade: AuthorizationFacade,
        *,
        rpc_capability_map: dict[str, Capability] | None = None,
        public_rpcs: Iterable[str] = (),
        service_name: str = "Service",
        enforcement: EnforcementMode | None = None,
    ) -> None:
        self._facade = facade
        self._rpc_map = dict(rpc_capability_map or {})
        self._public = frozenset(public_rpcs)
        self._service_name = service_name
        self._mode = enforcement if enforcement is not None else facade.config.enforcement

        if self._mode != EnforcementMode.OFF:
            logger.info("%s authorization mode: %s", self._service_name, self._mode.value)

    async def _check(self, rpc_name: str, ctx: RequestContext) -> AuthorizationResult:
        capability = self._rpc_map.get(rpc_name)
        if capability is not None:
            return await self._facade.authorize_capability(ctx, capability)
        return await self._facade.check_profile(ctx)

    async def intercept_service(
        self,
        continuation: Any,
        handler_call_details: grpc.HandlerCallDetails,
    ) -> grpc.RpcMethodHandler:
        """Intercept incoming gRPC calls for eligibility checks."""
        method = handler_call_details.method or ""

        if _should_skip(method):
            return await continuation(handler_call_details)

        rpc_name = _extract_rpc_name(method)
        metadata = dict(handler_call_details.invocation_metadata or [])
        external_id = str(metadata.get(IDENTITY_METADATA_KEY, "")).strip() or None
        request_id = str(metadata.get(REQUEST_ID_METADATA_KEY, "")).strip() or new_id()

        logger.info(
            "%s RPC %s | caller=%s request=%s",
            self._service_name,
            rpc_name,
            external_id or "anonymous",
            request_id,
        )

        if self._mode == EnforcementMode.OFF or rpc_name in self._public:
            return await continuation(handler_call_details)

        result = await self._check(rpc_name, RequestContext(external_id=external_id, request_id=request_id))
        if result.allowed:
            return await continuation(handler_call_details)

        failure = result.error
        reason = f"{failure.kind.value}: {failure.message}" if failure else "denied"

        if self._mode == EnforcementMode.WARN:
            logger.warning(
                "%s WARN_DENIED '%s': %s (would block in enforce mode)",
                self._service_name,
                rpc_name,
                reason,
            )
            return await continuation(handler_call_details)

        logger.warning("%s DENIED '%s': %s", self._service_name, rpc_name, reason)

        _deny_status = get_grpc_status_code(failure.kind) if failure else grpc.StatusCode.PERMISSION_DENIED
        _deny_msg = failure.message if failure else "Access denied"

        async def _denied(request, context):
            await context.abort(_deny_status, _deny_msg)

        return grpc.unary_unary_rpc_method_handler(_denied)


__all__ = [
    "IDENTITY_METADATA_KEY",
    "REQUEST_ID_METADATA_KEY",
    "AuthorizationInterceptor",
    "_extract_rpc_name",
    "_should_skip",
]
