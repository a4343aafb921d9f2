"""Tests for the error taxonomy, registry and protocol mapping."""

from __future__ import annotations

import logging

import grpc
import pytest

from tieraccess.exceptions import (
    GENERIC_TOKEN_MESSAGE,
    AccessError,
    DenyError,
    ErrorKind,
    InvalidTransitionError,
    InvariantViolationError,
    ProfileNotActiveError,
    TokenExpiredError,
    TokenMalformedError,
    UnavailableError,
    error_registry,
    get_grpc_status_code,
    register_error,
)


class TestAccessError:
    """Tests for the exception hierarchy."""

    def test_defaults(self) -> None:
        error = DenyError(actor_id="a-1")
        assert error.code == "DENY"
        assert error.message == "Access denied"
        assert error.details == {"actor_id": "a-1"}

    def test_to_failure_hides_details(self) -> None:
        """Internal details never reach the failure value."""
        failure = DenyError(actor_id="a-1").to_failure()
        assert failure.kind == ErrorKind.DENY
        assert failure.detail == {}

    def test_profile_not_active_detail(self) -> None:
        failure = ProfileNotActiveError(status="SUSPENDED", actor_id="a-1").to_failure()
        assert failure.detail == {"status": "SUSPENDED"}

    def test_invalid_transition_message(self) -> None:
        error = InvalidTransitionError("PENDING_ACTIVATION", "SUSPENDED")
        assert "PENDING_ACTIVATION" in error.message
        assert error.public_detail() == {"current": "PENDING_ACTIVATION", "requested": "SUSPENDED"}

    def test_token_errors_generic(self) -> None:
        for error in (TokenExpiredError(profile_id="p-1"), TokenMalformedError()):
            assert error.message == GENERIC_TOKEN_MESSAGE
            assert error.to_failure().is_token_error

    def test_log_levels(self) -> None:
        assert InvariantViolationError().log_level == logging.ERROR
        assert UnavailableError().log_level == logging.ERROR
        assert DenyError().log_level == logging.INFO
        assert TokenExpiredError().log_level == logging.INFO


class TestErrorRegistry:
    """Tests for kind → class registry."""

    def test_every_kind_registered(self) -> None:
        assert set(error_registry.all()) == set(ErrorKind)

    def test_lookup_by_string(self) -> None:
        assert error_registry.get("TOKEN_EXPIRED") is TokenExpiredError

    def test_register_decorator(self) -> None:
        original = error_registry.get(ErrorKind.DENY)
        try:

            @register_error(ErrorKind.DENY)
            class ReportDenied(DenyError):
                message = "Report access denied"

            assert error_registry.get(ErrorKind.DENY) is ReportDenied
        finally:
            error_registry.register(ErrorKind.DENY, original)


class TestGrpcMapping:
    """Tests for gRPC status mapping."""

    @pytest.mark.parametrize(
        ("kind", "status"),
        [
            (ErrorKind.NOT_FOUND_ACTOR, grpc.StatusCode.UNAUTHENTICATED),
            (ErrorKind.PROFILE_NOT_ACTIVE, grpc.StatusCode.PERMISSION_DENIED),
            (ErrorKind.DENY, grpc.StatusCode.PERMISSION_DENIED),
            (ErrorKind.TOKEN_EXPIRED, grpc.StatusCode.INVALID_ARGUMENT),
            (ErrorKind.IDENTITY_ALREADY_BOUND, grpc.StatusCode.ALREADY_EXISTS),
            (ErrorKind.INVALID_TRANSITION, grpc.StatusCode.FAILED_PRECONDITION),
            (ErrorKind.UNAVAILABLE, grpc.StatusCode.UNAVAILABLE),
        ],
    )
    def test_mapping(self, kind: ErrorKind, status: grpc.StatusCode) -> None:
        assert get_grpc_status_code(kind) == status

    def test_all_kinds_mapped(self) -> None:
        for kind in ErrorKind:
            assert get_grpc_status_code(kind) != grpc.StatusCode.INTERNAL

    def test_base_class_is_exception(self) -> None:
        with pytest.raises(AccessError):
            raise DenyError()
