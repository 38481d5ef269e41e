"""Tests for fm_common.errors and fm_common.response."""

from src.fm_common.errors import (
    AppError,
    ConcurrentModificationError,
    DependencyError,
    InvalidStateTransitionError,
    MilestoneNotFoundError,
    NotFoundError,
    OrderNotFoundError,
    PaymentNotFoundError,
    PermissionDeniedError,
    PersistenceError,
    UnauthenticatedError,
    ValidationError,
    VersionConflictError,
)
from src.fm_common.response import ApiResponse, error_response, success_response


class TestAppError:
    def test_base_error(self) -> None:
        err = AppError(code=9002, message="Internal error")
        assert err.code == 9002
        assert err.message == "Internal error"
        assert err.http_status == 500

    def test_custom_http_status(self) -> None:
        err = AppError(code=1001, message="bad", http_status=422)
        assert err.http_status == 422

    def test_is_exception(self) -> None:
        assert isinstance(AppError(code=1001, message="test"), Exception)


class TestSpecificErrors:
    def test_validation(self) -> None:
        err = ValidationError("title must not be empty")
        assert (err.code, err.http_status) == (1001, 422)
        assert "title" in err.message

    def test_not_found_family(self) -> None:
        assert OrderNotFoundError("JOB-1").code == 2001
        assert MilestoneNotFoundError("JOB-1", "m1").code == 2002
        assert PaymentNotFoundError("JOB-1", "p1").code == 2003
        for err in (
            OrderNotFoundError("JOB-1"),
            MilestoneNotFoundError("JOB-1", "m1"),
            PaymentNotFoundError("JOB-1", "p1"),
        ):
            assert isinstance(err, NotFoundError)
            assert err.http_status == 404

    def test_invalid_transition(self) -> None:
        err = InvalidStateTransitionError("pending -> completed")
        assert (err.code, err.http_status) == (3001, 409)

    def test_permission_denied(self) -> None:
        err = PermissionDeniedError("only the client")
        assert (err.code, err.http_status) == (3002, 403)

    def test_concurrent_modification(self) -> None:
        err = ConcurrentModificationError("JOB-1", 5)
        assert (err.code, err.http_status) == (4001, 409)
        assert "5 attempts" in err.message

    def test_persistence(self) -> None:
        err = PersistenceError("connection reset")
        assert (err.code, err.http_status) == (5001, 503)

    def test_dependency_keeps_service(self) -> None:
        err = DependencyError("identity", "timeout")
        assert (err.code, err.http_status) == (6001, 502)
        assert err.service == "identity"

    def test_unauthenticated(self) -> None:
        assert UnauthenticatedError().http_status == 401

    def test_version_conflict_is_not_app_error(self) -> None:
        err = VersionConflictError("JOB-1", 3)
        assert not isinstance(err, AppError)
        assert err.expected_version == 3


class TestApiResponse:
    def test_success_response(self) -> None:
        resp = success_response({"order_id": "JOB-1"})
        assert resp.code == 0
        assert resp.message == "success"
        assert resp.data == {"order_id": "JOB-1"}

    def test_success_response_keeps_request_id(self) -> None:
        resp = success_response(None, request_id="req_abc")
        assert resp.request_id == "req_abc"

    def test_error_response(self) -> None:
        resp = error_response(3001, "Invalid state transition: x")
        assert resp.code == 3001
        assert resp.data is None

    def test_has_timestamp_and_request_id(self) -> None:
        resp = ApiResponse()
        assert resp.timestamp
        assert resp.request_id.startswith("req_")
