"""Tests for the error taxonomy and its HTTP mapping."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from scheduling.errors import (
    ConflictError,
    DatabaseError,
    ErrorResponse,
    ExpiredTokenError,
    InvalidTransitionError,
    LimitExceededError,
    NotFoundError,
    ServiceUnavailableError,
    ValidationError,
    register_exception_handlers,
)


class TestAPIErrors:
    """Test custom error classes."""

    @pytest.mark.parametrize(
        "cls,status,slug",
        [
            (NotFoundError, 404, "not_found"),
            (ValidationError, 422, "validation_error"),
            (ConflictError, 409, "conflict"),
            (InvalidTransitionError, 409, "invalid_transition"),
            (ExpiredTokenError, 410, "token_expired"),
            (LimitExceededError, 403, "limit_exceeded"),
            (ServiceUnavailableError, 503, "service_unavailable"),
            (DatabaseError, 500, "database_error"),
        ],
    )
    def test_status_and_slug(self, cls, status, slug):
        error = cls()
        assert error.status_code == status
        assert error.error == slug
        assert error.detail

    def test_context_is_kept(self):
        """Keyword arguments travel as context."""
        error = NotFoundError(detail="Poll not found", poll_id="p1")
        assert error.detail == "Poll not found"
        assert error.context == {"poll_id": "p1"}

    def test_conflict_ids(self):
        error = ConflictError(conflicting_booking_ids=["b1", "b2"])
        assert error.conflicting_booking_ids == ["b1", "b2"]
        assert ConflictError().conflicting_booking_ids == []

    def test_limit_exceeded_passes_error_code_through(self):
        error = LimitExceededError(detail="Calendar limit reached", error_code="MAX_CALENDARS")
        assert error.to_response().error_code == "MAX_CALENDARS"


class TestErrorResponse:
    def test_error_response_minimal(self):
        """Test ErrorResponse with minimal fields."""
        response = ErrorResponse(error="internal_error")
        assert response.model_dump(exclude_none=True) == {"error": "internal_error"}

    def test_api_error_to_response(self):
        response = ConflictError(detail="Taken", conflicting_booking_ids=["b1"]).to_response()
        assert response.error == "conflict"
        assert response.detail == "Taken"
        assert response.context == {"conflicting_booking_ids": ["b1"]}


class TestExceptionHandlers:
    """Test exception handlers integration."""

    def _client(self, exc: Exception) -> TestClient:
        app = FastAPI()
        register_exception_handlers(app)

        @app.get("/boom")
        async def boom():
            raise exc

        return TestClient(app, raise_server_exceptions=False)

    def test_expired_token_handler(self):
        response = self._client(ExpiredTokenError(request_id="r1")).get("/boom")
        assert response.status_code == 410
        body = response.json()
        assert body["error"] == "token_expired"
        assert body["context"] == {"request_id": "r1"}

    def test_conflict_handler(self):
        response = self._client(ConflictError(conflicting_booking_ids=["b1"])).get("/boom")
        assert response.status_code == 409
        assert response.json()["context"]["conflicting_booking_ids"] == ["b1"]

    def test_unhandled_exception(self):
        response = self._client(RuntimeError("secret")).get("/boom")
        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "internal_error"
        assert "secret" not in body["detail"]
