"""Tests for the error hierarchy and failure classification."""

from __future__ import annotations

import asyncio

import pytest

from cadence_ai.exceptions import (
    APIError,
    APITimeoutError,
    AuthenticationError,
    CircuitOpenError,
    ErrorCategory,
    ErrorCode,
    InvalidRequestError,
    NetworkError,
    RateLimitError,
    RateLimitInfo,
    ServerError,
    UnknownError,
    counts_as_breaker_failure,
    parse_error_response,
)


class TestErrorKinds:
    @pytest.mark.parametrize(
        ("error", "code", "retryable"),
        [
            (NetworkError("offline"), ErrorCode.NETWORK_ERROR, True),
            (AuthenticationError("expired"), ErrorCode.AUTH_FAILED, False),
            (RateLimitError("slow down", retry_after=30), ErrorCode.RATE_LIMITED, True),
            (ServerError("boom"), ErrorCode.SERVER_ERROR, True),
            (InvalidRequestError("bad"), ErrorCode.INVALID_REQUEST, False),
            (APITimeoutError("slow"), ErrorCode.TIMEOUT, True),
            (UnknownError("???"), ErrorCode.UNKNOWN, False),
        ],
    )
    def test_code_and_retryability(self, error: APIError, code: ErrorCode, retryable: bool) -> None:
        assert error.code == code
        assert error.is_retryable is retryable

    def test_default_status_codes(self) -> None:
        assert AuthenticationError("x").status_code == 401
        assert RateLimitError("x").status_code == 429
        assert ServerError("x").status_code == 500
        assert InvalidRequestError("x").status_code == 400
        assert ServerError("x", status_code=503).status_code == 503

    def test_rate_limit_user_message_mentions_wait(self) -> None:
        err = RateLimitError("429", retry_after=30)
        assert "30 seconds" in err.user_message

    def test_to_dict_includes_kind_specific_fields(self) -> None:
        err = RateLimitError(
            "429", retry_after=12, limit_info=RateLimitInfo(limit=50, remaining=0, reset=1700000000)
        )
        data = err.to_dict()
        assert data["name"] == "RateLimitError"
        assert data["code"] == "E003"
        assert data["category"] == ErrorCategory.RATE_LIMIT.value
        assert data["retry_after"] == 12
        assert data["limit_info"] == {"limit": 50, "remaining": 0, "reset": 1700000000}

    def test_timeout_to_dict(self) -> None:
        data = APITimeoutError("slow", timeout_seconds=10).to_dict()
        assert data["timeout_seconds"] == 10
        assert data["is_retryable"] is True

    def test_invalid_request_keeps_validation_errors(self) -> None:
        err = InvalidRequestError("bad", validation_errors={"prompt": ["too long"]})
        assert err.to_dict()["validation_errors"] == {"prompt": ["too long"]}

    def test_circuit_open_error_carries_retry_after(self) -> None:
        err = CircuitOpenError("open", breaker="svc", retry_after=12.5)
        assert err.breaker == "svc"
        assert err.retry_after == 12.5


class TestParseErrorResponse:
    def test_api_error_passes_through(self) -> None:
        original = ServerError("boom")
        assert parse_error_response(original) is original

    @pytest.mark.parametrize("status", [401, 403])
    def test_auth_statuses(self, status: int) -> None:
        err = parse_error_response(status_code=status)
        assert isinstance(err, AuthenticationError)
        assert err.status_code == status

    def test_429_reads_headers(self) -> None:
        err = parse_error_response(
            status_code=429,
            headers={
                "Retry-After": "30",
                "X-RateLimit-Limit": "50",
                "X-RateLimit-Remaining": "0",
                "X-RateLimit-Reset": "1700000000",
            },
        )
        assert isinstance(err, RateLimitError)
        assert err.retry_after == 30.0
        assert err.limit_info == RateLimitInfo(limit=50, remaining=0, reset=1700000000)

    def test_429_defaults_retry_after(self) -> None:
        err = parse_error_response(status_code=429)
        assert isinstance(err, RateLimitError)
        assert err.retry_after == 60.0

    def test_other_4xx_is_invalid_request(self) -> None:
        err = parse_error_response(
            status_code=422,
            body={"error": {"message": "prompt too long", "details": {"prompt": ["max 100"]}}},
        )
        assert isinstance(err, InvalidRequestError)
        assert err.message == "prompt too long"
        assert err.validation_errors == {"prompt": ["max 100"]}

    def test_5xx_is_server_error(self) -> None:
        err = parse_error_response(status_code=502)
        assert isinstance(err, ServerError)
        assert err.is_retryable

    def test_timeout_exception(self) -> None:
        assert isinstance(parse_error_response(TimeoutError("deadline")), APITimeoutError)

    def test_asyncio_timeout_without_message(self) -> None:
        err = parse_error_response(asyncio.TimeoutError())
        assert isinstance(err, APITimeoutError)
        assert err.message == "Request timed out"
        assert counts_as_breaker_failure(err)

    def test_timeout_message(self) -> None:
        assert isinstance(parse_error_response(RuntimeError("request timed out")), APITimeoutError)

    def test_connection_error(self) -> None:
        assert isinstance(parse_error_response(ConnectionRefusedError("refused")), NetworkError)

    def test_network_message(self) -> None:
        assert isinstance(parse_error_response(RuntimeError("network unreachable")), NetworkError)

    def test_unclassified_is_unknown(self) -> None:
        err = parse_error_response(ValueError("weird"))
        assert isinstance(err, UnknownError)
        assert err.message == "weird"


class TestBreakerAccounting:
    def test_retryable_errors_count(self) -> None:
        assert counts_as_breaker_failure(ServerError("x"))
        assert counts_as_breaker_failure(NetworkError("x"))
        assert counts_as_breaker_failure(APITimeoutError("x"))

    def test_client_errors_do_not_count(self) -> None:
        assert not counts_as_breaker_failure(AuthenticationError("x"))
        assert not counts_as_breaker_failure(InvalidRequestError("x"))
        assert not counts_as_breaker_failure(UnknownError("x"))

    def test_non_api_errors_do_not_count(self) -> None:
        assert not counts_as_breaker_failure(ValueError("x"))
