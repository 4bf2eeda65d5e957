"""Tests for the error taxonomy and exception classification."""

import asyncio

import httpx
import pytest

from pairline.core.errors import (
    AppException,
    ErrorCode,
    MediaAccessDeniedError,
    MediaNotSupportedError,
    create_error,
    error_from_status,
    parse_error,
)


def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "http://test/api")
    return httpx.HTTPStatusError("boom", request=request, response=httpx.Response(status, request=request))


class TestTaxonomy:
    def test_every_code_has_an_entry(self):
        for code in ErrorCode:
            error = create_error(code)
            assert error.code is code
            assert error.user_message

    def test_media_errors_not_recoverable(self):
        assert create_error(ErrorCode.MEDIA_ACCESS_DENIED).recoverable is False
        assert create_error(ErrorCode.MEDIA_NOT_SUPPORTED).recoverable is False

    def test_details_extend_internal_message_only(self):
        error = create_error(ErrorCode.SERVER_ERROR, "IntegrityError")
        assert error.message == "Server error: IntegrityError"
        assert "IntegrityError" not in error.user_message

    def test_overrides(self):
        error = create_error(ErrorCode.WEBRTC_FAILED, recoverable=False, action="Find New")
        assert error.recoverable is False
        assert error.action == "Find New"

    def test_to_dict_is_camel_case(self):
        data = create_error(ErrorCode.RATE_LIMITED).to_dict()
        assert data["code"] == "RATE_LIMITED"
        assert "userMessage" in data


class TestParseError:
    @pytest.mark.parametrize(
        "exc, code",
        [
            (asyncio.TimeoutError(), ErrorCode.CONNECTION_TIMEOUT),
            (httpx.ConnectTimeout("slow"), ErrorCode.CONNECTION_TIMEOUT),
            (httpx.ConnectError("refused"), ErrorCode.NETWORK_ERROR),
            (ConnectionResetError("reset"), ErrorCode.NETWORK_ERROR),
            (MediaAccessDeniedError("no camera for you"), ErrorCode.MEDIA_ACCESS_DENIED),
            (PermissionError("denied"), ErrorCode.MEDIA_ACCESS_DENIED),
            (MediaNotSupportedError("no device"), ErrorCode.MEDIA_NOT_SUPPORTED),
            (RuntimeError("request timed out"), ErrorCode.CONNECTION_TIMEOUT),
            (RuntimeError("network unreachable"), ErrorCode.NETWORK_ERROR),
            (RuntimeError("something odd"), ErrorCode.UNKNOWN_ERROR),
        ],
    )
    def test_classification(self, exc, code):
        assert parse_error(exc).code is code

    @pytest.mark.parametrize(
        "status, code",
        [
            (429, ErrorCode.RATE_LIMITED),
            (401, ErrorCode.SESSION_EXPIRED),
            (503, ErrorCode.SERVER_ERROR),
            (418, ErrorCode.UNKNOWN_ERROR),
        ],
    )
    def test_http_status(self, status, code):
        assert parse_error(_status_error(status)).code is code
        assert error_from_status(status).code is code

    def test_app_exception_passes_through(self):
        error = create_error(ErrorCode.MATCHMAKING_FAILED)
        exc = AppException(error)
        assert parse_error(exc) is error
        assert exc.status_code == 500
