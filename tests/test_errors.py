"""Tests for the error taxonomy and rate-limit detection."""

from types import SimpleNamespace

import pytest

from dbvault.errors import (
    DbVaultError,
    IngestFailedError,
    NotFoundError,
    RateLimitedError,
    TenantIsolationError,
    UpstreamProtocolError,
    ValidationError,
    is_rate_limit_error,
)


class TestErrorPayload:
    def test_to_dict_includes_context(self):
        err = NotFoundError("Backup not found", path="backups/db-1/1.sql")
        assert err.to_dict() == {
            "success": False,
            "error": "Backup not found",
            "code": "not_found",
            "details": {"path": "backups/db-1/1.sql"},
        }

    def test_tenant_error_is_validation_error(self):
        err = TenantIsolationError("Invalid backup path for this database")
        assert isinstance(err, ValidationError)
        assert err.status_code == 400

    def test_upstream_message_kept_verbatim(self):
        err = IngestFailedError("Import poll error: near \"X\": syntax error")
        assert str(err) == 'Import poll error: near "X": syntax error'
        assert isinstance(err, DbVaultError)


class TestIsRateLimitError:
    @pytest.mark.parametrize(
        "exc",
        [
            RateLimitedError("slow down"),
            UpstreamProtocolError("busy", upstream_status=429),
            RuntimeError("HTTP 429 Too Many Requests"),
            RuntimeError("Rate limit exceeded for account"),
        ],
    )
    def test_detected(self, exc):
        assert is_rate_limit_error(exc)

    def test_response_attribute(self):
        exc = RuntimeError("request failed")
        exc.response = SimpleNamespace(status_code=429)
        assert is_rate_limit_error(exc)

    @pytest.mark.parametrize(
        "exc",
        [
            UpstreamProtocolError("Failed to start export: internal error", upstream_status=500),
            NotFoundError("Backup not found"),
            ValueError("bad value"),
        ],
    )
    def test_not_detected(self, exc):
        assert not is_rate_limit_error(exc)
