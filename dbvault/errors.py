"""Error taxonomy shared by the job pipeline, the catalog service and the HTTP layer.

Every error carries the HTTP status it maps to so route handlers can let
them propagate and the registered exception handler renders the response.
"""


class DbVaultError(Exception):
    """Base class for all dbvault errors."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str, **context) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        payload = {"success": False, "error": self.message, "code": self.code}
        if self.context:
            payload["details"] = self.context
        return payload


class ValidationError(DbVaultError):
    """Malformed or missing request input."""

    status_code = 400
    code = "validation_error"


class NotFoundError(DbVaultError):
    status_code = 404
    code = "not_found"


class TenantIsolationError(ValidationError):
    """A storage path outside the requesting database's prefix."""

    code = "invalid_backup_path"


class ConfigurationError(DbVaultError):
    """A required collaborator (storage, platform credentials) is not configured."""

    status_code = 503
    code = "not_configured"


class StorageMutationError(DbVaultError):
    status_code = 500
    code = "storage_error"


class UpstreamProtocolError(DbVaultError):
    """The remote database platform returned an unexpected or failed response.

    The remote message is kept verbatim.
    """

    status_code = 502
    code = "upstream_error"

    def __init__(self, message: str, upstream_status: int | None = None, **context) -> None:
        super().__init__(message, **context)
        self.upstream_status = upstream_status


class RateLimitedError(UpstreamProtocolError):
    status_code = 429
    code = "rate_limited"


class ExportTimeoutError(DbVaultError):
    status_code = 504
    code = "export_timeout"


class IngestTimeoutError(DbVaultError):
    status_code = 504
    code = "ingest_timeout"


class IngestFailedError(UpstreamProtocolError):
    code = "ingest_failed"


class JobInterruptedError(DbVaultError):
    """A running job was cut short by shutdown or a process restart."""

    status_code = 503
    code = "job_interrupted"


class DigestMismatchError(UpstreamProtocolError):
    """Uploaded content digest differs from the one computed locally (strict mode)."""

    code = "digest_mismatch"


def is_rate_limit_error(exc: BaseException) -> bool:
    """True when ``exc`` signals remote throttling (HTTP 429 or a rate-limit message)."""
    if isinstance(exc, RateLimitedError):
        return True
    status = getattr(exc, "upstream_status", None) or getattr(exc, "status_code", None)
    if status == 429:
        return True
    response = getattr(exc, "response", None)
    if response is not None and getattr(response, "status_code", None) == 429:
        return True
    text = str(exc).lower()
    return "429" in text or "rate limit" in text
