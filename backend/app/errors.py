############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# errors.py: Error taxonomy shared by usage, dispatch and tool layers
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Application exceptions.

Every error carries an HTTP status, a machine-readable code and a message
that is safe to show to the client. The FastAPI exception handler in
``main.py`` renders them as ``{"error": message, "code": code, ...}``.
"""

from typing import Any, Dict, Optional


class ToolGateError(Exception):
    """Base class for errors surfaced to HTTP clients."""

    status_code: int = 500
    code: str = "server_error"

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)
        self.message = message

    def to_payload(self) -> Dict[str, Any]:
        """JSON body for the error response."""
        return {"error": self.message, "code": self.code}


class ValidationError(ToolGateError):
    """Malformed or policy-violating input. Never consumes quota."""

    status_code = 400
    code = "validation_error"


class ContentRejected(ValidationError):
    """Input matched a blacklisted dangerous pattern or word."""

    code = "content_rejected"


class AuthenticationRequired(ToolGateError):
    """The tool requires a logged-in account."""

    status_code = 401
    code = "authentication_required"

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload["requiresLogin"] = True
        return payload


class PermissionDenied(ToolGateError):
    """Authenticated but not allowed (admin surface)."""

    status_code = 403
    code = "permission_denied"


class NotFound(ToolGateError):
    """A requested record does not exist."""

    status_code = 404
    code = "not_found"


class ToolNotFound(NotFound):
    """No active tool with the requested slug."""

    code = "tool_not_found"


class QuotaExceeded(ToolGateError):
    """Daily quota used up; carries the full policy decision."""

    status_code = 429
    code = "quota_exceeded"

    def __init__(self, decision: Any):
        super().__init__(decision.reason or "Usage limit exceeded")
        self.decision = decision

    def to_payload(self) -> Dict[str, Any]:
        payload = self.decision.to_response()
        payload["error"] = self.message
        payload["code"] = self.code
        return payload


class ConfigurationError(ToolGateError):
    """No usable AI model configured. Requires admin intervention."""

    status_code = 500
    code = "configuration_error"


class PersistenceError(ToolGateError):
    """The ledger, settings or AI configuration could not be read or written."""

    status_code = 500
    code = "persistence_error"

    def __init__(self, message: str = "Usage service temporarily unavailable"):
        super().__init__(message)


class ProviderError(ToolGateError):
    """A vendor call failed.

    Only surfaced to the caller once the fallback chain is exhausted. The
    message names the vendor and status but never the credential.
    """

    status_code = 502
    code = "provider_error"
    retryable_statuses = frozenset({408, 409, 429})

    def __init__(
        self,
        message: str,
        vendor: str = "unknown",
        http_status: Optional[int] = None,
        body: Optional[str] = None,
    ):
        super().__init__(message)
        self.vendor = vendor
        self.http_status = http_status
        self.body = body

    @property
    def retryable(self) -> bool:
        """Whether retrying the same model may succeed."""
        if self.http_status is None:
            return True  # connection-level failure
        return self.http_status >= 500 or self.http_status in self.retryable_statuses

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload["vendor"] = self.vendor
        if self.http_status is not None:
            payload["vendorStatus"] = self.http_status
        return payload


class ProviderTimeoutError(ProviderError):
    """A vendor call exceeded the configured per-attempt timeout."""

    status_code = 504
    code = "provider_timeout"

    @property
    def retryable(self) -> bool:
        return True


class ModelUnavailableError(ProviderError):
    """The configured model or its provider is missing or inactive."""

    code = "model_unavailable"

    @property
    def retryable(self) -> bool:
        return False
