"""Exception taxonomy for webhook processing."""


class ChapterBotError(Exception):
    """Base class for errors raised by the webhook pipeline."""


class AuthenticationError(ChapterBotError):
    """Rejects the whole delivery; the router answers with ``status_code`` and ``detail``."""

    status_code = 403
    detail = "Forbidden"


class TenantNotFound(AuthenticationError):
    status_code = 404
    detail = "Tenant not found"

    def __init__(self, destination: str):
        super().__init__(f"No tenant configured for bot {destination}")
        self.destination = destination


class InvalidSignature(AuthenticationError):
    status_code = 403
    detail = "Invalid signature"

    def __init__(self, tenant_id: str):
        super().__init__(f"Signature mismatch for tenant {tenant_id}")
        self.tenant_id = tenant_id


class PayloadValidationError(ChapterBotError):
    """Postback or event content that cannot be interpreted; the event is skipped."""


class SecurityViolation(ChapterBotError):
    """An actor tried to act outside the tenant or identity they were issued.

    The message is for server logs only; callers get a generic denial.
    """

    def __init__(self, reason: str, **details):
        super().__init__(reason)
        self.reason = reason
        self.details = details


class ToolExecutionError(ChapterBotError):
    """Raised inside a tool; converted to a "no data" tool result by the registry."""
