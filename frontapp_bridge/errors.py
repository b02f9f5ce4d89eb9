"""Error taxonomy shared by the webhook pipeline and the Frontapp client.

Boundary errors (signature, freshness, duplicate) carry the HTTP status and
the client-facing message the webhook route answers with.  API errors carry
the upstream status code so the retry engine can classify them.
"""

from __future__ import annotations

from typing import Any


class FrontappBridgeError(Exception):
    """Base class for every error raised by this package."""


# ── Webhook boundary errors ──────────────────────────────────────────


class WebhookRejectedError(FrontappBridgeError):
    """A webhook delivery refused at the HTTP boundary."""

    status_code: int = 400
    public_message: str = "Bad webhook"

    def __init__(self, message: str | None = None, **context: Any):
        self.context = context
        super().__init__(message or self.public_message)


class AuthenticationError(WebhookRejectedError):
    status_code = 401
    public_message = "Authentication failed"


class MissingSignatureError(AuthenticationError):
    public_message = "Missing signature header"


class InvalidSignatureError(AuthenticationError):
    public_message = "Invalid signature"


class WebhookValidationError(WebhookRejectedError):
    """Structurally malformed payload.  Never retried."""

    public_message = "Invalid webhook payload"


class FreshnessError(WebhookRejectedError):
    public_message = "Webhook is too old"


class StaleWebhookError(FreshnessError):
    public_message = "Webhook is too old"


class FutureWebhookError(FreshnessError):
    public_message = "Webhook timestamp is in the future"


class DuplicateWebhookError(WebhookRejectedError):
    status_code = 409
    public_message = "Duplicate webhook"


# ── Outbound API errors ─────────────────────────────────────────────


class FrontappAPIError(FrontappBridgeError):
    """Raised when a Frontapp API call fails."""

    def __init__(self, message: str, status_code: int | None = None, body: Any = None):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class TransientNetworkError(FrontappAPIError):
    """Connection reset, timeout, DNS failure … no response was received."""


class ServerError(FrontappAPIError):
    """Frontapp answered with a 5xx status."""


class RateLimitError(FrontappAPIError):
    """Frontapp answered 429.  ``retry_after`` is in seconds when known."""

    def __init__(
        self,
        message: str,
        status_code: int | None = 429,
        body: Any = None,
        retry_after: float | None = None,
    ):
        self.retry_after = retry_after
        super().__init__(message, status_code=status_code, body=body)


class RetriesExhaustedError(FrontappBridgeError):
    """The retry budget was consumed; ``last_error`` is the final failure."""

    def __init__(self, last_error: BaseException, attempts: int):
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(
            f"Operation failed after {attempts} attempts: {last_error}"
        )

    @property
    def status_code(self) -> int | None:
        return getattr(self.last_error, "status_code", None)
