"""Webhook error taxonomy.

Only faults that change the HTTP status are exceptions. Benign outcomes
(duplicate delivery, unknown sender, nothing to confirm) are plain results.
"""


class WebhookError(Exception):
    """Base exception for webhook intake errors."""

    status_code = 500
    code = "internal_error"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.code
        super().__init__(self.detail)


class InvalidPayload(WebhookError):
    """Body could not be parsed at all."""

    status_code = 400
    code = "invalid_payload"


class Unauthorized(WebhookError):
    """Missing or bad token/signature, or replayed timestamp."""

    status_code = 401
    code = "unauthorized"


class RateLimited(WebhookError):
    """Source IP exceeded its window."""

    status_code = 429
    code = "rate_limited"

    def __init__(self, detail: str | None = None, retry_after: int | None = None):
        super().__init__(detail)
        self.retry_after = retry_after


class InternalFault(WebhookError):
    """Unexpected failure while processing an accepted event."""

    status_code = 500
    code = "internal_error"


class DownstreamSendFailure(Exception):
    """Provider send API rejected or could not be reached."""

    def __init__(self, message: str, *, status_code: int | None = None, retryable: bool = True):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable
