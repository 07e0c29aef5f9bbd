from typing import Optional


class LeadSignalError(Exception):
    """Base class for all leadsignal domain exceptions.

    Every custom exception in this module inherits from here so that a
    single ``except LeadSignalError`` clause can catch any domain
    error.
    """

    def __init__(self, detail: str = "An error occurred"):
        self.detail = detail
        super().__init__(detail)


class ConfigurationError(LeadSignalError):
    """Raised when an organisation is missing the funnel or business metrics
    needed to value an event (or the service itself is misconfigured).

    Surfaces as HTTP 400 and is never retried.
    """

    def __init__(
        self,
        detail: str = "Organization not fully configured. Missing funnel or business metrics.",
    ):
        super().__init__(detail)


class AuthenticationError(LeadSignalError):
    """Raised when the API key is missing, unknown, or expired (HTTP 401)."""

    def __init__(self, detail: str = "Invalid API key"):
        super().__init__(detail)


class PermissionDeniedError(LeadSignalError):
    """Raised when the API key lacks the scope required by the route (HTTP 403)."""

    def __init__(self, detail: str = "Insufficient permissions"):
        super().__init__(detail)


class ValidationError(LeadSignalError):
    """Raised when an inbound event body is malformed (HTTP 400)."""

    def __init__(self, detail: str = "Invalid event payload"):
        super().__init__(detail)


class DispatchError(LeadSignalError):
    """Base class for outcomes of a destination call that did not succeed.

    ``error_code`` carries the destination's own code (numeric for Meta,
    an enum name for Google Ads) when one could be extracted.
    """

    def __init__(
        self,
        detail: str = "Dispatch failed",
        error_code: Optional[str] = None,
    ):
        self.error_code = error_code
        super().__init__(detail)


class TransientDispatchError(DispatchError):
    """Network failure, timeout, 5xx or any unclassified destination error.

    The worker requeues the job with exponential backoff until the
    attempt limit is reached.
    """


class TerminalDispatchError(DispatchError):
    """The destination declared the event permanently invalid.

    Recorded immediately and never retried.  When ``auth_failure`` is set
    the organisation's integration is additionally flipped to ``ERROR``.
    """

    def __init__(
        self,
        detail: str = "Dispatch permanently rejected",
        error_code: Optional[str] = None,
        auth_failure: bool = False,
    ):
        self.auth_failure = auth_failure
        super().__init__(detail, error_code=error_code)
