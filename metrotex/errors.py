"""Error taxonomy shared by the image and chat relays.

Every error carries the HTTP status it maps to at the API boundary. Soft
failures are internal retry signals for the fallback iterator and are never
surfaced on their own.
"""


class RelayError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRequest(RelayError):
    """Bad prompt or parameters; the caller must fix the request."""
    status_code = 400


class RateLimited(RelayError):
    """Explicit upstream throttling; the caller should back off."""
    status_code = 429


class ProviderFault(RelayError):
    """Generation failed mid-flight; not retried automatically."""
    status_code = 500


class ConfigurationError(RelayError):
    status_code = 500


class UpstreamError(RelayError):
    """The provider answered with something we cannot use."""
    status_code = 502


class ServiceUnavailable(RelayError):
    """No capacity across every fallback candidate; retry later."""
    status_code = 503


class JobTimeout(RelayError):
    """Poll budget exhausted; the caller may resubmit."""
    status_code = 504


class JobCancelled(RelayError):
    # nginx's "client closed request"
    status_code = 499


class SoftFailure(RelayError):
    """No capacity right now for this candidate; try the next one."""
    status_code = 503


class NoWorkerAvailable(SoftFailure):
    pass


class UpstreamUnavailable(SoftFailure):
    """Transport error, timeout or 5xx from the provider."""
    pass


def is_soft_failure(exc: BaseException) -> bool:
    return isinstance(exc, SoftFailure)
