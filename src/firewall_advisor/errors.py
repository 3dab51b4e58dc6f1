"""Exception types raised by the analysis pipeline and window backends."""

# Status codes that mean "this credential failed, try the next one".
ROTATING_STATUSES = frozenset({401, 403, 429})

AUTH_STATUSES = frozenset({401, 403})


class AnalysisError(Exception):
    """Base class for analysis failures surfaced to the caller."""


class NoCredentialError(AnalysisError):
    """Raised when no credential is configured."""

    def __init__(self) -> None:
        super().__init__("No API key configured. Add a key to enable analysis.")


class InvalidResponseEnvelope(AnalysisError):
    """The provider answered 200 but the body is not the documented shape."""


class ProviderNetworkError(AnalysisError):
    """The request never produced an HTTP response (DNS, TLS, timeout...)."""


class ProviderHTTPError(AnalysisError):
    """A provider answered with a non-200 status.

    Attributes:
        status_code: The HTTP status code.
        body: The raw response body.
    """

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"HTTP {status_code}: {body}")
        self.status_code = status_code
        self.body = body

    @property
    def rotates(self) -> bool:
        """Whether the next credential should be tried after this error."""
        return self.status_code in ROTATING_STATUSES or self.status_code >= 500


def is_auth_failure(exc: BaseException) -> bool:
    """Return True if *exc* means the credentials themselves were rejected."""
    return isinstance(exc, ProviderHTTPError) and exc.status_code in AUTH_STATUSES


class WindowSourceError(Exception):
    """Transient failure while enumerating or reading target windows."""
