"""
Error taxonomy for server-scout.

Per-item errors (one probe, one queue entry) are caught by the component that
owns the item and recorded in its running counters:

- MalformedResponse: a UDP reply violated the wire format
- QueryTimeout: no UDP reply within the probe budget
- NetworkError: socket/transport failure
- RateLimitExceeded: the profile API rejected a call for quota reasons
  (retried inside the profile client, never seen by callers)
- ExternalAPIError: non-2xx or malformed payload from an HTTP API after retries
- PersistenceError: a storage operation failed after its own retry budget

Only ConfigurationError (and a failed database initialization) may stop the
process.
"""


class ScoutError(Exception):
    """Base class for all server-scout errors."""


class MalformedResponse(ScoutError):
    """A wire-protocol payload could not be decoded."""


class QueryTimeout(ScoutError):
    """A UDP query received no reply within its timeout."""


class NetworkError(ScoutError):
    """Socket or transport failure while talking to a remote host."""


class RateLimitExceeded(ScoutError):
    """The external profile API refused a request because of its quota."""


class ExternalAPIError(ScoutError):
    """An external HTTP API failed or returned an unusable payload."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class PersistenceError(ScoutError):
    """A database operation failed after exhausting its retries."""


class ConfigurationError(ScoutError):
    """Required configuration (usually a credential) is missing."""
