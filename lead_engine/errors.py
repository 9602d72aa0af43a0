"""
Error taxonomy shared by the registry client, the sync jobs and the dispatcher.

- upstream-transient: rate limit, timeout, 5xx. Retry once, then skip the unit of work.
- upstream-permanent: malformed payload or missing field. Drop the single record.
- configuration: missing credentials. Fail the whole job before it starts.
- connectivity: the upstream could not be reached at all for the whole run.

Duplicate engagement signals are not errors and have no exception type.
"""


class LeadEngineError(Exception):
    """Base exception carrying a coarse error kind for job summaries."""

    kind = "internal"

    def __init__(self, message: str, recoverable: bool = False):
        super().__init__(message)
        self.recoverable = recoverable


class UpstreamTransientError(LeadEngineError):
    kind = "upstream_transient"

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message, recoverable=True)
        self.status_code = status_code


class UpstreamPermanentError(LeadEngineError):
    kind = "upstream_permanent"


class ConfigurationError(LeadEngineError):
    kind = "configuration"


class ConnectivityError(LeadEngineError):
    kind = "connectivity"
