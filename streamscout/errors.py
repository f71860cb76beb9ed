"""
Error taxonomy shared by the discovery pipeline and the stream relay.

Each error carries the HTTP status the web layer answers with. Only the
message ever reaches the client; tracebacks stay in the server log.
"""


class ScoutError(Exception):
    status_code = 500

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class ValidationError(ScoutError):
    """Missing or unparseable request parameter."""

    status_code = 400


class ForbiddenError(ScoutError):
    """Target host rejected by the allowlist."""

    status_code = 403


class UpstreamFetchError(ScoutError):
    """Target page or upstream resource could not be retrieved."""

    status_code = 500


class RenderTimeoutError(UpstreamFetchError):
    """Headless browser session exceeded its time bound."""
