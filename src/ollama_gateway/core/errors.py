"""Error taxonomy for the Ollama Gateway.

Every failure the gateway can report derives from :class:`GatewayError`.  Each
class carries the HTTP status it maps to and a short title; the API layer turns
any ``GatewayError`` into a ``{"error": title, "message": message}`` body with a
single exception handler.

========================  ======  ==============================================
Error                     Status  Raised when
========================  ======  ==============================================
ValidationError           400     model or prompt missing, body unreadable
AuthError                 401     API key / admin token missing or unknown
AuthorizationError        403     project inactive, model not assigned
UpstreamUnavailable       502     connect failure, timeout, broken stream
UpstreamError             mirror  engine answered with a non-2xx status
MalformedFrame            --      one NDJSON line could not be parsed
StreamAborted             --      caller went away or the request was cancelled
========================  ======  ==============================================

``MalformedFrame`` and ``StreamAborted`` never reach an HTTP caller: the first
is dropped by the reassembler, the second ends a chat reply's stream task when
the reply is cancelled and is turned into an aborted message by the session.
"""

from __future__ import annotations


class GatewayError(Exception):
    """Base class for all gateway errors.

    Attributes:
        status_code: HTTP status the error maps to.
        title: Short, stable description used as the ``error`` field.
        message: Human-readable detail used as the ``message`` field.
    """

    status_code: int = 500
    title: str = "Internal error"

    def __init__(self, message: str = "", *, title: str | None = None) -> None:
        super().__init__(message or self.title)
        self.message = message or self.title
        if title is not None:
            self.title = title

    def to_dict(self) -> dict:
        """Return the JSON error body for this error."""
        return {"error": self.title, "message": self.message}


class ValidationError(GatewayError):
    """The request is missing required fields or cannot be decoded."""

    status_code = 400
    title = "Invalid request"


class AuthError(GatewayError):
    """The caller could not be identified."""

    status_code = 401
    title = "Invalid API key"


class AuthorizationError(GatewayError):
    """The caller is known but not allowed to perform this request."""

    status_code = 403
    title = "Forbidden"


class UpstreamUnavailable(GatewayError):
    """The generation engine could not be reached or the stream broke."""

    status_code = 502
    title = "Failed to connect to Ollama"


class UpstreamError(GatewayError):
    """The generation engine answered with an error status.

    The gateway mirrors the engine's status and surfaces its raw body.
    """

    title = "Ollama API error"

    def __init__(self, status_code: int, body: str, *, title: str | None = None) -> None:
        super().__init__(body or f"Upstream returned HTTP {status_code}", title=title)
        self.status_code = status_code
        self.body = body


class MalformedFrame(GatewayError):
    """A single NDJSON line could not be parsed into a record."""

    title = "Malformed frame"

    def __init__(self, line: str, reason: str = "") -> None:
        super().__init__(reason or "Unparseable NDJSON line")
        self.line = line


class StreamAborted(GatewayError):
    """A stream was cancelled or its consumer disconnected."""

    title = "Stream aborted"
