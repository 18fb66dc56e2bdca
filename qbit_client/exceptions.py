"""
Exception hierarchy for qbit-client.
Every error raised by the package derives from QBittorrentError.
"""

BODY_SNIPPET_LENGTH = 200


def _snippet(body: str) -> str:
    body = body.strip()
    if len(body) > BODY_SNIPPET_LENGTH:
        return body[:BODY_SNIPPET_LENGTH] + "..."
    return body


class QBittorrentError(Exception):
    """Base exception for all qbit-client errors."""

    def __init__(self, message: str, details: str | None = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class ConfigurationError(QBittorrentError):
    """Raised when the client is configured with unusable values."""

    pass


class AuthError(QBittorrentError):
    """Raised when the login endpoint answers with anything but HTTP 200."""

    def __init__(self, status_code: int, body: str = "", message: str = "Login failed"):
        super().__init__(
            f"{message} (HTTP {status_code})",
            _snippet(body) or None,
        )
        self.status_code = status_code
        self.body = body


class RequestError(QBittorrentError):
    """Raised when the definitive attempt of a request returns a non-2xx status."""

    def __init__(
        self,
        status_code: int,
        body: str = "",
        method: str | None = None,
        path: str | None = None,
    ):
        target = f"{method} {path} " if method and path else ""
        super().__init__(
            f"{target}failed with HTTP {status_code}",
            _snippet(body) or None,
        )
        self.status_code = status_code
        self.body = body
        self.method = method
        self.path = path


class TransportError(QBittorrentError):
    """Raised when the HTTP transport fails (refused, timed out, bad URL)."""

    pass


class DecodeError(QBittorrentError):
    """Raised when a response body does not match the expected JSON shape."""

    pass
