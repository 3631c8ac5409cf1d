"""
Exceptions raised while resolving and proxying audio.
Each kind carries the HTTP status the API answers with.
"""


class MusicProxyError(Exception):
    """Base exception for all application-specific errors."""

    status_code = 500

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"status": "error", "message": self.message}


class InvalidIdentifier(MusicProxyError):
    """Raised when user input does not contain a recognizable playlist or song ID."""

    status_code = 400


class MissingParameter(MusicProxyError):
    """Raised when a required query or body field is absent."""

    status_code = 400


class UpstreamError(MusicProxyError):
    """
    Raised on timeouts, connection failures, non-2xx answers or unreadable
    bodies from a third-party provider.
    """

    status_code = 502


class NoAudioFound(MusicProxyError):
    """
    Raised when a provider answered successfully but without a playable URL,
    usually because the track is licence restricted.
    """

    status_code = 404
