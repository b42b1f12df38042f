"""
Error kinds raised by the proxy services.
Each carries the HTTP status and the `error` label used in JSON responses.
"""
from typing import Any, Dict, Optional


class ProxyError(Exception):
    """Base class for errors surfaced to HTTP callers."""

    status_code = 500
    error = "Internal server error"

    def __init__(self, message: str = "", error: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if error:
            self.error = error

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.error}
        if self.message:
            body["message"] = self.message
        return body


class MissingParameter(ProxyError):
    """A required query parameter was not supplied."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__("", error=message)


class UpstreamUnavailable(ProxyError):
    """Network error, timeout or non-2xx answer from the Invidious instance."""

    error = "Upstream unavailable"


class NoAudioFound(ProxyError):
    status_code = 404
    error = "Audio not found"


class TranscodeFailed(ProxyError):
    """FFmpeg exited non-zero, crashed, or produced no output."""

    error = "Transcode failed"


class NotFound(ProxyError):
    status_code = 404
    error = "Not found"
