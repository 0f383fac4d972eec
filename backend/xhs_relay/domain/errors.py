from __future__ import annotations

from typing import Any, Optional


class ExtractionError(Exception):
    code = "ExtractionError"

    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.status_code = status_code


class NoUrlFound(ExtractionError):
    code = "NoUrlFound"

    def __init__(self, message: str = "No valid URL found in input"):
        super().__init__(message, status_code=400)


class ResolutionFailed(ExtractionError):
    """Short link could not be followed. The pipeline keeps going with the original URL."""

    code = "ResolutionFailed"

    def __init__(self, message: str):
        super().__init__(message, status_code=502)


class FetchFailed(ExtractionError):
    code = "FetchFailed"

    def __init__(self, message: str, http_status: Optional[int] = None):
        super().__init__(message, status_code=502)
        self.http_status = http_status


class RelayFailed(ExtractionError):
    code = "RelayFailed"

    def __init__(self, message: str):
        super().__init__(message, status_code=502)


class PostBridgeError(Exception):
    def __init__(self, message: str, status_code: int = 502, details: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details
