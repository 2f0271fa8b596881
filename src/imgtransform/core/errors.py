"""Error taxonomy for the transformation pipeline.

Every failure a request can hit is one of three terminal kinds.  Each carries
the HTTP status it maps to and the plain-text message echoed to the caller.
None of them is retried.
"""

from __future__ import annotations


class TransformError(Exception):
    """Base class for failures reported back to the caller.

    Attributes:
        status_code: HTTP status the response builder uses.
        message: Plain-text response body.
    """

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidRequest(TransformError):
    """Query parameters failed validation."""

    status_code = 400


class SourceNotFound(TransformError):
    """The requested source image does not exist or cannot be opened."""

    status_code = 404

    def __init__(self, source: str) -> None:
        super().__init__(f"Image file not found: {source}")
        self.source = source


class TransformFailure(TransformError):
    """Decoding, resizing or encoding the image failed."""

    status_code = 500

    def __init__(self, error: BaseException | str) -> None:
        super().__init__(f"Error processing image: {error}")
        self.error = error
