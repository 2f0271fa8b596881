"""Mapping from transform outcomes to HTTP responses.

========================  ======  ====================================
Outcome                   Status  Body
========================  ======  ====================================
InvalidRequest            400     validation message
SourceNotFound            404     ``Image file not found: <src>``
TransformFailure          500     ``Error processing image: <error>``
TransformResult (bytes)   200     encoded image
TransformResult (stream)  200     encoded image, chunked
========================  ======  ====================================

Error bodies are plain text.  Successful responses always carry
``X-Memory-Usage``.
"""

from __future__ import annotations

from fastapi.responses import PlainTextResponse, Response, StreamingResponse
from starlette.background import BackgroundTask

from imgtransform.core.errors import TransformError
from imgtransform.core.pipeline import TransformResult
from imgtransform.core.service import TransformOutcome

MEMORY_USAGE_HEADER = "X-Memory-Usage"


def build_response(outcome: TransformOutcome) -> Response:
    """Build the HTTP response for *outcome*.

    Args:
        outcome: Value returned by :func:`~imgtransform.core.service.transform_image`.

    Returns:
        A plain-text error response or the image response.

    Raises:
        TypeError: If *outcome* is neither a result nor a known error.
    """
    if isinstance(outcome, TransformError):
        return PlainTextResponse(outcome.message, status_code=outcome.status_code)

    if isinstance(outcome, TransformResult):
        headers = {MEMORY_USAGE_HEADER: outcome.memory_usage}
        if outcome.streamed:
            # Closes the source after the response, whether or not the body ran.
            background = BackgroundTask(outcome.release) if outcome.release else None
            return StreamingResponse(
                outcome.body,
                media_type=outcome.media_type,
                headers=headers,
                background=background,
            )
        return Response(content=outcome.body, media_type=outcome.media_type, headers=headers)

    raise TypeError(f"Unsupported transform outcome: {outcome!r}")
