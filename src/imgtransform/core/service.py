"""Request orchestration: validate, resolve, transform, measure.

:func:`transform_image` is the single entry point used by both HTTP routes.
It never raises for request-level failures.  Instead it returns a tagged
outcome, either a :class:`~imgtransform.core.pipeline.TransformResult` or
one of the :class:`~imgtransform.core.errors.TransformError` subclasses,
and leaves the mapping to HTTP to
:func:`imgtransform.api.responses.build_response`.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

import anyio.to_thread

from imgtransform.core.errors import TransformError, TransformFailure
from imgtransform.core.memory import MemoryProbe
from imgtransform.core.pipeline import TransformPipeline, TransformResult
from imgtransform.core.request import parse_transform_request
from imgtransform.core.source import SourceResolver

logger = logging.getLogger(__name__)

TransformOutcome = TransformResult | TransformError


async def transform_image(
    params: Mapping[str, str],
    *,
    pipeline: TransformPipeline,
    resolver: SourceResolver,
    probe: MemoryProbe,
) -> TransformOutcome:
    """Run one request through the pipeline.

    The first memory snapshot is taken before the parameters are parsed and
    the second as soon as the pipeline has produced its result.  For the
    streaming strategy that is when the body iterator exists, not when it
    has been drained.

    Args:
        params: Raw query parameters.
        pipeline: Strategy to run (buffered or streaming).
        resolver: Resolver bound to the public root.
        probe: Fresh memory probe for this request.

    Returns:
        The transform result with its memory delta, or the error that
        ended the request.
    """
    try:
        probe.start()
        request = parse_transform_request(params)
        handle = await anyio.to_thread.run_sync(pipeline.open_source, resolver, request)
        try:
            result = await pipeline.run(handle, request)
        except BaseException:
            handle.close()
            raise
        if not result.streamed:
            handle.close()
        result.memory_delta = probe.stop()
    except TransformError as e:
        logger.warning(f"{pipeline.strategy} request failed ({e.status_code}): {e.message}")
        return e
    except Exception as e:
        logger.exception(f"Unexpected error while processing {pipeline.strategy} request.")
        return TransformFailure(e)

    logger.info(
        f"{pipeline.strategy} {request.source} (w={request.width}, h={request.height}, "
        f"format={request.format}, passthrough={result.passthrough}) "
        f"memory={result.memory_usage}"
    )
    return result
