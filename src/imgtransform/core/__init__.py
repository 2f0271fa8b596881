"""Core request-to-image transformation pipeline.

This package is independent of the HTTP framework:

- **config** - ``TransformConfig`` loaded from ``IMGTRANSFORM_*`` variables.
- **request** - query parameter validation into ``TransformRequest``.
- **source** - confinement of ``src`` to the public root and file access.
- **codec** - Pillow decode / resize / encode primitives.
- **pipeline** - ``BufferedPipeline`` and ``StreamingPipeline``.
- **memory** - ``MemoryProbe`` around each pipeline run.
- **service** - ``transform_image`` tying the above together.
- **errors** - ``InvalidRequest``, ``SourceNotFound``, ``TransformFailure``.
"""

from imgtransform.core.config import TransformConfig, config
from imgtransform.core.errors import (
    InvalidRequest,
    SourceNotFound,
    TransformError,
    TransformFailure,
)
from imgtransform.core.memory import MemoryProbe
from imgtransform.core.pipeline import (
    BufferedPipeline,
    StreamingPipeline,
    TransformPipeline,
    TransformResult,
)
from imgtransform.core.request import TransformRequest, parse_transform_request
from imgtransform.core.source import SourceHandle, SourceResolver

__all__ = [
    "BufferedPipeline",
    "InvalidRequest",
    "MemoryProbe",
    "SourceHandle",
    "SourceNotFound",
    "SourceResolver",
    "StreamingPipeline",
    "TransformConfig",
    "TransformError",
    "TransformFailure",
    "TransformPipeline",
    "TransformRequest",
    "TransformResult",
    "config",
    "parse_transform_request",
]
