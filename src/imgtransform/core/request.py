"""Query parameter validation for transform requests.

:func:`parse_transform_request` turns the raw ``src``, ``w``, ``h`` and
``format`` query values into a :class:`TransformRequest`.  It never touches
the filesystem, so an invalid request is rejected before any I/O happens.

Dimension Handling
------------------
``w`` and ``h`` are read as a leading base-10 integer, so ``20.5`` means 20
and ``12px`` means 12.  Only a value with no leading digits is rejected.
Zero and negative values pass validation: zero counts as "unset" further
down the pipeline, and a negative pair reaches the resizer, which rejects
it.  Empty strings are treated as absent, the same as a missing parameter.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Literal

from imgtransform.core.errors import InvalidRequest

OutputFormat = Literal["webp", "avif"]

SUPPORTED_FORMATS: tuple[str, ...] = ("webp", "avif")

# Content type reported whenever no output format was requested.
DEFAULT_MEDIA_TYPE = "image/png"

# Leading base-10 integer; anything after it ("20.5", "12px") is ignored.
_LEADING_INTEGER_RE = re.compile(r"\s*([+-]?\d+)")


@dataclass(frozen=True)
class TransformRequest:
    """Validated, immutable description of one transform request.

    Attributes:
        source: Logical path of the source image, relative to the public root.
        width: Target width in pixels, or ``None``.
        height: Target height in pixels, or ``None``.
        format: Target encoding, or ``None`` to keep the source encoding.
    """

    source: str
    width: int | None = None
    height: int | None = None
    format: OutputFormat | None = None

    @property
    def wants_passthrough(self) -> bool:
        """Whether the source bytes should be returned untouched."""
        return not self.format and not self.width and not self.height

    @property
    def wants_resize(self) -> bool:
        """Resize gate: only a width *and* a height trigger a resize."""
        return bool(self.width and self.height)

    @property
    def media_type(self) -> str:
        """Content type derived from the requested format, not the bytes."""
        if self.format:
            return f"image/{self.format}"
        return DEFAULT_MEDIA_TYPE


def _parse_dimension(raw: str | None, label: str) -> int | None:
    if not raw:
        return None
    match = _LEADING_INTEGER_RE.match(raw)
    if match is None:
        raise InvalidRequest(f"{label} must be unset or a positive number")
    return int(match.group(1), 10)


def parse_transform_request(params: Mapping[str, str]) -> TransformRequest:
    """Validate raw query parameters.

    Args:
        params: Query parameters, typically ``request.query_params``.

    Returns:
        The validated request.

    Raises:
        InvalidRequest: If ``src`` is missing, a dimension is not an
            integer, or ``format`` is not one of the supported encodings.
    """
    source = params.get("src")
    if not source:
        raise InvalidRequest("Source image URL is required")

    width = _parse_dimension(params.get("w"), "Width")
    height = _parse_dimension(params.get("h"), "Height")

    fmt = params.get("format") or None
    if fmt is not None and fmt not in SUPPORTED_FORMATS:
        raise InvalidRequest(f"Format must be one of: {', '.join(SUPPORTED_FORMATS)}")

    return TransformRequest(source=source, width=width, height=height, format=fmt)
