"""Pillow-backed decode, resize and encode operations.

These are the only functions that touch pixel data.  The pipelines in
:mod:`imgtransform.core.pipeline` decide *whether* to call them; this module
only knows *how*.

Resizing
--------
:func:`resize_image` produces an image of exactly ``width x height``.  The
source is scaled while preserving its aspect ratio until it covers the
target box, then centre-cropped (``ImageOps.fit``).  Lanczos resampling is
used throughout.

Encoding
--------
When no output format is requested the image is re-encoded in the format it
was decoded from, falling back to PNG when Pillow cannot tell.
"""

from __future__ import annotations

import io
from dataclasses import dataclass
from typing import IO

from PIL import Image, ImageOps

# Exceptions Pillow raises for corrupt, truncated, oversized or unsupported
# input.  Pillow reports some malformed files as SyntaxError.
CODEC_ERRORS: tuple[type[BaseException], ...] = (
    OSError,
    ValueError,
    KeyError,
    SyntaxError,
    Image.DecompressionBombError,
)

FALLBACK_FORMAT = "PNG"

# Target encodings that only accept RGB(A) input.
_RGB_ONLY_FORMATS = frozenset({"WEBP", "AVIF"})

# Encoders that only ever write forwards.  Others (TIFF, MPO, ...) call
# ``tell()``/``seek()`` on the output and need a seekable buffer.
SEQUENTIAL_FORMATS = frozenset({"WEBP", "AVIF", "PNG", "JPEG"})


def writes_sequentially(pil_format: str) -> bool:
    """Whether *pil_format* can be encoded straight into a non-seekable sink."""
    return pil_format in SEQUENTIAL_FORMATS


@dataclass(frozen=True)
class EncoderSettings:
    """Per-format encoder options.

    Attributes:
        webp_quality: WebP quality (1-100).
        avif_quality: AVIF quality (1-100).
    """

    webp_quality: int = 80
    avif_quality: int = 50

    def save_params(self, pil_format: str) -> dict:
        """Return keyword arguments for ``Image.save`` in *pil_format*."""
        if pil_format == "WEBP":
            return {"quality": self.webp_quality}
        if pil_format == "AVIF":
            return {"quality": self.avif_quality}
        return {}


def target_format(requested: str | None, source_format: str | None) -> str:
    """Pick the Pillow format name to encode with."""
    if requested:
        return requested.upper()
    return source_format or FALLBACK_FORMAT


def decode_image(data: bytes) -> Image.Image:
    """Decode and fully load an image from memory."""
    image = Image.open(io.BytesIO(data))
    image.load()
    return image


def resize_image(image: Image.Image, width: int, height: int) -> Image.Image:
    """Cover-fit *image* to exactly ``width x height`` pixels.

    Raises:
        ValueError: If either dimension is not positive.
    """
    if width <= 0 or height <= 0:
        raise ValueError(
            f"Expected positive integers for width and height but received {width}x{height}"
        )
    return ImageOps.fit(image, (width, height), method=Image.Resampling.LANCZOS)


def encode_image(
    image: Image.Image,
    pil_format: str,
    fp: IO[bytes],
    settings: EncoderSettings,
) -> None:
    """Write *image* to *fp* in *pil_format*."""
    if pil_format in _RGB_ONLY_FORMATS and image.mode not in ("RGB", "RGBA"):
        image = image.convert("RGBA" if image.has_transparency_data else "RGB")
    image.save(fp, format=pil_format, **settings.save_params(pil_format))


def encode_to_bytes(image: Image.Image, pil_format: str, settings: EncoderSettings) -> bytes:
    """Encode *image* into a new ``bytes`` object."""
    buffer = io.BytesIO()
    encode_image(image, pil_format, buffer, settings)
    return buffer.getvalue()
