"""Tests for imgtransform.core.pipeline - buffered and streaming strategies.

Tests cover:
- Passthrough byte identity and the fixed ``image/png`` content type.
- The resize gate (both dimensions required).
- Format-driven content types.
- Failure mapping for corrupt and truncated sources.
- Incremental delivery, backpressure-sized chunks and cancellation of the
  streaming producer.
"""

from __future__ import annotations

import io

import anyio
import pytest
from PIL import Image

from imgtransform.core.errors import TransformFailure
from imgtransform.core.pipeline import BufferedPipeline, StreamingPipeline
from imgtransform.core.request import TransformRequest
from imgtransform.core.source import SourceResolver

pytestmark = pytest.mark.anyio


def _open(data: bytes) -> Image.Image:
    image = Image.open(io.BytesIO(data))
    image.load()
    return image


async def _collect(body) -> bytes:
    if isinstance(body, bytes):
        return body
    return b"".join([chunk async for chunk in body])


@pytest.fixture
def resolver(public_dir):
    return SourceResolver(public_dir)


@pytest.fixture(params=["buffered", "streaming"])
def pipeline(request):
    """Both strategies must honour the same contract."""
    if request.param == "buffered":
        return BufferedPipeline()
    return StreamingPipeline(chunk_size=1024, queue_size=2)


async def _run(pipeline, resolver, **kwargs):
    request = TransformRequest(**kwargs)
    handle = pipeline.open_source(resolver, request)
    result = await pipeline.run(handle, request)
    return result, await _collect(result.body)


class TestSharedContract:
    """Behaviour common to both strategies."""

    async def test_passthrough_is_byte_identical(self, pipeline, resolver, image_bytes):
        result, body = await _run(pipeline, resolver, source="/images/photo.jpg")
        assert body == image_bytes("/images/photo.jpg")
        assert result.passthrough is True

    async def test_passthrough_declares_png(self, pipeline, resolver):
        """The declared type is fixed, even for a JPEG source."""
        result, _ = await _run(pipeline, resolver, source="/images/photo.jpg")
        assert result.media_type == "image/png"

    async def test_format_conversion(self, pipeline, resolver):
        result, body = await _run(pipeline, resolver, source="/images/sample.png", format="webp")
        assert result.media_type == "image/webp"
        decoded = _open(body)
        assert decoded.format == "WEBP"
        assert decoded.size == (64, 48)

    async def test_resize_with_both_dimensions(self, pipeline, resolver):
        _, body = await _run(pipeline, resolver, source="/images/sample.png", width=20, height=35)
        assert _open(body).size == (20, 35)

    @pytest.mark.parametrize("dims", [{"width": 20}, {"height": 20}])
    async def test_single_dimension_does_not_resize(self, pipeline, resolver, dims):
        result, body = await _run(pipeline, resolver, source="/images/sample.png", **dims)
        assert result.passthrough is False
        assert _open(body).size == (64, 48)

    async def test_source_format_kept_but_declared_png(self, pipeline, resolver):
        """Without a format the bytes stay JPEG while the type says PNG."""
        result, body = await _run(pipeline, resolver, source="/images/photo.jpg", width=10, height=10)
        assert result.media_type == "image/png"
        assert _open(body).format == "JPEG"

    async def test_corrupt_source_fails(self, pipeline, resolver):
        with pytest.raises(TransformFailure, match="Error processing image"):
            await _run(pipeline, resolver, source="/images/corrupt.png", format="webp")

    async def test_negative_dimensions_fail(self, pipeline, resolver):
        with pytest.raises(TransformFailure, match="positive"):
            await _run(pipeline, resolver, source="/images/sample.png", width=-5, height=-5)

    async def test_deterministic_output(self, pipeline, resolver):
        _, first = await _run(pipeline, resolver, source="/images/sample.png", format="webp", width=30, height=30)
        _, second = await _run(pipeline, resolver, source="/images/sample.png", format="webp", width=30, height=30)
        assert first == second


class TestBufferedPipeline:
    async def test_body_is_bytes(self, resolver):
        result, _ = await _run(BufferedPipeline(), resolver, source="/images/sample.png", format="webp")
        assert result.streamed is False

    async def test_truncated_source_fails(self, resolver):
        with pytest.raises(TransformFailure):
            await _run(BufferedPipeline(), resolver, source="/images/truncated.png", width=10, height=10)

    async def test_released_handle_rejected(self, resolver):
        pipeline = BufferedPipeline()
        request = TransformRequest(source="/images/sample.png", format="webp")
        handle = pipeline.open_source(resolver, request)
        handle.close()
        with pytest.raises(TransformFailure):
            await pipeline.run(handle, request)


class TestStreamingPipeline:
    async def test_body_is_streamed_in_chunks(self, resolver):
        pipeline = StreamingPipeline(chunk_size=1024, queue_size=2)
        request = TransformRequest(source="/images/noise.png", width=200, height=200)
        handle = pipeline.open_source(resolver, request)
        result = await pipeline.run(handle, request)
        assert result.streamed is True

        chunks = [chunk async for chunk in result.body]
        assert len(chunks) > 1
        assert all(len(chunk) <= 1024 for chunk in chunks)
        assert _open(b"".join(chunks)).size == (200, 200)
        assert handle.closed

    async def test_passthrough_closes_source(self, resolver):
        pipeline = StreamingPipeline(chunk_size=1024)
        request = TransformRequest(source="/images/noise.png")
        handle = pipeline.open_source(resolver, request)
        result = await pipeline.run(handle, request)
        await _collect(result.body)
        assert handle.closed

    async def test_truncated_source_fails_mid_stream(self, resolver):
        """The header parses, so the failure surfaces while iterating."""
        pipeline = StreamingPipeline(chunk_size=1024)
        request = TransformRequest(source="/images/truncated.png", width=10, height=10)
        handle = pipeline.open_source(resolver, request)
        result = await pipeline.run(handle, request)
        with pytest.raises(TransformFailure):
            await _collect(result.body)

    async def test_closing_body_stops_producer(self, resolver):
        """A consumer that goes away cancels the encode and frees the source."""
        pipeline = StreamingPipeline(chunk_size=1024, queue_size=1)
        request = TransformRequest(source="/images/noise.png", width=250, height=250)
        handle = pipeline.open_source(resolver, request)
        result = await pipeline.run(handle, request)

        first = await result.body.__anext__()
        assert first
        await result.body.aclose()

        with anyio.fail_after(5):
            while not handle.closed:
                await anyio.sleep(0.05)
        assert handle.closed

    async def test_tiff_output_is_buffered_before_chunking(self, resolver):
        """The TIFF encoder seeks, so the streamed body still decodes."""
        pipeline = StreamingPipeline(chunk_size=1024, queue_size=2)
        request = TransformRequest(source="/images/pic.tif", width=64, height=48)
        handle = pipeline.open_source(resolver, request)
        result = await pipeline.run(handle, request)

        chunks = [chunk async for chunk in result.body]
        assert len(chunks) > 1
        assert all(len(chunk) <= 1024 for chunk in chunks)
        decoded = _open(b"".join(chunks))
        assert decoded.format == "TIFF"
        assert decoded.size == (64, 48)

    @pytest.mark.parametrize(
        "kwargs",
        [{}, {"width": 10, "height": 10}],
        ids=["passthrough", "transform"],
    )
    async def test_release_closes_unread_source(self, resolver, kwargs):
        """A body that is never iterated still lets the caller free the source."""
        pipeline = StreamingPipeline(chunk_size=1024)
        request = TransformRequest(source="/images/sample.png", **kwargs)
        handle = pipeline.open_source(resolver, request)
        result = await pipeline.run(handle, request)
        assert not handle.closed

        result.release()
        assert handle.closed
        # Releasing again is harmless.
        result.release()

    async def test_buffered_result_has_no_release(self, resolver):
        pipeline = BufferedPipeline()
        request = TransformRequest(source="/images/sample.png", format="webp")
        handle = pipeline.open_source(resolver, request)
        result = await pipeline.run(handle, request)
        assert result.release is None
