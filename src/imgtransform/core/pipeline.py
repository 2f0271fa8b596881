"""Buffered and streaming implementations of the transform pipeline.

Both strategies honour the same contract (see :class:`TransformPipeline`):

- **Passthrough** - with no ``format``, ``w`` or ``h`` the source bytes are
  returned verbatim and declared as ``image/png``, whatever they really are.
- **Transform** - otherwise the image is decoded, resized only when both a
  width and a height were given, and re-encoded in the requested format (or
  the source format).  The declared content type follows the requested
  format, not the bytes.

They differ only in how bytes move.

:class:`BufferedPipeline`
    Reads the whole source, transforms it in a worker thread and returns a
    single ``bytes`` body.  Once encoding starts it runs to completion.

:class:`StreamingPipeline`
    Feeds the source in chunks to Pillow's incremental parser.  Only the
    image header is parsed before :meth:`~TransformPipeline.run` returns;
    the rest of decoding, resizing and encoding happens on a producer thread
    that hands encoded chunks to the response through a bounded queue.  A
    slow client therefore stalls the encoder, and a client that goes away
    stops it.

Usage
-----
::

    pipeline = BufferedPipeline(EncoderSettings())
    handle = pipeline.open_source(resolver, request)
    result = await pipeline.run(handle, request)
"""

from __future__ import annotations

import io
import logging
import queue
import threading
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass

import anyio.to_thread
from PIL import ImageFile

from imgtransform.core.codec import (
    CODEC_ERRORS,
    EncoderSettings,
    decode_image,
    encode_image,
    encode_to_bytes,
    resize_image,
    target_format,
    writes_sequentially,
)
from imgtransform.core.errors import TransformFailure
from imgtransform.core.memory import format_memory_usage
from imgtransform.core.request import DEFAULT_MEDIA_TYPE, TransformRequest
from imgtransform.core.source import SourceHandle, SourceResolver

logger = logging.getLogger(__name__)


@dataclass
class TransformResult:
    """Output of a pipeline run.

    Attributes:
        body: Encoded image, either complete or as an async chunk iterator.
        media_type: Declared ``Content-Type``.
        passthrough: Whether the source bytes were returned untouched.
        memory_delta: Signed memory change around the run, in bytes.
        release: Closes the source behind a streamed body.  Safe to call
            more than once, and whether or not the body was ever iterated.
    """

    body: bytes | AsyncIterator[bytes]
    media_type: str
    passthrough: bool = False
    memory_delta: int = 0
    release: Callable[[], None] | None = None

    @property
    def streamed(self) -> bool:
        return not isinstance(self.body, bytes)

    @property
    def memory_usage(self) -> str:
        """``X-Memory-Usage`` header value."""
        return format_memory_usage(self.memory_delta)


class TransformPipeline(ABC):
    """Common interface of the two I/O strategies.

    Attributes
    ----------
    strategy : str
        Short name used in logs ("buffered" or "streaming").
    """

    strategy: str = "base"

    def __init__(self, encoder: EncoderSettings | None = None) -> None:
        self._encoder = encoder or EncoderSettings()

    @abstractmethod
    def open_source(self, resolver: SourceResolver, request: TransformRequest) -> SourceHandle:
        """Acquire the source in the form this strategy consumes.

        Blocking; callers run it in a worker thread.

        Raises:
            SourceNotFound: If the source cannot be resolved or opened.
        """

    @abstractmethod
    async def run(self, handle: SourceHandle, request: TransformRequest) -> TransformResult:
        """Apply the request to the source.

        Raises:
            TransformFailure: If the image cannot be decoded or encoded.
        """


# ---------------------------------------------------------------------------
# Buffered strategy.
# ---------------------------------------------------------------------------


class BufferedPipeline(TransformPipeline):
    """Fully materialises the source and the result in memory."""

    strategy = "buffered"

    def open_source(self, resolver: SourceResolver, request: TransformRequest) -> SourceHandle:
        return resolver.read_bytes(request.source)

    async def run(self, handle: SourceHandle, request: TransformRequest) -> TransformResult:
        data = handle.data
        if data is None:
            raise TransformFailure("source has already been released")

        if request.wants_passthrough:
            return TransformResult(body=data, media_type=DEFAULT_MEDIA_TYPE, passthrough=True)

        body = await anyio.to_thread.run_sync(self._transform, data, request)
        return TransformResult(body=body, media_type=request.media_type)

    def _transform(self, data: bytes, request: TransformRequest) -> bytes:
        try:
            image = decode_image(data)
            pil_format = target_format(request.format, image.format)
            if request.wants_resize:
                image = resize_image(image, request.width, request.height)
            return encode_to_bytes(image, pil_format, self._encoder)
        except CODEC_ERRORS as e:
            raise TransformFailure(e) from e


# ---------------------------------------------------------------------------
# Streaming strategy.
# ---------------------------------------------------------------------------


class _StreamCancelled(Exception):
    """Raised inside the producer thread once the consumer has gone away."""


_DONE = object()


class _ChunkWriter(io.RawIOBase):
    """File-like sink that slices encoder output into queue-sized chunks."""

    def __init__(self, emit, chunk_size: int) -> None:
        super().__init__()
        self._emit = emit
        self._chunk_size = chunk_size
        self._pending = bytearray()

    def writable(self) -> bool:
        return True

    def write(self, b) -> int:
        self._pending += b
        while len(self._pending) >= self._chunk_size:
            self._emit(bytes(self._pending[: self._chunk_size]))
            del self._pending[: self._chunk_size]
        return len(b)

    def drain(self) -> None:
        if self._pending:
            self._emit(bytes(self._pending))
            self._pending.clear()


class _EncodeJob:
    """Producer thread that finishes decoding, resizes and encodes.

    The thread owns the source handle from the moment it starts and closes
    it when it exits, whether it finished, failed or was cancelled.
    """

    def __init__(
        self,
        handle: SourceHandle,
        parser: ImageFile.Parser,
        source_format: str | None,
        request: TransformRequest,
        encoder: EncoderSettings,
        chunk_size: int,
        queue_size: int,
    ) -> None:
        self._handle = handle
        self._parser = parser
        self._source_format = source_format
        self._request = request
        self._encoder = encoder
        self._chunk_size = chunk_size
        self._queue: queue.Queue = queue.Queue(maxsize=queue_size)
        self._cancelled = threading.Event()
        self._thread = threading.Thread(
            target=self._run, name=f"imgtransform-encode:{handle.source}", daemon=True
        )

    def start(self) -> None:
        self._thread.start()

    def cancel(self) -> None:
        self._cancelled.set()

    def next_chunk(self) -> bytes | None:
        """Block until the next encoded chunk is ready.

        Returns:
            The chunk, or ``None`` once the image is fully encoded.

        Raises:
            TransformFailure: If the producer failed.
        """
        item = self._queue.get()
        if item is _DONE:
            return None
        if isinstance(item, BaseException):
            raise TransformFailure(item) from item
        return item

    def _put(self, item) -> None:
        # Poll so that a consumer that stopped reading cannot strand us.
        while True:
            if self._cancelled.is_set():
                raise _StreamCancelled()
            try:
                self._queue.put(item, timeout=0.1)
                return
            except queue.Full:
                continue

    def _run(self) -> None:
        request = self._request
        stream = self._handle.stream
        try:
            while True:
                if self._cancelled.is_set():
                    raise _StreamCancelled()
                chunk = stream.read(self._chunk_size)
                if not chunk:
                    break
                self._parser.feed(chunk)

            image = self._parser.close()
            if request.wants_resize:
                image = resize_image(image, request.width, request.height)

            pil_format = target_format(request.format, self._source_format)
            writer = _ChunkWriter(self._put, self._chunk_size)
            if writes_sequentially(pil_format):
                encode_image(image, pil_format, writer, self._encoder)
            else:
                # The encoder seeks, so encode in memory and slice the result.
                writer.write(encode_to_bytes(image, pil_format, self._encoder))
            writer.drain()
            self._put(_DONE)
        except _StreamCancelled:
            logger.info(f"Stream for {self._handle.source} cancelled by consumer.")
        except Exception as e:
            if self._cancelled.is_set():
                # The source may have been released under us.
                logger.info(f"Stream for {self._handle.source} cancelled by consumer.")
                return
            logger.exception(f"Streaming transform of {self._handle.source} failed.")
            try:
                self._put(e)
                self._put(_DONE)
            except _StreamCancelled:
                pass
        finally:
            self._handle.close()


class StreamingPipeline(TransformPipeline):
    """Moves bytes from file to response without holding either in full.

    Attributes:
        _chunk_size: Bytes per source read and per emitted chunk.
        _queue_size: Encoded chunks allowed to wait for the client.
    """

    strategy = "streaming"

    def __init__(
        self,
        encoder: EncoderSettings | None = None,
        *,
        chunk_size: int = 64 * 1024,
        queue_size: int = 8,
    ) -> None:
        super().__init__(encoder)
        self._chunk_size = chunk_size
        self._queue_size = queue_size

    def open_source(self, resolver: SourceResolver, request: TransformRequest) -> SourceHandle:
        return resolver.open_stream(request.source)

    async def run(self, handle: SourceHandle, request: TransformRequest) -> TransformResult:
        if handle.stream is None:
            raise TransformFailure("source stream is not open")

        if request.wants_passthrough:
            return TransformResult(
                body=self._iter_file(handle),
                media_type=DEFAULT_MEDIA_TYPE,
                passthrough=True,
                release=handle.close,
            )

        parser = await anyio.to_thread.run_sync(self._parse_header, handle)
        return TransformResult(
            body=self._iter_transform(handle, parser, parser.image.format, request),
            media_type=request.media_type,
            release=handle.close,
        )

    def _parse_header(self, handle: SourceHandle) -> ImageFile.Parser:
        """Feed the parser until Pillow has identified the image.

        Raises:
            TransformFailure: If the source ends before a header is found.
        """
        parser = ImageFile.Parser()
        try:
            while parser.image is None:
                chunk = handle.stream.read(self._chunk_size)
                if not chunk:
                    # Raises "cannot parse this image" / "image was incomplete".
                    parser.close()
                    raise OSError("cannot identify image file")
                parser.feed(chunk)
        except CODEC_ERRORS as e:
            raise TransformFailure(e) from e
        return parser

    async def _iter_file(self, handle: SourceHandle) -> AsyncIterator[bytes]:
        try:
            while True:
                chunk = await anyio.to_thread.run_sync(handle.stream.read, self._chunk_size)
                if not chunk:
                    break
                yield chunk
        finally:
            handle.close()

    async def _iter_transform(
        self,
        handle: SourceHandle,
        parser: ImageFile.Parser,
        source_format: str | None,
        request: TransformRequest,
    ) -> AsyncIterator[bytes]:
        job = _EncodeJob(
            handle,
            parser,
            source_format,
            request,
            self._encoder,
            self._chunk_size,
            self._queue_size,
        )
        job.start()
        try:
            while True:
                chunk = await anyio.to_thread.run_sync(job.next_chunk)
                if chunk is None:
                    break
                yield chunk
        finally:
            # Non-blocking: the producer notices on its next read or write.
            job.cancel()
