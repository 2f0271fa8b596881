"""Process memory instrumentation around the transform pipeline.

The measurement is purely observational: a signed delta between two
snapshots, rendered as ``"<delta> bytes"`` in the ``X-Memory-Usage``
response header.  Negative values are normal when memory is reclaimed while
the request runs.

The snapshot function is injectable so tests can feed deterministic values
instead of depending on the real allocator.
"""

from __future__ import annotations

import gc
import logging
from collections.abc import Callable

import psutil

logger = logging.getLogger(__name__)

MemorySnapshot = Callable[[], int]


def process_memory_snapshot() -> int:
    """Return the resident set size of the current process in bytes."""
    return psutil.Process().memory_info().rss


def format_memory_usage(delta: int) -> str:
    """Render a memory delta as an ``X-Memory-Usage`` header value."""
    return f"{delta} bytes"


class MemoryProbe:
    """Takes the before/after snapshots for a single request.

    Attributes:
        _snapshot: Callable returning the current memory figure in bytes.
        _collect_garbage: Run ``gc.collect()`` before the first snapshot.
        _before: The first snapshot, or ``None`` until :meth:`start` runs.
    """

    def __init__(
        self,
        snapshot: MemorySnapshot = process_memory_snapshot,
        *,
        collect_garbage: bool = False,
    ) -> None:
        self._snapshot = snapshot
        self._collect_garbage = collect_garbage
        self._before: int | None = None

    def start(self) -> None:
        if self._collect_garbage:
            gc.collect()
        self._before = self._snapshot()

    def stop(self) -> int:
        """Take the second snapshot and return ``after - before``.

        Raises:
            RuntimeError: If :meth:`start` was never called.
        """
        if self._before is None:
            raise RuntimeError("MemoryProbe.stop() called before start()")
        delta = self._snapshot() - self._before
        logger.debug(f"Memory delta: {delta} bytes")
        return delta
