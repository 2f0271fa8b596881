"""Source image resolution against the public root directory.

A logical ``src`` value such as ``/photos/cat.png`` is joined to the
configured public root, canonicalised, and confined to that root before any
file is opened.  Anything that cannot be served (missing, a directory,
unreadable, or outside the root) is reported as
:class:`~imgtransform.core.errors.SourceNotFound`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from imgtransform.core.errors import SourceNotFound

logger = logging.getLogger(__name__)


@dataclass
class SourceHandle:
    """An opened source image owned by a single request.

    Exactly one of ``data`` (buffered strategy) or ``stream`` (streaming
    strategy) is set.  :meth:`close` releases whichever one is held.

    Attributes:
        source: The logical source string from the request.
        path: The resolved path inside the public root.
        data: Full file contents, when read eagerly.
        stream: Open binary file object, when streamed.
    """

    source: str
    path: Path
    data: bytes | None = None
    stream: BinaryIO | None = None

    @property
    def closed(self) -> bool:
        if self.stream is not None:
            return self.stream.closed
        return self.data is None

    def close(self) -> None:
        if self.stream is not None:
            self.stream.close()
        self.data = None

    def __enter__(self) -> SourceHandle:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class SourceResolver:
    """Maps logical source paths to files under a fixed root directory."""

    def __init__(self, root: Path) -> None:
        self._root = Path(root).resolve()

    @property
    def root(self) -> Path:
        return self._root

    def resolve(self, source: str) -> Path:
        """Return the canonical path for *source*.

        Args:
            source: Logical path from the ``src`` query parameter.

        Returns:
            Absolute path of an existing regular file inside the root.

        Raises:
            SourceNotFound: If the file is missing, is not a regular file,
                or resolves outside of the root directory.
        """
        # A leading slash would make pathlib discard the root entirely.
        relative = source.lstrip("/\\")
        try:
            full_path = (self._root / relative).resolve()
        except (ValueError, OSError) as e:
            logger.warning(f"Could not resolve source {source!r}: {e}")
            raise SourceNotFound(source) from e

        # Security: never serve anything outside of the public root.
        if not full_path.is_relative_to(self._root):
            logger.warning(f"Path traversal attempt detected: {full_path}")
            raise SourceNotFound(source)

        if not full_path.is_file():
            raise SourceNotFound(source)

        return full_path

    def read_bytes(self, source: str) -> SourceHandle:
        """Resolve *source* and read the whole file into memory."""
        path = self.resolve(source)
        try:
            data = path.read_bytes()
        except OSError as e:
            logger.warning(f"Could not read {path}: {e}")
            raise SourceNotFound(source) from e
        return SourceHandle(source=source, path=path, data=data)

    def open_stream(self, source: str) -> SourceHandle:
        """Resolve *source* and open it for incremental reads."""
        path = self.resolve(source)
        try:
            stream = open(path, "rb")
        except OSError as e:
            logger.warning(f"Could not open {path}: {e}")
            raise SourceNotFound(source) from e
        return SourceHandle(source=source, path=path, stream=stream)
