"""Shared pytest fixtures for imgtransform tests."""

import io
import itertools
import random
import shutil
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from imgtransform.api.main import create_app
from imgtransform.core.config import TransformConfig

# Every call to the fake memory snapshot grows by this many bytes.
FAKE_MEMORY_STEP = 256


def _png_bytes(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def _noise_image(size: tuple[int, int], seed: int = 0) -> Image.Image:
    """Create an RGB image of deterministic noise (compresses poorly)."""
    rng = random.Random(seed)
    return Image.frombytes("RGB", size, rng.randbytes(size[0] * size[1] * 3))


@pytest.fixture
def anyio_backend() -> str:
    """Run ``@pytest.mark.anyio`` tests on asyncio only."""
    return "asyncio"


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def public_dir(temp_dir: Path) -> Path:
    """Create a public root populated with sample images.

    Layout::

        public/
            images/
                sample.png     64x48 RGB gradient
                photo.jpg      40x30 RGB JPEG
                pic.tif        sample.png as uncompressed TIFF
                pic.gif        sample.png as a palette GIF
                pic.bmp        sample.png as BMP
                palette.png    32x32 palette image with transparency
                noise.png      256x256 RGB noise (many encoded chunks)
                corrupt.png    not an image
                truncated.png  first half of noise.png
        secret.txt             outside of public/
    """
    root = temp_dir / "public"
    images = root / "images"
    images.mkdir(parents=True)

    gradient = Image.new("RGB", (64, 48))
    gradient.putdata([(x * 4, y * 5, 128) for y in range(48) for x in range(64)])
    gradient.save(images / "sample.png", format="PNG")

    Image.new("RGB", (40, 30), color=(200, 30, 30)).save(images / "photo.jpg", format="JPEG")

    gradient.save(images / "pic.tif", format="TIFF")
    gradient.convert("P", palette=Image.Palette.ADAPTIVE).save(images / "pic.gif", format="GIF")
    gradient.save(images / "pic.bmp", format="BMP")

    palette = Image.new("P", (32, 32), color=1)
    palette.putpalette([0, 0, 0, 255, 255, 0] + [0] * 762)
    palette.save(images / "palette.png", format="PNG", transparency=0)

    noise = _png_bytes(_noise_image((256, 256)))
    (images / "noise.png").write_bytes(noise)
    (images / "truncated.png").write_bytes(noise[: len(noise) // 2])

    (images / "corrupt.png").write_bytes(b"this is definitely not an image")

    (temp_dir / "secret.txt").write_text("top secret")

    return root


@pytest.fixture
def test_config(public_dir: Path) -> TransformConfig:
    """Create a test configuration rooted at the sample public directory.

    Returns:
        TransformConfig instance for testing
    """
    return TransformConfig(
        _env_file=None,
        public_dir=str(public_dir),
        stream_chunk_size=1024,
        stream_queue_size=2,
    )


@pytest.fixture
def fake_memory_snapshot() -> Callable[[], int]:
    """Memory snapshot that grows by FAKE_MEMORY_STEP on every call."""
    counter = itertools.count(start=1_000_000, step=FAKE_MEMORY_STEP)
    return lambda: next(counter)


@pytest.fixture
def test_client(test_config: TransformConfig, fake_memory_snapshot) -> TestClient:
    """FastAPI TestClient backed by the sample public directory.

    Returns:
        TestClient for the application
    """
    app = create_app(test_config, memory_snapshot=fake_memory_snapshot)
    return TestClient(app)


@pytest.fixture
def image_bytes(public_dir: Path) -> Callable[[str], bytes]:
    """Read a sample file from the public root by logical path."""

    def _read(src: str) -> bytes:
        return (public_dir / src.lstrip("/")).read_bytes()

    return _read

