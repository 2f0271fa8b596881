"""Configuration management for the image transformation service.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the IMGTRANSFORM_
prefix, allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (IMGTRANSFORM_* prefix)
2. .env file in the project root
3. Default values defined in TransformConfig

Example .env file:
    IMGTRANSFORM_PUBLIC_DIR=public
    IMGTRANSFORM_SERVER_PORT=8000
    IMGTRANSFORM_STREAM_CHUNK_SIZE=65536
    IMGTRANSFORM_WEBP_QUALITY=80

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
The FastAPI application built by :func:`imgtransform.api.main.create_app`
uses it unless another instance is passed explicitly (tests do this).

Encoder Defaults
----------------
``webp_quality`` and ``avif_quality`` default to 80 and 50, the libvips /
sharp defaults, so output sizes line up with sharp-based image services.

Memory Instrumentation
----------------------
Each strategy can force a garbage-collection pass before the "before" memory
snapshot.  The streaming endpoint does so by default, the buffered endpoint
does not.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class TransformConfig(BaseSettings):
    """Main configuration for the image transformation service.

    Attributes
    ----------
    Source Settings:
        public_dir : Path
            Root directory every ``src`` query value is resolved against.
            Requests can never read files outside of it.

    Server Settings:
        server_host : str
            Bind address for uvicorn.
        server_port : int
            Port for uvicorn (1024-65535).
        log_level : Literal["DEBUG", "INFO", "WARNING", "ERROR"]
            Root log level applied by the CLI entry point.

    Streaming Settings:
        stream_chunk_size : int
            Size in bytes of each read from the source file and of each
            encoded chunk handed to the response.
        stream_queue_size : int
            Number of encoded chunks that may wait for the client before
            the encoder blocks.

    Encoder Settings:
        webp_quality : int
            Quality passed to the WebP encoder (1-100).
        avif_quality : int
            Quality passed to the AVIF encoder (1-100).

    Instrumentation Settings:
        gc_before_buffered_snapshot : bool
            Run ``gc.collect()`` before the first snapshot on ``/img``.
        gc_before_streaming_snapshot : bool
            Run ``gc.collect()`` before the first snapshot on ``/img-stream``.

    Examples
    --------
        >>> custom_config = TransformConfig(public_dir="/srv/images", server_port=9000)
        >>> custom_config.public_dir
        PosixPath('/srv/images')
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="IMGTRANSFORM_",
        case_sensitive=False,
    )

    # Source root
    public_dir: Path = Field(
        default=Path("public"),
        description="Root directory that source images are resolved against",
    )

    # Server settings
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address (0.0.0.0 for local network)",
    )
    server_port: int = Field(
        default=8000,
        description="Server port",
        ge=1024,
        le=65535,
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Log level used by the CLI entry point",
    )

    # Streaming
    stream_chunk_size: int = Field(
        default=64 * 1024,
        description="Chunk size in bytes for streamed reads and writes",
        ge=1024,
    )
    stream_queue_size: int = Field(
        default=8,
        description="Encoded chunks buffered ahead of a slow client",
        ge=1,
    )

    # Encoders
    webp_quality: int = Field(default=80, ge=1, le=100)
    avif_quality: int = Field(default=50, ge=1, le=100)

    # Instrumentation
    gc_before_buffered_snapshot: bool = Field(
        default=False,
        description="Collect garbage before the first memory snapshot on /img",
    )
    gc_before_streaming_snapshot: bool = Field(
        default=True,
        description="Collect garbage before the first memory snapshot on /img-stream",
    )

    def __init__(self, **kwargs):
        """Initialize configuration and create the public directory.

        Args:
            **kwargs: Configuration overrides (typically from environment variables)
        """
        super().__init__(**kwargs)

        self.public_dir.mkdir(parents=True, exist_ok=True)


# Global configuration instance
# Loads values from environment variables (IMGTRANSFORM_* prefix) and .env file.
config = TransformConfig()
