"""imgtransform - on-demand image resizing and transcoding over HTTP."""

__version__ = "0.1.0"

from imgtransform.core.config import TransformConfig, config

__all__ = [
    "TransformConfig",
    "config",
]
