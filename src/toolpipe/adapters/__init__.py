"""
Processing adapters for Toolpipe.

Adapters wrap heavyweight engines behind a single async execute() call:
    - ImageAdapter: Pillow-based image operations
    - TranscoderAdapter: ffmpeg-based audio/video processing

AdapterTool exposes an adapter as a registered tool.
"""

from toolpipe.adapters.base import STDIN_BINARY_KEY, Adapter, AdapterInputError
from toolpipe.adapters.image import ImageAdapter, image_manifest, transform_image
from toolpipe.adapters.tool import AdapterTool
from toolpipe.adapters.transcoder import TranscodeError, TranscoderAdapter, transcoder_manifest

__all__ = [
    "STDIN_BINARY_KEY",
    "Adapter",
    "AdapterInputError",
    "AdapterTool",
    "ImageAdapter",
    "TranscodeError",
    "TranscoderAdapter",
    "image_manifest",
    "transcoder_manifest",
    "transform_image",
]
