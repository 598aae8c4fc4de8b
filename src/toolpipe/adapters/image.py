"""
Image adapter backed by Pillow.

Accepts an ImageMagick-style option string (``-resize 50% -rotate 90``) and
applies the supported operations in order. Unknown options are skipped.

Supported options:
    -resize GEOMETRY     50%, 640x480 (fit), 640x480! (exact), 640x, x480
    -rotate DEGREES      clockwise, canvas expanded
    -flip / -flop        vertical / horizontal mirror
    -quality N           encoder quality for lossy formats
    -strip               drop metadata
    -negate              invert colors
    -grayscale, -colorspace Gray
    -blur RxS            gaussian blur (sigma S)
    -sharpen RxS         unsharp mask
    -trim                crop uniform borders
    -auto-orient         apply the EXIF orientation
"""

import asyncio
import io
import logging
import re
import shlex
from collections.abc import Mapping
from typing import Any

from PIL import Image, ImageChops, ImageFilter, ImageOps

from toolpipe.adapters.base import Adapter
from toolpipe.schema import (
    ArgStyle,
    ExecutionConfig,
    FileAccess,
    ParameterDefinition,
    ParametersSchema,
    ParameterType,
    ToolManifest,
)

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_FORMAT = "png"

# Output format aliases -> Pillow format names
FORMAT_ALIASES = {
    "jpg": "JPEG",
    "jpeg": "JPEG",
    "png": "PNG",
    "gif": "GIF",
    "webp": "WEBP",
    "bmp": "BMP",
    "tif": "TIFF",
    "tiff": "TIFF",
    "ico": "ICO",
}

_GEOMETRY = re.compile(r"^(?P<w>\d+)?(?:x(?P<h>\d+)?)?(?P<flag>[!%<>^]?)$")


def parse_geometry(spec: str, size: tuple[int, int]) -> tuple[int, int]:
    """
    Resolve a resize geometry against the current image size.

    Raises:
        ValueError: If the geometry cannot be parsed
    """
    width, height = size
    spec = spec.strip()

    if spec.endswith("%"):
        scale = float(spec[:-1]) / 100
        return max(1, round(width * scale)), max(1, round(height * scale))

    match = _GEOMETRY.match(spec)
    if match is None or not (match.group("w") or match.group("h")):
        raise ValueError(f"Invalid resize geometry: {spec}")

    target_w = int(match.group("w")) if match.group("w") else None
    target_h = int(match.group("h")) if match.group("h") else None

    if match.group("flag") == "!" and target_w and target_h:
        return target_w, target_h
    if target_w is None:
        return max(1, round(width * target_h / height)), target_h
    if target_h is None:
        return target_w, max(1, round(height * target_w / width))

    scale = min(target_w / width, target_h / height)
    return max(1, round(width * scale)), max(1, round(height * scale))


def _radius_sigma(value: str) -> tuple[float, float]:
    radius, _, sigma = value.partition("x")
    return float(radius or 0), float(sigma or 1)


def _trim(image: Image.Image) -> Image.Image:
    if image.mode == "P":
        image = image.convert("RGBA")
    background = Image.new(image.mode, image.size, image.getpixel((0, 0)))
    bbox = ImageChops.difference(image, background).getbbox()
    return image.crop(bbox) if bbox else image


def apply_operations(image: Image.Image, options: list[str]) -> tuple[Image.Image, int | None, bool]:
    """
    Apply parsed options to an image.

    Returns:
        (image, quality, strip) where quality is None unless -quality was given
    """
    quality = None
    strip = False
    i = 0
    while i < len(options):
        option = options[i]

        def value(default: str) -> str:
            nonlocal i
            if i + 1 < len(options):
                i += 1
                return options[i]
            return default

        if option == "-resize":
            image = image.resize(parse_geometry(value("100%"), image.size), Image.Resampling.LANCZOS)
        elif option == "-rotate":
            image = image.rotate(-float(value("0")), expand=True)
        elif option == "-flip":
            image = ImageOps.flip(image)
        elif option == "-flop":
            image = ImageOps.mirror(image)
        elif option == "-quality":
            quality = int(value("85"))
        elif option == "-strip":
            strip = True
        elif option == "-negate":
            if image.mode not in ("L", "RGB"):
                image = image.convert("RGB")
            image = ImageOps.invert(image)
        elif option == "-grayscale":
            image = ImageOps.grayscale(image)
        elif option == "-colorspace":
            if value("").lower() == "gray":
                image = ImageOps.grayscale(image)
        elif option == "-blur":
            _, sigma = _radius_sigma(value("0x1"))
            image = image.filter(ImageFilter.GaussianBlur(sigma))
        elif option == "-sharpen":
            radius, sigma = _radius_sigma(value("0x1"))
            image = image.filter(ImageFilter.UnsharpMask(radius=radius or sigma, percent=150))
        elif option == "-trim":
            image = _trim(image)
        elif option == "-auto-orient":
            image = ImageOps.exif_transpose(image)
        else:
            logger.debug("Skipping unsupported image option: %s", option)
        i += 1

    return image, quality, strip


def transform_image(data: bytes, command: str, output_format: str = DEFAULT_OUTPUT_FORMAT) -> bytes:
    """
    Decode an image, apply an option string and encode the result.

    Raises:
        ValueError: For unsupported output formats or bad option values
        PIL.UnidentifiedImageError: If the input is not a readable image
    """
    pil_format = FORMAT_ALIASES.get(output_format.lower())
    if pil_format is None:
        raise ValueError(f"Unsupported output format: {output_format}")

    with Image.open(io.BytesIO(data)) as source:
        source.load()
        image, quality, strip = apply_operations(source, shlex.split(command or ""))

        if pil_format == "JPEG" and image.mode not in ("RGB", "L"):
            image = image.convert("RGB")

        save_kwargs: dict[str, Any] = {}
        if quality is not None:
            save_kwargs["quality"] = quality
        if not strip and "exif" in image.info:
            save_kwargs["exif"] = image.info["exif"]

        buffer = io.BytesIO()
        image.save(buffer, format=pil_format, **save_kwargs)
        return buffer.getvalue()


class ImageAdapter(Adapter):
    """
    Image processing with Pillow.

    Pillow ships its own codecs, so the engine binary is accepted and
    ignored; initialization only registers the available plugins.
    """

    name = "image"
    missing_input_message = "No input image provided"

    async def initialize(self, library_binary: bytes) -> Any:
        await asyncio.to_thread(Image.init)
        logger.debug("Pillow %s ready", Image.__version__)
        return Image

    async def process(self, engine: Any, data: bytes, args: Mapping[str, Any]) -> bytes:
        command = args.get("command") or ""
        output_format = args.get("output_format") or DEFAULT_OUTPUT_FORMAT
        return await asyncio.to_thread(transform_image, data, command, output_format)


def image_manifest() -> ToolManifest:
    """Manifest of the image tool."""
    return ToolManifest(
        name="image",
        version="1.0.0",
        description=(
            "Process images: resize, rotate, flip, blur, sharpen, trim and format "
            "conversion. Prefer input_path/output_path to read and write files "
            "directly instead of passing base64 data."
        ),
        category="media",
        parameters=ParametersSchema(
            properties={
                "input_path": ParameterDefinition(
                    type=ParameterType.STRING,
                    description="Path to the input image",
                ),
                "output_path": ParameterDefinition(
                    type=ParameterType.STRING,
                    description="Path to save the output image instead of returning it",
                ),
                "input": ParameterDefinition(
                    type=ParameterType.BINARY,
                    description="Input image data (base64)",
                ),
                "command": ParameterDefinition(
                    type=ParameterType.STRING,
                    description='Image options, e.g. "-resize 50%" or "-rotate 90 -quality 80"',
                ),
                "output_format": ParameterDefinition(
                    type=ParameterType.STRING,
                    description="Output format (png, jpg, gif, webp, bmp, tiff)",
                    default=DEFAULT_OUTPUT_FORMAT,
                ),
            },
            required=["command"],
        ),
        execution=ExecutionConfig(
            arg_style=ArgStyle.POSITIONAL,
            file_access=FileAccess.READWRITE,
            timeout=120,
        ),
    )
