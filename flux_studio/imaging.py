"""
Image Utilities
===============

Pillow helpers used around the job protocol: inspecting uploads, deriving an
aspect ratio, checking inpainting masks and stitching fusion inputs into one
image. None of these touch the network.
"""

from __future__ import annotations

import base64
import math
from dataclasses import dataclass
from io import BytesIO

from PIL import Image, UnidentifiedImageError


FUSION_LAYOUTS = ("horizontal", "vertical", "grid")

EXTENSIONS = {"JPEG": "jpg", "PNG": "png", "WEBP": "webp", "GIF": "gif"}


@dataclass(frozen=True)
class ImageInfo:
    width: int
    height: int
    format: str

    @property
    def extension(self) -> str:
        return EXTENSIONS.get(self.format, self.format.lower())


def inspect_image(data: bytes) -> ImageInfo:
    """Decode the header of ``data``. Raises ValueError if it is not an image."""
    try:
        with Image.open(BytesIO(data)) as img:
            img.verify()
            return ImageInfo(width=img.width, height=img.height, format=img.format or "PNG")
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
        raise ValueError(f"Not a decodable image: {e}") from e


def derive_aspect_ratio(width: int, height: int) -> str:
    """Pick the nearest supported aspect ratio for an image of this size.

    >>> derive_aspect_ratio(1024, 768)
    '4:3'
    """
    ratio = width / height
    if ratio >= 1.7:
        return "16:9"
    if ratio >= 1.45:
        return "3:2"
    if ratio > 1.2:
        return "4:3"
    if ratio >= 0.85:
        return "1:1"
    if ratio >= 0.7:
        return "3:4"
    if ratio >= 0.6:
        return "2:3"
    return "9:16"


def to_base64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def check_mask(mask: bytes, image: ImageInfo) -> None:
    """Raise ValueError unless ``mask`` decodes and matches the image size."""
    info = inspect_image(mask)
    if (info.width, info.height) != (image.width, image.height):
        raise ValueError(
            f"Mask is {info.width}x{info.height} but the image is "
            f"{image.width}x{image.height}"
        )


def normalise_mask(mask: bytes) -> bytes:
    """Convert a painted mask to a grayscale PNG: white = regenerate, black = keep.

    Brush masks from the browser arrive as RGBA with the painted strokes
    opaque on a transparent canvas; the alpha channel carries the strokes.
    """
    with Image.open(BytesIO(mask)) as img:
        if img.mode in ("RGBA", "LA") and img.getextrema()[-1][0] < 255:
            gray = img.getchannel("A")
        else:
            gray = img.convert("L")
        gray = gray.point(lambda p: 255 if p > 128 else 0)
        out = BytesIO()
        gray.save(out, format="PNG")
    return out.getvalue()


# ---------------------------------------------------------------------------
# Fusion stitching
# ---------------------------------------------------------------------------

def stitch_images(
    images: list[bytes],
    layout: str = "horizontal",
    border_width: int = 20,
    max_size: int = 1024,
) -> bytes:
    """
    Composite several images into one canvas for a single fusion request.

    Args:
        images:       Encoded images, in display order.
        layout:       "horizontal" (equal heights, side by side), "vertical"
                      (equal widths, stacked) or "grid" (square cells).
        border_width: White gap between neighbouring images, in pixels.
        max_size:     Cap for the shared height, width or grid extent.

    Returns:
        The stitched image, JPEG encoded.
    """
    if layout not in FUSION_LAYOUTS:
        raise ValueError(f"Invalid layout '{layout}'. Must be one of: {FUSION_LAYOUTS}")

    decoded = [Image.open(BytesIO(data)).convert("RGB") for data in images]
    gap = max(0, border_width)

    if layout == "horizontal":
        target_h = min(max_size, max(img.height for img in decoded))
        scaled = [
            img.resize((max(1, round(img.width * target_h / img.height)), target_h), Image.LANCZOS)
            for img in decoded
        ]
        canvas_w = sum(img.width for img in scaled) + gap * (len(scaled) - 1)
        canvas = Image.new("RGB", (canvas_w, target_h), "white")
        x = 0
        for img in scaled:
            canvas.paste(img, (x, 0))
            x += img.width + gap

    elif layout == "vertical":
        target_w = min(max_size, max(img.width for img in decoded))
        scaled = [
            img.resize((target_w, max(1, round(img.height * target_w / img.width))), Image.LANCZOS)
            for img in decoded
        ]
        canvas_h = sum(img.height for img in scaled) + gap * (len(scaled) - 1)
        canvas = Image.new("RGB", (target_w, canvas_h), "white")
        y = 0
        for img in scaled:
            canvas.paste(img, (0, y))
            y += img.height + gap

    else:
        cols = math.ceil(math.sqrt(len(decoded)))
        rows = math.ceil(len(decoded) / cols)
        cell = max_size // max(cols, rows)
        canvas = Image.new(
            "RGB",
            (cols * cell + (cols - 1) * gap, rows * cell + (rows - 1) * gap),
            "white",
        )
        for index, img in enumerate(decoded):
            row, col = divmod(index, cols)
            canvas.paste(
                img.resize((cell, cell), Image.LANCZOS),
                (col * (cell + gap), row * (cell + gap)),
            )

    out = BytesIO()
    canvas.save(out, format="JPEG", quality=92)
    return out.getvalue()
