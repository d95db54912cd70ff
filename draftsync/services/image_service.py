"""Image compression: bounded downscale and re-encode with Pillow."""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass

from PIL import Image, ImageOps, UnidentifiedImageError

from draftsync.exceptions import CompressionError

logger = logging.getLogger(__name__)

DEFAULT_QUALITY = 0.8
DEFAULT_MAX_WIDTH = 1920
DEFAULT_MAX_HEIGHT = 1080

# Formats Pillow can encode with a lossy quality setting.
_LOSSY_FORMATS = frozenset({"JPEG", "WEBP"})
# Formats whose encoders accept EXIF and ICC profile data.
_METADATA_FORMATS = frozenset({"JPEG", "WEBP", "PNG"})


@dataclass
class CompressionResult:
    """Compressed image bytes plus before/after measurements."""

    data: bytes
    format: str
    original_size: int
    original_width: int
    original_height: int
    width: int
    height: int

    @property
    def compressed_size(self) -> int:
        return len(self.data)


def fit_within(width: int, height: int, max_width: int, max_height: int) -> tuple[int, int]:
    """Scale (width, height) down to fit the bounds, preserving aspect ratio.

    Never upscales.
    """
    if width <= max_width and height <= max_height:
        return width, height
    ratio = min(max_width / width, max_height / height)
    return max(1, round(width * ratio)), max(1, round(height * ratio))


def compress_image(
    data: bytes,
    *,
    quality: float = DEFAULT_QUALITY,
    max_width: int = DEFAULT_MAX_WIDTH,
    max_height: int = DEFAULT_MAX_HEIGHT,
) -> CompressionResult:
    """Downscale an image to the bounds and re-encode it in its source format.

    ``quality`` is a fraction in (0, 1] applied to lossy formats (JPEG, WebP);
    lossless formats are re-encoded with the encoder's optimizer. The EXIF
    orientation is applied to the pixels before the bounds are checked; the
    remaining EXIF tags and the ICC profile are carried over.

    Raises CompressionError if the bytes cannot be decoded or re-encoded, and
    for multi-frame (animated) images, which are never flattened.
    """
    if not 0 < quality <= 1:
        msg = f"quality must be in (0, 1], got {quality}"
        raise ValueError(msg)

    try:
        with Image.open(io.BytesIO(data)) as img:
            if getattr(img, "n_frames", 1) > 1:
                raise CompressionError(
                    f"Animated {img.format} images are stored as-is ({img.n_frames} frames)"
                )
            img.load()
            fmt = img.format or "PNG"
            icc_profile = img.info.get("icc_profile")
            # Bounds apply to the image as displayed, so bake in the EXIF rotation.
            upright = ImageOps.exif_transpose(img)
            exif = upright.getexif()
            original_width, original_height = upright.size
            width, height = fit_within(original_width, original_height, max_width, max_height)
            if (width, height) != upright.size:
                resized = upright.resize((width, height), Image.Resampling.LANCZOS)
            else:
                resized = upright

            save_kwargs: dict[str, object] = {"optimize": True}
            if fmt in _LOSSY_FORMATS:
                save_kwargs["quality"] = max(1, round(quality * 100))
                if fmt == "JPEG" and resized.mode not in ("RGB", "L"):
                    resized = resized.convert("RGB")
            if fmt in _METADATA_FORMATS:
                if exif:
                    save_kwargs["exif"] = exif.tobytes()
                if icc_profile:
                    save_kwargs["icc_profile"] = icc_profile

            out = io.BytesIO()
            resized.save(out, format=fmt, **save_kwargs)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        raise CompressionError(f"Cannot compress image: {exc}") from exc

    result = CompressionResult(
        data=out.getvalue(),
        format=fmt,
        original_size=len(data),
        original_width=original_width,
        original_height=original_height,
        width=width,
        height=height,
    )
    logger.debug(
        "Compressed %s image %dx%d -> %dx%d, %d -> %d bytes",
        fmt,
        original_width,
        original_height,
        width,
        height,
        result.original_size,
        result.compressed_size,
    )
    return result
