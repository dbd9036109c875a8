"""Image preprocessing utilities.

Preprocessing receipt images improves OCR and model performance. The
normaliser turns raw upload bytes into an extraction-ready image with a
fixed sequence of Pillow transforms:

1. apply EXIF orientation (phone photos are often stored rotated)
2. convert to 8-bit grayscale
3. auto-normalise contrast
4. sharpen
5. downscale (never upscale) so the longest edge fits ``max_dimension``
6. re-encode as PNG

The transform is pure: the same input bytes always produce the same
output bytes. Bytes that Pillow cannot decode raise ``ImageDecodeError``.
"""

from __future__ import annotations

from io import BytesIO
from typing import Iterable, Optional, Tuple

from PIL import Image, ImageFilter, ImageOps, UnidentifiedImageError

from tally.core.config import settings
from tally.core.errors import ImageDecodeError
from tally.models.schemas import NormalizedImage, RawImage

CANONICAL_FORMAT = "PNG"
CANONICAL_MIME_TYPE = "image/png"


def _apply_exif_orientation(img: Image.Image) -> Image.Image:  # pragma: no cover - visual correctness
    """Return a new image with EXIF orientation applied if needed."""
    try:
        transposed = ImageOps.exif_transpose(img)
    except Exception:
        return img
    return transposed if transposed is not None else img


def fit_within(width: int, height: int, max_dimension: int) -> Tuple[int, int]:
    """Return the size that fits ``max_dimension`` on the longest edge.

    Images already within bounds are returned unchanged; the aspect ratio
    is preserved and neither edge collapses below one pixel.
    """
    longest = max(width, height)
    if longest <= max_dimension:
        return width, height
    scale = max_dimension / float(longest)
    return max(1, int(round(width * scale))), max(1, int(round(height * scale)))


def validate_raw_image(
    raw: RawImage,
    max_bytes: Optional[int] = None,
    allowed_mime_types: Optional[Iterable[str]] = None,
) -> None:
    """Reject empty, oversize or non-whitelisted input before decoding."""
    limit = settings.MAX_IMAGE_BYTES if max_bytes is None else max_bytes
    allowed = {m.lower() for m in (allowed_mime_types or settings.ALLOWED_MIME_TYPES)}
    if not raw.data:
        raise ImageDecodeError("Image payload is empty")
    if len(raw.data) > limit:
        raise ImageDecodeError(f"Image size {len(raw.data)} bytes exceeds maximum of {limit} bytes")
    if (raw.mime_type or "").lower() not in allowed:
        raise ImageDecodeError(
            f"Unsupported image type {raw.mime_type!r}. Allowed types: {', '.join(sorted(allowed))}"
        )


def normalize_image(
    raw: RawImage,
    max_bytes: Optional[int] = None,
    allowed_mime_types: Optional[Iterable[str]] = None,
    max_dimension: Optional[int] = None,
) -> NormalizedImage:
    """Normalise a receipt photograph for OCR and vision models.

    :param raw: Raw image bytes plus declared MIME type
    :param max_bytes: Upper bound on the payload size (defaults to settings)
    :param allowed_mime_types: Accepted MIME types (defaults to settings)
    :param max_dimension: Maximum size of the longest edge in pixels
    :returns: Grayscale PNG bounded to ``max_dimension``
    :raises ImageDecodeError: if the payload is rejected or cannot be decoded
    """
    validate_raw_image(raw, max_bytes=max_bytes, allowed_mime_types=allowed_mime_types)
    bound = settings.MAX_IMAGE_DIMENSION if max_dimension is None else max_dimension
    try:
        with Image.open(BytesIO(raw.data)) as img:
            img.load()
            img = _apply_exif_orientation(img)
            img = img.convert("L")
            img = ImageOps.autocontrast(img)
            img = img.filter(ImageFilter.SHARPEN)
            new_size = fit_within(img.width, img.height, bound)
            if new_size != img.size:
                img = img.resize(new_size, Image.LANCZOS)
            buf = BytesIO()
            img.save(buf, format=CANONICAL_FORMAT, optimize=False)
            width, height = img.size
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
        raise ImageDecodeError(f"Could not decode image: {exc}") from exc
    return NormalizedImage(data=buf.getvalue(), width=width, height=height, mime_type=CANONICAL_MIME_TYPE)
