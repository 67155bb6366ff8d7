"""
Derived variant generation.

A generator turns the committed original into one derived file. The media
manager owns idempotency (skip when the destination exists) and paths;
generators only promise to leave either a complete destination file or
nothing, and never to touch the source.
"""
import logging
import os
from typing import Protocol

from PIL import Image, ImageOps

from ganache.assets.errors import InvalidImageError
from ganache.assets.services.file_utils import (
    commit_file,
    copy_if_missing,
    make_temp_path,
    remove_if_exists,
)

VARIANT_ORIGINAL = "original"
VARIANT_CONTENT = "content"
VARIANT_THUMB = "thumb"
VARIANT_KINDS = (VARIANT_ORIGINAL, VARIANT_CONTENT, VARIANT_THUMB)
DERIVED_VARIANTS = (VARIANT_CONTENT, VARIANT_THUMB)

DERIVED_EXTENSION = ".webp"
DERIVED_MIME = "image/webp"
WEBP_MAX_DIMENSION = 16383


class VariantGenerator(Protocol):
    def generate(self, src_path: str, dest_path: str, kind: str) -> None: ...


class CopyVariantGenerator:
    """Placeholder generator: the derived file is a byte copy of the original."""

    def generate(self, src_path: str, dest_path: str, kind: str) -> None:
        copy_if_missing(src_path, dest_path)


class PillowVariantGenerator:
    """Downscale to a maximum width (never upscale) and encode as WEBP."""

    def __init__(
        self,
        content_max_width: int = 1600,
        thumb_max_width: int = 400,
        quality: int = 80,
    ):
        self.max_widths = {
            VARIANT_CONTENT: content_max_width,
            VARIANT_THUMB: thumb_max_width,
        }
        self.quality = quality

    def generate(self, src_path: str, dest_path: str, kind: str) -> None:
        """Raises InvalidImageError when the source cannot be fully decoded.

        Filesystem errors (opening the source, writing the temp file) propagate as OSError.
        """
        max_width = self.max_widths[kind]
        with open(src_path, "rb") as fh:
            frame = _decode_frame(fh, max_width)

        tmp = make_temp_path(os.path.dirname(dest_path), prefix=f".{kind}-", suffix=DERIVED_EXTENSION)
        try:
            frame.save(tmp, format="WEBP", quality=self.quality)
            commit_file(tmp, dest_path)
            logging.debug("Generated %s variant %s", kind, dest_path)
        finally:
            remove_if_exists(tmp)


def _decode_frame(fh, max_width: int) -> Image.Image:
    """First frame, upright, in an encodable mode and within max_width x WEBP_MAX_DIMENSION."""
    try:
        with Image.open(fh) as img:
            img.seek(0)
            img.load()
            frame = ImageOps.exif_transpose(img)
            if frame.mode not in ("RGB", "RGBA"):
                has_alpha = "A" in frame.getbands() or "transparency" in frame.info
                frame = frame.convert("RGBA" if has_alpha else "RGB")
            # thumbnail() only ever shrinks and keeps the aspect ratio
            frame.thumbnail((max_width, WEBP_MAX_DIMENSION), Image.Resampling.LANCZOS)
    except (OSError, SyntaxError, ValueError, Image.DecompressionBombError) as e:
        raise InvalidImageError(f"image cannot be decoded: {e}") from e
    return frame
