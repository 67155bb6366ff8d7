"""
Content-addressed media storage.

Uploads are streamed into a temp file under the storage root while a
SHA-256 digest is computed over the same bytes, validated as a bounded
image from its header, then renamed into

    root/<kind>/<sha[0:2]>/<sha[2:4]>/<sha256><ext>

``original`` keeps the upload's resolved extension; ``content`` and
``thumb`` are always ``.webp``.
"""
import logging
import mimetypes
import os
import re
import warnings
from dataclasses import dataclass
from typing import IO, Iterable

from PIL import Image

from ganache.assets.errors import InvalidImageError, StorageError, TooLargeError
from ganache.assets.helpers import file_extension
from ganache.assets.services.file_utils import (
    commit_file,
    ensure_parent_dir,
    make_temp_path,
    remove_if_exists,
)
from ganache.assets.services.hashing import DEFAULT_CHUNK, HashingWriter
from ganache.assets.services.schemas import SaveResult
from ganache.assets.services.variants import (
    DERIVED_EXTENSION,
    DERIVED_MIME,
    DERIVED_VARIANTS,
    VARIANT_KINDS,
    VARIANT_ORIGINAL,
    PillowVariantGenerator,
    VariantGenerator,
)

ACCEPTED_FORMATS = ("PNG", "JPEG", "GIF", "WEBP")

_SHA256_RE = re.compile(r"^[0-9a-f]{64}$")


@dataclass(frozen=True)
class ImageProbe:
    format: str
    mime: str
    width: int
    height: int


def probe_image(path: str) -> ImageProbe:
    """Identify the image from its leading bytes and read dimensions without decoding pixels."""
    try:
        fh = open(path, "rb")
    except OSError as e:
        raise StorageError(f"failed to reopen upload: {e}") from e
    with fh:
        try:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", Image.DecompressionBombWarning)
                with Image.open(fh, formats=ACCEPTED_FORMATS) as img:
                    width, height = img.size
                    fmt = img.format or ""
        except (OSError, SyntaxError, ValueError, Image.DecompressionBombError) as e:
            raise InvalidImageError(f"invalid image: {e}") from e

    mime = Image.MIME.get(fmt) or mimetypes.guess_type(f"x.{fmt.lower()}", strict=False)[0]
    return ImageProbe(format=fmt, mime=mime or "application/octet-stream", width=width, height=height)


def allow_pixels(max_pixels: int) -> None:
    """Raise Pillow's decompression-bomb ceiling so it never undercuts ``max_pixels``."""
    if Image.MAX_IMAGE_PIXELS is not None and Image.MAX_IMAGE_PIXELS < max_pixels:
        Image.MAX_IMAGE_PIXELS = max_pixels


def resolve_extension(filename: str | None, mime: str | None, fmt: str | None = None) -> str:
    """Filename extension if present, else one derived from the mime type, else from the format."""
    ext = file_extension(filename)
    if not ext and mime:
        ext = mimetypes.guess_extension(mime, strict=False) or ""
    if not ext and fmt:
        ext = "." + fmt.lower()
    return ext


class StagedUpload:
    """One upload in flight: bytes land in a temp file until ``finish`` commits them.

    Leaving the context without a successful ``finish`` (error, cancellation,
    size overflow) removes the temp file; nothing ever appears at a
    content-addressed path before validation passes.
    """

    def __init__(self, manager: "MediaManager", filename: str | None, max_bytes: int):
        self._manager = manager
        self.filename = filename
        self.max_bytes = max_bytes
        self._committed = False
        try:
            self.temp_path = make_temp_path(manager.root, prefix="upload-")
            self._fh = open(self.temp_path, "wb")
        except OSError as e:
            raise StorageError(f"failed to create upload temp file: {e}") from e
        self._writer = HashingWriter(self._fh)

    @property
    def size(self) -> int:
        return self._writer.size

    def write(self, chunk: bytes) -> None:
        if self._writer.size + len(chunk) > self.max_bytes:
            raise TooLargeError(f"upload exceeds {self.max_bytes} bytes")
        try:
            self._writer.write(chunk)
        except OSError as e:
            raise StorageError(f"failed to write upload: {e}") from e

    def finish(self, max_pixels: int) -> SaveResult:
        try:
            self._fh.close()
        except OSError as e:
            raise StorageError(f"failed to flush upload: {e}") from e

        allow_pixels(max_pixels)
        probe = probe_image(self.temp_path)
        if probe.width <= 0 or probe.height <= 0 or probe.width * probe.height > max_pixels:
            raise InvalidImageError(
                f"image dimensions {probe.width}x{probe.height} outside allowed bounds"
            )

        ext = resolve_extension(self.filename, probe.mime, probe.format)
        sha256 = self._writer.hexdigest()
        dest = self._manager.path_for_variant(sha256, VARIANT_ORIGINAL, ext)
        try:
            created = commit_file(self.temp_path, dest)
        except OSError as e:
            raise StorageError(f"failed to move upload into place: {e}") from e
        self._committed = True

        if created:
            logging.info("Stored original %s (%d bytes)", dest, self.size)
        else:
            logging.info("Original for %s already present, keeping existing file", sha256)

        self._manager.generate_variants(sha256, dest)

        return SaveResult(
            sha256=sha256,
            size_bytes=self.size,
            mime=probe.mime,
            width=probe.width,
            height=probe.height,
            extension=ext,
        )

    def discard(self) -> None:
        if self._committed:
            return
        if not self._fh.closed:
            self._fh.close()
        remove_if_exists(self.temp_path)

    def __enter__(self) -> "StagedUpload":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.discard()


class MediaManager:
    """Owns all on-disk bytes, keyed by content hash."""

    def __init__(
        self,
        root: str,
        variant_generator: VariantGenerator | None = None,
        chunk_size: int = DEFAULT_CHUNK,
    ):
        self.root = os.path.abspath(root)
        self.variant_generator = variant_generator or PillowVariantGenerator()
        self.chunk_size = chunk_size

    def path_for_variant(self, sha256: str, kind: str, ext: str = "") -> str:
        if not _SHA256_RE.match(sha256 or ""):
            raise ValueError(f"not a sha256 hex digest: {sha256!r}")
        if kind not in VARIANT_KINDS:
            raise ValueError(f"unknown variant kind: {kind!r}")
        if kind == VARIANT_ORIGINAL:
            if ext and not ext.startswith("."):
                ext = "." + ext
        else:
            ext = DERIVED_EXTENSION
        return os.path.join(self.root, kind, sha256[0:2], sha256[2:4], sha256 + ext.lower())

    def locate_variant(
        self,
        sha256: str,
        kind: str,
        original_filename: str | None = None,
        mime: str | None = None,
    ) -> str | None:
        """Existing file for a variant, or None.

        For originals the extension is re-derived as at upload time; if that
        misses (extension came from the decoded format) the shard directory
        is scanned for the digest.
        """
        path = self.path_for_variant(sha256, kind, resolve_extension(original_filename, mime))
        if os.path.isfile(path):
            return path
        if kind != VARIANT_ORIGINAL:
            return None
        shard = os.path.dirname(path)
        try:
            names = sorted(os.listdir(shard))
        except FileNotFoundError:
            return None
        for name in names:
            if os.path.splitext(name)[0] == sha256:
                return os.path.join(shard, name)
        return None

    def content_type_for(self, kind: str, path: str, fallback: str | None = None) -> str:
        if kind != VARIANT_ORIGINAL:
            return DERIVED_MIME
        return (
            mimetypes.guess_type(path, strict=False)[0]
            or fallback
            or "application/octet-stream"
        )

    def open_upload(self, filename: str | None, max_bytes: int) -> StagedUpload:
        return StagedUpload(self, filename, max_bytes)

    def save(
        self,
        stream: IO[bytes] | Iterable[bytes],
        filename: str | None,
        max_bytes: int,
        max_pixels: int,
    ) -> SaveResult:
        """Stream, hash, validate and commit an upload, then derive its variants.

        Raises TooLargeError, InvalidImageError (client) or StorageError (filesystem).
        """
        with self.open_upload(filename, max_bytes) as upload:
            for chunk in _iter_stream(stream, self.chunk_size):
                upload.write(chunk)
            return upload.finish(max_pixels)

    def generate_variants(self, sha256: str, original_path: str) -> None:
        """Produce each derived variant once per hash; existing destinations are skipped."""
        for kind in DERIVED_VARIANTS:
            dest = self.path_for_variant(sha256, kind)
            if os.path.exists(dest):
                logging.debug("Variant %s for %s exists, skipping", kind, sha256)
                continue
            try:
                ensure_parent_dir(dest)
                self.variant_generator.generate(original_path, dest, kind)
            except InvalidImageError:
                logging.warning("Original for %s cannot be decoded, no %s variant", sha256, kind)
                raise
            except Exception as e:
                logging.exception("Failed to generate %s variant for %s", kind, sha256)
                raise StorageError(f"failed to generate {kind} variant: {e}") from e

    def check_writable(self) -> None:
        """Create and delete a uniquely named marker file under the root; raises StorageError on failure."""
        try:
            test_path = make_temp_path(self.root, prefix=".writetest-")
            with open(test_path, "wb") as f:
                f.write(b"ok")
            os.remove(test_path)
        except OSError as e:
            raise StorageError(f"storage root {self.root} not writable: {e}") from e


def _iter_stream(stream: IO[bytes] | Iterable[bytes], chunk_size: int) -> Iterable[bytes]:
    if hasattr(stream, "read"):
        while True:
            chunk = stream.read(chunk_size)
            if not chunk:
                return
            yield chunk
    else:
        for chunk in stream:
            if chunk:
                yield chunk
