"""Tests for content-addressed media storage."""
import hashlib
import io
import os

import pytest
from PIL import Image

from ganache.assets.errors import InvalidImageError, StorageError, TooLargeError
from ganache.assets.services import (
    VARIANT_CONTENT,
    VARIANT_ORIGINAL,
    VARIANT_THUMB,
    MediaManager,
    PillowVariantGenerator,
)
from ganache.assets.services.hashing import HashingWriter
from ganache.assets.services.media import probe_image, resolve_extension
from ganache.assets.services.variants import WEBP_MAX_DIMENSION

SHA = "ab" + "cd" + "e" * 60


def _truncated_png() -> bytes:
    """A PNG whose header parses but whose pixel data is cut short."""
    buf = io.BytesIO()
    Image.frombytes("RGB", (200, 200), os.urandom(200 * 200 * 3)).save(buf, format="PNG")
    return buf.getvalue()[:200]


def _leftover_temp_files(root) -> list[str]:
    found = []
    for dirpath, _dirs, files in os.walk(root):
        found.extend(os.path.join(dirpath, f) for f in files if f.startswith(("upload-", ".")))
    return found


class TestPathForVariant:
    def test_layout(self, media: MediaManager, media_root):
        assert media.path_for_variant(SHA, VARIANT_ORIGINAL, ".JPG") == os.path.join(
            str(media_root), "original", "ab", "cd", SHA + ".jpg"
        )

    def test_derived_variants_use_fixed_extension(self, media: MediaManager, media_root):
        for kind in (VARIANT_CONTENT, VARIANT_THUMB):
            path = media.path_for_variant(SHA, kind, ".png")
            assert path == os.path.join(str(media_root), kind, "ab", "cd", SHA + ".webp")

    def test_extension_without_dot(self, media: MediaManager):
        assert media.path_for_variant(SHA, VARIANT_ORIGINAL, "png").endswith(SHA + ".png")

    @pytest.mark.parametrize(
        "sha,kind",
        [("xyz", VARIANT_ORIGINAL), ("A" * 64, VARIANT_ORIGINAL), (SHA, "poster")],
        ids=["short", "uppercase", "unknown_kind"],
    )
    def test_rejects_bad_input(self, media: MediaManager, sha, kind):
        with pytest.raises(ValueError):
            media.path_for_variant(sha, kind)


class TestSave:
    def test_commits_original_and_variants(self, media: MediaManager, make_png, media_root):
        data = make_png(10, 10)
        result = media.save(io.BytesIO(data), "Photo.PNG", max_bytes=len(data), max_pixels=100)

        assert result.sha256 == hashlib.sha256(data).hexdigest()
        assert result.size_bytes == len(data)
        assert (result.width, result.height) == (10, 10)
        assert result.mime == "image/png"
        assert result.extension == ".png"

        original = media.path_for_variant(result.sha256, VARIANT_ORIGINAL, ".png")
        with open(original, "rb") as f:
            assert f.read() == data
        for kind in (VARIANT_CONTENT, VARIANT_THUMB):
            with Image.open(media.path_for_variant(result.sha256, kind)) as img:
                assert img.format == "WEBP"
                assert img.size == (10, 10)
        assert _leftover_temp_files(media_root) == []

    def test_accepts_iterable_of_chunks(self, media: MediaManager, make_png):
        data = make_png()
        chunks = [data[i : i + 7] for i in range(0, len(data), 7)]
        result = media.save(chunks, "x.png", max_bytes=len(data), max_pixels=100)
        assert result.sha256 == hashlib.sha256(data).hexdigest()

    def test_one_byte_over_limit(self, media: MediaManager, make_png, media_root):
        data = make_png()
        with pytest.raises(TooLargeError):
            media.save(io.BytesIO(data), "x.png", max_bytes=len(data) - 1, max_pixels=100)
        assert _leftover_temp_files(media_root) == []
        assert not os.path.exists(os.path.join(str(media_root), "original"))

    def test_pixel_limit_boundary(self, media: MediaManager, make_png, media_root):
        exact = make_png(10, 10)
        media.save(io.BytesIO(exact), "a.png", max_bytes=len(exact), max_pixels=100)

        over = make_png(11, 10)
        with pytest.raises(InvalidImageError):
            media.save(io.BytesIO(over), "b.png", max_bytes=len(over), max_pixels=109)
        assert _leftover_temp_files(media_root) == []
        assert not os.path.exists(
            media.path_for_variant(hashlib.sha256(over).hexdigest(), VARIANT_ORIGINAL, ".png")
        )

    def test_rejects_non_image(self, media: MediaManager, media_root):
        with pytest.raises(InvalidImageError):
            media.save(io.BytesIO(b"not an image at all"), "x.png", max_bytes=1024, max_pixels=100)
        assert _leftover_temp_files(media_root) == []

    def test_rejects_unaccepted_format(self, media: MediaManager):
        buf = io.BytesIO()
        Image.new("RGB", (4, 4)).save(buf, format="BMP")
        with pytest.raises(InvalidImageError):
            media.save(io.BytesIO(buf.getvalue()), "x.bmp", max_bytes=10_000, max_pixels=100)

    def test_identical_content_is_idempotent(self, media: MediaManager, make_png):
        data = make_png()
        first = media.save(io.BytesIO(data), "a.png", max_bytes=len(data), max_pixels=100)
        thumb = media.path_for_variant(first.sha256, VARIANT_THUMB)
        mtime = os.stat(thumb).st_mtime_ns

        second = media.save(io.BytesIO(data), "b.png", max_bytes=len(data), max_pixels=100)
        assert second.sha256 == first.sha256
        assert os.stat(thumb).st_mtime_ns == mtime

    def test_extension_from_mime_when_filename_has_none(self, media: MediaManager, make_png):
        data = make_png()
        result = media.save(io.BytesIO(data), "upload", max_bytes=len(data), max_pixels=100)
        assert result.extension == ".png"
        assert os.path.exists(media.path_for_variant(result.sha256, VARIANT_ORIGINAL, ".png"))

    def test_copy_generator_copies_bytes(self, copy_media: MediaManager, make_png):
        data = make_png()
        result = copy_media.save(io.BytesIO(data), "a.png", max_bytes=len(data), max_pixels=100)
        with open(copy_media.path_for_variant(result.sha256, VARIANT_CONTENT), "rb") as f:
            assert f.read() == data

    def test_downscales_wide_images(self, media_root, make_png):
        media = MediaManager(
            str(media_root),
            variant_generator=PillowVariantGenerator(content_max_width=40, thumb_max_width=20),
        )
        data = make_png(80, 40)
        result = media.save(io.BytesIO(data), "wide.png", max_bytes=len(data), max_pixels=10_000)
        with Image.open(media.path_for_variant(result.sha256, VARIANT_CONTENT)) as img:
            assert img.size == (40, 20)
        with Image.open(media.path_for_variant(result.sha256, VARIANT_THUMB)) as img:
            assert img.size == (20, 10)

    def test_variant_failure_keeps_original(self, media_root, make_png):
        class FailingGenerator:
            def generate(self, src_path, dest_path, kind):
                raise OSError("disk full")

        media = MediaManager(str(media_root), variant_generator=FailingGenerator())
        data = make_png()
        with pytest.raises(StorageError):
            media.save(io.BytesIO(data), "a.png", max_bytes=len(data), max_pixels=100)

        sha = hashlib.sha256(data).hexdigest()
        with open(media.path_for_variant(sha, VARIANT_ORIGINAL, ".png"), "rb") as f:
            assert f.read() == data
        assert not os.path.exists(media.path_for_variant(sha, VARIANT_THUMB))

    def test_tall_image_fits_webp_limits(self, media: MediaManager, make_png):
        data = make_png(10, 20000)
        result = media.save(io.BytesIO(data), "tall.png", max_bytes=len(data), max_pixels=200_000)

        assert (result.width, result.height) == (10, 20000)
        for kind in (VARIANT_CONTENT, VARIANT_THUMB):
            with Image.open(media.path_for_variant(result.sha256, kind)) as img:
                assert img.format == "WEBP"
                assert img.height <= WEBP_MAX_DIMENSION
                assert img.width <= 10

    def test_truncated_image_is_invalid_and_keeps_original(self, media: MediaManager, media_root):
        data = _truncated_png()
        with pytest.raises(InvalidImageError):
            media.save(io.BytesIO(data), "cut.png", max_bytes=len(data), max_pixels=200 * 200)

        sha = hashlib.sha256(data).hexdigest()
        with open(media.path_for_variant(sha, VARIANT_ORIGINAL, ".png"), "rb") as f:
            assert f.read() == data
        assert media.locate_variant(sha, VARIANT_CONTENT) is None
        assert _leftover_temp_files(media_root) == []

    def test_pillow_pixel_ceiling_follows_max_pixels(self, media: MediaManager, make_png, monkeypatch):
        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 20)
        data = make_png(10, 10)
        result = media.save(io.BytesIO(data), "a.png", max_bytes=len(data), max_pixels=100)
        assert (result.width, result.height) == (10, 10)
        assert Image.MAX_IMAGE_PIXELS == 100


class TestStagedUpload:
    def test_abort_discards_temp_file(self, media: MediaManager, media_root):
        with pytest.raises(RuntimeError):
            with media.open_upload("a.png", max_bytes=100) as upload:
                upload.write(b"partial")
                temp_path = upload.temp_path
                assert os.path.exists(temp_path)
                raise RuntimeError("client went away")
        assert not os.path.exists(temp_path)
        assert _leftover_temp_files(media_root) == []

    def test_exact_limit_accepted(self, media: MediaManager):
        with media.open_upload("a.png", max_bytes=10) as upload:
            upload.write(b"12345")
            upload.write(b"67890")
            assert upload.size == 10
            with pytest.raises(TooLargeError):
                upload.write(b"1")


class TestLocateVariant:
    def test_locates_original_by_filename_or_scan(self, media: MediaManager, make_png):
        data = make_png()
        result = media.save(io.BytesIO(data), "noext", max_bytes=len(data), max_pixels=100)

        by_mime = media.locate_variant(result.sha256, VARIANT_ORIGINAL, "noext", "image/png")
        by_scan = media.locate_variant(result.sha256, VARIANT_ORIGINAL, "other.jpg", None)
        assert by_mime == by_scan
        assert by_mime.endswith(result.sha256 + ".png")
        assert media.content_type_for(VARIANT_ORIGINAL, by_mime) == "image/png"

    def test_missing_variant(self, media: MediaManager):
        assert media.locate_variant(SHA, VARIANT_THUMB) is None
        assert media.locate_variant(SHA, VARIANT_ORIGINAL, "a.png") is None
        assert media.content_type_for(VARIANT_THUMB, "whatever") == "image/webp"


class TestCheckWritable:
    def test_writable_root(self, media: MediaManager, media_root):
        media.check_writable()
        media.check_writable()
        assert [n for n in os.listdir(str(media_root)) if n.startswith(".writetest")] == []

    def test_unwritable_root(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_bytes(b"x")
        media = MediaManager(str(blocker / "root"))
        with pytest.raises(StorageError):
            media.check_writable()


class TestHashing:
    def test_hashing_writer(self):
        sink = io.BytesIO()
        writer = HashingWriter(sink)
        writer.write(b"hello ")
        writer.write(b"world")
        assert writer.size == 11
        assert writer.hexdigest() == hashlib.sha256(b"hello world").hexdigest()
        assert sink.getvalue() == b"hello world"


def test_probe_and_resolve_extension(tmp_path, make_png):
    path = tmp_path / "img"
    path.write_bytes(make_png(3, 7))
    probe = probe_image(str(path))
    assert (probe.format, probe.mime, probe.width, probe.height) == ("PNG", "image/png", 3, 7)
    assert resolve_extension("x.JPEG", probe.mime) == ".jpeg"
    assert resolve_extension(None, "image/png") == ".png"
    assert resolve_extension(None, None, "GIF") == ".gif"
