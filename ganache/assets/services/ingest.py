import logging
from typing import IO, Any, Iterable, Mapping, Sequence

from ganache.assets.errors import DuplicateAssetError
from ganache.assets.services.asset_store import AssetStore
from ganache.assets.services.media import MediaManager
from ganache.assets.services.schemas import SaveResult, UploadResult


def register_upload(
    store: AssetStore,
    saved: SaveResult,
    original_filename: str | None,
    fields: Mapping[str, Any] | None = None,
    tags: Sequence[str] = (),
) -> UploadResult:
    """Create the catalog row for committed bytes; a duplicate hash yields the existing row."""
    try:
        asset = store.create(saved.content_info(original_filename), fields=fields, tags=tags)
    except DuplicateAssetError as e:
        return UploadResult(asset=e.existing, created=False)

    logging.info("Created asset %s for %s", asset.id, saved.sha256)
    return UploadResult(asset=asset, created=True)


def ingest_upload(
    store: AssetStore,
    media: MediaManager,
    stream: IO[bytes] | Iterable[bytes],
    filename: str | None,
    max_bytes: int,
    max_pixels: int,
    fields: Mapping[str, Any] | None = None,
    tags: Sequence[str] = (),
) -> UploadResult:
    """Validate metadata, store the bytes, then register them in the catalog."""
    store.validate_fields(fields, tags)
    saved = media.save(stream, filename, max_bytes=max_bytes, max_pixels=max_pixels)
    return register_upload(store, saved, filename, fields=fields, tags=tags)
