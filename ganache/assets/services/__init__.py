# Asset services layer
# Business logic that orchestrates database queries and filesystem operations
# Components receive their Database / storage root explicitly

from ganache.assets.services.asset_store import AssetStore
from ganache.assets.services.ingest import (
    ingest_upload,
    register_upload,
)
from ganache.assets.services.media import (
    MediaManager,
    StagedUpload,
)
from ganache.assets.services.schemas import (
    AssetData,
    ContentInfo,
    ListAssetsResult,
    SaveResult,
    TagListResult,
    UploadResult,
)
from ganache.assets.services.variants import (
    VARIANT_CONTENT,
    VARIANT_KINDS,
    VARIANT_ORIGINAL,
    VARIANT_THUMB,
    CopyVariantGenerator,
    PillowVariantGenerator,
)

__all__ = [
    # asset_store.py
    "AssetStore",
    # ingest.py
    "ingest_upload",
    "register_upload",
    # media.py
    "MediaManager",
    "StagedUpload",
    # schemas.py
    "AssetData",
    "ContentInfo",
    "ListAssetsResult",
    "SaveResult",
    "TagListResult",
    "UploadResult",
    # variants.py
    "VARIANT_CONTENT",
    "VARIANT_KINDS",
    "VARIANT_ORIGINAL",
    "VARIANT_THUMB",
    "CopyVariantGenerator",
    "PillowVariantGenerator",
]
