from dataclasses import dataclass
from datetime import datetime

from ganache.assets.database.models import Asset

EDITABLE_FIELDS = ("title", "caption", "credit", "source", "usage_notes")


@dataclass(frozen=True)
class AssetData:
    id: int
    title: str | None
    caption: str | None
    credit: str | None
    source: str | None
    usage_notes: str | None
    width: int
    height: int
    size_bytes: int
    mime: str
    original_filename: str | None
    sha256: str
    tag_text: str
    tags: list[str]
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None
    relevance: float | None = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


@dataclass(frozen=True)
class ContentInfo:
    """Binary attributes of an upload, fixed at creation."""
    sha256: str
    size_bytes: int
    mime: str
    width: int
    height: int
    original_filename: str | None = None


@dataclass(frozen=True)
class SaveResult:
    sha256: str
    size_bytes: int
    mime: str
    width: int
    height: int
    extension: str

    def content_info(self, original_filename: str | None = None) -> ContentInfo:
        return ContentInfo(
            sha256=self.sha256,
            size_bytes=self.size_bytes,
            mime=self.mime,
            width=self.width,
            height=self.height,
            original_filename=original_filename,
        )


@dataclass(frozen=True)
class ListAssetsResult:
    items: list[AssetData]
    total: int
    page: int
    page_size: int


@dataclass(frozen=True)
class TagListResult:
    names: list[str]
    total: int
    page: int
    page_size: int


@dataclass(frozen=True)
class UploadResult:
    asset: AssetData
    created: bool


def extract_asset_data(
    asset: Asset,
    tags: list[str],
    relevance: float | None = None,
) -> AssetData:
    return AssetData(
        id=asset.id,
        title=asset.title,
        caption=asset.caption,
        credit=asset.credit,
        source=asset.source,
        usage_notes=asset.usage_notes,
        width=asset.width,
        height=asset.height,
        size_bytes=asset.bytes,
        mime=asset.mime,
        original_filename=asset.original_filename,
        sha256=asset.sha256,
        tag_text=asset.tag_text,
        tags=list(tags),
        created_at=asset.created_at,
        updated_at=asset.updated_at,
        deleted_at=asset.deleted_at,
        relevance=relevance,
    )
