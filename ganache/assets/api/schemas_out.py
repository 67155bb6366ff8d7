from datetime import datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from ganache.assets.services.schemas import AssetData


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AssetVariantUrls(_CamelModel):
    original: str
    content: str
    thumb: str


class AssetOut(_CamelModel):
    id: int
    title: str | None = None
    caption: str | None = None
    credit: str | None = None
    source: str | None = None
    usage_notes: str | None = None
    tags: list[str]
    width: int
    height: int
    bytes: int
    mime: str
    original_filename: str | None = None
    sha256: str
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None
    relevance: float | None = None
    variants: AssetVariantUrls


class AssetSearchResponse(_CamelModel):
    items: list[AssetOut]
    page: int
    page_size: int
    total: int


class TagOut(_CamelModel):
    name: str


class TagListResponse(_CamelModel):
    items: list[TagOut]
    page: int
    page_size: int
    total: int


class Health(_CamelModel):
    status: str = "ok"


def asset_out(asset: AssetData) -> AssetOut:
    base = f"/media/{asset.id}"
    return AssetOut(
        id=asset.id,
        title=asset.title,
        caption=asset.caption,
        credit=asset.credit,
        source=asset.source,
        usage_notes=asset.usage_notes,
        tags=asset.tags,
        width=asset.width,
        height=asset.height,
        bytes=asset.size_bytes,
        mime=asset.mime,
        original_filename=asset.original_filename,
        sha256=asset.sha256,
        created_at=asset.created_at,
        updated_at=asset.updated_at,
        deleted_at=asset.deleted_at,
        relevance=asset.relevance,
        variants=AssetVariantUrls(
            original=f"{base}/original",
            content=f"{base}/content",
            thumb=f"{base}/thumb",
        ),
    )


def dump(model: BaseModel) -> dict:
    return model.model_dump(mode="json", by_alias=True)
