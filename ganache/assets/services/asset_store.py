"""
Asset store - transactional ownership of asset metadata, the tag graph and search.

Every write (create, update, delete, tag replacement) runs in one session
and commits once, so a failure leaves either the prior state or the fully
applied one. Duplicate content is resolved by the sha256 unique constraint,
never by application locking.
"""
import logging
from typing import Any, Mapping, Sequence

from sqlalchemy.orm import Session

from ganache.assets.database.models import Asset
from ganache.assets.database.queries import (
    SORT_NEWEST,
    get_asset_by_hash,
    get_asset_by_id,
    get_asset_tags,
    get_tags_for_assets,
    insert_asset,
    list_assets_page,
    list_tag_names,
    set_asset_tags,
    soft_delete_asset,
)
from ganache.assets.database.queries.common import normalize_paging
from ganache.assets.errors import DuplicateAssetError, InvalidUpdateError, NotFoundError
from ganache.assets.helpers import get_utc_now, normalize_tags, tag_text
from ganache.assets.services.schemas import (
    EDITABLE_FIELDS,
    AssetData,
    ContentInfo,
    ListAssetsResult,
    TagListResult,
    extract_asset_data,
)
from ganache.database.db import Database

DEFAULT_PAGE_SIZE = 30
DEFAULT_TAG_PAGE_SIZE = 100
MAX_FIELD_LENGTH = 255

# Fields whose length is bounded; caption and usage notes are free text.
_BOUNDED_FIELDS = ("title", "credit", "source")


class AssetStore:
    def __init__(
        self,
        db: Database,
        default_page_size: int = DEFAULT_PAGE_SIZE,
        default_tag_page_size: int = DEFAULT_TAG_PAGE_SIZE,
        max_field_length: int = MAX_FIELD_LENGTH,
    ):
        self._db = db
        self.default_page_size = default_page_size
        self.default_tag_page_size = default_tag_page_size
        self.max_field_length = max_field_length

    def ping(self) -> None:
        self._db.ping()

    def validate_fields(
        self,
        fields: Mapping[str, Any] | None = None,
        tags: Sequence[str] | None = None,
    ) -> dict[str, str | None]:
        """Check editable metadata and raw tags; returns the fields as a plain dict.

        Raises InvalidUpdateError for unknown keys, non-string values or
        values over the length limit.
        """
        values: dict[str, str | None] = {}
        for key, value in (fields or {}).items():
            if key not in EDITABLE_FIELDS:
                raise InvalidUpdateError(f"unknown field '{key}'")
            if value is not None and not isinstance(value, str):
                raise InvalidUpdateError(f"field '{key}' must be a string or null")
            if key in _BOUNDED_FIELDS and value is not None and len(value) > self.max_field_length:
                raise InvalidUpdateError(
                    f"{key} exceeds maximum length of {self.max_field_length} characters"
                )
            values[key] = value

        if tags is not None:
            if isinstance(tags, str) or not all(isinstance(t, str) for t in tags):
                raise InvalidUpdateError("tags must be a list of strings")
            for t in tags:
                if len(t) > self.max_field_length:
                    raise InvalidUpdateError(
                        f"tag '{t}' exceeds maximum length of {self.max_field_length} characters"
                    )
        return values

    def create(
        self,
        content: ContentInfo,
        fields: Mapping[str, Any] | None = None,
        tags: Sequence[str] = (),
    ) -> AssetData:
        """
        Insert a new asset with its canonical tag set.
        Raises DuplicateAssetError carrying the existing record if the content hash is taken.
        """
        values = self.validate_fields(fields, tags)
        norm = normalize_tags(tags)

        with self._db.create_session() as session:
            asset = insert_asset(
                session,
                sha256=content.sha256,
                width=content.width,
                height=content.height,
                size_bytes=content.size_bytes,
                mime=content.mime,
                original_filename=content.original_filename,
                tag_text=tag_text(norm),
                **values,
            )
            if asset is None:
                existing = get_asset_by_hash(session, sha256=content.sha256)
                if existing is None:
                    raise RuntimeError("Failed to find Asset after insert conflict.")
                detail = _load_detail(session, existing)
                session.rollback()
                logging.info(
                    "Duplicate content %s resolves to asset %s (deleted=%s)",
                    content.sha256, detail.id, detail.is_deleted,
                )
                raise DuplicateAssetError(detail)

            set_asset_tags(session, asset_id=asset.id, tags=norm)
            session.flush()
            session.refresh(asset)
            detail = _load_detail(session, asset)
            session.commit()

        return detail

    def get(self, asset_id: int, include_deleted: bool = False) -> AssetData:
        with self._db.create_session() as session:
            asset = get_asset_by_id(session, asset_id=asset_id, include_deleted=include_deleted)
            if asset is None:
                raise NotFoundError(f"asset {asset_id} not found")
            return _load_detail(session, asset)

    def get_by_hash(self, sha256: str) -> AssetData | None:
        with self._db.create_session() as session:
            asset = get_asset_by_hash(session, sha256=sha256)
            return _load_detail(session, asset) if asset else None

    def update(self, asset_id: int, changes: Mapping[str, Any]) -> AssetData:
        """
        Apply a partial update. Only keys present in ``changes`` are written;
        a None value clears the field. A ``tags`` key replaces the whole tag set.
        updated_at moves only when something actually changed.
        """
        changes = dict(changes)
        tags_present = "tags" in changes
        new_tags = changes.pop("tags", None)
        if tags_present and new_tags is None:
            new_tags = []
        values = self.validate_fields(changes, new_tags if tags_present else None)

        with self._db.create_session() as session:
            asset = get_asset_by_id(session, asset_id=asset_id)
            if asset is None:
                raise NotFoundError(f"asset {asset_id} not found")

            touched = False
            for key, value in values.items():
                if getattr(asset, key) != value:
                    setattr(asset, key, value)
                    touched = True

            if tags_present:
                result = set_asset_tags(session, asset_id=asset_id, tags=new_tags)
                asset.tag_text = tag_text(result["total"])
                if result["added"] or result["removed"]:
                    touched = True

            if touched:
                asset.updated_at = get_utc_now()

            session.flush()
            detail = _load_detail(session, asset)
            session.commit()

        return detail

    def delete(self, asset_id: int) -> None:
        """Soft-delete. Deleting an absent or already deleted asset raises NotFoundError."""
        with self._db.create_session() as session:
            deleted = soft_delete_asset(session, asset_id=asset_id)
            if not deleted:
                raise NotFoundError(f"asset {asset_id} not found")
            session.commit()

    def search(
        self,
        query: str | None = None,
        tags: Sequence[str] | None = None,
        page: int | None = 1,
        page_size: int | None = None,
        sort: str = SORT_NEWEST,
        include_deleted: bool = False,
    ) -> ListAssetsResult:
        page, page_size, offset = normalize_paging(page, page_size, self.default_page_size)
        logging.debug(
            "search query=%r tags=%r page=%s page_size=%s sort=%s include_deleted=%s",
            query, tags, page, page_size, sort, include_deleted,
        )

        with self._db.create_session() as session:
            rows, total = list_assets_page(
                session,
                query=query,
                tags=tags,
                limit=page_size,
                offset=offset,
                sort=sort,
                include_deleted=include_deleted,
            )
            tag_map = get_tags_for_assets(session, [asset.id for asset, _ in rows])
            items = [
                extract_asset_data(asset, tag_map.get(asset.id, []), relevance)
                for asset, relevance in rows
            ]

        return ListAssetsResult(items=items, total=total, page=page, page_size=page_size)

    def list_tags(
        self,
        prefix: str | None = None,
        page: int | None = 1,
        page_size: int | None = None,
    ) -> TagListResult:
        page, page_size, offset = normalize_paging(page, page_size, self.default_tag_page_size)
        with self._db.create_session() as session:
            names, total = list_tag_names(session, prefix=prefix, limit=page_size, offset=offset)
        return TagListResult(names=names, total=total, page=page, page_size=page_size)


def _load_detail(session: Session, asset: Asset) -> AssetData:
    return extract_asset_data(asset, get_asset_tags(session, asset_id=asset.id))
