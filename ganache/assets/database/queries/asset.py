import re
from datetime import datetime
from typing import Sequence

import sqlalchemy as sa
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ganache.assets.database.models import Asset, AssetTag, Tag
from ganache.assets.helpers import get_utc_now, normalize_tags

SORT_NEWEST = "newest"
SORT_OLDEST = "oldest"
SORT_RELEVANCE = "relevance"

_ASSET_FTS = sa.table("asset_fts", sa.column("rowid"))
_WORD_RE = re.compile(r"\w+", re.UNICODE)


def build_fulltext_query(text: str) -> str | None:
    """Turn free text into an FTS5 expression with natural-language (any word) semantics.

    Every word is quoted so punctuation in user input never reaches the FTS5 parser.
    Returns None when the text holds no searchable words.
    """
    words = _WORD_RE.findall(text or "")
    if not words:
        return None
    return " OR ".join(f'"{w}"' for w in words)


def _fulltext_subquery(match_query: str) -> sa.sql.Subquery:
    """(asset_id, relevance) for every asset matching; larger relevance is better."""
    fts = sa.literal_column("asset_fts")
    score = sa.func.bm25(fts, type_=sa.Float)
    return (
        select(
            _ASSET_FTS.c.rowid.label("asset_id"),
            (-score).label("relevance"),
        )
        .where(fts.op("MATCH")(match_query))
        .subquery("fts")
    )


def _tag_intersection_subquery(tag_names: Sequence[str]) -> sa.sql.Select:
    """Ids of assets associated with every one of ``tag_names``."""
    return (
        select(AssetTag.asset_id)
        .join(Tag, Tag.id == AssetTag.tag_id)
        .where(Tag.name.in_(tag_names))
        .group_by(AssetTag.asset_id)
        .having(sa.func.count(sa.distinct(Tag.name)) == len(tag_names))
    )


def insert_asset(
    session: Session,
    sha256: str,
    width: int,
    height: int,
    size_bytes: int,
    mime: str,
    original_filename: str | None = None,
    tag_text: str = "",
    **fields,
) -> Asset | None:
    """Insert a new Asset. Returns None if the sha256 uniqueness constraint is violated."""
    now = get_utc_now()
    try:
        with session.begin_nested():
            asset = Asset(
                sha256=sha256,
                width=width,
                height=height,
                bytes=size_bytes,
                mime=mime,
                original_filename=original_filename,
                tag_text=tag_text,
                created_at=now,
                updated_at=now,
                **fields,
            )
            session.add(asset)
            session.flush()
            return asset
    except IntegrityError:
        return None


def get_asset_by_id(
    session: Session,
    asset_id: int,
    include_deleted: bool = False,
) -> Asset | None:
    stmt = select(Asset).where(Asset.id == asset_id)
    if not include_deleted:
        stmt = stmt.where(Asset.deleted_at.is_(None))
    return session.execute(stmt).scalar_one_or_none()


def get_asset_by_hash(session: Session, sha256: str) -> Asset | None:
    """Lookup by content hash; deleted rows still occupy their hash and are returned."""
    return session.execute(
        select(Asset).where(Asset.sha256 == sha256).limit(1)
    ).scalar_one_or_none()


def soft_delete_asset(
    session: Session,
    asset_id: int,
    ts: datetime | None = None,
) -> bool:
    ts = ts or get_utc_now()
    stmt = (
        sa.update(Asset)
        .where(Asset.id == asset_id, Asset.deleted_at.is_(None))
        .values(deleted_at=ts, updated_at=ts)
    )
    return int(session.execute(stmt).rowcount or 0) > 0


def list_assets_page(
    session: Session,
    query: str | None = None,
    tags: Sequence[str] | None = None,
    limit: int = 30,
    offset: int = 0,
    sort: str = SORT_NEWEST,
    include_deleted: bool = False,
) -> tuple[list[tuple[Asset, float | None]], int]:
    """Filtered, sorted page of assets plus the total matching count.

    Predicates compose: soft-delete exclusion, full-text match, tag intersection.
    ``sort=relevance`` without a text query falls back to newest.
    """
    conditions: list[sa.sql.ColumnElement] = []
    if not include_deleted:
        conditions.append(Asset.deleted_at.is_(None))

    tag_names = normalize_tags(tags)
    if tag_names:
        conditions.append(Asset.id.in_(_tag_intersection_subquery(tag_names)))

    fts = None
    query = (query or "").strip()
    if query:
        match_query = build_fulltext_query(query)
        if match_query is None:
            conditions.append(sa.false())
        else:
            fts = _fulltext_subquery(match_query)

    if fts is not None:
        base = select(Asset, fts.c.relevance).join(fts, fts.c.asset_id == Asset.id)
        count_stmt = select(sa.func.count()).select_from(Asset).join(fts, fts.c.asset_id == Asset.id)
    else:
        base = select(Asset)
        count_stmt = select(sa.func.count()).select_from(Asset)

    if conditions:
        base = base.where(*conditions)
        count_stmt = count_stmt.where(*conditions)

    if sort == SORT_RELEVANCE and fts is not None:
        order_by = (fts.c.relevance.desc(), Asset.created_at.desc(), Asset.id.desc())
    elif sort == SORT_OLDEST:
        order_by = (Asset.created_at.asc(), Asset.id.asc())
    else:
        order_by = (Asset.created_at.desc(), Asset.id.desc())

    total = int(session.execute(count_stmt).scalar_one() or 0)
    rows = session.execute(base.order_by(*order_by).limit(limit).offset(offset)).all()

    if fts is not None:
        items = [(asset, float(relevance)) for asset, relevance in rows]
    else:
        items = [(asset, None) for (asset,) in rows]
    return items, total
