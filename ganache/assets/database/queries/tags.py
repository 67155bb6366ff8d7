from collections import defaultdict
from typing import Iterable, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.dialects import sqlite
from sqlalchemy.orm import Session

from ganache.assets.database.models import AssetTag, Tag
from ganache.assets.database.queries.common import (
    MAX_BIND_PARAMS,
    calculate_rows_per_statement,
    iter_chunks,
)
from ganache.assets.helpers import escape_like_prefix, normalize_tags


def ensure_tags_exist(session: Session, names: Iterable[str]) -> dict[str, int]:
    """Insert any missing canonical tags and return a name -> id map for all of them."""
    wanted = normalize_tags(list(names))
    if not wanted:
        return {}
    ins = sqlite.insert(Tag).on_conflict_do_nothing(index_elements=[Tag.name])
    for chunk in iter_chunks(wanted, calculate_rows_per_statement(1)):
        session.execute(ins, [{"name": n} for n in chunk])

    ids: dict[str, int] = {}
    for chunk in iter_chunks(wanted, MAX_BIND_PARAMS):
        rows = session.execute(select(Tag.name, Tag.id).where(Tag.name.in_(chunk))).all()
        ids.update({name: tag_id for name, tag_id in rows})
    return ids


def get_asset_tags(session: Session, asset_id: int) -> list[str]:
    return [
        name for (name,) in session.execute(
            select(Tag.name)
            .join(AssetTag, AssetTag.tag_id == Tag.id)
            .where(AssetTag.asset_id == asset_id)
            .order_by(Tag.name.asc())
        ).all()
    ]


def get_tags_for_assets(session: Session, asset_ids: Sequence[int]) -> dict[int, list[str]]:
    """Batched tag lookup for a page of assets; one query per bind-param chunk."""
    tag_map: dict[int, list[str]] = defaultdict(list)
    for chunk in iter_chunks(list(asset_ids), MAX_BIND_PARAMS):
        rows = session.execute(
            select(AssetTag.asset_id, Tag.name)
            .join(Tag, Tag.id == AssetTag.tag_id)
            .where(AssetTag.asset_id.in_(chunk))
            .order_by(Tag.name.asc())
        )
        for aid, tag_name in rows.all():
            tag_map[aid].append(tag_name)
    return tag_map


def set_asset_tags(
    session: Session,
    asset_id: int,
    tags: Sequence[str],
) -> dict:
    """Reconcile the asset's associations so they equal exactly the canonical set of ``tags``."""
    desired = normalize_tags(tags)

    current = {
        name: tag_id
        for name, tag_id in session.execute(
            select(Tag.name, Tag.id)
            .join(AssetTag, AssetTag.tag_id == Tag.id)
            .where(AssetTag.asset_id == asset_id)
        ).all()
    }

    to_add = [t for t in desired if t not in current]
    to_remove = sorted(t for t in current if t not in desired)

    if to_add:
        ids = ensure_tags_exist(session, to_add)
        session.add_all([AssetTag(asset_id=asset_id, tag_id=ids[t]) for t in to_add])
        session.flush()

    if to_remove:
        session.execute(
            delete(AssetTag).where(
                AssetTag.asset_id == asset_id,
                AssetTag.tag_id.in_([current[t] for t in to_remove]),
            )
        )
        session.flush()

    return {"added": to_add, "removed": to_remove, "total": desired}


def list_tag_names(
    session: Session,
    prefix: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[str], int]:
    """Alphabetical canonical tag names, optionally filtered by a literal prefix."""
    q = select(Tag.name)
    total_q = select(func.count()).select_from(Tag)
    if prefix:
        escaped, esc = escape_like_prefix(prefix)
        # SQLite LIKE ignores ASCII case; the substr comparison keeps the match exact.
        conds = (
            Tag.name.like(escaped + "%", escape=esc),
            func.substr(Tag.name, 1, len(prefix)) == prefix,
        )
        q = q.where(*conds)
        total_q = total_q.where(*conds)

    names = [name for (name,) in session.execute(q.order_by(Tag.name.asc()).limit(limit).offset(offset)).all()]
    total = session.execute(total_q).scalar_one()
    return names, int(total or 0)
