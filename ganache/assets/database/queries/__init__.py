# Re-export public API from query modules
# Pure atomic database queries only - no business logic or orchestration

from ganache.assets.database.queries.asset import (
    SORT_NEWEST,
    SORT_OLDEST,
    SORT_RELEVANCE,
    build_fulltext_query,
    get_asset_by_hash,
    get_asset_by_id,
    insert_asset,
    list_assets_page,
    soft_delete_asset,
)

from ganache.assets.database.queries.tags import (
    ensure_tags_exist,
    get_asset_tags,
    get_tags_for_assets,
    list_tag_names,
    set_asset_tags,
)

__all__ = [
    # asset.py
    "SORT_NEWEST",
    "SORT_OLDEST",
    "SORT_RELEVANCE",
    "build_fulltext_query",
    "get_asset_by_hash",
    "get_asset_by_id",
    "insert_asset",
    "list_assets_page",
    "soft_delete_asset",
    # tags.py
    "ensure_tags_exist",
    "get_asset_tags",
    "get_tags_for_assets",
    "list_tag_names",
    "set_asset_tags",
]
