import logging
import os
from typing import Any

from aiohttp import web
from pydantic import ValidationError

from ganache.assets.api import schemas_in, schemas_out
from ganache.assets.api.schemas_in import UploadError
from ganache.assets.api.upload import parse_multipart_upload
from ganache.assets.errors import AssetError, ClientError, NotFoundError
from ganache.assets.services import (
    VARIANT_KINDS,
    VARIANT_ORIGINAL,
    AssetStore,
    MediaManager,
    register_upload,
)
from ganache.config import Settings

ROUTES = web.RouteTableDef()

STORE_KEY = web.AppKey("asset_store", AssetStore)
MEDIA_KEY = web.AppKey("media_manager", MediaManager)
SETTINGS_KEY = web.AppKey("settings", Settings)

STREAM_CHUNK_SIZE = 64 * 1024
ORIGINAL_CACHE_CONTROL = "public, max-age=86400"
DERIVED_CACHE_CONTROL = "public, max-age=31536000, immutable"
MAX_ASSET_ID = 2**63 - 1


def get_query_dict(request: web.Request) -> dict[str, Any]:
    """
    Gets a dictionary of query parameters from the request.

    'request.query' is a MultiMapping[str], needs to be converted to a dictionary to be validated by Pydantic.
    """
    query_dict = {
        key: request.query.getall(key)
        if len(request.query.getall(key)) > 1
        else request.query.get(key)
        for key in request.query.keys()
    }
    # 'tag[]' is accepted as a synonym for repeated 'tag'
    if "tag[]" in query_dict:
        extra = request.query.getall("tag[]")
        query_dict.pop("tag[]")
        query_dict["tag"] = request.query.getall("tag", []) + extra
    return query_dict


def register_assets_system(
    app: web.Application,
    store: AssetStore,
    media: MediaManager,
    settings: Settings,
) -> None:
    app[STORE_KEY] = store
    app[MEDIA_KEY] = media
    app[SETTINGS_KEY] = settings
    app.add_routes(ROUTES)


def _build_error_response(
    status: int, code: str, message: str, details: dict | None = None
) -> web.Response:
    return web.json_response(
        {"error": {"code": code, "message": message, "details": details or {}}},
        status=status,
    )


def _build_validation_error_response(code: str, ve: ValidationError) -> web.Response:
    return _build_error_response(400, code, "Validation failed.", {"errors": ve.json()})


def _build_asset_error_response(e: AssetError) -> web.Response:
    if isinstance(e, NotFoundError):
        return _build_error_response(404, e.code, str(e))
    if isinstance(e, ClientError):
        return _build_error_response(400, e.code, str(e))
    logging.error("asset operation failed: %s", e)
    return _build_error_response(500, "internal", "Unexpected server error.")


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(value, high))


def _parse_asset_id(request: web.Request) -> int:
    """Raises NotFoundError for ids beyond the signed 64-bit range SQLite stores."""
    asset_id = int(request.match_info["id"])
    if asset_id > MAX_ASSET_ID:
        raise NotFoundError(f"asset {asset_id} not found")
    return asset_id


@ROUTES.get("/healthz")
async def healthz(request: web.Request) -> web.Response:
    return web.json_response(schemas_out.dump(schemas_out.Health()))


@ROUTES.get("/readyz")
async def readyz(request: web.Request) -> web.Response:
    try:
        request.app[STORE_KEY].ping()
    except Exception as e:
        logging.warning("readiness: database unreachable: %s", e)
        return _build_error_response(503, "not_ready", "database unreachable", {"error": str(e)})
    try:
        request.app[MEDIA_KEY].check_writable()
    except Exception as e:
        logging.warning("readiness: storage not writable: %s", e)
        return _build_error_response(503, "not_ready", "storage not writable", {"error": str(e)})
    return web.json_response(schemas_out.dump(schemas_out.Health()))


@ROUTES.get("/api/assets")
async def search_assets_route(request: web.Request) -> web.Response:
    """
    GET request to search assets by text, tag intersection and deletion state.
    """
    try:
        q = schemas_in.SearchAssetsQuery.model_validate(get_query_dict(request))
    except ValidationError as ve:
        return _build_validation_error_response("bad_request", ve)

    settings = request.app[SETTINGS_KEY]
    page = max(q.page, 1)
    page_size = _clamp(
        q.page_size if q.page_size is not None else settings.search_default_page_size,
        1,
        settings.search_max_page_size,
    )

    try:
        result = request.app[STORE_KEY].search(
            query=q.q,
            tags=q.tag,
            page=page,
            page_size=page_size,
            sort=q.sort,
            include_deleted=q.include_deleted,
        )
    except Exception:
        logging.exception("search_assets failed")
        return _build_error_response(500, "internal", "failed to search")

    payload = schemas_out.AssetSearchResponse(
        items=[schemas_out.asset_out(a) for a in result.items],
        page=result.page,
        page_size=result.page_size,
        total=result.total,
    )
    return web.json_response(schemas_out.dump(payload))


@ROUTES.post("/api/assets")
async def upload_asset(request: web.Request) -> web.Response:
    """Multipart/form-data endpoint for asset uploads."""
    settings = request.app[SETTINGS_KEY]
    store = request.app[STORE_KEY]

    try:
        parsed = await parse_multipart_upload(
            request,
            request.app[MEDIA_KEY],
            max_bytes=settings.max_upload_bytes,
            max_pixels=settings.max_pixels,
        )
        store.validate_fields(parsed.fields, parsed.tags)
        result = register_upload(
            store,
            parsed.saved,
            parsed.filename,
            fields=parsed.fields,
            tags=parsed.tags,
        )
    except UploadError as e:
        return _build_error_response(e.status, e.code, e.message)
    except AssetError as e:
        return _build_asset_error_response(e)
    except Exception:
        logging.exception("upload_asset failed")
        return _build_error_response(500, "internal", "failed to persist asset")

    status = 201 if result.created else 409
    return web.json_response(schemas_out.dump(schemas_out.asset_out(result.asset)), status=status)


@ROUTES.get(r"/api/assets/{id:\d+}")
async def get_asset_route(request: web.Request) -> web.Response:
    try:
        asset_id = _parse_asset_id(request)
        asset = request.app[STORE_KEY].get(asset_id)
    except AssetError as e:
        return _build_asset_error_response(e)
    except Exception:
        logging.exception("get_asset failed for asset_id=%s", request.match_info["id"])
        return _build_error_response(500, "internal", "failed to retrieve asset")
    return web.json_response(schemas_out.dump(schemas_out.asset_out(asset)))


@ROUTES.patch(r"/api/assets/{id:\d+}")
async def update_asset_route(request: web.Request) -> web.Response:
    try:
        body = schemas_in.UpdateAssetBody.model_validate(await request.json())
    except ValidationError as ve:
        return _build_validation_error_response("bad_request", ve)
    except Exception:
        return _build_error_response(400, "bad_request", "invalid json")

    try:
        asset_id = _parse_asset_id(request)
        asset = request.app[STORE_KEY].update(asset_id, body.changes())
    except AssetError as e:
        return _build_asset_error_response(e)
    except Exception:
        logging.exception("update_asset failed for asset_id=%s", request.match_info["id"])
        return _build_error_response(500, "internal", "failed to update asset")
    return web.json_response(schemas_out.dump(schemas_out.asset_out(asset)))


@ROUTES.delete(r"/api/assets/{id:\d+}")
async def delete_asset_route(request: web.Request) -> web.Response:
    try:
        asset_id = _parse_asset_id(request)
        request.app[STORE_KEY].delete(asset_id)
    except AssetError as e:
        return _build_asset_error_response(e)
    except Exception:
        logging.exception("delete_asset failed for asset_id=%s", request.match_info["id"])
        return _build_error_response(500, "internal", "failed to delete asset")
    return web.Response(status=204)


@ROUTES.get("/api/tags")
async def list_tags_route(request: web.Request) -> web.Response:
    """
    GET request to list tag names, optionally filtered by prefix.
    """
    try:
        q = schemas_in.ListTagsQuery.model_validate(get_query_dict(request))
    except ValidationError as ve:
        return _build_validation_error_response("bad_request", ve)

    settings = request.app[SETTINGS_KEY]
    page = max(q.page, 1)
    page_size = _clamp(
        q.page_size if q.page_size is not None else settings.tags_default_page_size,
        1,
        settings.tags_max_page_size,
    )

    try:
        result = request.app[STORE_KEY].list_tags(prefix=q.prefix, page=page, page_size=page_size)
    except Exception:
        logging.exception("list_tags failed")
        return _build_error_response(500, "internal", "failed to list tags")

    payload = schemas_out.TagListResponse(
        items=[schemas_out.TagOut(name=n) for n in result.names],
        page=result.page,
        page_size=result.page_size,
        total=result.total,
    )
    return web.json_response(schemas_out.dump(payload))


@ROUTES.get(r"/media/{id:\d+}/{variant}")
async def get_media_variant(request: web.Request) -> web.StreamResponse:
    variant = request.match_info["variant"]
    if variant not in VARIANT_KINDS:
        return _build_error_response(404, "not_found", "variant not found")

    media = request.app[MEDIA_KEY]
    try:
        asset = request.app[STORE_KEY].get(_parse_asset_id(request))
    except NotFoundError:
        return _build_error_response(404, "not_found", "asset not found")
    except Exception:
        logging.exception("get_media_variant failed for asset_id=%s", request.match_info["id"])
        return _build_error_response(500, "internal", "failed to retrieve asset")

    etag = f'"{asset.sha256}-{variant}"'
    if request.headers.get("If-None-Match") == etag:
        return web.Response(status=304, headers={"ETag": etag})

    abs_path = media.locate_variant(asset.sha256, variant, asset.original_filename, asset.mime)
    if abs_path is None:
        return _build_error_response(404, "not_found", "variant not found")

    content_type = media.content_type_for(variant, abs_path, asset.mime)
    cache_control = ORIGINAL_CACHE_CONTROL if variant == VARIANT_ORIGINAL else DERIVED_CACHE_CONTROL
    file_size = os.path.getsize(abs_path)

    async def stream_file_chunks():
        with open(abs_path, "rb") as f:
            while True:
                chunk = f.read(STREAM_CHUNK_SIZE)
                if not chunk:
                    break
                yield chunk

    return web.Response(
        body=stream_file_chunks(),
        content_type=content_type,
        headers={
            "ETag": etag,
            "Cache-Control": cache_control,
            "Content-Length": str(file_size),
        },
    )
