"""HTTP tests for the asset routes, run against a file-backed database migrated by alembic."""
import hashlib
import io
import os

import aiohttp
import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer
from PIL import Image

from ganache.config import Settings
from ganache.main import create_app

MAX_PIXELS = 400


def png_bytes(width: int = 10, height: int = 10, color=(200, 30, 30)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'ganache.db'}",
        storage_root=str(tmp_path / "media"),
        max_upload_bytes=64 * 1024,
        max_pixels=MAX_PIXELS,
    )


@pytest_asyncio.fixture
async def client(settings):
    app = create_app(settings)
    async with TestClient(TestServer(app)) as c:
        yield c


def _upload_form(data: bytes, filename: str = "photo.png", tags=(), **fields) -> aiohttp.FormData:
    form = aiohttp.FormData()
    for name, value in fields.items():
        form.add_field(name, value, content_type="text/plain")
    for tag in tags:
        form.add_field("tags", tag, content_type="text/plain")
    form.add_field("file", data, filename=filename, content_type="image/png")
    return form


async def _upload(client: TestClient, data: bytes | None = None, **kwargs) -> aiohttp.ClientResponse:
    return await client.post("/api/assets", data=_upload_form(data or png_bytes(), **kwargs))


@pytest.mark.asyncio
async def test_health_and_readiness(client: TestClient):
    resp = await client.get("/healthz")
    assert resp.status == 200
    assert await resp.json() == {"status": "ok"}

    resp = await client.get("/readyz")
    assert resp.status == 200
    assert await resp.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_upload_creates_asset(client: TestClient):
    data = png_bytes(10, 10)
    resp = await _upload(client, data, title="Test", usageNotes="web only", tags=["TagOne", "TagTwo"])
    assert resp.status == 201
    body = await resp.json()

    assert body["title"] == "Test"
    assert body["usageNotes"] == "web only"
    assert body["tags"] == ["tagone", "tagtwo"]
    assert body["width"] == 10 and body["height"] == 10
    assert body["bytes"] == len(data)
    assert body["mime"] == "image/png"
    assert body["originalFilename"] == "photo.png"
    assert body["sha256"] == hashlib.sha256(data).hexdigest()
    assert body["deletedAt"] is None
    assert body["variants"] == {
        "original": f"/media/{body['id']}/original",
        "content": f"/media/{body['id']}/content",
        "thumb": f"/media/{body['id']}/thumb",
    }


@pytest.mark.asyncio
async def test_duplicate_upload_returns_existing(client: TestClient):
    data = png_bytes()
    first = await (await _upload(client, data, title="first")).json()

    resp = await _upload(client, data, title="second")
    assert resp.status == 409
    body = await resp.json()
    assert body["id"] == first["id"]
    assert body["title"] == "first"


@pytest.mark.asyncio
async def test_upload_errors(client: TestClient, settings: Settings):
    resp = await _upload(client, b"definitely not an image")
    assert resp.status == 400
    assert (await resp.json())["error"]["code"] == "invalid_image"

    resp = await _upload(client, png_bytes(21, 20))
    assert resp.status == 400
    assert (await resp.json())["error"]["code"] == "invalid_image"

    resp = await _upload(client, b"\0" * (settings.max_upload_bytes + 1))
    assert resp.status == 400
    assert (await resp.json())["error"]["code"] == "too_large"

    resp = await _upload(client, png_bytes(), title="x" * 256)
    assert resp.status == 400
    assert (await resp.json())["error"]["code"] == "bad_request"

    form = aiohttp.FormData()
    form.add_field("title", "no file", content_type="text/plain")
    resp = await client.post("/api/assets", data=form)
    assert resp.status == 400
    assert (await resp.json())["error"]["message"] == "file is required"

    resp = await client.get("/api/assets")
    assert (await resp.json())["total"] == 0


@pytest.mark.asyncio
async def test_get_patch_delete(client: TestClient):
    created = await (await _upload(client, title="Original", source="wire", tags=["a"])).json()
    asset_id = created["id"]

    resp = await client.get(f"/api/assets/{asset_id}")
    assert resp.status == 200
    assert (await resp.json())["title"] == "Original"

    resp = await client.patch(
        f"/api/assets/{asset_id}",
        json={"caption": "A caption", "source": None, "tags": ["B", "c"]},
    )
    assert resp.status == 200
    body = await resp.json()
    assert body["title"] == "Original"
    assert body["caption"] == "A caption"
    assert body["source"] is None
    assert body["tags"] == ["b", "c"]

    resp = await client.patch(f"/api/assets/{asset_id}", json={"nope": 1})
    assert resp.status == 400

    resp = await client.patch(f"/api/assets/{asset_id}", data=b"{not json", headers={"Content-Type": "application/json"})
    assert resp.status == 400

    resp = await client.delete(f"/api/assets/{asset_id}")
    assert resp.status == 204

    resp = await client.delete(f"/api/assets/{asset_id}")
    assert resp.status == 404
    assert (await resp.json())["error"]["code"] == "not_found"

    resp = await client.get(f"/api/assets/{asset_id}")
    assert resp.status == 404

    resp = await client.get("/api/assets", params={"includeDeleted": "true"})
    body = await resp.json()
    assert [a["id"] for a in body["items"]] == [asset_id]
    assert body["items"][0]["deletedAt"] is not None


@pytest.mark.asyncio
async def test_search_filters_and_paging(client: TestClient):
    await _upload(client, png_bytes(color=(1, 0, 0)), title="Batting", tags=["cricket"])
    both = await (
        await _upload(client, png_bytes(color=(2, 0, 0)), title="Test match", tags=["cricket", "new-zealand"])
    ).json()
    await _upload(client, png_bytes(color=(3, 0, 0)), title="Mountains", tags=["new-zealand"])

    resp = await client.get("/api/assets?tag=cricket&tag=new-zealand")
    body = await resp.json()
    assert [a["id"] for a in body["items"]] == [both["id"]]

    resp = await client.get("/api/assets", params={"q": "match", "sort": "relevance"})
    body = await resp.json()
    assert [a["id"] for a in body["items"]] == [both["id"]]
    assert body["items"][0]["relevance"] is not None

    resp = await client.get("/api/assets", params={"pageSize": "1000", "page": "0"})
    body = await resp.json()
    assert body["pageSize"] == 200
    assert body["page"] == 1
    assert body["total"] == 3

    resp = await client.get("/api/assets", params={"pageSize": "2", "page": "2"})
    body = await resp.json()
    assert len(body["items"]) == 1
    assert body["total"] == 3

    resp = await client.get("/api/assets", params={"sort": "sideways"})
    assert resp.status == 400


@pytest.mark.asyncio
async def test_list_tags(client: TestClient):
    await _upload(client, tags=["new-zealand", "news", "cricket"])

    resp = await client.get("/api/tags", params={"prefix": "new"})
    body = await resp.json()
    assert [t["name"] for t in body["items"]] == ["new-zealand", "news"]
    assert body["total"] == 2

    resp = await client.get("/api/tags", params={"pageSize": "9999"})
    body = await resp.json()
    assert body["pageSize"] == 500
    assert body["total"] == 3


@pytest.mark.asyncio
async def test_media_variants(client: TestClient):
    data = png_bytes(10, 10)
    asset = await (await _upload(client, data)).json()

    resp = await client.get(f"/media/{asset['id']}/original")
    assert resp.status == 200
    assert await resp.read() == data
    assert resp.headers["Content-Type"] == "image/png"
    assert resp.headers["Cache-Control"] == "public, max-age=86400"
    etag = resp.headers["ETag"]
    assert etag == f'"{asset["sha256"]}-original"'

    resp = await client.get(f"/media/{asset['id']}/original", headers={"If-None-Match": etag})
    assert resp.status == 304

    resp = await client.get(f"/media/{asset['id']}/thumb")
    assert resp.status == 200
    assert resp.headers["Content-Type"] == "image/webp"
    assert resp.headers["Cache-Control"] == "public, max-age=31536000, immutable"
    assert (await resp.read())[:4] == b"RIFF"

    resp = await client.get(f"/media/{asset['id']}/poster")
    assert resp.status == 404

    resp = await client.get("/media/9999/thumb")
    assert resp.status == 404


@pytest.mark.asyncio
async def test_truncated_upload_is_invalid_image(client: TestClient):
    buf = io.BytesIO()
    Image.frombytes("RGB", (20, 20), os.urandom(20 * 20 * 3)).save(buf, format="PNG")
    resp = await _upload(client, buf.getvalue()[:100], filename="cut.png")
    assert resp.status == 400
    assert (await resp.json())["error"]["code"] == "invalid_image"

    resp = await client.get("/api/assets")
    assert (await resp.json())["total"] == 0


@pytest.mark.asyncio
async def test_out_of_range_id_is_not_found(client: TestClient):
    huge = "99999999999999999999"
    for resp in (
        await client.get(f"/api/assets/{huge}"),
        await client.patch(f"/api/assets/{huge}", json={"title": "x"}),
        await client.delete(f"/api/assets/{huge}"),
        await client.get(f"/media/{huge}/thumb"),
    ):
        assert resp.status == 404
        assert (await resp.json())["error"]["code"] == "not_found"
