import asyncio
import logging
from dataclasses import dataclass, field

from aiohttp import BodyPartReader, web

from ganache.assets.api.schemas_in import UploadError
from ganache.assets.errors import AssetError
from ganache.assets.services.media import MediaManager
from ganache.assets.services.schemas import SaveResult

CHUNK_SIZE = 64 * 1024

# multipart field name -> editable asset field
FORM_FIELDS = {
    "title": "title",
    "caption": "caption",
    "credit": "credit",
    "source": "source",
    "usageNotes": "usage_notes",
}
TAG_FIELDS = ("tags", "tags[]")


@dataclass
class ParsedUpload:
    saved: SaveResult | None = None
    filename: str | None = None
    fields: dict[str, str] = field(default_factory=dict)
    tags: list[str] = field(default_factory=list)


async def parse_multipart_upload(
    request: web.Request,
    media: MediaManager,
    max_bytes: int,
    max_pixels: int,
) -> ParsedUpload:
    """
    Read a multipart upload, streaming the ``file`` part straight into a
    staged upload under the media root while collecting the text fields.

    The file is hashed and committed as soon as its part ends. Raises
    UploadError for malformed requests; media errors (AssetError) propagate.
    """
    if not (request.content_type or "").lower().startswith("multipart/"):
        raise UploadError(415, "unsupported_media_type", "Use multipart/form-data for uploads.")

    try:
        reader = await request.multipart()
    except Exception:
        raise UploadError(400, "bad_request", "failed to parse multipart")

    parsed = ParsedUpload()
    while True:
        part = await reader.next()
        if part is None:
            break
        if not isinstance(part, BodyPartReader):
            continue

        name = part.name or ""
        if name == "file":
            if parsed.saved is not None:
                raise UploadError(400, "bad_request", "only one file part is allowed")
            parsed.filename = part.filename
            parsed.saved = await _stage_file_part(part, media, max_bytes, max_pixels)
        elif name in FORM_FIELDS:
            parsed.fields[FORM_FIELDS[name]] = await part.text()
        elif name in TAG_FIELDS:
            parsed.tags.append(await part.text())
        else:
            await part.release()

    if parsed.saved is None:
        raise UploadError(400, "bad_request", "file is required")
    return parsed


async def _stage_file_part(
    part: BodyPartReader,
    media: MediaManager,
    max_bytes: int,
    max_pixels: int,
) -> SaveResult:
    # Leaving the with-block on any error (including client disconnect or
    # cancellation) discards the temp file.
    with media.open_upload(part.filename, max_bytes) as upload:
        try:
            while True:
                chunk = await part.read_chunk(CHUNK_SIZE)
                if not chunk:
                    break
                upload.write(chunk)
        except AssetError:
            raise
        except Exception as e:
            logging.warning("Upload stream aborted after %d bytes: %s", upload.size, e)
            raise UploadError(400, "bad_request", "failed to read uploaded file")
        return await asyncio.to_thread(upload.finish, max_pixels)
