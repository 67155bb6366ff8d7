import logging
import os
import time

from aiohttp import web

from ganache.assets.api.routes import register_assets_system
from ganache.assets.services import (
    AssetStore,
    CopyVariantGenerator,
    MediaManager,
    PillowVariantGenerator,
)
from ganache.config import Settings, setup_logging
from ganache.database.db import Database

DB_KEY = web.AppKey("database", Database)


@web.middleware
async def log_requests(request: web.Request, handler):
    start = time.perf_counter()
    try:
        return await handler(request)
    finally:
        logging.info(
            "request method=%s path=%s duration=%.1fms",
            request.method,
            request.path,
            (time.perf_counter() - start) * 1000,
        )


def build_media_manager(settings: Settings) -> MediaManager:
    if settings.variant_generator == "copy":
        generator = CopyVariantGenerator()
    else:
        generator = PillowVariantGenerator(
            content_max_width=settings.content_max_width,
            thumb_max_width=settings.thumb_max_width,
        )
    os.makedirs(settings.storage_root, exist_ok=True)
    return MediaManager(settings.storage_root, variant_generator=generator)


def create_app(settings: Settings | None = None, db: Database | None = None) -> web.Application:
    """Wire the database, media root and asset store into an aiohttp application.

    A passed-in ``db`` is used as is (its schema is the caller's concern);
    otherwise one is created from ``settings.database_url`` and upgraded to
    the latest alembic revision.
    """
    settings = settings or Settings()
    if db is None:
        db = Database(settings.database_url)
        db.upgrade()

    store = AssetStore(
        db,
        default_page_size=settings.search_default_page_size,
        default_tag_page_size=settings.tags_default_page_size,
        max_field_length=settings.max_field_length,
    )
    media = build_media_manager(settings)

    app = web.Application(
        middlewares=[log_requests],
        client_max_size=settings.max_upload_bytes + 1024 * 1024,
    )
    app[DB_KEY] = db
    register_assets_system(app, store, media, settings)

    async def _dispose_db(app: web.Application) -> None:
        app[DB_KEY].dispose()

    app.on_cleanup.append(_dispose_db)
    return app


def run() -> None:
    settings = Settings()
    setup_logging(settings.log_level)
    logging.info("Starting ganache on %s:%s (storage %s)", settings.bind_host, settings.bind_port, settings.storage_root)
    web.run_app(
        create_app(settings),
        host=settings.bind_host,
        port=settings.bind_port,
        print=None,
    )


if __name__ == "__main__":
    run()
