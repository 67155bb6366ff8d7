import io

import pytest
from PIL import Image
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from ganache.assets.services import AssetStore, CopyVariantGenerator, MediaManager
from ganache.assets.services.schemas import ContentInfo
from ganache.database.db import Database, configure_sqlite_engine


@pytest.fixture
def db_engine():
    """In-memory SQLite engine for fast unit tests."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    configure_sqlite_engine(engine)
    database = Database(engine=engine)
    database.create_all()
    yield engine
    engine.dispose()


@pytest.fixture
def database(db_engine):
    return Database(engine=db_engine)


@pytest.fixture
def session(db_engine):
    """Session fixture for tests that need direct DB access."""
    with Session(db_engine) as sess:
        yield sess


@pytest.fixture
def store(database):
    return AssetStore(database)


@pytest.fixture
def media_root(tmp_path):
    root = tmp_path / "media"
    root.mkdir()
    return root


@pytest.fixture
def media(media_root):
    return MediaManager(str(media_root))


@pytest.fixture
def copy_media(media_root):
    return MediaManager(str(media_root), variant_generator=CopyVariantGenerator())


def png_bytes(width: int = 10, height: int = 10, color=(200, 30, 30)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def make_png():
    return png_bytes


def content_for(n: int, **overrides) -> ContentInfo:
    """Distinct fake content description; the sha256 is derived from ``n``."""
    values = dict(
        sha256=f"{n:064x}",
        size_bytes=100 + n,
        mime="image/png",
        width=10,
        height=10,
        original_filename=f"image-{n}.png",
    )
    values.update(overrides)
    return ContentInfo(**values)


@pytest.fixture
def make_content():
    return content_for
