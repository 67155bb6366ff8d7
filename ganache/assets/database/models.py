from datetime import datetime

from sqlalchemy import (
    DDL,
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    event,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from ganache.assets.helpers import get_utc_now


class Base(DeclarativeBase):
    pass


class Asset(Base):
    __tablename__ = "asset"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    caption: Mapped[str | None] = mapped_column(Text, nullable=True)
    credit: Mapped[str | None] = mapped_column(String(255), nullable=True)
    source: Mapped[str | None] = mapped_column(String(255), nullable=True)
    usage_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    width: Mapped[int] = mapped_column(Integer, nullable=False)
    height: Mapped[int] = mapped_column(Integer, nullable=False)
    bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    mime: Mapped[str] = mapped_column(String(255), nullable=False)
    original_filename: Mapped[str | None] = mapped_column(String(512), nullable=True)
    sha256: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    tag_text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=get_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=get_utc_now)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    tag_links: Mapped[list["AssetTag"]] = relationship(
        back_populates="asset",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_asset_created_at", "created_at"),
        Index("ix_asset_deleted_at", "deleted_at"),
    )

    def __repr__(self) -> str:
        return f"<Asset id={self.id} sha256={self.sha256[:12]}>"


class Tag(Base):
    __tablename__ = "tag"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    def __repr__(self) -> str:
        return f"<Tag {self.name}>"


class AssetTag(Base):
    __tablename__ = "asset_tag"

    asset_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("asset.id", ondelete="CASCADE"), primary_key=True
    )
    tag_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tag.id", ondelete="RESTRICT"), primary_key=True
    )

    asset: Mapped[Asset] = relationship(back_populates="tag_links")
    tag: Mapped[Tag] = relationship()

    __table_args__ = (Index("ix_asset_tag_tag_id", "tag_id"),)


# External-content FTS5 index over the searchable columns, kept in lockstep
# with the asset table by triggers.
ASSET_FTS_DDL = (
    "CREATE VIRTUAL TABLE IF NOT EXISTS asset_fts USING fts5("
    "title, caption, tag_text, content='asset', content_rowid='id')",
    "CREATE TRIGGER IF NOT EXISTS asset_fts_ai AFTER INSERT ON asset BEGIN "
    "INSERT INTO asset_fts(rowid, title, caption, tag_text) "
    "VALUES (new.id, new.title, new.caption, new.tag_text); END",
    "CREATE TRIGGER IF NOT EXISTS asset_fts_ad AFTER DELETE ON asset BEGIN "
    "INSERT INTO asset_fts(asset_fts, rowid, title, caption, tag_text) "
    "VALUES ('delete', old.id, old.title, old.caption, old.tag_text); END",
    "CREATE TRIGGER IF NOT EXISTS asset_fts_au AFTER UPDATE ON asset BEGIN "
    "INSERT INTO asset_fts(asset_fts, rowid, title, caption, tag_text) "
    "VALUES ('delete', old.id, old.title, old.caption, old.tag_text); "
    "INSERT INTO asset_fts(rowid, title, caption, tag_text) "
    "VALUES (new.id, new.title, new.caption, new.tag_text); END",
)

for _stmt in ASSET_FTS_DDL:
    event.listen(Asset.__table__, "after_create", DDL(_stmt).execute_if(dialect="sqlite"))

event.listen(
    Asset.__table__,
    "before_drop",
    DDL("DROP TABLE IF EXISTS asset_fts").execute_if(dialect="sqlite"),
)
