"""
Initial asset catalog schema: asset, tag, asset_tag and the asset_fts full-text index.

Revision ID: 0001_assets
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa

revision = "0001_assets"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "asset",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(length=255), nullable=True),
        sa.Column("caption", sa.Text(), nullable=True),
        sa.Column("credit", sa.String(length=255), nullable=True),
        sa.Column("source", sa.String(length=255), nullable=True),
        sa.Column("usage_notes", sa.Text(), nullable=True),
        sa.Column("width", sa.Integer(), nullable=False),
        sa.Column("height", sa.Integer(), nullable=False),
        sa.Column("bytes", sa.BigInteger(), nullable=False),
        sa.Column("mime", sa.String(length=255), nullable=False),
        sa.Column("original_filename", sa.String(length=512), nullable=True),
        sa.Column("sha256", sa.String(length=64), nullable=False),
        sa.Column("tag_text", sa.Text(), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=False), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=False), nullable=True),
        sa.UniqueConstraint("sha256", name="uq_asset_sha256"),
    )
    op.create_index("ix_asset_created_at", "asset", ["created_at"])
    op.create_index("ix_asset_deleted_at", "asset", ["deleted_at"])

    op.create_table(
        "tag",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.UniqueConstraint("name", name="uq_tag_name"),
    )

    op.create_table(
        "asset_tag",
        sa.Column(
            "asset_id",
            sa.Integer(),
            sa.ForeignKey("asset.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "tag_id",
            sa.Integer(),
            sa.ForeignKey("tag.id", ondelete="RESTRICT"),
            primary_key=True,
        ),
    )
    op.create_index("ix_asset_tag_tag_id", "asset_tag", ["tag_id"])

    op.execute(
        "CREATE VIRTUAL TABLE asset_fts USING fts5("
        "title, caption, tag_text, content='asset', content_rowid='id')"
    )
    op.execute(
        "CREATE TRIGGER asset_fts_ai AFTER INSERT ON asset BEGIN "
        "INSERT INTO asset_fts(rowid, title, caption, tag_text) "
        "VALUES (new.id, new.title, new.caption, new.tag_text); END"
    )
    op.execute(
        "CREATE TRIGGER asset_fts_ad AFTER DELETE ON asset BEGIN "
        "INSERT INTO asset_fts(asset_fts, rowid, title, caption, tag_text) "
        "VALUES ('delete', old.id, old.title, old.caption, old.tag_text); END"
    )
    op.execute(
        "CREATE TRIGGER asset_fts_au AFTER UPDATE ON asset BEGIN "
        "INSERT INTO asset_fts(asset_fts, rowid, title, caption, tag_text) "
        "VALUES ('delete', old.id, old.title, old.caption, old.tag_text); "
        "INSERT INTO asset_fts(rowid, title, caption, tag_text) "
        "VALUES (new.id, new.title, new.caption, new.tag_text); END"
    )


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS asset_fts_au")
    op.execute("DROP TRIGGER IF EXISTS asset_fts_ad")
    op.execute("DROP TRIGGER IF EXISTS asset_fts_ai")
    op.execute("DROP TABLE IF EXISTS asset_fts")

    op.drop_index("ix_asset_tag_tag_id", table_name="asset_tag")
    op.drop_table("asset_tag")

    op.drop_table("tag")

    op.drop_index("ix_asset_deleted_at", table_name="asset")
    op.drop_index("ix_asset_created_at", table_name="asset")
    op.drop_table("asset")
