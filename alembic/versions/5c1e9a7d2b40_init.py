"""init

Revision ID: 5c1e9a7d2b40
Revises:
Create Date: 2026-10-19 09:12:41.518203

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "5c1e9a7d2b40"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "pds_cache",
        sa.Column("did", sa.String(512), primary_key=True),
        sa.Column("pds_endpoint", sa.String(1024), nullable=False),
        sa.Column("cached_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_pds_cache_cached_at", "pds_cache", ["cached_at"])

    op.create_table(
        "repo_records",
        sa.Column("guid", sa.String(512), primary_key=True),
        sa.Column("did", sa.String(512), nullable=False),
        sa.Column("collection", sa.String(512), nullable=False),
        sa.Column("rkey", sa.String(512), nullable=False),
        sa.Column("cid", sa.String(512), nullable=True),
        sa.Column("synced_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "idx_repo_records_did_collection_rkey",
        "repo_records",
        ["did", "collection", "rkey"],
        unique=True,
    )
    op.create_index(
        "idx_repo_records_collection_rkey", "repo_records", ["collection", "rkey"]
    )

    op.create_table(
        "resolved_documents",
        sa.Column("guid", sa.String(512), primary_key=True),
        sa.Column("uri", sa.String(1024), nullable=False),
        sa.Column("did", sa.String(512), nullable=False),
        sa.Column("collection", sa.String(512), nullable=False),
        sa.Column("rkey", sa.String(512), nullable=False),
        sa.Column("title", sa.Text, nullable=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("path", sa.String(2048), nullable=True),
        sa.Column("site", sa.String(2048), nullable=True),
        sa.Column("content", sa.JSON, nullable=True),
        sa.Column("text_content", sa.Text, nullable=True),
        sa.Column("cover_image_cid", sa.String(512), nullable=True),
        sa.Column("cover_image_url", sa.String(2048), nullable=True),
        sa.Column("bsky_post_ref", sa.JSON, nullable=True),
        sa.Column("tags", sa.JSON, nullable=True),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("pub_url", sa.String(2048), nullable=True),
        sa.Column("pub_name", sa.Text, nullable=True),
        sa.Column("pub_description", sa.Text, nullable=True),
        sa.Column("pub_icon_cid", sa.String(512), nullable=True),
        sa.Column("pub_icon_url", sa.String(2048), nullable=True),
        sa.Column("view_url", sa.String(2048), nullable=True),
        sa.Column("pds_endpoint", sa.String(1024), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("stale_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("verified", sa.Boolean, nullable=False, server_default="false"),
    )
    op.create_index(
        "idx_resolved_documents_uri", "resolved_documents", ["uri"], unique=True
    )
    op.create_index(
        "idx_resolved_documents_stale_at", "resolved_documents", ["stale_at"]
    )
    op.create_index(
        "idx_resolved_documents_feed",
        "resolved_documents",
        ["verified", "published_at"],
    )


def downgrade() -> None:
    op.drop_table("resolved_documents")
    op.drop_table("repo_records")
    op.drop_table("pds_cache")
