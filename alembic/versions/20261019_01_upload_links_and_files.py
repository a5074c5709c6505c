"""
Upload links, file records and proxies.

- upload_links: public upload tokens with expiry and optional upload budget.
- files: one row per upload with per-tier JSON sub-documents and a CAS `version`.
- file_proxies: renditions per (file, quality).
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic.
revision = "20261019_01_upload_links_and_files"
down_revision = None
branch_labels = None
depends_on = None


def _json():
    return sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    # --- upload_links ---
    op.create_table(
        "upload_links",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("link_id", sa.String(length=64), nullable=False),
        sa.Column("client_name", sa.String(length=255), nullable=False),
        sa.Column("project_name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("max_uploads", sa.Integer(), nullable=True),
        sa.Column("upload_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_upload_links"),
        sa.CheckConstraint("upload_count >= 0", name="ck_upload_links_upload_count_nonneg"),
        sa.CheckConstraint("(max_uploads IS NULL) OR (max_uploads > 0)", name="ck_upload_links_max_uploads_pos"),
    )
    op.create_index("ix_upload_links_link_id", "upload_links", ["link_id"], unique=True)

    # --- files ---
    op.create_table(
        "files",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("file_name", sa.String(length=512), nullable=False),
        sa.Column("file_size", sa.BigInteger(), server_default=sa.text("0"), nullable=False),
        sa.Column("file_type", sa.String(length=255), nullable=False),
        sa.Column("storage_key", sa.String(length=1024), nullable=True),
        sa.Column("upload_link_id", sa.String(length=64), nullable=True),
        sa.Column("client_name", sa.String(length=255), nullable=True),
        sa.Column("project_name", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("frameio_data", _json(), nullable=True),
        sa.Column("r2_data", _json(), nullable=True),
        sa.Column("wasabi_data", _json(), nullable=True),
        sa.Column("lucidlink_data", _json(), nullable=True),
        sa.Column("transcoding", _json(), nullable=True),
        sa.Column("frameio_asset_id", sa.String(length=128), nullable=True),
        sa.Column("version", sa.Integer(), server_default=sa.text("1"), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_files"),
        sa.UniqueConstraint("frameio_asset_id", name="uq_files_frameio_asset_id"),
        sa.CheckConstraint("file_size >= 0", name="ck_files_file_size_nonneg"),
        sa.CheckConstraint("version >= 1", name="ck_files_version_pos"),
    )
    for column in ("storage_key", "upload_link_id", "client_name", "project_name", "status"):
        op.create_index(f"ix_files_{column}", "files", [column], unique=False)
    op.create_index("ix_files_status_created", "files", ["status", "created_at"], unique=False)

    # --- file_proxies ---
    op.create_table(
        "file_proxies",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("file_id", sa.Uuid(), nullable=False),
        sa.Column("quality", sa.String(length=16), nullable=False),
        sa.Column("profile", sa.String(length=64), nullable=True),
        sa.Column("url", sa.String(length=2048), nullable=True),
        sa.Column("r2_key", sa.String(length=1024), nullable=True),
        sa.Column("wasabi_key", sa.String(length=1024), nullable=True),
        sa.Column("position", sa.Integer(), server_default=sa.text("0"), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_file_proxies"),
        sa.ForeignKeyConstraint(["file_id"], ["files.id"], name="fk_file_proxies_file_id_files", ondelete="CASCADE"),
        sa.UniqueConstraint("file_id", "quality", name="uq_file_proxies_file_quality"),
    )
    op.create_index("ix_file_proxies_file_id", "file_proxies", ["file_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_file_proxies_file_id", table_name="file_proxies")
    op.drop_table("file_proxies")

    op.drop_index("ix_files_status_created", table_name="files")
    for column in ("status", "project_name", "client_name", "upload_link_id", "storage_key"):
        op.drop_index(f"ix_files_{column}", table_name="files")
    op.drop_table("files")

    op.drop_index("ix_upload_links_link_id", table_name="upload_links")
    op.drop_table("upload_links")
