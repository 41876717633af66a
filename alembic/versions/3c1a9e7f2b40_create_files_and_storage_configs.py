"""create files, entity_files and storage_configs tables

Revision ID: 3c1a9e7f2b40
Revises:
Create Date: 2026-10-05 10:12:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3c1a9e7f2b40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "files",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("uri", sa.String(255), nullable=True),
        sa.Column("mime_type", sa.String(255), nullable=True),
        sa.Column("file_type_id", sa.Integer(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("upload_date", sa.DateTime(), server_default=sa.text("now()"), nullable=False),
        sa.Column("size", sa.BigInteger(), nullable=True),
        sa.Column("backend_type", sa.String(32), server_default="local", nullable=False),
        sa.Column("backend_path", sa.String(512), nullable=True),
        sa.Column("backend_metadata", sa.JSON(), nullable=True),
        sa.Column("sync_status", sa.String(32), server_default="pending", nullable=True),
        sa.Column("last_sync_date", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_files_backend_type", "files", ["backend_type"])
    op.create_index("idx_files_sync_status", "files", ["sync_status"])
    op.create_index("idx_files_last_sync_date", "files", ["last_sync_date"])

    op.create_table(
        "entity_files",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("entity_table", sa.String(64), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("file_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["file_id"], ["files.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_entity_files_file_id", "entity_files", ["file_id"])
    op.create_index("idx_entity_files_entity", "entity_files", ["entity_table", "entity_id"])

    op.create_table(
        "storage_configs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("storage_type", sa.String(32), nullable=False),
        sa.Column("config_name", sa.String(255), nullable=False),
        sa.Column("config_data", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default="true", nullable=False),
        sa.Column("is_default", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("file_type_rules", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()"), nullable=False),
        sa.Column("modified_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("storage_type", "config_name", name="uq_storage_configs_type_name"),
    )
    op.create_index(
        "idx_storage_configs_type_active", "storage_configs", ["storage_type", "is_active"]
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("idx_storage_configs_type_active", table_name="storage_configs")
    op.drop_table("storage_configs")
    op.drop_index("idx_entity_files_entity", table_name="entity_files")
    op.drop_index("idx_entity_files_file_id", table_name="entity_files")
    op.drop_table("entity_files")
    op.drop_index("idx_files_last_sync_date", table_name="files")
    op.drop_index("idx_files_sync_status", table_name="files")
    op.drop_index("idx_files_backend_type", table_name="files")
    op.drop_table("files")
