"""create sync_logs, storage_tasks and migration snapshot tables

Revision ID: 8d24f6b1c953
Revises: 3c1a9e7f2b40
Create Date: 2026-10-07 15:40:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8d24f6b1c953'
down_revision: Union[str, Sequence[str], None] = '3c1a9e7f2b40'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "sync_logs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("file_id", sa.Integer(), nullable=False),
        sa.Column("operation", sa.String(32), nullable=False),
        sa.Column("source_backend", sa.String(32), nullable=True),
        sa.Column("target_backend", sa.String(32), nullable=True),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("file_size", sa.BigInteger(), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("sync_date", sa.DateTime(), server_default=sa.text("now()"), nullable=False),
        sa.Column("actor", sa.String(64), nullable=True),
        sa.ForeignKeyConstraint(["file_id"], ["files.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_sync_logs_file_id", "sync_logs", ["file_id"])
    op.create_index("idx_sync_logs_status", "sync_logs", ["status"])
    op.create_index("idx_sync_logs_sync_date", "sync_logs", ["sync_date"])
    op.create_index(
        "idx_sync_logs_target_operation", "sync_logs", ["target_backend", "operation"]
    )

    op.create_table(
        "storage_tasks",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("task_type", sa.String(32), nullable=False),
        sa.Column("file_id", sa.Integer(), nullable=False),
        sa.Column("target_backend", sa.String(32), nullable=False),
        sa.Column("target_config", sa.String(255), nullable=True),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()"), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["file_id"], ["files.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_storage_tasks_type_status", "storage_tasks", ["task_type", "status"])
    op.create_index("idx_storage_tasks_file_id", "storage_tasks", ["file_id"])

    op.create_table(
        "migration_snapshots",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("file_count", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "migration_snapshot_entries",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("snapshot_id", sa.Integer(), nullable=False),
        sa.Column("file_id", sa.Integer(), nullable=False),
        sa.Column("backend_type", sa.String(32), nullable=True),
        sa.Column("backend_path", sa.String(512), nullable=True),
        sa.Column("uri", sa.String(255), nullable=True),
        sa.ForeignKeyConstraint(["snapshot_id"], ["migration_snapshots.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_snapshot_entries_snapshot_id", "migration_snapshot_entries", ["snapshot_id"]
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("idx_snapshot_entries_snapshot_id", table_name="migration_snapshot_entries")
    op.drop_table("migration_snapshot_entries")
    op.drop_table("migration_snapshots")
    op.drop_index("idx_storage_tasks_file_id", table_name="storage_tasks")
    op.drop_index("idx_storage_tasks_type_status", table_name="storage_tasks")
    op.drop_table("storage_tasks")
    op.drop_index("idx_sync_logs_target_operation", table_name="sync_logs")
    op.drop_index("idx_sync_logs_sync_date", table_name="sync_logs")
    op.drop_index("idx_sync_logs_status", table_name="sync_logs")
    op.drop_index("idx_sync_logs_file_id", table_name="sync_logs")
    op.drop_table("sync_logs")
