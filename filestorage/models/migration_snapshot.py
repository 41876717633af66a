"""
Migration snapshot database models.

A snapshot is a named, pointer-only capture of every file's locator
(backend_type, backend_path, uri). It never references bytes.
"""
from datetime import datetime

from sqlalchemy import ForeignKey, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from filestorage.database import Base
from filestorage.utils.datetime import utcnow


class MigrationSnapshot(Base):
    __tablename__ = "migration_snapshots"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), unique=True)
    file_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, server_default=func.now())

    entries: Mapped[list["MigrationSnapshotEntry"]] = relationship(
        "MigrationSnapshotEntry",
        back_populates="snapshot",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<MigrationSnapshot(id={self.id}, name={self.name}, file_count={self.file_count})>"


class MigrationSnapshotEntry(Base):
    __tablename__ = "migration_snapshot_entries"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    snapshot_id: Mapped[int] = mapped_column(
        ForeignKey("migration_snapshots.id", ondelete="CASCADE")
    )
    # Not a foreign key: a snapshot outlives files deleted by the host
    file_id: Mapped[int] = mapped_column(Integer)
    backend_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    backend_path: Mapped[str | None] = mapped_column(String(512), nullable=True)
    uri: Mapped[str | None] = mapped_column(String(255), nullable=True)

    snapshot: Mapped["MigrationSnapshot"] = relationship("MigrationSnapshot", back_populates="entries")

    __table_args__ = (
        Index("idx_snapshot_entries_snapshot_id", "snapshot_id"),
    )
