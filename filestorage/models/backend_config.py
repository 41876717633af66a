"""
Backend configuration database model.

One row per named configuration of a non-local backend. Credentials live in
config_data and are never returned unmasked by the API.
"""
from datetime import datetime

from sqlalchemy import Boolean, Index, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from filestorage.database import Base
from filestorage.utils.datetime import utcnow


class BackendConfig(Base):
    """
    Named configuration for a storage backend.

    Attributes:
        id: Primary key
        storage_type: Backend type token (s3, spaces, gcs, azure)
        config_name: Name, unique per storage_type
        config_data: Connection parameters and credentials (JSON)
        is_active: Only active configurations can be resolved
        is_default: At most one default per storage_type
        file_type_rules: Optional file type routing hints (JSON)
        created_at: Creation timestamp
        modified_at: Last modification timestamp
    """

    __tablename__ = "storage_configs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    storage_type: Mapped[str] = mapped_column(String(32))
    config_name: Mapped[str] = mapped_column(String(255))
    config_data: Mapped[dict] = mapped_column(JSON, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)
    file_type_rules: Mapped[dict | list | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, server_default=func.now())
    modified_at: Mapped[datetime | None] = mapped_column(nullable=True, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("storage_type", "config_name", name="uq_storage_configs_type_name"),
        Index("idx_storage_configs_type_active", "storage_type", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<BackendConfig(id={self.id}, storage_type={self.storage_type}, config_name={self.config_name})>"
