"""
Entity-file association model.

Links a file to the host entity that owns it. The storage layer only reads
it, to bucket paths by entity and to resolve visibility.
"""
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from filestorage.database import Base

if TYPE_CHECKING:
    from filestorage.models.file_record import FileRecord


class EntityFile(Base):
    """Association between a host entity row and a file."""

    __tablename__ = "entity_files"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    entity_table: Mapped[str] = mapped_column(String(64))
    entity_id: Mapped[int] = mapped_column(Integer)
    file_id: Mapped[int] = mapped_column(ForeignKey("files.id", ondelete="CASCADE"))

    file: Mapped["FileRecord"] = relationship("FileRecord", back_populates="entities")

    __table_args__ = (
        Index("idx_entity_files_file_id", "file_id"),
        Index("idx_entity_files_entity", "entity_table", "entity_id"),
    )

    def __repr__(self) -> str:
        return f"<EntityFile(entity_table={self.entity_table}, entity_id={self.entity_id}, file_id={self.file_id})>"
