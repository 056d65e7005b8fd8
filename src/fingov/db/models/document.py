"""Document and blob storage models.

Governance and finance tables are stored as schemaless documents keyed by
``table_name``. The owner columns are lifted out of the payload so the
per-user and per-owner-key lookups are index-backed. ``revision`` is an
optimistic concurrency counter bumped on every update.
"""

from sqlalchemy import BigInteger, Index, Integer, LargeBinary, String
from sqlalchemy.orm import Mapped, mapped_column

from fingov.db.models.base import Base, PortableJSON


class Document(Base):
    """One row of a logical table."""

    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    table_name: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    owner_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    data: Mapped[dict] = mapped_column(PortableJSON, nullable=False, default=dict)
    creation_time: Mapped[int] = mapped_column(BigInteger, nullable=False)
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        Index("idx_documents_table_user", "table_name", "user_id"),
        Index("idx_documents_table_owner_key", "table_name", "owner_key"),
    )

    # Updates carry "WHERE revision = :read_revision"; a lost race raises StaleDataError
    __mapper_args__ = {"version_id_col": revision}

    def __repr__(self) -> str:
        return f"<Document(id={self.id}, table={self.table_name}, user_id={self.user_id})>"


class Blob(Base):
    """Stored binary artifact, such as a generated export file."""

    __tablename__ = "blobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    content_type: Mapped[str] = mapped_column(String(255), nullable=False)
    byte_size: Mapped[int] = mapped_column(Integer, nullable=False)
    data: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)

    def __repr__(self) -> str:
        return f"<Blob(id={self.id}, content_type={self.content_type}, size={self.byte_size})>"
