"""Database models."""

from fingov.db.models.base import Base, PortableJSON
from fingov.db.models.document import Blob, Document

__all__ = ["Base", "Blob", "Document", "PortableJSON"]
