"""Binary artifact storage."""

from fingov.storage.blobs import BlobStore, InMemoryBlobStore, SqlBlobStore, StoredBlob

__all__ = ["BlobStore", "InMemoryBlobStore", "SqlBlobStore", "StoredBlob"]
