"""Repository layer for table access."""

from fingov.db.repositories.rows import (
    InMemoryRowRepository,
    Row,
    RowRepository,
    SqlRowRepository,
    new_id,
)

__all__ = [
    "InMemoryRowRepository",
    "Row",
    "RowRepository",
    "SqlRowRepository",
    "new_id",
]
