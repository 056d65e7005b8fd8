"""Initial database schema

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Logical tables stored as documents
    op.create_table(
        "documents",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("table_name", sa.String(64), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=True),
        sa.Column("owner_key", sa.String(255), nullable=True),
        sa.Column(
            "data",
            sa.JSON().with_variant(postgresql.JSONB, "postgresql"),
            nullable=False,
        ),
        sa.Column("creation_time", sa.BigInteger, nullable=False),
    )
    op.create_index("idx_documents_table_user", "documents", ["table_name", "user_id"])
    op.create_index(
        "idx_documents_table_owner_key", "documents", ["table_name", "owner_key"]
    )

    # Export artifacts
    op.create_table(
        "blobs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("content_type", sa.String(255), nullable=False),
        sa.Column("byte_size", sa.Integer, nullable=False),
        sa.Column("data", sa.LargeBinary, nullable=False),
        sa.Column("created_at", sa.BigInteger, nullable=False),
    )


def downgrade() -> None:
    op.drop_table("blobs")
    op.drop_index("idx_documents_table_owner_key", table_name="documents")
    op.drop_index("idx_documents_table_user", table_name="documents")
    op.drop_table("documents")
