"""initial schema: users, user collections and user collection items

Revision ID: 20261017_000001
Revises:
Create Date: 2026-10-17 00:00:01.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261017_000001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "user_collections",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_public", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_system", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("system_type", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "system_type", name="uq_user_collections_user_system_type"),
    )
    op.create_index("ix_user_collections_user_id", "user_collections", ["user_id"], unique=False)
    op.create_index("ix_user_collections_is_public", "user_collections", ["is_public"], unique=False)
    op.create_index("ix_user_collections_updated_at", "user_collections", ["updated_at"], unique=False)

    op.create_table(
        "user_collection_items",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("collection_id", sa.String(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("added_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("content_collection_id", sa.String(), nullable=True),
        sa.Column("media_id", sa.String(), nullable=True),
        sa.Column("ref_user_collection_id", sa.String(), nullable=True),
        sa.ForeignKeyConstraint(["collection_id"], ["user_collections.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["ref_user_collection_id"], ["user_collections.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("collection_id", "content_collection_id", name="uq_user_collection_items_content"),
        sa.UniqueConstraint("collection_id", "media_id", name="uq_user_collection_items_media"),
        sa.UniqueConstraint("collection_id", "ref_user_collection_id", name="uq_user_collection_items_nested"),
    )
    op.create_index("ix_user_collection_items_collection_id", "user_collection_items", ["collection_id"], unique=False)
    op.create_index(
        "ix_user_collection_items_content_collection_id",
        "user_collection_items",
        ["content_collection_id"],
        unique=False,
    )
    op.create_index("ix_user_collection_items_media_id", "user_collection_items", ["media_id"], unique=False)
    op.create_index(
        "ix_user_collection_items_ref_user_collection_id",
        "user_collection_items",
        ["ref_user_collection_id"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_user_collection_items_ref_user_collection_id", table_name="user_collection_items")
    op.drop_index("ix_user_collection_items_media_id", table_name="user_collection_items")
    op.drop_index("ix_user_collection_items_content_collection_id", table_name="user_collection_items")
    op.drop_index("ix_user_collection_items_collection_id", table_name="user_collection_items")
    op.drop_table("user_collection_items")
    op.drop_index("ix_user_collections_updated_at", table_name="user_collections")
    op.drop_index("ix_user_collections_is_public", table_name="user_collections")
    op.drop_index("ix_user_collections_user_id", table_name="user_collections")
    op.drop_table("user_collections")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
