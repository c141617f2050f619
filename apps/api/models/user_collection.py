"""UserCollection model for owned, ordered playlists and system collections."""

from datetime import datetime, timezone
import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserCollection(Base):
    """User-owned ordered collection of item references.

    System collections (Favorites, WatchLater, PlaybackQueue) carry
    ``is_system=True`` and a ``system_type``; the unique constraint keeps at
    most one of each type per owner. Ordinary collections have a NULL
    ``system_type`` and never collide on it.
    """

    __tablename__ = "user_collections"
    __table_args__ = (
        UniqueConstraint("user_id", "system_type", name="uq_user_collections_user_system_type"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    is_public = Column(Boolean, nullable=False, default=False, index=True)
    is_system = Column(Boolean, nullable=False, default=False)
    system_type = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    user = relationship("User", back_populates="user_collections")
    items = relationship(
        "UserCollectionItem",
        back_populates="collection",
        foreign_keys="UserCollectionItem.collection_id",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="UserCollectionItem.position",
    )
