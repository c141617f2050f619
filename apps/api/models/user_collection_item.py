"""UserCollectionItem model: one ordered slot pointing at a library entity."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from database import Base
from models.user_collection import utcnow


class UserCollectionItem(Base):
    """Pointer to exactly one content collection, media entity or nested user collection.

    The referenced entities are not owned: deleting an item leaves them intact.
    """

    __tablename__ = "user_collection_items"
    __table_args__ = (
        UniqueConstraint("collection_id", "content_collection_id", name="uq_user_collection_items_content"),
        UniqueConstraint("collection_id", "media_id", name="uq_user_collection_items_media"),
        UniqueConstraint("collection_id", "ref_user_collection_id", name="uq_user_collection_items_nested"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    collection_id = Column(
        String,
        ForeignKey("user_collections.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position = Column(Integer, nullable=False, default=0)
    added_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    content_collection_id = Column(String, nullable=True, index=True)
    media_id = Column(String, nullable=True, index=True)
    ref_user_collection_id = Column(
        String,
        ForeignKey("user_collections.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )

    collection = relationship("UserCollection", back_populates="items", foreign_keys=[collection_id])
