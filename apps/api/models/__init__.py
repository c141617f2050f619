"""Models package."""

from .user import User
from .user_collection import UserCollection
from .user_collection_item import UserCollectionItem
