"""Failure taxonomy for user collection operations.

Each error is an ``HTTPException`` carrying one descriptive message, so the
router layer can let FastAPI render it directly.
"""

from typing import Optional

from fastapi import HTTPException


class UserCollectionError(HTTPException):
    status_code = 400
    message = "User collection request failed."

    def __init__(self, message: Optional[str] = None):
        super().__init__(status_code=self.status_code, detail=message or self.message)


class InvalidReferenceError(UserCollectionError):
    status_code = 422
    message = "Exactly one of collection_id, media_id or user_collection_id must be provided."


class SelfContainmentError(UserCollectionError):
    status_code = 400
    message = "A collection cannot contain itself."


class DuplicateItemError(UserCollectionError):
    status_code = 409
    message = "Item already exists in collection."


class NotFoundOrForbiddenError(UserCollectionError):
    status_code = 404
    message = "Collection not found or access denied."


class CollectionNotFoundError(UserCollectionError):
    status_code = 404
    message = "Collection not found."


class ItemNotInCollectionError(UserCollectionError):
    status_code = 404
    message = "Item not found in collection."


class SystemCollectionProtectedError(UserCollectionError):
    status_code = 403
    message = "System collections cannot be renamed or deleted."
