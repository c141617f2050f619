"""Item reference variants and the exactly-one-reference validator."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Optional, Type, Union

from models.user_collection_item import UserCollectionItem
from services.errors import InvalidReferenceError


@dataclass(frozen=True)
class ContentRef:
    content_collection_id: str


@dataclass(frozen=True)
class MediaRef:
    media_id: str


@dataclass(frozen=True)
class NestedCollectionRef:
    user_collection_id: str


ItemRef = Union[ContentRef, MediaRef, NestedCollectionRef]

ALL_REF_KINDS: FrozenSet[Type] = frozenset({ContentRef, MediaRef, NestedCollectionRef})
QUEUE_REF_KINDS: FrozenSet[Type] = frozenset({ContentRef, MediaRef})

QUEUE_REF_MESSAGE = "Exactly one of collection_id or media_id must be provided."

# Storage column backing each reference kind.
REF_COLUMNS = {
    ContentRef: "content_collection_id",
    MediaRef: "media_id",
    NestedCollectionRef: "ref_user_collection_id",
}


def _clean_id(value: Any) -> Optional[str]:
    text = str(value or "").strip()
    return text or None


def parse_item_ref(
    content_collection_id: Optional[str] = None,
    media_id: Optional[str] = None,
    user_collection_id: Optional[str] = None,
    *,
    allowed: FrozenSet[Type] = ALL_REF_KINDS,
) -> ItemRef:
    """Build the single reference an item points at.

    Blank ids count as absent. Raises ``InvalidReferenceError`` unless exactly
    one id is supplied and its kind is in ``allowed``.
    """
    message = QUEUE_REF_MESSAGE if allowed == QUEUE_REF_KINDS else None
    candidates = []
    content_id = _clean_id(content_collection_id)
    if content_id:
        candidates.append(ContentRef(content_id))
    clean_media_id = _clean_id(media_id)
    if clean_media_id:
        candidates.append(MediaRef(clean_media_id))
    nested_id = _clean_id(user_collection_id)
    if nested_id:
        candidates.append(NestedCollectionRef(nested_id))

    if len(candidates) != 1:
        raise InvalidReferenceError(message)
    ref = candidates[0]
    if type(ref) not in allowed:
        raise InvalidReferenceError(message)
    return ref


def ref_id(ref: ItemRef) -> str:
    if isinstance(ref, ContentRef):
        return ref.content_collection_id
    if isinstance(ref, MediaRef):
        return ref.media_id
    return ref.user_collection_id


def ref_column(ref: ItemRef) -> str:
    return REF_COLUMNS[type(ref)]


def ref_columns(ref: ItemRef) -> Dict[str, Optional[str]]:
    """Three-nullable-column storage shape of a reference."""
    columns: Dict[str, Optional[str]] = {name: None for name in REF_COLUMNS.values()}
    columns[ref_column(ref)] = ref_id(ref)
    return columns


def ref_from_item(item: UserCollectionItem) -> ItemRef:
    return parse_item_ref(
        content_collection_id=item.content_collection_id,
        media_id=item.media_id,
        user_collection_id=item.ref_user_collection_id,
    )


def validate_item_ref(ref: ItemRef, *, allowed: FrozenSet[Type] = ALL_REF_KINDS) -> ItemRef:
    """Re-check an already-built reference before it reaches the store."""
    message = QUEUE_REF_MESSAGE if allowed == QUEUE_REF_KINDS else None
    if type(ref) not in allowed or not _clean_id(ref_id(ref)):
        raise InvalidReferenceError(message)
    return ref
