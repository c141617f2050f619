"""User collection services: playlists, system collections, toggles and the playback queue."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

from sqlalchemy.exc import IntegrityError

from models.user_collection import UserCollection
from models.user_collection_item import UserCollectionItem
from services.collection_store import CollectionStore
from services.errors import (
    CollectionNotFoundError,
    DuplicateItemError,
    ItemNotInCollectionError,
    NotFoundOrForbiddenError,
    SelfContainmentError,
    SystemCollectionProtectedError,
)
from services.item_refs import (
    ALL_REF_KINDS,
    QUEUE_REF_KINDS,
    ItemRef,
    NestedCollectionRef,
    validate_item_ref,
)

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("name", "description", "is_public")

# Membership query key -> item storage column.
MEMBERSHIP_COLUMNS = {
    "collection_ids": "content_collection_id",
    "media_ids": "media_id",
    "user_collection_ids": "ref_user_collection_id",
}

LookupFn = Callable[[List[str]], Awaitable[Dict[str, Dict[str, Any]]]]


class SystemCollectionType(str, Enum):
    FAVORITES = "Favorites"
    WATCH_LATER = "WatchLater"
    PLAYBACK_QUEUE = "PlaybackQueue"


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    if not value:
        return None
    # SQLite hands back naive values for timezone-aware columns; they are stored as UTC.
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _normalize_ids(values: Optional[Iterable[Any]]) -> List[str]:
    seen: List[str] = []
    for value in values or []:
        text = str(value or "").strip()
        if text and text not in seen:
            seen.append(text)
    return seen


def _can_read(collection: UserCollection, requester_id: str) -> bool:
    return collection.user_id == requester_id or bool(collection.is_public)


def collection_summary(collection: UserCollection, item_count: int) -> Dict[str, Any]:
    return {
        "id": collection.id,
        "name": collection.name,
        "is_public": bool(collection.is_public),
        "is_system": bool(collection.is_system),
        "system_type": collection.system_type,
        "item_count": item_count,
    }


class ReferenceResolver:
    """Projects item references into display summaries.

    Nested user collections are resolved from the store, and only when the
    requester may read them. Content collections and media belong to the
    library, so their summaries come from optional lookups; without one the
    summary only carries the id.
    """

    def __init__(
        self,
        store: CollectionStore,
        content_lookup: Optional[LookupFn] = None,
        media_lookup: Optional[LookupFn] = None,
    ):
        self.store = store
        self.content_lookup = content_lookup
        self.media_lookup = media_lookup

    @staticmethod
    async def _lookup(lookup: Optional[LookupFn], ids: List[str]) -> Dict[str, Dict[str, Any]]:
        if not ids:
            return {}
        found = await lookup(ids) if lookup else {}
        return {ref: found.get(ref) or {"id": ref} for ref in ids}

    async def resolve(self, items: Sequence[UserCollectionItem], requester_id: str) -> Dict[str, Dict[str, Any]]:
        content_ids = _normalize_ids(item.content_collection_id for item in items)
        media_ids = _normalize_ids(item.media_id for item in items)
        nested_ids = _normalize_ids(item.ref_user_collection_id for item in items)

        contents = await self._lookup(self.content_lookup, content_ids)
        media = await self._lookup(self.media_lookup, media_ids)
        nested_rows = {
            row_id: row
            for row_id, row in (await self.store.get_collections(nested_ids)).items()
            if _can_read(row, requester_id)
        }
        nested_counts = await self.store.item_counts(nested_rows.keys())
        nested = {
            row_id: collection_summary(row, nested_counts.get(row_id, 0))
            for row_id, row in nested_rows.items()
        }

        return {
            item.id: {
                "collection": contents.get(item.content_collection_id) if item.content_collection_id else None,
                "media": media.get(item.media_id) if item.media_id else None,
                "user_collection": nested.get(item.ref_user_collection_id) if item.ref_user_collection_id else None,
            }
            for item in items
        }


def _item_payload(item: UserCollectionItem, projection: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    projection = projection or {}
    return {
        "id": item.id,
        "position": int(item.position),
        "added_at": _isoformat(item.added_at),
        "parent_collection_id": item.collection_id,
        "collection_id": item.content_collection_id,
        "media_id": item.media_id,
        "user_collection_id": item.ref_user_collection_id,
        "collection": projection.get("collection"),
        "media": projection.get("media"),
        "user_collection": projection.get("user_collection"),
    }


def _collection_payload(
    collection: UserCollection,
    *,
    item_count: int,
    owner: Optional[Dict[str, Any]] = None,
    items: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    payload = {
        "id": collection.id,
        "name": collection.name,
        "description": collection.description,
        "is_public": bool(collection.is_public),
        "is_system": bool(collection.is_system),
        "system_type": collection.system_type,
        "user_id": collection.user_id,
        "item_count": item_count,
        "created_at": _isoformat(collection.created_at),
        "updated_at": _isoformat(collection.updated_at),
    }
    if owner is not None:
        payload["owner"] = owner
    if items is not None:
        payload["items"] = items
    return payload


async def _owner_summary(user_id: str, store: CollectionStore) -> Dict[str, Any]:
    owner = await store.get_owner(user_id)
    return {"id": user_id, "name": owner.name if owner else None}


async def _item_payloads(
    items: Sequence[UserCollectionItem],
    requester_id: str,
    store: CollectionStore,
    resolver: Optional[ReferenceResolver] = None,
) -> List[Dict[str, Any]]:
    projections = await (resolver or ReferenceResolver(store)).resolve(items, requester_id)
    return [_item_payload(item, projections.get(item.id)) for item in items]


async def _collection_with_items(
    collection: UserCollection,
    requester_id: str,
    store: CollectionStore,
    resolver: Optional[ReferenceResolver] = None,
) -> Dict[str, Any]:
    items = await store.list_items(collection.id)
    return _collection_payload(
        collection,
        item_count=len(items),
        owner=await _owner_summary(collection.user_id, store),
        items=await _item_payloads(items, requester_id, store, resolver),
    )


async def _collection_list(
    rows: List[UserCollection],
    store: CollectionStore,
    with_owner: bool = False,
) -> List[Dict[str, Any]]:
    counts = await store.item_counts(row.id for row in rows)
    payloads = []
    for row in rows:
        owner = await _owner_summary(row.user_id, store) if with_owner else None
        payloads.append(_collection_payload(row, item_count=counts.get(row.id, 0), owner=owner))
    return payloads


# Access guards


async def resolve_collection_for_write(collection_id: str, requester_id: str, store: CollectionStore) -> UserCollection:
    collection = await store.get_collection(collection_id)
    if collection is None or collection.user_id != requester_id:
        raise NotFoundOrForbiddenError()
    return collection


async def resolve_collection_for_read(
    collection_id: str,
    requester_id: str,
    store: CollectionStore,
    resolver: Optional[ReferenceResolver] = None,
) -> Optional[Dict[str, Any]]:
    collection = await store.get_collection(collection_id)
    if collection is None or not _can_read(collection, requester_id):
        return None
    return await _collection_with_items(collection, requester_id, store, resolver)


async def _check_item_ref(collection: UserCollection, ref: ItemRef, requester_id: str, store: CollectionStore) -> None:
    """Reject self-nesting and nested targets the requester cannot read."""
    if not isinstance(ref, NestedCollectionRef):
        return
    if ref.user_collection_id == collection.id:
        raise SelfContainmentError()
    target = await store.get_collection(ref.user_collection_id)
    if target is None or not _can_read(target, requester_id):
        raise CollectionNotFoundError()


async def next_item_position(collection_id: str, store: CollectionStore) -> int:
    current = await store.max_position(collection_id)
    return 0 if current is None else current + 1


# Ordinary collections


async def list_user_collections_service(owner_id: str, store: CollectionStore) -> List[Dict[str, Any]]:
    rows = await store.list_owned_collections(owner_id)
    return await _collection_list(rows, store)


async def list_public_user_collections_service(
    store: CollectionStore,
    excluding_owner_id: Optional[str] = None,
) -> List[Dict[str, Any]]:
    rows = await store.list_public_collections(excluding_owner_id)
    return await _collection_list(rows, store, with_owner=True)


async def get_user_collection_service(
    collection_id: str,
    requester_id: str,
    store: CollectionStore,
    resolver: Optional[ReferenceResolver] = None,
) -> Dict[str, Any]:
    payload = await resolve_collection_for_read(collection_id, requester_id, store, resolver)
    if payload is None:
        raise CollectionNotFoundError()
    return payload


async def create_user_collection_service(
    *,
    owner_id: str,
    name: str,
    description: Optional[str] = None,
    is_public: Optional[bool] = None,
    store: CollectionStore,
) -> Dict[str, Any]:
    async def _create(tx: CollectionStore) -> UserCollection:
        return await tx.add_collection(
            user_id=owner_id,
            name=name,
            description=description,
            is_public=bool(is_public) if is_public is not None else False,
            is_system=False,
            system_type=None,
        )

    collection = await store.run_in_transaction(_create)
    logger.info("user_collection_create user=%s collection=%s", owner_id, collection.id)
    return _collection_payload(collection, item_count=0)


async def update_user_collection_service(
    collection_id: str,
    owner_id: str,
    patch: Dict[str, Any],
    store: CollectionStore,
) -> Dict[str, Any]:
    collection = await resolve_collection_for_write(collection_id, owner_id, store)
    if collection.is_system:
        raise SystemCollectionProtectedError()
    # description may be cleared; name and is_public are non-nullable
    changes = {
        key: value
        for key, value in patch.items()
        if key in UPDATABLE_FIELDS and (value is not None or key == "description")
    }

    async def _update(tx: CollectionStore) -> None:
        for key, value in changes.items():
            setattr(collection, key, value)
        await tx.touch(collection)

    await store.run_in_transaction(_update)
    logger.info(
        "user_collection_update user=%s collection=%s fields=%s",
        owner_id,
        collection_id,
        ",".join(sorted(changes)) or "-",
    )
    counts = await store.item_counts([collection.id])
    return _collection_payload(collection, item_count=counts.get(collection.id, 0))


async def delete_user_collection_service(collection_id: str, owner_id: str, store: CollectionStore) -> None:
    collection = await resolve_collection_for_write(collection_id, owner_id, store)
    if collection.is_system:
        raise SystemCollectionProtectedError()

    async def _delete(tx: CollectionStore) -> List[str]:
        return await tx.delete_collection(collection_id)

    touched = await store.run_in_transaction(_delete)
    logger.info(
        "user_collection_delete user=%s collection=%s touched_parents=%s",
        owner_id,
        collection_id,
        len(touched),
    )


# Items


async def add_user_collection_item_service(
    *,
    collection_id: str,
    owner_id: str,
    ref: ItemRef,
    store: CollectionStore,
    resolver: Optional[ReferenceResolver] = None,
) -> Dict[str, Any]:
    validate_item_ref(ref, allowed=ALL_REF_KINDS)
    collection = await resolve_collection_for_write(collection_id, owner_id, store)
    await _check_item_ref(collection, ref, owner_id, store)
    if await store.find_item_by_ref(collection.id, ref) is not None:
        raise DuplicateItemError()

    async def _add(tx: CollectionStore) -> UserCollectionItem:
        item = await tx.insert_item(collection.id, ref, await next_item_position(collection.id, tx))
        await tx.touch(collection)
        return item

    item = await store.run_in_transaction(_add)
    logger.info(
        "user_collection_add_item user=%s collection=%s item=%s position=%s",
        owner_id,
        collection.id,
        item.id,
        item.position,
    )
    return (await _item_payloads([item], owner_id, store, resolver))[0]


async def remove_user_collection_item_service(
    collection_id: str,
    owner_id: str,
    item_id: str,
    store: CollectionStore,
) -> None:
    collection = await resolve_collection_for_write(collection_id, owner_id, store)
    item = await store.get_item(item_id)
    if item is None or item.collection_id != collection.id:
        raise ItemNotInCollectionError()

    async def _remove(tx: CollectionStore) -> None:
        await tx.delete_item(item)
        await tx.touch(collection)

    await store.run_in_transaction(_remove)
    logger.info("user_collection_remove_item user=%s collection=%s item=%s", owner_id, collection.id, item_id)


async def reorder_user_collection_items_service(
    collection_id: str,
    owner_id: str,
    ordered_item_ids: Sequence[str],
    store: CollectionStore,
    resolver: Optional[ReferenceResolver] = None,
) -> Dict[str, Any]:
    """Give listed items positions 0..n-1; omitted items follow in their previous order."""
    collection = await resolve_collection_for_write(collection_id, owner_id, store)
    items = await store.list_items(collection.id)
    by_id = {item.id: item for item in items}
    ordered_ids = _normalize_ids(ordered_item_ids)
    if any(item_id not in by_id for item_id in ordered_ids):
        raise ItemNotInCollectionError()
    listed = set(ordered_ids)
    final_order = ordered_ids + [item.id for item in items if item.id not in listed]

    async def _reorder(tx: CollectionStore) -> None:
        for index, item_id in enumerate(final_order):
            await tx.set_item_position(by_id[item_id], index)
        await tx.touch(collection)

    await store.run_in_transaction(_reorder)
    logger.info(
        "user_collection_reorder user=%s collection=%s listed=%s total=%s",
        owner_id,
        collection.id,
        len(ordered_ids),
        len(final_order),
    )
    return await _collection_with_items(collection, owner_id, store, resolver)


# System collections


async def _ensure_system_collection(
    owner_id: str,
    system_type: SystemCollectionType,
    store: CollectionStore,
) -> UserCollection:
    system_type = SystemCollectionType(system_type)
    existing = await store.find_system_collection(owner_id, system_type.value)
    if existing is not None:
        return existing

    async def _create(tx: CollectionStore) -> UserCollection:
        return await tx.add_collection(
            user_id=owner_id,
            name=system_type.value,
            description=None,
            is_public=False,
            is_system=True,
            system_type=system_type.value,
        )

    try:
        collection = await store.run_in_transaction(_create)
    except IntegrityError:
        # Lost a concurrent first-access race; the unique (user, system_type) row wins.
        collection = await store.find_system_collection(owner_id, system_type.value)
        if collection is None:
            raise
        logger.warning("system_collection_create_race user=%s type=%s", owner_id, system_type.value)
        return collection
    logger.info("system_collection_create user=%s type=%s collection=%s", owner_id, system_type.value, collection.id)
    return collection


async def get_or_create_system_collection_service(
    owner_id: str,
    system_type: SystemCollectionType,
    store: CollectionStore,
    resolver: Optional[ReferenceResolver] = None,
) -> Dict[str, Any]:
    collection = await _ensure_system_collection(owner_id, system_type, store)
    return await _collection_with_items(collection, owner_id, store, resolver)


async def get_favorites_service(owner_id: str, store: CollectionStore) -> Dict[str, Any]:
    return await get_or_create_system_collection_service(owner_id, SystemCollectionType.FAVORITES, store)


async def get_watch_later_service(owner_id: str, store: CollectionStore) -> Dict[str, Any]:
    return await get_or_create_system_collection_service(owner_id, SystemCollectionType.WATCH_LATER, store)


async def get_playback_queue_service(owner_id: str, store: CollectionStore) -> Dict[str, Any]:
    return await get_or_create_system_collection_service(owner_id, SystemCollectionType.PLAYBACK_QUEUE, store)


async def toggle_system_collection_item_service(
    owner_id: str,
    system_type: SystemCollectionType,
    ref: ItemRef,
    store: CollectionStore,
) -> Dict[str, bool]:
    """Add ``ref`` to the system collection if absent, remove it if present."""
    validate_item_ref(ref, allowed=ALL_REF_KINDS)
    collection = await _ensure_system_collection(owner_id, system_type, store)
    existing = await store.find_item_by_ref(collection.id, ref)
    if existing is None:
        await _check_item_ref(collection, ref, owner_id, store)

    async def _toggle(tx: CollectionStore) -> bool:
        if existing is not None:
            await tx.delete_item(existing)
            await tx.touch(collection)
            return False
        await tx.insert_item(collection.id, ref, await next_item_position(collection.id, tx))
        await tx.touch(collection)
        return True

    added = await store.run_in_transaction(_toggle)
    logger.info(
        "system_collection_toggle user=%s type=%s collection=%s added=%s",
        owner_id,
        collection.system_type,
        collection.id,
        added,
    )
    return {"added": added}


async def check_system_collection_membership_service(
    owner_id: str,
    system_type: SystemCollectionType,
    store: CollectionStore,
    *,
    collection_ids: Optional[Iterable[str]] = None,
    media_ids: Optional[Iterable[str]] = None,
    user_collection_ids: Optional[Iterable[str]] = None,
) -> Dict[str, List[str]]:
    """Return which of the supplied ids are members; never creates the collection."""
    requested = {
        "collection_ids": _normalize_ids(collection_ids),
        "media_ids": _normalize_ids(media_ids),
        "user_collection_ids": _normalize_ids(user_collection_ids),
    }
    collection = await store.find_system_collection(owner_id, SystemCollectionType(system_type).value)
    if collection is None:
        return {key: [] for key in requested}
    return {
        key: await store.member_reference_ids(collection.id, MEMBERSHIP_COLUMNS[key], ids)
        for key, ids in requested.items()
    }


# Playback queue


async def set_playback_queue_service(
    owner_id: str,
    refs: Sequence[ItemRef],
    store: CollectionStore,
    resolver: Optional[ReferenceResolver] = None,
) -> Dict[str, Any]:
    """Replace the whole queue; positions follow input order."""
    for ref in refs:
        validate_item_ref(ref, allowed=QUEUE_REF_KINDS)
    queue = await _ensure_system_collection(owner_id, SystemCollectionType.PLAYBACK_QUEUE, store)

    async def _replace(tx: CollectionStore) -> int:
        removed = await tx.delete_all_items(queue.id)
        for index, ref in enumerate(refs):
            await tx.insert_item(queue.id, ref, index)
        await tx.touch(queue)
        return removed

    removed = await store.run_in_transaction(_replace)
    logger.info("playback_queue_set user=%s removed=%s inserted=%s", owner_id, removed, len(refs))
    return await _collection_with_items(queue, owner_id, store, resolver)


async def append_to_playback_queue_service(
    owner_id: str,
    ref: ItemRef,
    store: CollectionStore,
    resolver: Optional[ReferenceResolver] = None,
) -> Dict[str, Any]:
    validate_item_ref(ref, allowed=QUEUE_REF_KINDS)
    queue = await _ensure_system_collection(owner_id, SystemCollectionType.PLAYBACK_QUEUE, store)
    if await store.find_item_by_ref(queue.id, ref) is not None:
        return await _collection_with_items(queue, owner_id, store, resolver)

    async def _append(tx: CollectionStore) -> UserCollectionItem:
        item = await tx.insert_item(queue.id, ref, await next_item_position(queue.id, tx))
        await tx.touch(queue)
        return item

    item = await store.run_in_transaction(_append)
    logger.info("playback_queue_append user=%s item=%s position=%s", owner_id, item.id, item.position)
    return await _collection_with_items(queue, owner_id, store, resolver)


async def clear_playback_queue_service(
    owner_id: str,
    store: CollectionStore,
    resolver: Optional[ReferenceResolver] = None,
) -> Dict[str, Any]:
    queue = await store.find_system_collection(owner_id, SystemCollectionType.PLAYBACK_QUEUE.value)
    if queue is None:
        return await get_or_create_system_collection_service(
            owner_id, SystemCollectionType.PLAYBACK_QUEUE, store, resolver
        )

    async def _clear(tx: CollectionStore) -> int:
        removed = await tx.delete_all_items(queue.id)
        await tx.touch(queue)
        return removed

    removed = await store.run_in_transaction(_clear)
    logger.info("playback_queue_clear user=%s removed=%s", owner_id, removed)
    return await _collection_with_items(queue, owner_id, store, resolver)
