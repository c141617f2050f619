"""User collection router: playlists, favorites, watch-later and the playback queue."""

from __future__ import annotations

import logging
from typing import FrozenSet, List, Optional, Type

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from routers.auth_scope import get_requester_id
from routers.rate_limit import rate_limit
from services.collection_store import CollectionStore
from services.item_refs import ALL_REF_KINDS, QUEUE_REF_KINDS, ItemRef, parse_item_ref
from services.user_collections import (
    SystemCollectionType,
    add_user_collection_item_service,
    append_to_playback_queue_service,
    check_system_collection_membership_service,
    clear_playback_queue_service,
    create_user_collection_service,
    delete_user_collection_service,
    get_favorites_service,
    get_playback_queue_service,
    get_user_collection_service,
    get_watch_later_service,
    list_public_user_collections_service,
    list_user_collections_service,
    remove_user_collection_item_service,
    reorder_user_collection_items_service,
    set_playback_queue_service,
    toggle_system_collection_item_service,
    update_user_collection_service,
)

router = APIRouter()
logger = logging.getLogger(__name__)


class CreateUserCollectionRequest(BaseModel):
    name: str
    description: Optional[str] = None
    is_public: Optional[bool] = None


class UpdateUserCollectionRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    is_public: Optional[bool] = None


class ItemRefRequest(BaseModel):
    collection_id: Optional[str] = None
    media_id: Optional[str] = None
    user_collection_id: Optional[str] = None

    def to_ref(self, allowed: FrozenSet[Type] = ALL_REF_KINDS) -> ItemRef:
        return parse_item_ref(
            content_collection_id=self.collection_id,
            media_id=self.media_id,
            user_collection_id=self.user_collection_id,
            allowed=allowed,
        )


class ReorderItemsRequest(BaseModel):
    item_ids: List[str]


class SetQueueRequest(BaseModel):
    items: List[ItemRefRequest] = Field(default_factory=list, max_length=settings.MAX_QUEUE_ITEMS)


def get_collection_store(db: AsyncSession = Depends(get_db)) -> CollectionStore:
    return CollectionStore(db)


def _split_ids(value: Optional[str]) -> List[str]:
    return [part.strip() for part in str(value or "").split(",") if part.strip()]


def _required_name(value: Optional[str]) -> str:
    name = str(value or "").strip()
    if not name:
        raise HTTPException(status_code=422, detail="name is required")
    return name


@router.get("")
async def list_user_collections(
    requester_id: str = Depends(get_requester_id),
    store: CollectionStore = Depends(get_collection_store),
):
    return {"user_collections": await list_user_collections_service(requester_id, store)}


@router.get("/public")
async def list_public_user_collections(
    requester_id: str = Depends(get_requester_id),
    store: CollectionStore = Depends(get_collection_store),
):
    if not settings.PUBLIC_COLLECTIONS_ENABLED:
        raise HTTPException(status_code=503, detail="Public collections disabled by feature flag.")
    return {"user_collections": await list_public_user_collections_service(store, excluding_owner_id=requester_id)}


@router.post("", status_code=201)
async def create_user_collection(
    request: CreateUserCollectionRequest,
    _rate_limit: None = Depends(rate_limit("user_collection_create", limit=120, window_seconds=3600)),
    requester_id: str = Depends(get_requester_id),
    store: CollectionStore = Depends(get_collection_store),
):
    collection = await create_user_collection_service(
        owner_id=requester_id,
        name=_required_name(request.name),
        description=request.description,
        is_public=request.is_public,
        store=store,
    )
    return {"user_collection": collection}


# System collections. Declared before /{collection_id} so the fixed paths win.


@router.get("/favorites")
async def get_favorites(
    requester_id: str = Depends(get_requester_id),
    store: CollectionStore = Depends(get_collection_store),
):
    return {"user_collection": await get_favorites_service(requester_id, store)}


@router.get("/favorites/check")
async def check_favorites(
    collection_ids: Optional[str] = Query(default=None),
    media_ids: Optional[str] = Query(default=None),
    user_collection_ids: Optional[str] = Query(default=None),
    requester_id: str = Depends(get_requester_id),
    store: CollectionStore = Depends(get_collection_store),
):
    return await check_system_collection_membership_service(
        requester_id,
        SystemCollectionType.FAVORITES,
        store,
        collection_ids=_split_ids(collection_ids),
        media_ids=_split_ids(media_ids),
        user_collection_ids=_split_ids(user_collection_ids),
    )


@router.post("/favorites/toggle")
async def toggle_favorite(
    request: ItemRefRequest,
    _rate_limit: None = Depends(rate_limit("user_collection_toggle", limit=600, window_seconds=3600)),
    requester_id: str = Depends(get_requester_id),
    store: CollectionStore = Depends(get_collection_store),
):
    result = await toggle_system_collection_item_service(
        requester_id, SystemCollectionType.FAVORITES, request.to_ref(), store
    )
    return {"added": result["added"], "favorited": result["added"]}


@router.get("/watch-later")
async def get_watch_later(
    requester_id: str = Depends(get_requester_id),
    store: CollectionStore = Depends(get_collection_store),
):
    return {"user_collection": await get_watch_later_service(requester_id, store)}


@router.get("/watch-later/check")
async def check_watch_later(
    collection_ids: Optional[str] = Query(default=None),
    media_ids: Optional[str] = Query(default=None),
    user_collection_ids: Optional[str] = Query(default=None),
    requester_id: str = Depends(get_requester_id),
    store: CollectionStore = Depends(get_collection_store),
):
    return await check_system_collection_membership_service(
        requester_id,
        SystemCollectionType.WATCH_LATER,
        store,
        collection_ids=_split_ids(collection_ids),
        media_ids=_split_ids(media_ids),
        user_collection_ids=_split_ids(user_collection_ids),
    )


@router.post("/watch-later/toggle")
async def toggle_watch_later(
    request: ItemRefRequest,
    _rate_limit: None = Depends(rate_limit("user_collection_toggle", limit=600, window_seconds=3600)),
    requester_id: str = Depends(get_requester_id),
    store: CollectionStore = Depends(get_collection_store),
):
    result = await toggle_system_collection_item_service(
        requester_id, SystemCollectionType.WATCH_LATER, request.to_ref(), store
    )
    return {"added": result["added"], "in_watch_later": result["added"]}


@router.get("/queue")
async def get_playback_queue(
    requester_id: str = Depends(get_requester_id),
    store: CollectionStore = Depends(get_collection_store),
):
    return {"user_collection": await get_playback_queue_service(requester_id, store)}


@router.put("/queue")
async def set_playback_queue(
    request: SetQueueRequest,
    _rate_limit: None = Depends(rate_limit("user_collection_queue", limit=600, window_seconds=3600)),
    requester_id: str = Depends(get_requester_id),
    store: CollectionStore = Depends(get_collection_store),
):
    refs = [item.to_ref(allowed=QUEUE_REF_KINDS) for item in request.items]
    return {"user_collection": await set_playback_queue_service(requester_id, refs, store)}


@router.post("/queue/add")
async def add_to_playback_queue(
    request: ItemRefRequest,
    _rate_limit: None = Depends(rate_limit("user_collection_queue", limit=600, window_seconds=3600)),
    requester_id: str = Depends(get_requester_id),
    store: CollectionStore = Depends(get_collection_store),
):
    ref = request.to_ref(allowed=QUEUE_REF_KINDS)
    return {"user_collection": await append_to_playback_queue_service(requester_id, ref, store)}


@router.delete("/queue")
async def clear_playback_queue(
    requester_id: str = Depends(get_requester_id),
    store: CollectionStore = Depends(get_collection_store),
):
    return {"user_collection": await clear_playback_queue_service(requester_id, store)}


# Ordinary collections by id.


@router.get("/{collection_id}")
async def get_user_collection(
    collection_id: str,
    requester_id: str = Depends(get_requester_id),
    store: CollectionStore = Depends(get_collection_store),
):
    return {"user_collection": await get_user_collection_service(collection_id, requester_id, store)}


@router.patch("/{collection_id}")
async def update_user_collection(
    collection_id: str,
    request: UpdateUserCollectionRequest,
    _rate_limit: None = Depends(rate_limit("user_collection_update", limit=300, window_seconds=3600)),
    requester_id: str = Depends(get_requester_id),
    store: CollectionStore = Depends(get_collection_store),
):
    patch = request.model_dump(exclude_unset=True)
    if "name" in patch:
        patch["name"] = _required_name(patch["name"])
    collection = await update_user_collection_service(collection_id, requester_id, patch, store)
    return {"user_collection": collection}


@router.delete("/{collection_id}", status_code=204)
async def delete_user_collection(
    collection_id: str,
    requester_id: str = Depends(get_requester_id),
    store: CollectionStore = Depends(get_collection_store),
):
    await delete_user_collection_service(collection_id, requester_id, store)
    return Response(status_code=204)


@router.post("/{collection_id}/items", status_code=201)
async def add_user_collection_item(
    collection_id: str,
    request: ItemRefRequest,
    _rate_limit: None = Depends(rate_limit("user_collection_add_item", limit=600, window_seconds=3600)),
    requester_id: str = Depends(get_requester_id),
    store: CollectionStore = Depends(get_collection_store),
):
    item = await add_user_collection_item_service(
        collection_id=collection_id,
        owner_id=requester_id,
        ref=request.to_ref(),
        store=store,
    )
    return {"item": item}


@router.patch("/{collection_id}/items/reorder")
async def reorder_user_collection_items(
    collection_id: str,
    request: ReorderItemsRequest,
    _rate_limit: None = Depends(rate_limit("user_collection_reorder", limit=300, window_seconds=3600)),
    requester_id: str = Depends(get_requester_id),
    store: CollectionStore = Depends(get_collection_store),
):
    collection = await reorder_user_collection_items_service(collection_id, requester_id, request.item_ids, store)
    return {"user_collection": collection}


@router.delete("/{collection_id}/items/{item_id}", status_code=204)
async def remove_user_collection_item(
    collection_id: str,
    item_id: str,
    requester_id: str = Depends(get_requester_id),
    store: CollectionStore = Depends(get_collection_store),
):
    await remove_user_collection_item_service(collection_id, requester_id, item_id, store)
    return Response(status_code=204)
