import pytest
from sqlalchemy.exc import IntegrityError

from services.collection_store import CollectionStore
from services.errors import CollectionNotFoundError, InvalidReferenceError, SelfContainmentError
from services.item_refs import ContentRef, MediaRef, NestedCollectionRef
from services.user_collections import (
    SystemCollectionType,
    append_to_playback_queue_service,
    check_system_collection_membership_service,
    clear_playback_queue_service,
    create_user_collection_service,
    get_favorites_service,
    get_or_create_system_collection_service,
    get_playback_queue_service,
    get_watch_later_service,
    list_public_user_collections_service,
    list_user_collections_service,
    set_playback_queue_service,
    toggle_system_collection_item_service,
    update_user_collection_service,
)


OWNER_A = "owner-a"
OWNER_B = "owner-b"


async def _toggle(store, system_type, ref, owner=OWNER_A):
    return await toggle_system_collection_item_service(owner, system_type, ref, store)


@pytest.mark.asyncio
async def test_get_or_create_is_idempotent_and_hidden_from_listings(store):
    first = await get_or_create_system_collection_service(OWNER_A, SystemCollectionType.WATCH_LATER, store)
    again = await get_watch_later_service(OWNER_A, store)

    assert first["id"] == again["id"]
    assert first["name"] == "WatchLater"
    assert first["is_system"] is True
    assert first["is_public"] is False
    assert first["system_type"] == "WatchLater"
    assert first["items"] == []
    assert await list_user_collections_service(OWNER_A, store) == []
    assert await list_public_user_collections_service(store) == []


@pytest.mark.asyncio
async def test_each_owner_and_type_gets_its_own_system_collection(store):
    favorites = await get_favorites_service(OWNER_A, store)
    watch_later = await get_watch_later_service(OWNER_A, store)
    queue = await get_playback_queue_service(OWNER_A, store)
    other_favorites = await get_favorites_service(OWNER_B, store)

    assert len({favorites["id"], watch_later["id"], queue["id"], other_favorites["id"]}) == 4


@pytest.mark.asyncio
async def test_lost_create_race_returns_the_existing_row(store, session_maker, monkeypatch):
    async with session_maker() as other_session:
        winner = await get_favorites_service(OWNER_A, CollectionStore(other_session))

    original_find = store.find_system_collection
    calls = {"count": 0}

    async def stale_find(owner_id, system_type):
        calls["count"] += 1
        if calls["count"] == 1:
            return None
        return await original_find(owner_id, system_type)

    monkeypatch.setattr(store, "find_system_collection", stale_find)
    favorites = await get_favorites_service(OWNER_A, store)

    assert favorites["id"] == winner["id"]
    assert calls["count"] == 2


@pytest.mark.asyncio
async def test_system_collection_uniqueness_is_enforced_by_the_store(store):
    await get_favorites_service(OWNER_A, store)

    async def _duplicate(tx):
        return await tx.add_collection(
            user_id=OWNER_A,
            name="Favorites",
            is_public=False,
            is_system=True,
            system_type="Favorites",
        )

    with pytest.raises(IntegrityError):
        await store.run_in_transaction(_duplicate)


@pytest.mark.asyncio
async def test_toggle_is_an_involution_on_membership(store):
    added = await _toggle(store, SystemCollectionType.FAVORITES, MediaRef("m1"))
    assert added == {"added": True}
    favorites = await get_favorites_service(OWNER_A, store)
    assert [item["media_id"] for item in favorites["items"]] == ["m1"]

    removed = await _toggle(store, SystemCollectionType.FAVORITES, MediaRef("m1"))
    assert removed == {"added": False}
    favorites = await get_favorites_service(OWNER_A, store)
    assert favorites["items"] == []


@pytest.mark.asyncio
async def test_toggle_appends_at_next_position(store):
    await _toggle(store, SystemCollectionType.WATCH_LATER, MediaRef("m1"))
    await _toggle(store, SystemCollectionType.WATCH_LATER, ContentRef("c1"))
    await _toggle(store, SystemCollectionType.WATCH_LATER, MediaRef("m1"))
    await _toggle(store, SystemCollectionType.WATCH_LATER, MediaRef("m2"))

    watch_later = await get_watch_later_service(OWNER_A, store)
    assert [(item["position"], item["collection_id"] or item["media_id"]) for item in watch_later["items"]] == [
        (1, "c1"),
        (2, "m2"),
    ]


@pytest.mark.asyncio
async def test_toggle_validates_reference_and_self_containment(store):
    favorites = await get_favorites_service(OWNER_A, store)
    with pytest.raises(InvalidReferenceError):
        await _toggle(store, SystemCollectionType.FAVORITES, None)
    with pytest.raises(SelfContainmentError):
        await _toggle(store, SystemCollectionType.FAVORITES, NestedCollectionRef(favorites["id"]))


@pytest.mark.asyncio
async def test_toggle_can_favorite_another_collection(store):
    playlist = await create_user_collection_service(owner_id=OWNER_A, name="Road trip", store=store)
    result = await _toggle(store, SystemCollectionType.FAVORITES, NestedCollectionRef(playlist["id"]))
    assert result["added"] is True

    favorites = await get_favorites_service(OWNER_A, store)
    assert favorites["items"][0]["user_collection"]["name"] == "Road trip"


@pytest.mark.asyncio
async def test_toggle_cannot_favorite_unreadable_collections(store):
    private = await create_user_collection_service(owner_id=OWNER_A, name="Diary", store=store)

    with pytest.raises(CollectionNotFoundError):
        await _toggle(store, SystemCollectionType.FAVORITES, NestedCollectionRef(private["id"]), owner=OWNER_B)
    with pytest.raises(CollectionNotFoundError):
        await _toggle(store, SystemCollectionType.FAVORITES, NestedCollectionRef("does-not-exist"), owner=OWNER_B)
    assert (await get_favorites_service(OWNER_B, store))["items"] == []


@pytest.mark.asyncio
async def test_toggle_can_remove_a_favorite_that_became_private(store):
    shared = await create_user_collection_service(owner_id=OWNER_A, name="Mixtape", is_public=True, store=store)
    ref = NestedCollectionRef(shared["id"])
    assert await _toggle(store, SystemCollectionType.FAVORITES, ref, owner=OWNER_B) == {"added": True}

    await update_user_collection_service(shared["id"], OWNER_A, {"is_public": False}, store)
    favorites = await get_favorites_service(OWNER_B, store)
    assert favorites["items"][0]["user_collection"] is None

    assert await _toggle(store, SystemCollectionType.FAVORITES, ref, owner=OWNER_B) == {"added": False}


@pytest.mark.asyncio
async def test_check_membership_before_and_after_toggle(store):
    before = await check_system_collection_membership_service(
        OWNER_A, SystemCollectionType.FAVORITES, store, media_ids=["m1"]
    )
    assert before == {"collection_ids": [], "media_ids": [], "user_collection_ids": []}
    assert await store.find_system_collection(OWNER_A, "Favorites") is None

    assert await _toggle(store, SystemCollectionType.FAVORITES, MediaRef("m1")) == {"added": True}

    after = await check_system_collection_membership_service(
        OWNER_A,
        SystemCollectionType.FAVORITES,
        store,
        collection_ids=["c1"],
        media_ids=["m1", "m2", "m1"],
    )
    assert after == {"collection_ids": [], "media_ids": ["m1"], "user_collection_ids": []}

    other_type = await check_system_collection_membership_service(
        OWNER_A, SystemCollectionType.WATCH_LATER, store, media_ids=["m1"]
    )
    assert other_type["media_ids"] == []
    other_owner = await check_system_collection_membership_service(
        OWNER_B, SystemCollectionType.FAVORITES, store, media_ids=["m1"]
    )
    assert other_owner["media_ids"] == []


@pytest.mark.asyncio
async def test_set_queue_overwrites_contents_in_input_order(store):
    await append_to_playback_queue_service(OWNER_A, MediaRef("old"), store)

    refs = [MediaRef("m3"), ContentRef("c1"), MediaRef("m1")]
    queue = await set_playback_queue_service(OWNER_A, refs, store)
    assert queue["item_count"] == 3
    assert [item["position"] for item in queue["items"]] == [0, 1, 2]
    assert [item["media_id"] or item["collection_id"] for item in queue["items"]] == ["m3", "c1", "m1"]

    emptied = await set_playback_queue_service(OWNER_A, [], store)
    assert emptied["items"] == []
    assert emptied["id"] == queue["id"]


@pytest.mark.asyncio
async def test_set_queue_can_reuse_references_from_the_previous_queue(store):
    await set_playback_queue_service(OWNER_A, [MediaRef("m1"), MediaRef("m2")], store)
    queue = await set_playback_queue_service(OWNER_A, [MediaRef("m2"), MediaRef("m1")], store)
    assert [item["media_id"] for item in queue["items"]] == ["m2", "m1"]


@pytest.mark.asyncio
async def test_queue_rejects_nested_collection_references(store):
    playlist = await create_user_collection_service(owner_id=OWNER_A, name="Mix", store=store)
    with pytest.raises(InvalidReferenceError):
        await append_to_playback_queue_service(OWNER_A, NestedCollectionRef(playlist["id"]), store)
    with pytest.raises(InvalidReferenceError):
        await set_playback_queue_service(OWNER_A, [MediaRef("m1"), NestedCollectionRef(playlist["id"])], store)
    assert await store.find_system_collection(OWNER_A, "PlaybackQueue") is None


@pytest.mark.asyncio
async def test_append_twice_keeps_a_single_item(store):
    await append_to_playback_queue_service(OWNER_A, MediaRef("m1"), store)
    queue = await append_to_playback_queue_service(OWNER_A, MediaRef("m1"), store)
    assert [item["media_id"] for item in queue["items"]] == ["m1"]

    queue = await append_to_playback_queue_service(OWNER_A, ContentRef("c1"), store)
    assert [item["position"] for item in queue["items"]] == [0, 1]


@pytest.mark.asyncio
async def test_clear_queue_empties_existing_queue(store):
    await set_playback_queue_service(OWNER_A, [MediaRef("m1"), MediaRef("m2")], store)
    cleared = await clear_playback_queue_service(OWNER_A, store)
    assert cleared["items"] == []
    assert cleared["item_count"] == 0


@pytest.mark.asyncio
async def test_clear_queue_without_queue_creates_an_empty_one(store):
    cleared = await clear_playback_queue_service(OWNER_B, store)
    assert cleared["items"] == []
    assert cleared["system_type"] == "PlaybackQueue"
    assert (await get_playback_queue_service(OWNER_B, store))["id"] == cleared["id"]
