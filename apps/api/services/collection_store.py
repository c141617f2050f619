"""Persistence adapter for user collections and their items."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, TypeVar
import uuid

from sqlalchemy import delete, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.user import User
from models.user_collection import UserCollection
from models.user_collection_item import UserCollectionItem
from services.item_refs import ItemRef, ref_column, ref_columns, ref_id

T = TypeVar("T")


class CollectionStore:
    """Repository over one ``AsyncSession``.

    Read helpers may be called at any time. Mutating helpers only stage
    changes; they must run inside ``run_in_transaction`` so that an item
    change and the parent ``updated_at`` bump commit or roll back together.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def run_in_transaction(self, fn: Callable[["CollectionStore"], Awaitable[T]]) -> T:
        try:
            result = await fn(self)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        return result

    # Reads

    async def get_collection(self, collection_id: str) -> Optional[UserCollection]:
        result = await self.db.execute(
            select(UserCollection).where(UserCollection.id == collection_id)
        )
        return result.scalar_one_or_none()

    async def get_collections(self, collection_ids: Iterable[str]) -> Dict[str, UserCollection]:
        ids = list(set(collection_ids))
        if not ids:
            return {}
        result = await self.db.execute(
            select(UserCollection).where(UserCollection.id.in_(ids))
        )
        return {row.id: row for row in result.scalars().all()}

    async def get_owner(self, user_id: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def list_owned_collections(self, owner_id: str) -> List[UserCollection]:
        result = await self.db.execute(
            select(UserCollection)
            .where(
                UserCollection.user_id == owner_id,
                UserCollection.is_system.is_(False),
            )
            .order_by(UserCollection.updated_at.desc(), UserCollection.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_public_collections(self, excluding_owner_id: Optional[str] = None) -> List[UserCollection]:
        query = select(UserCollection).where(
            UserCollection.is_public.is_(True),
            UserCollection.is_system.is_(False),
        )
        if excluding_owner_id:
            query = query.where(UserCollection.user_id != excluding_owner_id)
        result = await self.db.execute(
            query.order_by(UserCollection.updated_at.desc(), UserCollection.created_at.desc())
        )
        return list(result.scalars().all())

    async def find_system_collection(self, owner_id: str, system_type: str) -> Optional[UserCollection]:
        result = await self.db.execute(
            select(UserCollection)
            .where(
                UserCollection.user_id == owner_id,
                UserCollection.is_system.is_(True),
                UserCollection.system_type == system_type,
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_items(self, collection_id: str) -> List[UserCollectionItem]:
        result = await self.db.execute(
            select(UserCollectionItem)
            .where(UserCollectionItem.collection_id == collection_id)
            .order_by(UserCollectionItem.position.asc(), UserCollectionItem.added_at.asc())
        )
        return list(result.scalars().all())

    async def get_item(self, item_id: str) -> Optional[UserCollectionItem]:
        result = await self.db.execute(
            select(UserCollectionItem).where(UserCollectionItem.id == item_id)
        )
        return result.scalar_one_or_none()

    async def find_item_by_ref(self, collection_id: str, ref: ItemRef) -> Optional[UserCollectionItem]:
        column = getattr(UserCollectionItem, ref_column(ref))
        result = await self.db.execute(
            select(UserCollectionItem)
            .where(
                UserCollectionItem.collection_id == collection_id,
                column == ref_id(ref),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def max_position(self, collection_id: str) -> Optional[int]:
        result = await self.db.execute(
            select(func.max(UserCollectionItem.position)).where(
                UserCollectionItem.collection_id == collection_id
            )
        )
        value = result.scalar()
        return int(value) if value is not None else None

    async def item_counts(self, collection_ids: Iterable[str]) -> Dict[str, int]:
        ids = list(set(collection_ids))
        if not ids:
            return {}
        result = await self.db.execute(
            select(UserCollectionItem.collection_id, func.count(UserCollectionItem.id))
            .where(UserCollectionItem.collection_id.in_(ids))
            .group_by(UserCollectionItem.collection_id)
        )
        counts = {collection_id: 0 for collection_id in ids}
        counts.update({collection_id: int(count) for collection_id, count in result.all()})
        return counts

    async def member_reference_ids(self, collection_id: str, column_name: str, ids: List[str]) -> List[str]:
        if not ids:
            return []
        column = getattr(UserCollectionItem, column_name)
        result = await self.db.execute(
            select(column).where(
                UserCollectionItem.collection_id == collection_id,
                column.in_(ids),
            )
        )
        present = {value for value in result.scalars().all() if value}
        return [value for value in ids if value in present]

    # Writes (inside run_in_transaction)

    async def add_collection(self, **values: Any) -> UserCollection:
        collection = UserCollection(id=str(uuid.uuid4()), **values)
        self.db.add(collection)
        await self.db.flush()
        return collection

    async def insert_item(self, collection_id: str, ref: ItemRef, position: int) -> UserCollectionItem:
        item = UserCollectionItem(
            id=str(uuid.uuid4()),
            collection_id=collection_id,
            position=position,
            **ref_columns(ref),
        )
        self.db.add(item)
        await self.db.flush()
        return item

    async def delete_item(self, item: UserCollectionItem) -> None:
        await self.db.delete(item)
        await self.db.flush()

    async def delete_all_items(self, collection_id: str) -> int:
        result = await self.db.execute(
            delete(UserCollectionItem)
            .where(UserCollectionItem.collection_id == collection_id)
        )
        return int(result.rowcount or 0)

    async def set_item_position(self, item: UserCollectionItem, position: int) -> None:
        item.position = position
        await self.db.flush()

    async def touch(self, collection: UserCollection) -> None:
        collection.updated_at = datetime.now(timezone.utc)
        await self.db.flush()

    async def delete_collection(self, collection_id: str) -> List[str]:
        """Delete a collection, its items, and items elsewhere that nest it.

        Collections that lose a nested reference get ``updated_at`` bumped.
        Returns their ids.
        """
        result = await self.db.execute(
            select(UserCollectionItem.collection_id)
            .where(
                UserCollectionItem.ref_user_collection_id == collection_id,
                UserCollectionItem.collection_id != collection_id,
            )
            .distinct()
        )
        parents = await self.get_collections(result.scalars().all())
        for parent in parents.values():
            await self.touch(parent)

        await self.db.execute(
            delete(UserCollectionItem)
            .where(
                or_(
                    UserCollectionItem.collection_id == collection_id,
                    UserCollectionItem.ref_user_collection_id == collection_id,
                )
            )
        )
        await self.db.execute(
            delete(UserCollection)
            .where(UserCollection.id == collection_id)
        )
        return list(parents)
