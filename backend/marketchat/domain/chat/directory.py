"""Party directory and product catalog collaborators.

Both are owned by other subsystems; chat only needs existence checks and
display metadata. The Postgres implementations read projection tables kept in
sync by those subsystems, and fall back to in-process registries when no pool
is available (tests, local development).
"""

from __future__ import annotations

from typing import Dict, Optional, Protocol, Tuple

from marketchat.infra.postgres import STORAGE_ERRORS, PoolAccessor

from .exceptions import ChatNotFound, ChatStorageFailure
from .models import CatalogItem, PartyProfile, Side


class PartyDirectory(Protocol):
	async def resolve(self, side: Side, party_id: int) -> PartyProfile:
		...


class Catalog(Protocol):
	async def resolve(self, item_id: int) -> CatalogItem:
		...


def _party_not_found(side: Side) -> ChatNotFound:
	if side is Side.REQUESTER:
		return ChatNotFound("requester_not_found")
	return ChatNotFound("counterparty_not_found")


class InMemoryPartyDirectory:
	def __init__(self) -> None:
		self._parties: Dict[Tuple[Side, int], PartyProfile] = {}

	def register(self, side: Side, party_id: int, display_name: str, avatar_url: Optional[str] = None) -> PartyProfile:
		profile = PartyProfile(party_id=int(party_id), side=side, display_name=display_name, avatar_url=avatar_url)
		self._parties[(side, int(party_id))] = profile
		return profile

	def clear(self) -> None:
		self._parties.clear()

	async def resolve(self, side: Side, party_id: int) -> PartyProfile:
		profile = self._parties.get((side, int(party_id)))
		if profile is None:
			raise _party_not_found(side)
		return profile


class InMemoryCatalog:
	def __init__(self) -> None:
		self._items: Dict[int, CatalogItem] = {}

	def register(self, item_id: int, display_name: str) -> CatalogItem:
		item = CatalogItem(item_id=int(item_id), display_name=display_name)
		self._items[int(item_id)] = item
		return item

	def clear(self) -> None:
		self._items.clear()

	async def resolve(self, item_id: int) -> CatalogItem:
		item = self._items.get(int(item_id))
		if item is None:
			raise ChatNotFound("context_not_found")
		return item


MEMORY_DIRECTORY = InMemoryPartyDirectory()
MEMORY_CATALOG = InMemoryCatalog()


class PostgresPartyDirectory(PoolAccessor):
	"""Directory backed by the chat_parties projection with an in-memory fallback."""

	async def resolve(self, side: Side, party_id: int) -> PartyProfile:
		pool = await self.pool_or_none()
		if pool is None:
			return await MEMORY_DIRECTORY.resolve(side, party_id)
		try:
			async with pool.acquire() as conn:
				row = await conn.fetchrow(
					"""
					SELECT party_id, display_name, avatar_url
					FROM chat_parties
					WHERE side = $1 AND party_id = $2
					""",
					side.value,
					int(party_id),
				)
		except STORAGE_ERRORS as exc:
			raise ChatStorageFailure() from exc
		if row is None:
			raise _party_not_found(side)
		return PartyProfile(
			party_id=int(row["party_id"]),
			side=side,
			display_name=row["display_name"],
			avatar_url=row["avatar_url"],
		)


class PostgresCatalog(PoolAccessor):
	"""Catalog backed by the chat_catalog_items projection with an in-memory fallback."""

	async def resolve(self, item_id: int) -> CatalogItem:
		pool = await self.pool_or_none()
		if pool is None:
			return await MEMORY_CATALOG.resolve(item_id)
		try:
			async with pool.acquire() as conn:
				row = await conn.fetchrow(
					"SELECT item_id, display_name FROM chat_catalog_items WHERE item_id = $1",
					int(item_id),
				)
		except STORAGE_ERRORS as exc:
			raise ChatStorageFailure() from exc
		if row is None:
			raise ChatNotFound("context_not_found")
		return CatalogItem(item_id=int(row["item_id"]), display_name=row["display_name"])
