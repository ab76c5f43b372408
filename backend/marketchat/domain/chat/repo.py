"""Message store for marketplace chat.

Rows are append-only apart from the four per-side read/delete flags. The id and
created_at of a new row are assigned under one serialization point so the
pagination cursor (id) and the display order (created_at) never disagree.
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
from datetime import datetime
from typing import AsyncIterator, List, Optional

from marketchat.infra.postgres import STORAGE_ERRORS, PoolAccessor

from .exceptions import ChatStorageFailure
from .models import ChatMessage, ConversationKey, Side

# pg_advisory_xact_lock key guarding id/created_at assignment.
_SEND_LOCK_KEY = 7_310_001

_COLUMNS = """
	id, context_id, requester_id, counterparty_id, sender_side, body, created_at,
	read_by_requester, read_by_counterparty, deleted_by_requester, deleted_by_counterparty
"""


def _party_column(side: Side) -> str:
	return "requester_id" if side is Side.REQUESTER else "counterparty_id"


def _affected_rows(status: str) -> int:
	# asyncpg returns command tags such as "UPDATE 3".
	try:
		return int(status.rsplit(" ", 1)[-1])
	except (ValueError, AttributeError):
		return 0


class _InMemoryStore:
	"""Fallback store used in tests and local runs when Postgres is unavailable."""

	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self._messages: List[ChatMessage] = []
		self._next_id = 1

	def clear(self) -> None:
		self._messages.clear()
		self._next_id = 1

	async def create_message(
		self,
		key: ConversationKey,
		context_id: int,
		sender_side: Side,
		body: str,
		created_at: datetime,
	) -> ChatMessage:
		async with self._lock:
			if self._messages and self._messages[-1].created_at > created_at:
				created_at = self._messages[-1].created_at
			message = ChatMessage(
				id=self._next_id,
				context_id=context_id,
				requester_id=key.requester_id,
				counterparty_id=key.counterparty_id,
				sender_side=sender_side,
				body=body,
				created_at=created_at,
				read_by_requester=sender_side is Side.REQUESTER,
				read_by_counterparty=sender_side is Side.COUNTERPARTY,
			)
			self._next_id += 1
			self._messages.append(message)
			return dataclasses.replace(message)

	async def get_message(self, message_id: int) -> Optional[ChatMessage]:
		async with self._lock:
			for message in self._messages:
				if message.id == message_id:
					return dataclasses.replace(message)
			return None

	def _visible(self, key: ConversationKey, viewer_side: Side) -> List[ChatMessage]:
		rows = [m for m in self._messages if m.key == key and not m.is_deleted_by(viewer_side)]
		rows.sort(key=lambda m: (m.created_at, m.id))
		return rows

	async def list_pair(
		self,
		key: ConversationKey,
		*,
		viewer_side: Side,
		before_id: Optional[int],
		limit: Optional[int],
	) -> List[ChatMessage]:
		async with self._lock:
			rows = self._visible(key, viewer_side)
			if before_id is not None and limit:
				rows = [m for m in rows if m.id < before_id][-limit:]
			return [dataclasses.replace(m) for m in rows]

	async def mark_read(self, key: ConversationKey, side: Side) -> int:
		async with self._lock:
			flipped = 0
			for message in self._messages:
				if message.key == key and not message.is_read_by(side):
					setattr(message, side.read_column, True)
					flipped += 1
			return flipped

	async def soft_delete(self, message_id: int, side: Side) -> Optional[ChatMessage]:
		async with self._lock:
			for message in self._messages:
				if message.id == message_id:
					setattr(message, side.deleted_column, True)
					return dataclasses.replace(message)
			return None

	async def distinct_counterparts(self, party_id: int, as_side: Side) -> List[int]:
		async with self._lock:
			seen: dict[int, None] = {}
			for message in self._messages:
				if message.key.party_for(as_side) != party_id or message.is_deleted_by(as_side):
					continue
				seen.setdefault(message.key.party_for(as_side.other), None)
			return list(seen)

	async def last_visible(self, key: ConversationKey, viewer_side: Side) -> Optional[ChatMessage]:
		async with self._lock:
			rows = self._visible(key, viewer_side)
			return dataclasses.replace(rows[-1]) if rows else None

	async def count_unread(self, key: ConversationKey, viewer_side: Side) -> int:
		async with self._lock:
			return sum(1 for m in self._messages if m.key == key and m.is_unread_for(viewer_side))


MEMORY_STORE = _InMemoryStore()


class ChatRepository(PoolAccessor):
	"""Repository backed by asyncpg with an in-memory fallback."""

	def __init__(self, memory_store: _InMemoryStore | None = None) -> None:
		super().__init__()
		self._memory = memory_store or MEMORY_STORE

	@contextlib.asynccontextmanager
	async def _connection(self, pool) -> AsyncIterator:
		try:
			async with pool.acquire() as conn:
				yield conn
		except STORAGE_ERRORS as exc:
			raise ChatStorageFailure() from exc

	async def create_message(
		self,
		key: ConversationKey,
		context_id: int,
		sender_side: Side,
		body: str,
		created_at: datetime,
	) -> ChatMessage:
		pool = await self.pool_or_none()
		if pool is None:
			return await self._memory.create_message(key, context_id, sender_side, body, created_at)
		async with self._connection(pool) as conn:
			async with conn.transaction():
				await conn.execute("SELECT pg_advisory_xact_lock($1)", _SEND_LOCK_KEY)
				row = await conn.fetchrow(
					f"""
					INSERT INTO chat_messages (
						context_id,
						requester_id,
						counterparty_id,
						sender_side,
						body,
						created_at,
						read_by_requester,
						read_by_counterparty
					) VALUES (
						$1, $2, $3, $4, $5,
						GREATEST($6::timestamptz, COALESCE((SELECT created_at FROM chat_messages ORDER BY id DESC LIMIT 1), $6::timestamptz)),
						$7, $8
					)
					RETURNING {_COLUMNS}
					""",
					context_id,
					key.requester_id,
					key.counterparty_id,
					sender_side.value,
					body,
					created_at,
					sender_side is Side.REQUESTER,
					sender_side is Side.COUNTERPARTY,
				)
		return self._row_to_message(row)

	async def get_message(self, message_id: int) -> Optional[ChatMessage]:
		pool = await self.pool_or_none()
		if pool is None:
			return await self._memory.get_message(message_id)
		async with self._connection(pool) as conn:
			row = await conn.fetchrow(f"SELECT {_COLUMNS} FROM chat_messages WHERE id = $1", message_id)
		return self._row_to_message(row) if row else None

	async def list_pair(
		self,
		key: ConversationKey,
		*,
		viewer_side: Side,
		before_id: Optional[int] = None,
		limit: Optional[int] = None,
	) -> List[ChatMessage]:
		pool = await self.pool_or_none()
		if pool is None:
			return await self._memory.list_pair(key, viewer_side=viewer_side, before_id=before_id, limit=limit)
		hidden = viewer_side.deleted_column
		async with self._connection(pool) as conn:
			if before_id is not None and limit:
				# Newest page below the cursor, replayed oldest first.
				rows = await conn.fetch(
					f"""
					SELECT * FROM (
						SELECT {_COLUMNS}
						FROM chat_messages
						WHERE requester_id = $1 AND counterparty_id = $2 AND NOT {hidden} AND id < $3
						ORDER BY id DESC
						LIMIT $4
					) page
					ORDER BY created_at ASC, id ASC
					""",
					key.requester_id,
					key.counterparty_id,
					before_id,
					limit,
				)
			else:
				rows = await conn.fetch(
					f"""
					SELECT {_COLUMNS}
					FROM chat_messages
					WHERE requester_id = $1 AND counterparty_id = $2 AND NOT {hidden}
					ORDER BY created_at ASC, id ASC
					""",
					key.requester_id,
					key.counterparty_id,
				)
		return [self._row_to_message(row) for row in rows]

	async def mark_read(self, key: ConversationKey, side: Side) -> int:
		pool = await self.pool_or_none()
		if pool is None:
			return await self._memory.mark_read(key, side)
		column = side.read_column
		async with self._connection(pool) as conn:
			status = await conn.execute(
				f"""
				UPDATE chat_messages SET {column} = TRUE
				WHERE requester_id = $1 AND counterparty_id = $2 AND {column} = FALSE
				""",
				key.requester_id,
				key.counterparty_id,
			)
		return _affected_rows(status)

	async def soft_delete(self, message_id: int, side: Side) -> Optional[ChatMessage]:
		pool = await self.pool_or_none()
		if pool is None:
			return await self._memory.soft_delete(message_id, side)
		async with self._connection(pool) as conn:
			row = await conn.fetchrow(
				f"UPDATE chat_messages SET {side.deleted_column} = TRUE WHERE id = $1 RETURNING {_COLUMNS}",
				message_id,
			)
		return self._row_to_message(row) if row else None

	async def distinct_counterparts(self, party_id: int, as_side: Side) -> List[int]:
		pool = await self.pool_or_none()
		if pool is None:
			return await self._memory.distinct_counterparts(party_id, as_side)
		own = _party_column(as_side)
		other = _party_column(as_side.other)
		async with self._connection(pool) as conn:
			rows = await conn.fetch(
				f"""
				SELECT {other} AS counterpart_id, MIN(id) AS first_id
				FROM chat_messages
				WHERE {own} = $1 AND NOT {as_side.deleted_column}
				GROUP BY {other}
				ORDER BY first_id ASC
				""",
				party_id,
			)
		return [int(row["counterpart_id"]) for row in rows]

	async def last_visible(self, key: ConversationKey, viewer_side: Side) -> Optional[ChatMessage]:
		pool = await self.pool_or_none()
		if pool is None:
			return await self._memory.last_visible(key, viewer_side)
		async with self._connection(pool) as conn:
			row = await conn.fetchrow(
				f"""
				SELECT {_COLUMNS}
				FROM chat_messages
				WHERE requester_id = $1 AND counterparty_id = $2 AND NOT {viewer_side.deleted_column}
				ORDER BY created_at DESC, id DESC
				LIMIT 1
				""",
				key.requester_id,
				key.counterparty_id,
			)
		return self._row_to_message(row) if row else None

	async def count_unread(self, key: ConversationKey, viewer_side: Side) -> int:
		pool = await self.pool_or_none()
		if pool is None:
			return await self._memory.count_unread(key, viewer_side)
		async with self._connection(pool) as conn:
			count = await conn.fetchval(
				f"""
				SELECT COUNT(*)
				FROM chat_messages
				WHERE requester_id = $1
					AND counterparty_id = $2
					AND sender_side = $3
					AND NOT {viewer_side.read_column}
					AND NOT {viewer_side.deleted_column}
				""",
				key.requester_id,
				key.counterparty_id,
				viewer_side.other.value,
			)
		return int(count or 0)

	def _row_to_message(self, row) -> ChatMessage:
		return ChatMessage(
			id=int(row["id"]),
			context_id=int(row["context_id"]),
			requester_id=int(row["requester_id"]),
			counterparty_id=int(row["counterparty_id"]),
			sender_side=Side(row["sender_side"]),
			body=row["body"],
			created_at=row["created_at"],
			read_by_requester=bool(row["read_by_requester"]),
			read_by_counterparty=bool(row["read_by_counterparty"]),
			deleted_by_requester=bool(row["deleted_by_requester"]),
			deleted_by_counterparty=bool(row["deleted_by_counterparty"]),
		)
