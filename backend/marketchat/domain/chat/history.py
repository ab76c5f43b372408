"""History pagination helpers."""

from __future__ import annotations

from typing import List, Optional, Protocol, Tuple

from .models import ChatMessage, ConversationKey, Side


class HistoryRepository(Protocol):
	async def list_pair(
		self,
		key: ConversationKey,
		*,
		viewer_side: Side,
		before_id: Optional[int] = None,
		limit: Optional[int] = None,
	) -> List[ChatMessage]:
		...


def normalise_page(before_id: Optional[int], limit: Optional[int], *, max_limit: int) -> Tuple[Optional[int], Optional[int]]:
	"""Return (before_id, limit) for a cursor page, or (None, None) for full history.

	A page needs both a cursor and a positive limit; anything else replays the
	whole conversation.
	"""
	if before_id is None or limit is None or limit <= 0:
		return None, None
	return int(before_id), min(int(limit), max_limit)


async def load_history(
	repo: HistoryRepository,
	key: ConversationKey,
	viewer_side: Side,
	*,
	before_id: Optional[int],
	limit: Optional[int],
	max_limit: int,
) -> List[ChatMessage]:
	cursor, page_size = normalise_page(before_id, limit, max_limit=max_limit)
	return await repo.list_pair(key, viewer_side=viewer_side, before_id=cursor, limit=page_size)


def next_cursor(messages: List[ChatMessage], limit: Optional[int]) -> Optional[int]:
	"""Cursor for the next older page when the current page came back full."""
	if not messages or not limit or len(messages) < limit:
		return None
	return messages[0].id
