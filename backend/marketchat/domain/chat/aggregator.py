"""Conversation list aggregation.

Conversations are never stored; every summary is recomputed from the message
store for the viewing side.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Protocol

from .directory import Catalog, PartyDirectory
from .exceptions import ChatNotFound
from .models import CatalogItem, ChatMessage, ConversationKey, ConversationSummary, PartyProfile, Side

logger = logging.getLogger(__name__)

UNKNOWN_PARTY_NAME = "Unknown"
UNKNOWN_ITEM_NAME = "Unknown product"


class SummaryRepository(Protocol):
	async def distinct_counterparts(self, party_id: int, as_side: Side) -> List[int]:
		...

	async def last_visible(self, key: ConversationKey, viewer_side: Side) -> Optional[ChatMessage]:
		...

	async def count_unread(self, key: ConversationKey, viewer_side: Side) -> int:
		...


async def _counterpart_profile(directory: PartyDirectory, side: Side, party_id: int) -> PartyProfile:
	try:
		return await directory.resolve(side, party_id)
	except ChatNotFound:
		logger.warning("chat_counterpart_missing", extra={"side": side.value, "party_id": party_id})
		return PartyProfile(party_id=party_id, side=side, display_name=UNKNOWN_PARTY_NAME)


async def _context_item(catalog: Catalog, message: Optional[ChatMessage]) -> Optional[CatalogItem]:
	if message is None:
		return None
	try:
		return await catalog.resolve(message.context_id)
	except ChatNotFound:
		return CatalogItem(item_id=message.context_id, display_name=UNKNOWN_ITEM_NAME)


def sort_summaries(summaries: List[ConversationSummary]) -> List[ConversationSummary]:
	"""Most recent first; conversations without a visible message go last.

	Both sorts are stable, so equal timestamps keep discovery order.
	"""
	timestamped = [s for s in summaries if s.last_message_at is not None]
	undated = [s for s in summaries if s.last_message_at is None]
	timestamped.sort(key=lambda s: s.last_message_at, reverse=True)
	return timestamped + undated


async def summarize_conversations(
	repo: SummaryRepository,
	directory: PartyDirectory,
	catalog: Catalog,
	viewer: PartyProfile,
) -> List[ConversationSummary]:
	as_side = viewer.side
	counterparts = await repo.distinct_counterparts(viewer.party_id, as_side)
	summaries: List[ConversationSummary] = []
	for counterpart_id in counterparts:
		key = ConversationKey.for_viewer(viewer.party_id, as_side, counterpart_id)
		counterpart = await _counterpart_profile(directory, as_side.other, counterpart_id)
		last_message = await repo.last_visible(key, as_side)
		context = await _context_item(catalog, last_message)
		unread = await repo.count_unread(key, as_side)
		requester, counterparty = (viewer, counterpart) if as_side is Side.REQUESTER else (counterpart, viewer)
		summaries.append(
			ConversationSummary(
				key=key,
				requester=requester,
				counterparty=counterparty,
				last_message=last_message,
				context=context,
				unread_count=unread,
			)
		)
	return sort_summaries(summaries)
