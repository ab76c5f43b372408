"""Chat service logic for buyer/vendor conversations."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from marketchat.obs import metrics as obs_metrics
from marketchat.settings import settings

from . import aggregator, delivery, history, read_state
from .cache import SummaryCache
from .directory import Catalog, PartyDirectory, PostgresCatalog, PostgresPartyDirectory
from .exceptions import ChatInvalidInput, ChatNotFound
from .models import CatalogItem, ChatMessage, ConversationKey, PartyProfile, Side
from .repo import ChatRepository
from .schemas import ConversationSummaryResponse, MessageResponse

logger = logging.getLogger(__name__)


def _validate_body(text: str) -> str:
	if text is None or not str(text).strip():
		raise ChatInvalidInput("empty_body")
	if len(text) > settings.chat_max_body_length:
		raise ChatInvalidInput("body_too_long")
	return text


class ChatService:
	def __init__(
		self,
		repository: ChatRepository | None = None,
		directory: PartyDirectory | None = None,
		catalog: Catalog | None = None,
		cache: SummaryCache | None = None,
	) -> None:
		self._repo = repository or ChatRepository()
		self._directory = directory or PostgresPartyDirectory()
		self._catalog = catalog or PostgresCatalog()
		self._cache = cache or SummaryCache()

	async def _resolve_pair(self, requester_id: int, counterparty_id: int) -> Tuple[PartyProfile, PartyProfile]:
		requester = await self._directory.resolve(Side.REQUESTER, requester_id)
		counterparty = await self._directory.resolve(Side.COUNTERPARTY, counterparty_id)
		return requester, counterparty

	async def _materialize(
		self,
		messages: List[ChatMessage],
		requester: PartyProfile,
		counterparty: PartyProfile,
	) -> List[MessageResponse]:
		items: Dict[int, CatalogItem] = {}
		responses: List[MessageResponse] = []
		for message in messages:
			context = items.get(message.context_id)
			if context is None:
				try:
					context = await self._catalog.resolve(message.context_id)
				except ChatNotFound:
					context = CatalogItem(item_id=message.context_id, display_name=aggregator.UNKNOWN_ITEM_NAME)
				items[message.context_id] = context
			responses.append(
				MessageResponse.from_model(message, requester=requester, counterparty=counterparty, context=context)
			)
		return responses

	async def send_message(
		self,
		requester_id: int,
		counterparty_id: int,
		context_id: int,
		sender_side: Side | str,
		text: str,
	) -> MessageResponse:
		side = Side.parse(sender_side)
		body = _validate_body(text)
		requester, counterparty = await self._resolve_pair(requester_id, counterparty_id)
		context = await self._catalog.resolve(context_id)
		key = ConversationKey(requester.party_id, counterparty.party_id)
		message = await self._repo.create_message(
			key,
			context.item_id,
			side,
			body,
			datetime.now(timezone.utc),
		)
		obs_metrics.inc_chat_send(side.value)
		await self._cache.invalidate(key)
		response = MessageResponse.from_model(message, requester=requester, counterparty=counterparty, context=context)
		delivery.broadcast(key, response.model_dump(mode="json"))
		logger.info(
			"chat_message_stored",
			extra={
				"conversation_id": key.conversation_id,
				"message_id": message.id,
				"sender_id": message.sender_id,
				"sender_side": side.value,
			},
		)
		return response

	async def get_history(
		self,
		requester_id: int,
		counterparty_id: int,
		viewer_side: Side | str,
		*,
		before_id: Optional[int] = None,
		limit: Optional[int] = None,
	) -> List[MessageResponse]:
		side = Side.parse(viewer_side)
		requester, counterparty = await self._resolve_pair(requester_id, counterparty_id)
		key = ConversationKey(requester.party_id, counterparty.party_id)
		messages = await history.load_history(
			self._repo,
			key,
			side,
			before_id=before_id,
			limit=limit,
			max_limit=settings.chat_history_max_limit,
		)
		return await self._materialize(messages, requester, counterparty)

	async def list_conversations(self, party_id: int, as_side: Side | str) -> List[ConversationSummaryResponse]:
		side = Side.parse(as_side)
		viewer = await self._directory.resolve(side, party_id)
		# Read the generation before computing so a concurrent mutation orphans our write.
		generation = await self._cache.generation(side, viewer.party_id)
		cached = await self._cache.get(side, viewer.party_id, generation)
		if cached is not None:
			return cached
		summaries = await aggregator.summarize_conversations(self._repo, self._directory, self._catalog, viewer)
		responses = [ConversationSummaryResponse.from_summary(summary) for summary in summaries]
		await self._cache.put(side, viewer.party_id, generation, responses)
		return responses

	async def mark_read(self, requester_id: int, counterparty_id: int, side: Side | str) -> int:
		reader = Side.parse(side)
		requester, counterparty = await self._resolve_pair(requester_id, counterparty_id)
		key = ConversationKey(requester.party_id, counterparty.party_id)
		flipped = await read_state.mark_conversation_read(self._repo, key, reader)
		if flipped:
			await self._cache.invalidate(key)
		return flipped

	async def soft_delete(self, message_id: int, side: Side | str) -> None:
		deleter = Side.parse(side)
		message = await self._repo.soft_delete(message_id, deleter)
		if message is None:
			raise ChatNotFound("message_not_found")
		obs_metrics.inc_chat_soft_delete(deleter.value)
		await self._cache.invalidate(message.key)


_SERVICE = ChatService()


async def send_message(
	requester_id: int,
	counterparty_id: int,
	context_id: int,
	sender_side: Side | str,
	text: str,
) -> MessageResponse:
	return await _SERVICE.send_message(requester_id, counterparty_id, context_id, sender_side, text)


async def get_history(
	requester_id: int,
	counterparty_id: int,
	viewer_side: Side | str,
	*,
	before_id: Optional[int] = None,
	limit: Optional[int] = None,
) -> List[MessageResponse]:
	return await _SERVICE.get_history(requester_id, counterparty_id, viewer_side, before_id=before_id, limit=limit)


async def list_conversations(party_id: int, as_side: Side | str) -> List[ConversationSummaryResponse]:
	return await _SERVICE.list_conversations(party_id, as_side)


async def mark_read(requester_id: int, counterparty_id: int, side: Side | str) -> int:
	return await _SERVICE.mark_read(requester_id, counterparty_id, side)


async def soft_delete(message_id: int, side: Side | str) -> None:
	await _SERVICE.soft_delete(message_id, side)
