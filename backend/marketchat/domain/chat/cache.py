"""Read-through cache for conversation lists.

Entries are keyed per (side, party) and per generation. Every send, mark-read or
soft delete bumps the generation of both endpoints, so a list computed before
the bump is written under a key nobody reads again and simply expires. Redis
errors fall through to recomputation.
"""

from __future__ import annotations

import json
import logging
from typing import List, Optional

from redis.exceptions import RedisError

from marketchat.infra.redis import redis_client
from marketchat.obs import metrics as obs_metrics
from marketchat.settings import settings

from .models import ConversationKey, Side
from .schemas import ConversationSummaryResponse

logger = logging.getLogger(__name__)

_CACHE_ERRORS = (RedisError, OSError)


def generation_key(side: Side, party_id: int) -> str:
	return f"chat:summaries:gen:{side.value}:{party_id}"


def summary_key(side: Side, party_id: int, generation: int) -> str:
	return f"chat:summaries:{side.value}:{party_id}:{generation}"


class SummaryCache:
	def __init__(self, client=None) -> None:
		self._client = client or redis_client

	@property
	def enabled(self) -> bool:
		return settings.chat_summary_cache_enabled

	async def generation(self, side: Side, party_id: int) -> Optional[int]:
		"""Current generation for the party's list, or None when caching is off or unreachable."""
		if not self.enabled:
			return None
		try:
			raw = await self._client.get(generation_key(side, party_id))
		except _CACHE_ERRORS:
			obs_metrics.inc_summary_cache("error")
			logger.warning("chat_summary_cache_read_failed", exc_info=True)
			return None
		return int(raw or 0)

	async def get(
		self,
		side: Side,
		party_id: int,
		generation: Optional[int],
	) -> Optional[List[ConversationSummaryResponse]]:
		if generation is None:
			return None
		try:
			raw = await self._client.get(summary_key(side, party_id, generation))
		except _CACHE_ERRORS:
			obs_metrics.inc_summary_cache("error")
			logger.warning("chat_summary_cache_read_failed", exc_info=True)
			return None
		if raw is None:
			obs_metrics.inc_summary_cache("miss")
			return None
		obs_metrics.inc_summary_cache("hit")
		return [ConversationSummaryResponse.model_validate(item) for item in json.loads(raw)]

	async def put(
		self,
		side: Side,
		party_id: int,
		generation: Optional[int],
		summaries: List[ConversationSummaryResponse],
	) -> None:
		if generation is None:
			return
		payload = json.dumps([item.model_dump(mode="json") for item in summaries])
		try:
			await self._client.set(
				summary_key(side, party_id, generation),
				payload,
				ex=settings.chat_summary_cache_ttl_seconds,
			)
		except _CACHE_ERRORS:
			logger.warning("chat_summary_cache_write_failed", exc_info=True)

	async def invalidate(self, key: ConversationKey) -> None:
		if not self.enabled:
			return
		try:
			await self._client.incr(generation_key(Side.REQUESTER, key.requester_id))
			await self._client.incr(generation_key(Side.COUNTERPARTY, key.counterparty_id))
		except _CACHE_ERRORS:
			logger.warning("chat_summary_cache_invalidate_failed", exc_info=True)
