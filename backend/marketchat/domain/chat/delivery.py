"""Live delivery of stored messages.

Broadcasts are fire-and-forget: the emit runs as a background task so a slow
or missing listener never delays the sender's response. Delivery is
at-most-once per connected listener; there is no replay log.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Set

from marketchat.obs import metrics as obs_metrics
from marketchat.settings import settings

from . import sockets
from .models import ConversationKey

logger = logging.getLogger(__name__)

_pending: Set[asyncio.Task] = set()


async def _emit(scope: str, key: ConversationKey, payload: dict) -> None:
	try:
		if scope == "pair":
			delivered = await sockets.emit_to_pair(key, payload)
		else:
			delivered = await sockets.emit_to_topic(payload)
	except Exception:
		obs_metrics.inc_chat_broadcast(scope, "error")
		logger.exception(
			"chat_broadcast_failed",
			extra={"conversation_id": key.conversation_id, "message_id": payload.get("id")},
		)
		return
	obs_metrics.inc_chat_broadcast(scope, "sent" if delivered else "no_listeners")


def broadcast(key: ConversationKey, payload: dict) -> Optional[asyncio.Task]:
	"""Schedule the emit for `payload` and return immediately."""
	scope = settings.chat_broadcast_scope
	try:
		task = asyncio.get_running_loop().create_task(
			_emit(scope, key, payload),
			name=f"chat-broadcast:{payload.get('id')}",
		)
	except RuntimeError:
		logger.warning("chat_broadcast_no_loop", extra={"conversation_id": key.conversation_id})
		return None
	_pending.add(task)
	task.add_done_callback(_pending.discard)
	return task


async def drain(timeout: float = 5.0) -> None:
	"""Wait for in-flight broadcasts, e.g. on shutdown."""
	if not _pending:
		return
	await asyncio.wait(set(_pending), timeout=timeout)
