"""Read-state tracking helpers."""

from __future__ import annotations

from typing import Protocol

from marketchat.obs import metrics as obs_metrics

from .models import ConversationKey, Side


class ReadStateRepository(Protocol):
	async def mark_read(self, key: ConversationKey, side: Side) -> int:
		...


async def mark_conversation_read(repo: ReadStateRepository, key: ConversationKey, side: Side) -> int:
	"""Flip every unread flag for `side` in the conversation; returns how many changed.

	Repeating the call is a no-op that returns 0. Delete flags and the other
	side's read flag are never touched.
	"""
	flipped = await repo.mark_read(key, side)
	obs_metrics.inc_chat_read(side.value, flipped)
	return flipped
