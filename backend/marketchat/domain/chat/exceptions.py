"""Domain-level exceptions for marketplace chat."""

from __future__ import annotations


class ChatError(Exception):
	"""Base class for chat errors."""

	reason: str = "unknown"

	def __init__(self, reason: str | None = None) -> None:
		super().__init__(reason or self.reason)
		if reason:
			self.reason = reason


class ChatNotFound(ChatError):
	reason = "not_found"


class ChatInvalidInput(ChatError):
	reason = "invalid_input"


class ChatStorageFailure(ChatError):
	reason = "storage_unavailable"
