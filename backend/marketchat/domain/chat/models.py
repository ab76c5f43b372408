"""Domain models for marketplace chat."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .exceptions import ChatInvalidInput

# Aliases used by the storefront clients for the two endpoints.
_SIDE_ALIASES = {
	"REQUESTER": "REQUESTER",
	"USER": "REQUESTER",
	"BUYER": "REQUESTER",
	"COUNTERPARTY": "COUNTERPARTY",
	"SELLER": "COUNTERPARTY",
	"VENDOR": "COUNTERPARTY",
}


class Side(str, enum.Enum):
	"""Which endpoint of a conversation acted or is viewing."""

	REQUESTER = "REQUESTER"
	COUNTERPARTY = "COUNTERPARTY"

	@classmethod
	def parse(cls, value: "Side | str") -> "Side":
		if isinstance(value, cls):
			return value
		canonical = _SIDE_ALIASES.get(str(value or "").strip().upper())
		if canonical is None:
			raise ChatInvalidInput("invalid_side")
		return cls(canonical)

	@property
	def other(self) -> "Side":
		return Side.COUNTERPARTY if self is Side.REQUESTER else Side.REQUESTER

	@property
	def read_column(self) -> str:
		return "read_by_requester" if self is Side.REQUESTER else "read_by_counterparty"

	@property
	def deleted_column(self) -> str:
		return "deleted_by_requester" if self is Side.REQUESTER else "deleted_by_counterparty"


@dataclass(slots=True, frozen=True)
class ConversationKey:
	"""Ordered (requester, counterparty) pair identifying one conversation."""

	requester_id: int
	counterparty_id: int

	@classmethod
	def for_viewer(cls, party_id: int, as_side: Side, counterpart_id: int) -> "ConversationKey":
		if as_side is Side.REQUESTER:
			return cls(requester_id=party_id, counterparty_id=counterpart_id)
		return cls(requester_id=counterpart_id, counterparty_id=party_id)

	@property
	def conversation_id(self) -> str:
		return f"market:{self.requester_id}:{self.counterparty_id}"

	def party_for(self, side: Side) -> int:
		return self.requester_id if side is Side.REQUESTER else self.counterparty_id


@dataclass(slots=True)
class ChatMessage:
	id: int
	context_id: int
	requester_id: int
	counterparty_id: int
	sender_side: Side
	body: str
	created_at: datetime
	read_by_requester: bool = False
	read_by_counterparty: bool = False
	deleted_by_requester: bool = False
	deleted_by_counterparty: bool = False

	@property
	def key(self) -> ConversationKey:
		return ConversationKey(self.requester_id, self.counterparty_id)

	@property
	def sender_id(self) -> int:
		return self.key.party_for(self.sender_side)

	def is_read_by(self, side: Side) -> bool:
		return self.read_by_requester if side is Side.REQUESTER else self.read_by_counterparty

	def is_deleted_by(self, side: Side) -> bool:
		return self.deleted_by_requester if side is Side.REQUESTER else self.deleted_by_counterparty

	def is_unread_for(self, side: Side) -> bool:
		return self.sender_side is side.other and not self.is_read_by(side) and not self.is_deleted_by(side)


@dataclass(slots=True, frozen=True)
class PartyProfile:
	party_id: int
	side: Side
	display_name: str
	avatar_url: Optional[str] = None


@dataclass(slots=True, frozen=True)
class CatalogItem:
	item_id: int
	display_name: str


@dataclass(slots=True)
class ConversationSummary:
	key: ConversationKey
	requester: PartyProfile
	counterparty: PartyProfile
	last_message: Optional[ChatMessage]
	context: Optional[CatalogItem]
	unread_count: int

	@property
	def last_message_at(self) -> Optional[datetime]:
		return self.last_message.created_at if self.last_message else None
