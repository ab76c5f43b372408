"""Pydantic schemas for the marketplace chat API."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .models import CatalogItem, ChatMessage, ConversationSummary, PartyProfile

NO_CONTEXT_NAME = "No product"


class SendMessageRequest(BaseModel):
	"""Payload for HTTP and socket sends; storefront field names are accepted too."""

	model_config = ConfigDict(populate_by_name=True)

	requester_id: int = Field(..., validation_alias=AliasChoices("requester_id", "userId"))
	counterparty_id: int = Field(..., validation_alias=AliasChoices("counterparty_id", "sellerId"))
	context_id: int = Field(..., validation_alias=AliasChoices("context_id", "productId"))
	sender_side: str = Field(..., validation_alias=AliasChoices("sender_side", "senderType"))
	text: str = Field(..., validation_alias=AliasChoices("text", "message"))


class MarkReadRequest(BaseModel):
	requester_id: int
	counterparty_id: int
	side: str


class MessageResponse(BaseModel):
	id: int
	conversation_id: str
	context_id: int
	context_name: str
	requester_id: int
	requester_name: str
	requester_avatar: Optional[str] = None
	counterparty_id: int
	counterparty_name: str
	counterparty_avatar: Optional[str] = None
	sender_side: str
	text: str
	created_at: datetime
	read_by_requester: bool
	read_by_counterparty: bool
	deleted_by_requester: bool
	deleted_by_counterparty: bool

	@classmethod
	def from_model(
		cls,
		message: ChatMessage,
		*,
		requester: PartyProfile,
		counterparty: PartyProfile,
		context: CatalogItem,
	) -> "MessageResponse":
		return cls(
			id=message.id,
			conversation_id=message.key.conversation_id,
			context_id=message.context_id,
			context_name=context.display_name,
			requester_id=message.requester_id,
			requester_name=requester.display_name,
			requester_avatar=requester.avatar_url,
			counterparty_id=message.counterparty_id,
			counterparty_name=counterparty.display_name,
			counterparty_avatar=counterparty.avatar_url,
			sender_side=message.sender_side.value,
			text=message.body,
			created_at=message.created_at,
			read_by_requester=message.read_by_requester,
			read_by_counterparty=message.read_by_counterparty,
			deleted_by_requester=message.deleted_by_requester,
			deleted_by_counterparty=message.deleted_by_counterparty,
		)


class HistoryResponse(BaseModel):
	items: List[MessageResponse]
	next_before_id: Optional[int] = None


class ConversationSummaryResponse(BaseModel):
	conversation_id: str
	requester_id: int
	requester_name: str
	requester_avatar: Optional[str] = None
	counterparty_id: int
	counterparty_name: str
	counterparty_avatar: Optional[str] = None
	context_id: Optional[int] = None
	context_name: str = NO_CONTEXT_NAME
	last_message: str = ""
	last_message_id: Optional[int] = None
	last_message_at: Optional[datetime] = None
	unread_count: int = 0

	@classmethod
	def from_summary(cls, summary: ConversationSummary) -> "ConversationSummaryResponse":
		last = summary.last_message
		return cls(
			conversation_id=summary.key.conversation_id,
			requester_id=summary.requester.party_id,
			requester_name=summary.requester.display_name,
			requester_avatar=summary.requester.avatar_url,
			counterparty_id=summary.counterparty.party_id,
			counterparty_name=summary.counterparty.display_name,
			counterparty_avatar=summary.counterparty.avatar_url,
			context_id=summary.context.item_id if summary.context else None,
			context_name=summary.context.display_name if summary.context else NO_CONTEXT_NAME,
			last_message=last.body if last else "",
			last_message_id=last.id if last else None,
			last_message_at=last.created_at if last else None,
			unread_count=summary.unread_count,
		)


class ConversationListResponse(BaseModel):
	items: List[ConversationSummaryResponse]
	total_unread: int = 0


class MarkReadResponse(BaseModel):
	ok: bool = True
	conversation_id: str
	updated: int


class DeleteMessageResponse(BaseModel):
	ok: bool = True
	message_id: int
