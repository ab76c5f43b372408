"""FastAPI endpoints for marketplace chat."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request, status

from marketchat.api.request_id import get_request_id
from marketchat.domain.chat import service
from marketchat.domain.chat.exceptions import ChatError, ChatInvalidInput, ChatNotFound, ChatStorageFailure
from marketchat.domain.chat.history import next_cursor, normalise_page
from marketchat.domain.chat.models import ConversationKey
from marketchat.domain.chat.schemas import (
	ConversationListResponse,
	DeleteMessageResponse,
	HistoryResponse,
	MarkReadRequest,
	MarkReadResponse,
	MessageResponse,
	SendMessageRequest,
)
from marketchat.settings import settings

router = APIRouter(prefix="/chat", tags=["chat"])


def _map_error(exc: ChatError, request_id: str) -> HTTPException:
	headers = {"X-Request-Id": request_id}
	if isinstance(exc, ChatNotFound):
		return HTTPException(status.HTTP_404_NOT_FOUND, detail=exc.reason, headers=headers)
	if isinstance(exc, ChatStorageFailure):
		return HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.reason, headers=headers)
	if isinstance(exc, ChatInvalidInput):
		return HTTPException(status.HTTP_400_BAD_REQUEST, detail=exc.reason, headers=headers)
	return HTTPException(status.HTTP_400_BAD_REQUEST, detail=getattr(exc, "reason", "bad_request"), headers=headers)


@router.post("/send", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def send_message_endpoint(payload: SendMessageRequest, request: Request) -> MessageResponse:
	try:
		return await service.send_message(
			payload.requester_id,
			payload.counterparty_id,
			payload.context_id,
			payload.sender_side,
			payload.text,
		)
	except ChatError as exc:
		raise _map_error(exc, get_request_id(request)) from None


@router.get("/history", response_model=HistoryResponse)
async def history_endpoint(
	request: Request,
	requester_id: int = Query(...),
	counterparty_id: int = Query(...),
	viewer_side: str = Query(...),
	before_id: Optional[int] = Query(default=None),
	limit: Optional[int] = Query(default=None),
) -> HistoryResponse:
	try:
		items = await service.get_history(
			requester_id,
			counterparty_id,
			viewer_side,
			before_id=before_id,
			limit=limit,
		)
	except ChatError as exc:
		raise _map_error(exc, get_request_id(request)) from None
	_, page_size = normalise_page(before_id, limit, max_limit=settings.chat_history_max_limit)
	return HistoryResponse(items=items, next_before_id=next_cursor(items, page_size))


@router.get("/conversations/{side}/{party_id}", response_model=ConversationListResponse)
async def list_conversations_endpoint(side: str, party_id: int, request: Request) -> ConversationListResponse:
	try:
		items = await service.list_conversations(party_id, side)
	except ChatError as exc:
		raise _map_error(exc, get_request_id(request)) from None
	return ConversationListResponse(items=items, total_unread=sum(item.unread_count for item in items))


@router.post("/mark-read", response_model=MarkReadResponse)
async def mark_read_endpoint(payload: MarkReadRequest, request: Request) -> MarkReadResponse:
	try:
		updated = await service.mark_read(payload.requester_id, payload.counterparty_id, payload.side)
	except ChatError as exc:
		raise _map_error(exc, get_request_id(request)) from None
	key = ConversationKey(payload.requester_id, payload.counterparty_id)
	return MarkReadResponse(conversation_id=key.conversation_id, updated=updated)


@router.delete("/messages/{message_id}", response_model=DeleteMessageResponse)
async def delete_message_endpoint(
	message_id: int,
	request: Request,
	side: str = Query(...),
) -> DeleteMessageResponse:
	try:
		await service.soft_delete(message_id, side)
	except ChatError as exc:
		raise _map_error(exc, get_request_id(request)) from None
	return DeleteMessageResponse(message_id=message_id)
