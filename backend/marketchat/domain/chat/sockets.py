"""Socket.IO namespace for live chat delivery."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Set

import socketio
from pydantic import ValidationError

from marketchat.obs import metrics as obs_metrics

from .exceptions import ChatError, ChatInvalidInput
from .models import ConversationKey, Side
from .schemas import SendMessageRequest


TOPIC_ROOM = "chat:topic"

_namespace: "ChatNamespace" | None = None


def _header(scope: dict, name: str) -> Optional[str]:
	target = name.encode().lower()
	for key, value in scope.get("headers", []):
		if key.lower() == target:
			return value.decode()
	return None


@dataclass(slots=True)
class PartySession:
	party_id: int
	side: Side


def pair_room(key: ConversationKey) -> str:
	return f"chat:pair:{key.requester_id}:{key.counterparty_id}"


class ChatNamespace(socketio.AsyncNamespace):
	"""Every client joins the shared topic; pair rooms are opt-in per conversation."""

	def __init__(self) -> None:
		super().__init__("/chat")
		self._sessions: Dict[str, PartySession] = {}
		self._pairs: Dict[str, Set[str]] = {}

	async def on_connect(self, sid: str, environ: dict, auth: Optional[dict] = None) -> None:
		obs_metrics.socket_connected(self.namespace)
		scope = environ.get("asgi.scope", environ)
		auth_payload = auth or environ.get("auth") or scope.get("auth") or {}
		party_id = auth_payload.get("partyId") or _header(scope, "x-party-id")
		side = auth_payload.get("side") or _header(scope, "x-party-side")
		try:
			session = PartySession(party_id=int(party_id), side=Side.parse(side))
		except (TypeError, ValueError, ChatInvalidInput):
			obs_metrics.socket_disconnected(self.namespace)
			raise ConnectionRefusedError("missing party identity") from None
		self._sessions[sid] = session
		await self.enter_room(sid, TOPIC_ROOM)
		await self.emit("chat:ack", {"ok": True}, room=sid)

	async def on_disconnect(self, sid: str, reason: Optional[str] = None) -> None:
		obs_metrics.socket_disconnected(self.namespace)
		self._sessions.pop(sid, None)
		for room, members in list(self._pairs.items()):
			members.discard(sid)
			if not members:
				self._pairs.pop(room, None)

	def session(self, sid: str) -> PartySession:
		session = self._sessions.get(sid)
		if session is None:
			raise ConnectionRefusedError("unauthenticated")
		return session

	def _authorised_key(self, sid: str, payload: Optional[dict]) -> ConversationKey:
		session = self.session(sid)
		data = payload or {}
		try:
			key = ConversationKey(int(data["requester_id"]), int(data["counterparty_id"]))
		except (KeyError, TypeError, ValueError):
			raise ChatInvalidInput("invalid_conversation") from None
		if key.party_for(session.side) != session.party_id:
			raise ChatError("forbidden")
		return key

	async def on_subscribe(self, sid: str, payload: Optional[dict] = None) -> dict:
		obs_metrics.socket_event(self.namespace, "subscribe")
		try:
			key = self._authorised_key(sid, payload)
		except ChatError as exc:
			return {"ok": False, "error": exc.reason}
		room = pair_room(key)
		await self.enter_room(sid, room)
		self._pairs.setdefault(room, set()).add(sid)
		return {"ok": True, "conversation_id": key.conversation_id}

	async def on_unsubscribe(self, sid: str, payload: Optional[dict] = None) -> dict:
		obs_metrics.socket_event(self.namespace, "unsubscribe")
		try:
			key = self._authorised_key(sid, payload)
		except ChatError as exc:
			return {"ok": False, "error": exc.reason}
		room = pair_room(key)
		await self.leave_room(sid, room)
		members = self._pairs.get(room)
		if members is not None:
			members.discard(sid)
			if not members:
				self._pairs.pop(room, None)
		return {"ok": True, "conversation_id": key.conversation_id}

	async def on_send(self, sid: str, payload: Optional[dict] = None) -> dict:
		"""Live-channel send; acknowledges with the stored message or an error reason."""
		obs_metrics.socket_event(self.namespace, "send")
		from . import service

		session = self.session(sid)
		try:
			request = SendMessageRequest.model_validate(payload or {})
		except ValidationError:
			return {"ok": False, "error": "validation_error"}
		try:
			sender_side = Side.parse(request.sender_side)
			key = ConversationKey(request.requester_id, request.counterparty_id)
			if sender_side is not session.side or key.party_for(sender_side) != session.party_id:
				raise ChatError("forbidden")
			message = await service.send_message(
				request.requester_id,
				request.counterparty_id,
				request.context_id,
				sender_side,
				request.text,
			)
		except ChatError as exc:
			return {"ok": False, "error": exc.reason}
		return {"ok": True, "message": message.model_dump(mode="json")}

	def pair_listeners(self, key: ConversationKey) -> Set[str]:
		return set(self._pairs.get(pair_room(key), set()))


def set_namespace(namespace: ChatNamespace | None) -> None:
	global _namespace
	_namespace = namespace


def get_namespace() -> ChatNamespace | None:
	return _namespace


async def emit_to_topic(payload: dict) -> bool:
	if _namespace is None:
		return False
	obs_metrics.socket_event(_namespace.namespace, "chat:message")
	await _namespace.emit("chat:message", payload, room=TOPIC_ROOM)
	return True


async def emit_to_pair(key: ConversationKey, payload: dict) -> bool:
	if _namespace is None:
		return False
	obs_metrics.socket_event(_namespace.namespace, "chat:message")
	await _namespace.emit("chat:message", payload, room=pair_room(key))
	return True
