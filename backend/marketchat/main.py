"""FastAPI application entrypoint."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import socketio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from marketchat.api import chat, ops
from marketchat.api.errors import install_error_handlers
from marketchat.api.middleware_request_id import RequestIdMiddleware
from marketchat.domain.chat import delivery
from marketchat.domain.chat.sockets import ChatNamespace, set_namespace as set_chat_namespace
from marketchat.infra import postgres
from marketchat.infra.postgres import STORAGE_ERRORS
from marketchat.obs import init as obs_init
from marketchat.settings import settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
	try:
		await postgres.init_pool()
	except STORAGE_ERRORS:
		if not settings.is_dev():
			raise
		# Local runs without a database fall back to the in-process stores.
		logger.warning("postgres_unavailable_using_memory_store", exc_info=True)
	try:
		yield
	finally:
		await delivery.drain()
		await postgres.close_pool()


app = FastAPI(title="Marketplace Chat", lifespan=lifespan)
install_error_handlers(app)

allow_origins = list(getattr(settings, "cors_allow_origins", []))
if not allow_origins:
	allow_origins = ["http://localhost:3000"] if settings.is_dev() else []
# Starlette disallows wildcard '*' with allow_credentials=True.
if "*" in allow_origins:
	allow_origins = ["http://localhost:3000", "http://127.0.0.1:3000"] if settings.is_dev() else []

app.add_middleware(
	CORSMiddleware,
	allow_origins=allow_origins,
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)

# Use the same allowed origins for Socket.IO as for the REST API
sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=allow_origins)
chat_namespace = ChatNamespace()
sio.register_namespace(chat_namespace)
set_chat_namespace(chat_namespace)

socket_app = socketio.ASGIApp(sio, other_asgi_app=app)

obs_init(app)
# Ensure every request carries an X-Request-Id and make it available on request.state
app.add_middleware(RequestIdMiddleware)

app.include_router(chat.router, tags=["chat"])
app.include_router(ops.router, tags=["ops"])
