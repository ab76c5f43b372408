"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

REQUEST_COUNTER = Counter(
	"marketchat_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"marketchat_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

SOCKET_CLIENTS = Gauge(
	"marketchat_socketio_clients",
	"Active Socket.IO clients per namespace",
	["namespace"],
)

SOCKET_EVENTS = Counter(
	"marketchat_socketio_events_total",
	"Socket.IO events handled or emitted per namespace",
	["namespace", "event"],
)

CHAT_SEND = Counter(
	"marketchat_chat_send_total",
	"Chat messages stored",
	["sender_side"],
)

CHAT_READ_UPDATES = Counter(
	"marketchat_chat_read_updates_total",
	"Messages flipped to read by mark-read",
	["side"],
)

CHAT_SOFT_DELETES = Counter(
	"marketchat_chat_soft_deletes_total",
	"Soft delete operations",
	["side"],
)

CHAT_BROADCAST = Counter(
	"marketchat_chat_broadcast_total",
	"Live delivery broadcasts",
	["scope", "result"],
)

CHAT_SUMMARY_CACHE = Counter(
	"marketchat_chat_summary_cache_total",
	"Conversation summary cache lookups",
	["result"],
)

REDIS_UP = Gauge(
	"marketchat_redis_up",
	"Redis readiness (1 up, 0 down)",
)

REDIS_LATENCY = Histogram(
	"marketchat_redis_ping_seconds",
	"Redis ping latency",
	buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.25),
)

POSTGRES_UP = Gauge(
	"marketchat_postgres_up",
	"Postgres readiness (1 up, 0 down)",
)

POSTGRES_LATENCY = Histogram(
	"marketchat_postgres_ping_seconds",
	"Postgres readiness query latency",
	buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.25),
)


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def socket_connected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).inc()


def socket_disconnected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).dec()


def socket_event(namespace: str, event: str) -> None:
	SOCKET_EVENTS.labels(namespace=namespace, event=event).inc()


def inc_chat_send(sender_side: str) -> None:
	CHAT_SEND.labels(sender_side=sender_side).inc()


def inc_chat_read(side: str, count: int = 1) -> None:
	if count > 0:
		CHAT_READ_UPDATES.labels(side=side).inc(count)


def inc_chat_soft_delete(side: str) -> None:
	CHAT_SOFT_DELETES.labels(side=side).inc()


def inc_chat_broadcast(scope: str, result: str) -> None:
	CHAT_BROADCAST.labels(scope=scope, result=result).inc()


def inc_summary_cache(result: str) -> None:
	CHAT_SUMMARY_CACHE.labels(result=result).inc()


def mark_redis(ok: bool, *, latency_seconds: float | None = None) -> None:
	REDIS_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		REDIS_LATENCY.observe(latency_seconds)


def mark_postgres(ok: bool, *, latency_seconds: float | None = None) -> None:
	POSTGRES_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		POSTGRES_LATENCY.observe(latency_seconds)
