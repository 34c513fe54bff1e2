"""Prometheus metrics for rooms, games and illustrations."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram


REQUEST_COUNTER = Counter(
	"wordparty_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"wordparty_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

SOCKET_CLIENTS = Gauge(
	"wordparty_socketio_clients",
	"Active Socket.IO clients per namespace",
	["namespace"],
)

SOCKET_EVENTS = Counter(
	"wordparty_socketio_events_total",
	"Socket.IO events emitted per namespace",
	["namespace", "event"],
)

ROOMS_CREATED = Counter(
	"wordparty_rooms_created_total",
	"Rooms created",
)

ROOMS_JOIN = Counter(
	"wordparty_rooms_join_total",
	"Room join operations",
)

GAME_TRANSITIONS = Counter(
	"wordparty_game_transitions_total",
	"Game lifecycle transitions",
	["status"],
)

WORDS_SUBMITTED = Counter(
	"wordparty_words_submitted_total",
	"Word submissions accepted",
	["source"],
)

ILLUSTRATION_ATTEMPTS = Counter(
	"wordparty_illustration_attempts_total",
	"Image generation attempts by outcome",
	["outcome"],
)

ILLUSTRATION_LATENCY = Histogram(
	"wordparty_illustration_duration_seconds",
	"Image generation latency in seconds",
	buckets=(1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 45.0, 60.0),
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


def inc_room_created() -> None:
	ROOMS_CREATED.inc()


def inc_room_join() -> None:
	ROOMS_JOIN.inc()


def inc_game_transition(status: str) -> None:
	GAME_TRANSITIONS.labels(status=status).inc()


def inc_word_submitted(source: str) -> None:
	WORDS_SUBMITTED.labels(source=source).inc()


def inc_illustration(outcome: str) -> None:
	ILLUSTRATION_ATTEMPTS.labels(outcome=outcome).inc()


def observe_illustration_latency(elapsed_seconds: float) -> None:
	ILLUSTRATION_LATENCY.observe(elapsed_seconds)
