"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, Summary


REQUEST_COUNTER = Counter(
	"meetnearby_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"meetnearby_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

SOCKET_CLIENTS = Gauge(
	"meetnearby_socketio_clients",
	"Active Socket.IO clients per namespace",
	["namespace"],
)

SOCKET_EVENTS = Counter(
	"meetnearby_socketio_events_total",
	"Socket.IO events received per namespace",
	["namespace", "event"],
)

NEARBY_REFRESHES = Counter(
	"meetnearby_nearby_refresh_total",
	"Nearby-user refresh cycles by outcome",
	["outcome", "trigger"],
)

NEARBY_RESULTS = Summary(
	"meetnearby_nearby_results",
	"Nearby list sizes after a refresh cycle",
)

DETAIL_CACHE = Counter(
	"meetnearby_detail_cache_total",
	"Detail cache lookups during refresh cycles",
	["outcome"],
)

DETAIL_BATCH_SIZE = Histogram(
	"meetnearby_detail_batch_size",
	"Number of ids per detail batch fetch",
	buckets=(0, 1, 2, 3, 5, 8, 13),
)

PRESENCE_WRITES = Counter(
	"meetnearby_presence_writes_total",
	"Own online-status writes by state and result",
	["state", "result"],
)

PRESENCE_SUBSCRIPTIONS = Gauge(
	"meetnearby_presence_subscriptions",
	"Live change-feed subscriptions held by presence trackers",
)

PRESENCE_PATCHES = Counter(
	"meetnearby_presence_patches_total",
	"Online-flag patches applied from change notifications",
	["target"],
)

LOCATION_WRITES = Counter(
	"meetnearby_location_writes_total",
	"Location writes by origin and result",
	["origin", "result"],
)

MAP_REDRAWS = Counter(
	"meetnearby_map_redraws_total",
	"Map layer redraws",
	["layer"],
)

REDIS_UP = Gauge("meetnearby_redis_up", "Redis availability (1=up,0=down)")
REDIS_LATENCY = Summary("meetnearby_redis_latency_seconds", "Redis ping latency (seconds)")

POSTGRES_UP = Gauge("meetnearby_postgres_up", "Postgres availability (1=up,0=down)")
POSTGRES_LATENCY = Summary("meetnearby_postgres_latency_seconds", "Postgres ping latency (seconds)")


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def socket_connected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).inc()


def socket_disconnected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).dec()


def socket_event(namespace: str, event: str) -> None:
	SOCKET_EVENTS.labels(namespace=namespace, event=event).inc()


def inc_nearby_refresh(outcome: str, *, user_initiated: bool) -> None:
	NEARBY_REFRESHES.labels(outcome=outcome, trigger="user" if user_initiated else "background").inc()


def observe_nearby_results(count: int) -> None:
	NEARBY_RESULTS.observe(count)


def inc_detail_cache(outcome: str, count: int = 1) -> None:
	if count > 0:
		DETAIL_CACHE.labels(outcome=outcome).inc(count)


def observe_detail_batch(size: int) -> None:
	DETAIL_BATCH_SIZE.observe(size)


def inc_presence_write(state: bool, result: str) -> None:
	PRESENCE_WRITES.labels(state="online" if state else "offline", result=result).inc()


def presence_subscription_opened() -> None:
	PRESENCE_SUBSCRIPTIONS.inc()


def presence_subscription_closed() -> None:
	PRESENCE_SUBSCRIPTIONS.dec()


def inc_presence_patch(target: str) -> None:
	PRESENCE_PATCHES.labels(target=target).inc()


def inc_location_write(origin: str, result: str) -> None:
	LOCATION_WRITES.labels(origin=origin, result=result).inc()


def inc_map_redraw(layer: str) -> None:
	MAP_REDRAWS.labels(layer=layer).inc()


def mark_redis(ok: bool, *, latency_seconds: float | None = None) -> None:
	REDIS_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		REDIS_LATENCY.observe(latency_seconds)


def mark_postgres(ok: bool, *, latency_seconds: float | None = None) -> None:
	POSTGRES_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		POSTGRES_LATENCY.observe(latency_seconds)
