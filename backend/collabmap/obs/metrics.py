"""Central registry for Prometheus metrics used across the service."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

REQUEST_COUNTER = Counter(
	"collabmap_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"collabmap_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

SOCKET_CLIENTS = Gauge(
	"collabmap_socketio_clients",
	"Active Socket.IO clients per namespace",
	["namespace"],
)

SOCKET_EVENTS = Counter(
	"collabmap_socketio_events_total",
	"Socket.IO events handled or emitted per namespace",
	["namespace", "event"],
)

ADMITTED_CONNECTIONS = Gauge(
	"collabmap_admitted_connections",
	"Connections currently admitted by the capacity governor",
)

CAPACITY_REJECTIONS = Counter(
	"collabmap_capacity_rejections_total",
	"Connections rejected because the server was at capacity",
)

CAPACITY_WARNINGS = Counter(
	"collabmap_capacity_warnings_total",
	"Connections admitted past the soft watermark",
)

MUTATIONS = Counter(
	"collabmap_activity_mutations_total",
	"Activity mutations by action and outcome",
	["action", "result"],
)

WRITE_RETRIES = Counter(
	"collabmap_activity_write_retries_total",
	"Optimistic-concurrency retries against the activity store",
	["action"],
)

REGISTRY_CONNECTIONS = Gauge(
	"collabmap_registry_connections",
	"Connections tracked by the connection registry",
)

REGISTRY_ACTIVITIES = Gauge(
	"collabmap_registry_activities",
	"Activities with at least one tracked participant",
)

STALE_CONNECTIONS_CLEANED = Counter(
	"collabmap_stale_connections_cleaned_total",
	"Registry connections reconciled away by the janitor",
)

EMPTY_ACTIVITIES_PRUNED = Counter(
	"collabmap_empty_activities_pruned_total",
	"Empty activity room entries pruned by the janitor",
)

INFLIGHT_CLEARED = Counter(
	"collabmap_inflight_keys_cleared_total",
	"In-flight operation keys dropped by the leak guard",
)

PROCESS_RSS_MB = Gauge(
	"collabmap_process_rss_megabytes",
	"Resident set size reported by the stats job",
)

BACKGROUND_RUNS = Counter(
	"collabmap_background_runs_total",
	"Background job executions",
	["name", "result"],
)

BACKGROUND_DURATION = Histogram(
	"collabmap_background_duration_seconds",
	"Background job duration in seconds",
	["name"],
	buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0),
)

OUTBOX_FAILURES = Counter(
	"collabmap_outbox_failures_total",
	"Activity events that could not be appended to the outbox stream",
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


def inc_mutation(action: str, result: str) -> None:
	MUTATIONS.labels(action=action, result=result).inc()


def inc_write_retry(action: str) -> None:
	WRITE_RETRIES.labels(action=action).inc()


def set_admitted(count: int) -> None:
	ADMITTED_CONNECTIONS.set(count)


def inc_capacity_rejection() -> None:
	CAPACITY_REJECTIONS.inc()


def inc_capacity_warning() -> None:
	CAPACITY_WARNINGS.inc()


def set_registry_sizes(connections: int, activities: int) -> None:
	REGISTRY_CONNECTIONS.set(connections)
	REGISTRY_ACTIVITIES.set(activities)


def inc_outbox_failure() -> None:
	OUTBOX_FAILURES.inc()
