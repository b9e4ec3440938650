"""
Prometheus metrics endpoint.

Exposes delivery engine and HTTP metrics for monitoring.
"""
from fastapi import APIRouter, Response
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST

router = APIRouter()

# ============================================
# HTTP Request Metrics
# ============================================

http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

http_request_duration = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# ============================================
# Delivery Metrics
# ============================================

delivery_attempts = Counter(
    'note_delivery_attempts_total',
    'Total delivery attempts',
    ['outcome']
)

delivery_duration = Histogram(
    'note_delivery_duration_seconds',
    'Outbound delivery duration in seconds',
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
)

notes_delivered = Counter(
    'notes_delivered_total',
    'Total notes delivered successfully'
)

notes_dead = Counter(
    'notes_dead_total',
    'Total notes that exhausted their retry budget'
)

note_replays = Counter(
    'note_replays_total',
    'Total replay requests accepted'
)

store_write_failures = Counter(
    'note_store_write_failures_total',
    'Total failures writing attempt results to the record store'
)

deliveries_in_flight = Gauge(
    'note_deliveries_in_flight',
    'Deliveries currently being processed'
)


# ============================================
# Metrics Helper Functions
# ============================================

def track_request(method: str, endpoint: str, status: int, duration_seconds: float):
    """
    Record HTTP request metrics.

    Call this after each request.
    """
    http_requests_total.labels(
        method=method,
        endpoint=endpoint,
        status=status
    ).inc()

    http_request_duration.labels(
        method=method,
        endpoint=endpoint
    ).observe(duration_seconds)


def track_delivery_attempt(ok: bool, status_code: int, duration_seconds: float):
    """Record one outbound attempt."""
    if ok:
        outcome = "success"
    elif status_code == 0:
        outcome = "transport_error"
    else:
        outcome = "http_error"
    delivery_attempts.labels(outcome=outcome).inc()
    delivery_duration.observe(duration_seconds)


def track_note_delivered():
    notes_delivered.inc()


def track_note_dead():
    notes_dead.inc()


def track_note_replayed():
    note_replays.inc()


def track_store_write_failure():
    store_write_failures.inc()


# ============================================
# Prometheus Endpoint
# ============================================

@router.get("/metrics")
async def metrics():
    """
    Prometheus metrics endpoint.

    Returns all registered metrics in Prometheus format.
    """
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
