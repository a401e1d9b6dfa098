"""
Prometheus metrics endpoint.

Exposes delivery and ledger metrics for monitoring.
"""
from fastapi import APIRouter, Response
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

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

deliveries_started = Counter(
    'courier_deliveries_started_total',
    'Total delivery sequences started'
)

deliveries_succeeded = Counter(
    'courier_deliveries_succeeded_total',
    'Total delivery sequences that reached a receiver',
    ['resumed']
)

deliveries_abandoned = Counter(
    'courier_deliveries_abandoned_total',
    'Total delivery sequences abandoned after exhausting attempts'
)

dispatch_failures = Counter(
    'courier_dispatch_failures_total',
    'Total failed POSTs per receiver',
    ['endpoint', 'classification']
)

retries_scheduled = Counter(
    'courier_retries_scheduled_total',
    'Total retries scheduled after a failed attempt'
)

# ============================================
# Ledger Metrics
# ============================================

ledger_errors = Counter(
    'courier_ledger_errors_total',
    'Total attempt ledger operations that failed',
    ['operation']
)

records_recovered = Counter(
    'courier_records_recovered_total',
    'Total pending ledger records resumed by a recovery scan'
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


def track_delivery_started():
    deliveries_started.inc()


def track_delivery_succeeded(resumed: bool = False):
    """Record a delivery sequence ending in success."""
    deliveries_succeeded.labels(resumed=str(resumed).lower()).inc()


def track_delivery_abandoned():
    """Record a delivery sequence ending in abandonment."""
    deliveries_abandoned.inc()


def track_dispatch_failure(endpoint: str, classification: str):
    """Record one receiver failing within an attempt."""
    dispatch_failures.labels(endpoint=endpoint, classification=classification).inc()


def track_retry_scheduled():
    retries_scheduled.inc()


def track_ledger_error(operation: str):
    """Record a failed ledger read or write."""
    ledger_errors.labels(operation=operation).inc()


def track_record_recovered():
    records_recovered.inc()


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
