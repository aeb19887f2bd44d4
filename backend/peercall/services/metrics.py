"""Prometheus metrics instrumentation for call signaling.

Exposes metrics for monitoring call outcomes, negotiation health and
signaling write failures. Metrics are exposed via HTTP on the port
configured by METRICS_PORT when METRICS_ENABLED is set.

Metrics exported:
- calls_started_total: Counter of sessions started by role
- calls_finished_total: Counter of sessions torn down by outcome
- calls_active: Gauge of sessions between start and teardown
- call_remote_candidates_total: Counter of remote candidates by result
- call_signaling_write_errors_total: Counter of failed record writes by operation

Usage:
    from peercall.services.metrics import start_metrics_server, calls_started

    start_metrics_server(port=8001)
    calls_started.labels(role='caller').inc()
"""

from prometheus_client import Counter, Gauge, start_http_server
import logging

logger = logging.getLogger(__name__)

calls_started = Counter(
    'calls_started_total',
    'Total call sessions started',
    labelnames=['role']  # role: caller, callee
)

calls_finished = Counter(
    'calls_finished_total',
    'Total call sessions torn down',
    labelnames=['outcome']  # outcome: local_hangup, remote_hangup, failed
)

active_calls_gauge = Gauge(
    'calls_active',
    'Number of call sessions between start and teardown'
)

remote_candidates = Counter(
    'call_remote_candidates_total',
    'Remote ICE candidates handed to the transport',
    labelnames=['result']  # result: applied, rejected
)

signaling_write_errors = Counter(
    'call_signaling_write_errors_total',
    'Failed writes to the shared call record',
    labelnames=['operation']  # operation: create, update, append_candidate, delete_fields
)


def start_metrics_server(port: int = 8001):
    """Start Prometheus metrics HTTP server."""
    try:
        start_http_server(port)
        logger.info(f"✅ Metrics server started on port {port}")
    except Exception as e:
        logger.error(f"❌ Failed to start metrics server: {e}")
