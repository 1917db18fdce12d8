"""Prometheus metrics for gif service.

Defines and exports metrics for monitoring:
- Conversion outcomes and latency (counter, histogram)
- In-flight conversions (gauge)
- Bytes relayed per pipe link (counter)
- Stage exit statuses (counter)
"""

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

# -----------------------------------------------------------------------------
# Conversion Metrics
# -----------------------------------------------------------------------------

fastgif_conversions_total = Counter(
    "fastgif_conversions_total",
    "Total conversions by terminal outcome",
    labelnames=["outcome"],
)

fastgif_conversion_duration_seconds = Histogram(
    "fastgif_conversion_duration_seconds",
    "Wall time from request acceptance to pipeline completion",
    labelnames=["outcome"],
    buckets=(0.25, 0.5, 1.0, 2.0, 4.0, 8.0, 16.0, 32.0, 64.0, float("inf")),
)

fastgif_conversions_in_flight = Gauge(
    "fastgif_conversions_in_flight",
    "Current number of in-flight conversions",
)

# -----------------------------------------------------------------------------
# Pipe and Stage Metrics
# -----------------------------------------------------------------------------

fastgif_relayed_bytes_total = Counter(
    "fastgif_relayed_bytes_total",
    "Bytes copied across each pipe link",
    labelnames=["link"],
)

fastgif_stage_exits_total = Counter(
    "fastgif_stage_exits_total",
    "Stage process exits by status",
    labelnames=["stage", "status"],
)


# -----------------------------------------------------------------------------
# Helper Functions
# -----------------------------------------------------------------------------


def conversion_started() -> None:
    """Mark a conversion as in flight."""
    fastgif_conversions_in_flight.inc()


def conversion_finished(outcome: str, duration_seconds: float) -> None:
    """Record a finished conversion.

    Args:
        outcome: PipelineOutcome value
        duration_seconds: Time from acceptance to completion
    """
    fastgif_conversions_in_flight.dec()
    fastgif_conversions_total.labels(outcome=outcome).inc()
    fastgif_conversion_duration_seconds.labels(outcome=outcome).observe(duration_seconds)


def record_relayed_bytes(link: str, count: int) -> None:
    """Add bytes copied on a pipe link."""
    if count > 0:
        fastgif_relayed_bytes_total.labels(link=link).inc(count)


def record_stage_exit(stage: str, returncode: int, killed: bool = False) -> None:
    """Record a stage exit.

    Args:
        stage: Stage name
        returncode: Process exit status (negative for signals)
        killed: True if the coordinator killed the process
    """
    if killed:
        status = "killed"
    elif returncode == 0:
        status = "ok"
    else:
        status = "error"
    fastgif_stage_exits_total.labels(stage=stage, status=status).inc()


def render_latest() -> tuple[bytes, str]:
    """Exposition payload and content type for /metrics."""
    return generate_latest(), CONTENT_TYPE_LATEST
