"""Prometheus metrics for the transcoding worker.

Tracks job outcomes, per-rendition stage results, queue depth and scheduler
errors. Exposed over HTTP by the worker script when METRICS_PORT is set.
"""

import os

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    CollectorRegistry,
    generate_latest,
    start_http_server,
    multiprocess,
)

# Create a custom registry for our metrics
REGISTRY = CollectorRegistry()

# Check if running in multiprocess mode (e.g., several celery workers)
if "prometheus_multiproc_dir" in os.environ:
    multiprocess.MultiProcessCollector(REGISTRY)


# ============================================
# Transcode Job Metrics
# ============================================
TRANSCODE_JOBS_TOTAL = Counter(
    "transcode_jobs_total",
    "Total transcode jobs finished by final status",
    ["status"],
    registry=REGISTRY,
)

TRANSCODE_JOB_DURATION_SECONDS = Histogram(
    "transcode_job_duration_seconds",
    "Wall-clock duration of one transcode job",
    buckets=[10.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1800.0, 3600.0, 7200.0],
    registry=REGISTRY,
)

RENDITIONS_TOTAL = Counter(
    "transcode_renditions_total",
    "Rendition attempts by quality, stage and result",
    ["quality", "stage", "result"],
    registry=REGISTRY,
)


# ============================================
# Queue / Scheduler Metrics
# ============================================
QUEUE_DEPTH = Gauge(
    "transcode_queue_depth",
    "Number of video files by transcode status",
    ["status"],
    registry=REGISTRY,
)

SCHEDULER_ERRORS_TOTAL = Counter(
    "transcode_scheduler_errors_total",
    "Systemic errors that made the scheduler back off",
    registry=REGISTRY,
)


def get_metrics() -> bytes:
    """Generate latest metrics in Prometheus format."""
    return generate_latest(REGISTRY)


def start_metrics_server(port: int) -> None:
    """Serve the registry on a background HTTP thread."""
    start_http_server(port, registry=REGISTRY)


def record_queue_depth(counts: dict[str, int]) -> None:
    """Update queue depth gauges from a status -> count mapping.

    Args:
        counts: Count of video files per transcode status
    """
    for status, count in counts.items():
        QUEUE_DEPTH.labels(status=status).set(count)
