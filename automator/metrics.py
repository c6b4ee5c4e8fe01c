"""
Prometheus metrics for the automator.
Exposes job, item and watermark processing metrics.

Supports two modes:
- Local HTTP server (for local runs)
- Pushgateway (for centralized monitoring)
"""
from prometheus_client import (
    Counter, Gauge, Histogram, Info,
    start_http_server, push_to_gateway,
    REGISTRY
)
import threading
import time
import logging

from .config import get_settings

logger = logging.getLogger(__name__)

# Info metrics
automator_info = Info('automator', 'Automator information')

# Job metrics
jobs_total = Counter('automator_jobs_total', 'Jobs finished by terminal status', ['status'])
job_cursor = Gauge('automator_job_cursor', 'Index of the next item to process')
job_total_items = Gauge('automator_job_total_items', 'Items in the current job')

# Item metrics
items_total = Counter('automator_items_total', 'Items processed', ['status'])
item_duration_seconds = Histogram(
    'automator_item_duration_seconds',
    'Per-item protocol duration',
    buckets=[5, 10, 20, 30, 60, 120, 180, 240]
)
inter_item_delay_seconds = Histogram(
    'automator_inter_item_delay_seconds',
    'Randomized delay between items',
    buckets=[5, 10, 15, 20, 30, 60, 120]
)

# Watermark metrics
watermark_images_total = Counter(
    'automator_watermark_images_total', 'Images handled by watermark removal', ['outcome']
)


class MetricsPusher:
    """Push metrics to Prometheus Pushgateway periodically."""

    def __init__(self, pushgateway_url: str, job_name: str = "automator",
                 push_interval: float = 15.0):
        self.pushgateway_url = pushgateway_url
        self.job_name = job_name
        self.push_interval = push_interval
        self._pusher_thread = None
        self._running = False

    def start(self, instance: str):
        """Start the metrics pusher thread."""
        automator_info.info({'instance': instance, 'mode': 'push'})

        def push_loop():
            self._running = True
            while self._running:
                self.push_now(instance)
                time.sleep(self.push_interval)

        self._pusher_thread = threading.Thread(target=push_loop, daemon=True)
        self._pusher_thread.start()
        logger.info(f"Metrics pusher started, pushing to {self.pushgateway_url} every {self.push_interval}s")

    def stop(self):
        """Stop the metrics pusher."""
        self._running = False

    def push_now(self, instance: str):
        """Push metrics immediately."""
        try:
            push_to_gateway(
                self.pushgateway_url,
                job=self.job_name,
                grouping_key={'instance': instance},
                registry=REGISTRY
            )
            logger.debug(f"Pushed metrics to {self.pushgateway_url}")
        except Exception as e:
            logger.warning(f"Failed to push metrics: {e}")


class MetricsServer:
    """HTTP server for Prometheus metrics."""

    def __init__(self, port: int = 9095):
        self.port = port

    def start(self, instance: str):
        """Start the metrics HTTP server (runs in a daemon thread)."""
        automator_info.info({'instance': instance, 'mode': 'http'})
        start_http_server(self.port)
        logger.info(f"Metrics server started on port {self.port}")

    def stop(self):
        """The prometheus_client server thread is a daemon; nothing to join."""


# Global metrics instance
_metrics_handler = None
_instance = "automator"


def start_metrics_server(instance: str = "automator"):
    """
    Start metrics collection.

    Uses Pushgateway if PUSHGATEWAY_URL is set, otherwise starts a local HTTP server.
    """
    global _metrics_handler, _instance
    _instance = instance

    settings = get_settings()

    if settings.pushgateway_url:
        _metrics_handler = MetricsPusher(
            pushgateway_url=settings.pushgateway_url,
            push_interval=settings.metrics_push_interval
        )
    else:
        _metrics_handler = MetricsServer(port=settings.metrics_port)
    _metrics_handler.start(instance)
    return _metrics_handler


def push_metrics_now():
    """Push metrics immediately (for pushgateway mode)."""
    if isinstance(_metrics_handler, MetricsPusher):
        _metrics_handler.push_now(_instance)


def update_job_progress(cursor: int, total: int):
    """Update progress gauges."""
    job_cursor.set(cursor)
    job_total_items.set(total)


def record_job_finished(status: str):
    """Count a job reaching a terminal status. The pusher thread ships it."""
    jobs_total.labels(status=status).inc()


def record_item(status: str, duration: float):
    """Record one attempted item."""
    items_total.labels(status=status).inc()
    item_duration_seconds.observe(duration)


def record_delay(seconds: float):
    inter_item_delay_seconds.observe(seconds)


def record_watermark_outcome(outcome: str):
    watermark_images_total.labels(outcome=outcome).inc()
