# copyflow/monitoring.py
"""
Centralized monitoring: Prometheus metrics, structured JSON logging, optional Sentry.

Env vars:
- PROMETHEUS_ENABLED (default: true)
- SENTRY_DSN (optional)
- LOG_AS_JSON (default: true)
- LOG_LEVEL (default: INFO)
- ENVIRONMENT (default: development)
"""

import os
import logging
import time
from typing import Tuple

import sentry_sdk
from prometheus_client import (
    Counter, Histogram,
    generate_latest, CONTENT_TYPE_LATEST, REGISTRY,
)
from pythonjsonlogger import jsonlogger

# --- ENV flags
PROMETHEUS_ENABLED = os.getenv("PROMETHEUS_ENABLED", "true").lower() in ("1", "true", "yes")
SENTRY_DSN = os.getenv("SENTRY_DSN", None)
LOG_AS_JSON = os.getenv("LOG_AS_JSON", "true").lower() in ("1", "true", "yes")
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")


# --- Logger setup
def setup_logger(name: str = "copyflow", level: int = None) -> logging.Logger:
    level = logging.getLevelName(os.getenv("LOG_LEVEL", "INFO")) if level is None else level
    logger = logging.getLogger(name)
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        if LOG_AS_JSON:
            fmt = jsonlogger.JsonFormatter(
                "%(asctime)s %(levelname)s %(name)s %(message)s"
            )
            handler.setFormatter(fmt)
        logger.addHandler(handler)
    return logger


logger = setup_logger()


def get_logger(component: str) -> logging.Logger:
    """Child logger that inherits the root copyflow handler."""
    return logger.getChild(component)


# --- Sentry (optional)
if SENTRY_DSN:
    sentry_sdk.init(dsn=SENTRY_DSN, environment=ENVIRONMENT)
    logger.info("Sentry initialized")


# --- Prometheus metrics
REQUEST_COUNT = Counter(
    "copyflow_requests_total",
    "Total API requests",
    ["method", "endpoint", "status"],
)

REQUEST_LATENCY = Histogram(
    "copyflow_request_latency_seconds",
    "Request latency in seconds",
    ["endpoint"],
)

GENERATION_COUNTER = Counter(
    "copyflow_generations_total",
    "Content generation attempts",
    ["kind", "outcome"],
)

GENERATION_LATENCY = Histogram(
    "copyflow_generation_latency_seconds",
    "Content generation latency",
    ["kind"],
)

RATE_LIMIT_REJECTIONS = Counter(
    "copyflow_rate_limit_rejections_total",
    "Requests rejected by the rate limiter",
    ["tier"],
)

BULK_ITEMS = Counter(
    "copyflow_bulk_items_total",
    "Bulk job items processed",
    ["outcome"],
)

BULK_JOBS = Counter(
    "copyflow_bulk_jobs_total",
    "Bulk jobs reaching a terminal state",
    ["status"],
)


# --- Helper wrappers (never crash the app)
def observe_request(start_ts: float, endpoint: str, method: str, status: str):
    try:
        REQUEST_LATENCY.labels(endpoint=endpoint).observe(time.time() - start_ts)
        REQUEST_COUNT.labels(method=method, endpoint=endpoint, status=status).inc()
    except Exception:
        pass


def observe_generation(start_ts: float, kind: str, outcome: str):
    try:
        GENERATION_LATENCY.labels(kind=kind).observe(time.time() - start_ts)
        GENERATION_COUNTER.labels(kind=kind, outcome=outcome).inc()
    except Exception:
        pass


def inc_rate_limit_rejection(tier: str):
    try:
        RATE_LIMIT_REJECTIONS.labels(tier=tier).inc()
    except Exception:
        pass


def inc_bulk_item(outcome: str):
    try:
        BULK_ITEMS.labels(outcome=outcome).inc()
    except Exception:
        pass


def inc_bulk_job(status: str):
    try:
        BULK_JOBS.labels(status=status).inc()
    except Exception:
        pass


def prometheus_metrics_response() -> Tuple[bytes, str]:
    """Return (body_bytes, content_type) for Prometheus scrape."""
    try:
        return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
    except Exception:
        return b"", CONTENT_TYPE_LATEST
