"""
OpenTelemetry Integration Module

Tracing and metrics for agent executions:
- tracer: Tracer setup and spans
- metrics: Execution counters and latency histograms
"""

from .metrics import (
    EXECUTION_LATENCY,
    EXECUTIONS_TOTAL,
    FALLBACKS_TOTAL,
    increment_counter,
    record_latency,
    setup_metrics,
)
from .tracer import annotate_span, create_span, setup_tracer

__all__ = [
    "setup_tracer",
    "setup_metrics",
    "create_span",
    "annotate_span",
    "increment_counter",
    "record_latency",
    "EXECUTIONS_TOTAL",
    "EXECUTION_LATENCY",
    "FALLBACKS_TOTAL",
]
