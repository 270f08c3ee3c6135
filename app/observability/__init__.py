"""Observability pipeline: metric registry, structured events and request instrumentation.

Everything is process-local: counters and gauges live in a `MetricsRegistry`
owned by the app, events go to stdout through structlog and optionally to Loki.
"""
