"""Metrics and instrumentation."""
