"""
Telemetry Module
================

Error tracking for the API and the background workers.

Usage:
    from funnelboard.telemetry import init_sentry, capture_exception
"""

from funnelboard.telemetry.sentry import capture_exception, init_sentry

__all__ = [
    "init_sentry",
    "capture_exception",
]
