"""Ingestion layer.

This package contains adapters that fetch/receive readings (HTTP polling,
broker pushes) and turn them into classified station readings.
"""

__all__: list[str] = []
