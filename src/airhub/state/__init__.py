"""State layer.

This package is the single source of truth for how classified readings
from polling and broker pushes are merged, turned into alerts, and rolled
into the chart window.
"""
