"""
Commerce Snapshot Engine

Materialized inventory and customer analytics snapshots built from raw
commerce collections.
"""

__version__ = "1.0.0"
