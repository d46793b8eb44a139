"""
Serving Module

HTTP read API over the published snapshots.
"""
