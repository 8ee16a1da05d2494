"""Monitoring — raw metrics in, per-entity signal out.

- sources / fusion / analyzer: fetch, merge and aggregate raw samples
- quality / trend / anomaly: pure signal functions over sample history
- timeseries: per-cycle sample history in SQLite
"""
