"""Observability helpers for the guild cache.

Modules
-------
counters  — RollingCounters: timestamped event log counted over trailing windows
"""
