"""Scan scheduling for the guild cache.

Modules
-------
queue         — RateLimitedQueue: single-worker FIFO with a rolling call budget
orchestrator  — ScanOrchestrator: TTL decision for POST /player and the scan task
sweeper       — LevelSweeper: periodic SkyBlock level refresh for tracked members
"""
