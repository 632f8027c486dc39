"""
Background Job Queue

A Redis-backed job queue orchestration engine: named queues, an atomic
claim/retry/backoff worker runtime, a cron-style recurring scheduler,
metrics, and an admin/introspection surface.
"""

__version__ = "1.0.0"
