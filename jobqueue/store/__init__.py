"""
Store module.
Contains the Redis connection, key layout, job record and repository.
"""

from jobqueue.store.connection import close_client, create_client, store_errors
from jobqueue.store.keys import QueueKeys
from jobqueue.store.models import Job
from jobqueue.store.repository import JobRepository, now_ms
from jobqueue.store.scripts import QueueScripts

__all__ = [
    "create_client",
    "close_client",
    "store_errors",
    "QueueKeys",
    "Job",
    "JobRepository",
    "QueueScripts",
    "now_ms",
]
