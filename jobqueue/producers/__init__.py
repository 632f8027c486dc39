"""
Producer API.
Functions that validate and submit jobs to the named queues.
"""

from jobqueue.producers.base import enqueue
from jobqueue.producers.data import add_data_job
from jobqueue.producers.email import add_email_job
from jobqueue.producers.webhook import add_webhook_job

__all__ = ["enqueue", "add_email_job", "add_webhook_job", "add_data_job"]
