"""
Scheduler module.
Contains the cron scheduler for recurring jobs.
"""

from jobqueue.scheduler.cron import CronScheduler, next_run_at

__all__ = ["CronScheduler", "next_run_at"]
