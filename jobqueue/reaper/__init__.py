"""
Reaper module.
Contains the reaper that recovers stalled jobs and polls queue gauges.
"""

from jobqueue.reaper.main import Reaper

__all__ = ["Reaper"]
