"""
Admin module.
Contains the introspection and operational API used by the HTTP layer.
"""

from jobqueue.admin.service import QueueAdmin

__all__ = ["QueueAdmin"]
