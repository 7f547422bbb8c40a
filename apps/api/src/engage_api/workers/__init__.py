"""Background workers supporting async processing."""

from .expiry_sweeper import ExpirySweepWorker

__all__ = ["ExpirySweepWorker"]
