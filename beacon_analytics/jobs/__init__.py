"""
Background Jobs Module
"""
from .scheduler import BackgroundJobScheduler, JOB_NAMES

__all__ = [
    "BackgroundJobScheduler",
    "JOB_NAMES",
]
