"""
Beacon Analytics
Configuration Module
"""
from .settings import (
    AggregationSettings,
    CacheSettings,
    SchedulerSettings,
    Settings,
    get_settings,
)

__all__ = [
    "AggregationSettings",
    "CacheSettings",
    "SchedulerSettings",
    "Settings",
    "get_settings",
]
