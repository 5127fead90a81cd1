"""
Aggregation Module
"""
from .engine import AggregationEngine

__all__ = [
    "AggregationEngine",
]
