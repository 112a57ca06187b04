"""Cycle records, trade ledger and historical feedback."""

from .interfaces import BaseCycleRecorder, BasePerformanceTracker
from .performance import SqlPerformanceTracker
from .recorder import InMemoryCycleRecorder, JsonFileCycleRecorder

__all__ = [
    "BaseCycleRecorder",
    "BasePerformanceTracker",
    "InMemoryCycleRecorder",
    "JsonFileCycleRecorder",
    "SqlPerformanceTracker",
]
