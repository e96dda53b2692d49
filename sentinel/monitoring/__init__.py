"""
Per-identity tracking, block list and rolling metrics.
"""

from .sliding_window import SlidingWindowTracker
from .block_list import BlockListManager
from .metrics import MetricsAggregator

__all__ = ['SlidingWindowTracker', 'BlockListManager', 'MetricsAggregator']
