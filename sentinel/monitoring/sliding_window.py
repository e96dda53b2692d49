"""
Sliding window tracker

Per-identity timestamp logs used by the rate, user-agent and bot analyzers.
Queries always filter by the requested window, so answers stay correct even
when pruning has not run recently; pruning only bounds memory.
"""

import logging
import threading
import time
from collections import defaultdict, deque
from typing import Callable, Deque, Dict, Optional, Tuple

from ..core.models import EventKind

logger = logging.getLogger(__name__)


class SlidingWindowTracker:
    """
    Thread-safe per-identity event timestamps

    Timestamps for one identity and kind are kept in arrival order.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._events: Dict[Tuple[str, EventKind], Deque[float]] = defaultdict(deque)
        # identity -> {user_agent: last seen}
        self._user_agents: Dict[str, Dict[str, float]] = defaultdict(dict)
        self._lock = threading.RLock()

    def record_event(self, identity: str, kind: EventKind, timestamp: Optional[float] = None):
        """Append one timestamp for an identity"""
        timestamp = self.clock() if timestamp is None else timestamp
        with self._lock:
            log = self._events[(identity, kind)]
            # Keep the log non-decreasing even if the clock steps backwards
            if log and timestamp < log[-1]:
                timestamp = log[-1]
            log.append(timestamp)

    def recent_count(self, identity: str, kind: EventKind, window_seconds: float,
                     now: Optional[float] = None) -> int:
        """Number of events strictly newer than ``now - window_seconds``"""
        now = self.clock() if now is None else now
        cutoff = now - window_seconds
        with self._lock:
            log = self._events.get((identity, kind))
            if not log:
                return 0
            count = 0
            for timestamp in reversed(log):
                if timestamp <= cutoff:
                    break
                count += 1
            return count

    def record_user_agent(self, identity: str, user_agent: str, timestamp: Optional[float] = None):
        """Remember that an identity used a user agent"""
        if not user_agent:
            return
        timestamp = self.clock() if timestamp is None else timestamp
        with self._lock:
            self._user_agents[identity][user_agent] = timestamp

    def distinct_user_agents(self, identity: str, window_seconds: float,
                             now: Optional[float] = None) -> int:
        """Number of different user agents seen for an identity within the window"""
        now = self.clock() if now is None else now
        cutoff = now - window_seconds
        with self._lock:
            agents = self._user_agents.get(identity)
            if not agents:
                return 0
            return sum(1 for seen in agents.values() if seen > cutoff)

    def prune(self, horizon_seconds: float = 3600, now: Optional[float] = None) -> int:
        """
        Drop entries older than the horizon and forget idle identities

        Returns:
            Number of timestamps removed
        """
        now = self.clock() if now is None else now
        cutoff = now - horizon_seconds
        removed = 0

        with self._lock:
            for key in list(self._events):
                log = self._events[key]
                while log and log[0] <= cutoff:
                    log.popleft()
                    removed += 1
                if not log:
                    del self._events[key]

            for identity in list(self._user_agents):
                agents = self._user_agents[identity]
                for agent in [a for a, seen in agents.items() if seen <= cutoff]:
                    del agents[agent]
                if not agents:
                    del self._user_agents[identity]

        if removed:
            logger.debug(f"Pruned {removed} tracking entries")
        return removed

    def tracked_identities(self) -> int:
        """Number of identities with any retained history"""
        with self._lock:
            identities = {identity for identity, _ in self._events}
            identities.update(self._user_agents)
            return len(identities)
