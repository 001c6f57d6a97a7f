from abc import ABC, abstractmethod
import bisect
import logging
import threading
import time

logger = logging.getLogger(__name__)


class SpikeDetector(ABC):
    """Decides whether the current event from a source is part of a burst."""

    @abstractmethod
    def is_spike(self, source_id, now=None):
        """Record an event for ``source_id`` at ``now`` and report whether it is a spike."""

    def prune(self, now=None):
        return 0

    def active_sources(self):
        return []


class SlidingWindowSpikeDetector(SpikeDetector):
    def __init__(self, window_seconds=8.0, threshold=10, max_tracked_sources=10000):
        """
        Tracks recent event timestamps per source.
        window_seconds: trailing window the threshold applies to.
        threshold: events inside the window (current one included) that make a spike.
        max_tracked_sources: the whole store is cleared once it grows past this.
        """
        self.window_seconds = window_seconds
        self.threshold = threshold
        self.max_tracked_sources = max_tracked_sources
        self._history = {}
        self._lock = threading.Lock()

    def is_spike(self, source_id, now=None):
        if now is None:
            now = time.time()

        with self._lock:
            # Callers may arrive out of order, so filter the whole history
            timestamps = [
                t for t in self._history.get(source_id, ())
                if now - t < self.window_seconds
            ]
            bisect.insort(timestamps, now)
            self._history[source_id] = timestamps
            spike = len(timestamps) >= self.threshold

            if len(self._history) > self.max_tracked_sources:
                logger.warning(
                    "Spike store tracks %d sources (limit %d), clearing",
                    len(self._history), self.max_tracked_sources
                )
                self._history.clear()

        return spike

    def prune(self, now=None):
        """Forget sources whose newest event is already outside the window."""
        if now is None:
            now = time.time()

        with self._lock:
            stale = [
                source_id for source_id, timestamps in self._history.items()
                if not timestamps or now - timestamps[-1] >= self.window_seconds
            ]
            for source_id in stale:
                del self._history[source_id]

        if stale:
            logger.debug("Pruned %d idle sources from spike store", len(stale))
        return len(stale)

    def active_sources(self):
        with self._lock:
            return list(self._history.keys())

    def clear(self):
        with self._lock:
            self._history.clear()
