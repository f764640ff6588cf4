"""
In-process record of security-relevant events.

Keeps the most recent events in a bounded buffer and summarizes them by
severity for the health endpoint. Events are also written to the
``campusboard.security`` logger so nothing depends on the buffer surviving.
"""
from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, List, Optional

logger = logging.getLogger("campusboard.security")

SEVERITIES = ("info", "warn", "error", "critical")
_LOG_LEVELS = {
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


@dataclass(frozen=True)
class SecurityEvent:
    type: str
    message: str
    severity: str
    source: str
    timestamp: float
    ip: Optional[str] = None
    user_id: Optional[str] = None
    path: Optional[str] = None


class SecurityMonitor:
    def __init__(self, *, max_events: int = 1000, clock: Callable[[], float] = time.time) -> None:
        self._events: Deque[SecurityEvent] = deque(maxlen=max_events)
        self._lock = threading.Lock()
        self._clock = clock

    def record(
        self,
        type: str,
        message: str,
        severity: str = "info",
        source: str = "app",
        *,
        ip: Optional[str] = None,
        user_id: Optional[str] = None,
        path: Optional[str] = None,
    ) -> SecurityEvent:
        if severity not in SEVERITIES:
            severity = "info"
        event = SecurityEvent(
            type=type,
            message=message,
            severity=severity,
            source=source,
            timestamp=self._clock(),
            ip=ip,
            user_id=user_id,
            path=path,
        )
        with self._lock:
            self._events.append(event)
        logger.log(_LOG_LEVELS[severity], "%s from %s: %s path=%s", type, source, message, path or "-")
        return event

    def recent(self, *, window_seconds: float = 3600) -> List[SecurityEvent]:
        cutoff = self._clock() - window_seconds
        with self._lock:
            return [e for e in self._events if e.timestamp >= cutoff]

    def summary(self, *, window_seconds: float = 3600) -> Dict[str, int]:
        """Counts per severity within the window plus ``total``."""
        counts = {s: 0 for s in SEVERITIES}
        events = self.recent(window_seconds=window_seconds)
        for event in events:
            counts[event.severity] += 1
        counts["total"] = len(events)
        return counts

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


SECURITY_MONITOR = SecurityMonitor()

__all__ = ["SECURITY_MONITOR", "SEVERITIES", "SecurityEvent", "SecurityMonitor"]
