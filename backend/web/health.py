"""
Composite health report: database, configuration and security incidents.

Intent:
    Keep the aggregation rules out of the FastAPI layer. The database probe is
    a blocking callable (psycopg) and runs in a thread with a timeout so a
    hanging database cannot stall the event loop.

Aggregation (worst wins):
    - database down, environment unhealthy or security critical -> unhealthy
    - database degraded or security warning -> degraded
    - otherwise healthy
"""
from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from security_events import SecurityMonitor

logger = logging.getLogger("campusboard.web.health")

_PROCESS_STARTED = time.monotonic()


@dataclass(frozen=True)
class DatabaseHealth:
    status: str  # healthy | degraded | down
    issues: List[str] = field(default_factory=list)
    latency_ms: Optional[int] = None


@dataclass(frozen=True)
class EnvironmentHealth:
    status: str  # healthy | unhealthy
    missing_vars: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class SecurityHealth:
    status: str  # healthy | warning | critical
    incidents: Dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class HealthReport:
    status: str
    version: str
    timestamp: str
    uptime: float
    response_time_ms: int
    database: DatabaseHealth
    environment: EnvironmentHealth
    security: SecurityHealth

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "version": self.version,
            "timestamp": self.timestamp,
            "uptime": round(self.uptime, 3),
            "responseTime": self.response_time_ms,
            "components": {
                "database": {
                    "status": self.database.status,
                    "issues": list(self.database.issues),
                    "latencyMs": self.database.latency_ms,
                },
                "environment": {
                    "status": self.environment.status,
                    "missingVars": list(self.environment.missing_vars),
                },
                "security": asdict(self.security),
            },
        }


def overall_status(database: DatabaseHealth, environment: EnvironmentHealth, security: SecurityHealth) -> str:
    if database.status == "down" or environment.status == "unhealthy" or security.status == "critical":
        return "unhealthy"
    if database.status == "degraded" or security.status == "warning":
        return "degraded"
    return "healthy"


class HealthReporter:
    def __init__(
        self,
        probe: Optional[Callable[[], None]],
        monitor: SecurityMonitor,
        *,
        required_env: Sequence[str] = (),
        timeout_seconds: float = 2.0,
        slow_ms: int = 500,
        version: str = "0.1.0",
        timer: Callable[[], float] = time.perf_counter,
        security_window_seconds: int = 3600,
    ) -> None:
        self._probe = probe
        self._monitor = monitor
        self._required_env = list(required_env)
        self._timeout = timeout_seconds
        self._slow_ms = slow_ms
        self._version = version
        self._timer = timer
        self._security_window = security_window_seconds
        self._reported_missing: Tuple[str, ...] = ()

    async def _run_probe(self) -> None:
        if self._probe is None:
            raise RuntimeError("database_probe_not_configured")
        loop = asyncio.get_running_loop()
        await asyncio.wait_for(loop.run_in_executor(None, self._probe), timeout=self._timeout)

    async def check_database(self) -> DatabaseHealth:
        start = self._timer()
        try:
            await self._run_probe()
        except asyncio.TimeoutError:
            logger.warning("Database probe timed out after %.1fs", self._timeout)
            return DatabaseHealth(status="down", issues=["timeout"])
        except Exception as exc:
            logger.warning("Database probe failed: %s", exc.__class__.__name__)
            return DatabaseHealth(status="down", issues=[f"connection_error: {exc.__class__.__name__}"])
        latency_ms = int(round((self._timer() - start) * 1000))
        if latency_ms > self._slow_ms:
            return DatabaseHealth(status="degraded", issues=[f"slow_response: {latency_ms}ms"], latency_ms=latency_ms)
        return DatabaseHealth(status="healthy", latency_ms=latency_ms)

    def check_environment(self) -> EnvironmentHealth:
        """Missing required variables make the report unhealthy.

        A ``config_missing`` event is recorded only when the set of missing
        names changes, so polling does not flood the monitor. It is a warning:
        the environment component already carries the status.
        """
        missing = [name for name in self._required_env if not (os.getenv(name) or "").strip()]
        current = tuple(missing)
        if current != self._reported_missing:
            if missing:
                self._monitor.record(
                    "config_missing",
                    f"missing configuration: {', '.join(missing)}",
                    "warn",
                    "health",
                )
            else:
                self._monitor.record("config_restored", "required configuration present", "info", "health")
            self._reported_missing = current
        if missing:
            return EnvironmentHealth(status="unhealthy", missing_vars=missing)
        return EnvironmentHealth(status="healthy")

    def check_security(self) -> SecurityHealth:
        counts = self._monitor.summary(window_seconds=self._security_window)
        incidents = {k: counts[k] for k in ("critical", "error", "warn", "total")}
        if counts["critical"] > 0:
            return SecurityHealth(status="critical", incidents=incidents)
        if counts["error"] > 0:
            return SecurityHealth(status="warning", incidents=incidents)
        return SecurityHealth(status="healthy", incidents=incidents)

    async def report(self) -> HealthReport:
        started = time.perf_counter()
        database = await self.check_database()
        environment = self.check_environment()
        security = self.check_security()
        return HealthReport(
            status=overall_status(database, environment, security),
            version=self._version,
            timestamp=datetime.now(timezone.utc).isoformat(),
            uptime=time.monotonic() - _PROCESS_STARTED,
            response_time_ms=int((time.perf_counter() - started) * 1000),
            database=database,
            environment=environment,
            security=security,
        )

    async def is_alive(self) -> bool:
        """Liveness: database probe only."""
        try:
            await self._run_probe()
        except Exception:
            return False
        return True


__all__ = [
    "DatabaseHealth",
    "EnvironmentHealth",
    "HealthReport",
    "HealthReporter",
    "SecurityHealth",
    "overall_status",
]
