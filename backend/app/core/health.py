"""
Health check aggregation — deep health probe for all subsystems.

Checks:
    • Database connectivity (SELECT 1)
    • Delivery channels (configured vs simulated, in-flight dispatches)
    • Realtime hub (connected users)

Returns a structured health report suitable for:
    - Kubernetes liveness/readiness probes
    - Load balancer health checks
    - Monitoring dashboards
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from backend.app.alerts.dispatcher import NotificationDispatcher
from backend.app.core.config import settings
from backend.app.realtime.hub import BroadcastHub

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # partial functionality
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    latency_ms: float = 0.0
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            d["message"] = self.message
        if self.details:
            d["details"] = self.details
        return d


@dataclass
class HealthReport:
    status: HealthStatus = HealthStatus.HEALTHY
    version: str = settings.APP_VERSION
    environment: str = settings.ENVIRONMENT
    timestamp: str = ""
    uptime_seconds: float = 0.0
    components: List[ComponentHealth] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "version": self.version,
            "environment": self.environment,
            "timestamp": self.timestamp or datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": round(self.uptime_seconds, 1),
            "components": [c.to_dict() for c in self.components],
        }


# Track application start time
_start_time = time.monotonic()


async def check_database(engine: AsyncEngine) -> ComponentHealth:
    """Round-trip ``SELECT 1`` through the engine."""
    comp = ComponentHealth(name="database")
    start = time.monotonic()
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        comp.message = "Connection available"
        comp.details = {"backend": engine.dialect.name}
    except SQLAlchemyError as e:
        logger.error("Database health check failed: %s", e)
        comp.status = HealthStatus.UNHEALTHY
        comp.message = str(e)
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_delivery_channels(dispatcher: NotificationDispatcher) -> ComponentHealth:
    """SMS / email configured, or running in simulation."""
    comp = ComponentHealth(name="delivery_channels")
    start = time.monotonic()
    channels = dispatcher.channel_status()
    simulated = [name for name, state in channels.items() if state == "simulated"]

    if simulated and not settings.is_development:
        comp.status = HealthStatus.DEGRADED
        comp.message = f"Simulated channels: {', '.join(simulated)}"
    else:
        comp.message = "Channels ready" if not simulated else "Simulation mode"

    comp.details = {
        **channels,
        "in_flight_dispatches": dispatcher.in_flight,
        "deliveries": dispatcher.delivery_log.stats(),
    }
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_realtime(hub: BroadcastHub) -> ComponentHealth:
    comp = ComponentHealth(name="realtime")
    comp.message = f"{hub.connected_count()} connected users"
    comp.details = {"connected_users": hub.connected_count()}
    return comp


async def run_health_check(
    engine: AsyncEngine,
    dispatcher: NotificationDispatcher,
    hub: BroadcastHub,
) -> HealthReport:
    """Run all health checks and aggregate into a report."""
    report = HealthReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )

    checks = [
        check_database(engine),
        check_delivery_channels(dispatcher),
        check_realtime(hub),
    ]

    for coro in checks:
        comp = await coro
        report.components.append(comp)

    # Aggregate status
    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    return report
