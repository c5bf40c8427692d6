"""
Health check aggregation — deep health probe for all subsystems.

Checks:
    • Notification history backend (in-memory or Redis)
    • Emergency store (in-memory or SQL)
    • Delivery providers (push / email / SMS, real or simulated)
    • Realtime connections

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
from typing import TYPE_CHECKING, Any, Dict, List

from backend.app.core.config import settings

if TYPE_CHECKING:
    from backend.app.dependencies import Platform

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


async def check_history(platform: "Platform") -> ComponentHealth:
    """History backend reachability. Failure degrades: dispatch still works."""
    comp = ComponentHealth(name="notification_history")
    start = time.monotonic()
    comp.details = {
        "backend": platform.settings.HISTORY_BACKEND,
        "max_entries": platform.history.max_entries,
    }
    try:
        await platform.history.repository.ping()
        comp.message = "History store available"
    except Exception as e:
        comp.status = HealthStatus.DEGRADED
        comp.message = str(e)
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_emergency_store(platform: "Platform") -> ComponentHealth:
    """Emergency persistence. Without it SOS reports cannot be accepted."""
    comp = ComponentHealth(name="emergency_store")
    start = time.monotonic()
    comp.details = {"backend": platform.settings.EMERGENCY_STORE}
    try:
        await platform.emergencies.ping()
        comp.message = "Emergency store available"
    except Exception as e:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = str(e)
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_channels(platform: "Platform") -> ComponentHealth:
    """Report which delivery providers are live and which are simulated."""
    comp = ComponentHealth(name="delivery_channels")
    start = time.monotonic()
    providers = {
        channel.value: getattr(provider, "name", type(provider).__name__)
        for channel, provider in platform.dispatcher.providers.items()
    }
    simulated = [c for c, name in providers.items() if name == "simulation"]
    comp.details = {"providers": providers}
    if simulated and platform.settings.is_production:
        comp.status = HealthStatus.DEGRADED
        comp.message = f"Simulated channels in production: {', '.join(simulated)}"
    else:
        comp.message = "Providers configured"
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_realtime(platform: "Platform") -> ComponentHealth:
    comp = ComponentHealth(name="realtime")
    comp.details = {
        "tourists": len(platform.connections.connected_tourists),
        "dashboards": platform.connections.dashboard_count,
    }
    comp.message = "Connection registry available"
    return comp


async def run_health_check(platform: "Platform") -> HealthReport:
    """Run all health checks and aggregate into a report."""
    report = HealthReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )

    checks = [
        check_history(platform),
        check_emergency_store(platform),
        check_channels(platform),
        check_realtime(platform),
    ]

    # Run all checks
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
