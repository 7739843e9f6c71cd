"""
Health checker — is this machine ready for a setup run?

Reports the package tools that are installed, who currently holds the
package-database locks, whether the helper scripts exist, and whether a
reboot is pending. Used by the CLI ``doctor`` command. Every check only
observes: nothing here modifies the system.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Sequence

from jetson_setup.adapters.registry import AdapterRegistry
from jetson_setup.core.engine.executor import SetupPlan
from jetson_setup.core.reliability.locks import LockProbe
from jetson_setup.core.services.reboot import reboot_required

logger = logging.getLogger(__name__)

# Adapters a default plan cannot do without.
CRITICAL_ADAPTERS = frozenset({"apt"})


@dataclass
class ComponentHealth:
    """Health of a single component."""

    name: str
    status: str = "unknown"  # healthy, degraded, unhealthy, unknown
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status,
            "message": self.message,
            "details": self.details,
        }


@dataclass
class SystemHealth:
    """Aggregate health of the machine."""

    status: str = "healthy"
    timestamp: str = ""
    components: list[ComponentHealth] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.timestamp:
            self.timestamp = datetime.now(UTC).isoformat()

    def add(self, component: ComponentHealth) -> None:
        self.components.append(component)
        self._recalculate()

    def _recalculate(self) -> None:
        """Recalculate overall status from components."""
        statuses = [c.status for c in self.components]
        if any(s == "unhealthy" for s in statuses):
            self.status = "unhealthy"
        elif any(s == "degraded" for s in statuses):
            self.status = "degraded"
        elif all(s == "healthy" for s in statuses):
            self.status = "healthy"
        else:
            self.status = "unknown"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "timestamp": self.timestamp,
            "components": [c.to_dict() for c in self.components],
        }


def check_adapters(registry: AdapterRegistry) -> ComponentHealth:
    """Check which package tools are installed."""
    status_data = registry.adapter_status()
    missing = registry.unavailable()

    if not status_data:
        return ComponentHealth(
            name="adapters",
            status="unknown",
            message="No adapters registered",
        )

    if CRITICAL_ADAPTERS & set(missing):
        status = "unhealthy"
        message = f"Missing required tools: {', '.join(missing)}"
    elif missing:
        status = "degraded"
        message = f"Unavailable: {', '.join(missing)}"
    else:
        status = "healthy"
        message = f"All {len(status_data)} tools available"

    return ComponentHealth(
        name="adapters",
        status=status,
        message=message,
        details=status_data,
    )


def check_locks(probe: LockProbe, resources: Sequence[str]) -> ComponentHealth:
    """Check whether anyone currently holds the package-database locks.

    A held lock is not an error (the run waits for it), so this only
    degrades.
    """
    held = [r for r in resources if probe.is_held(r)]
    if held:
        return ComponentHealth(
            name="locks",
            status="degraded",
            message=f"{len(held)}/{len(resources)} locks held: {', '.join(held)}",
            details={"held": held, "resources": list(resources)},
        )
    return ComponentHealth(
        name="locks",
        status="healthy",
        message="No package locks held",
        details={"held": [], "resources": list(resources)},
    )


def check_scripts(plan: SetupPlan) -> ComponentHealth:
    """Check which optional helper scripts are present."""
    if not plan.optional:
        return ComponentHealth(
            name="scripts",
            status="healthy",
            message="No optional steps configured",
        )

    missing = [str(o.script) for o in plan.optional if not Path(o.script).is_file()]
    total = len(plan.optional)
    if missing:
        status = "degraded"
        message = f"{len(missing)}/{total} helper scripts missing (will be skipped)"
    else:
        status = "healthy"
        message = f"All {total} helper scripts present"

    return ComponentHealth(
        name="scripts",
        status=status,
        message=message,
        details={"missing": missing},
    )


def check_reboot(sentinel: str | Path) -> ComponentHealth:
    """Check for a pending reboot."""
    if reboot_required(sentinel):
        return ComponentHealth(
            name="reboot",
            status="degraded",
            message="Reboot pending",
            details={"sentinel": str(sentinel)},
        )
    return ComponentHealth(
        name="reboot",
        status="healthy",
        message="No reboot pending",
        details={"sentinel": str(sentinel)},
    )


def check_system_health(
    registry: AdapterRegistry | None = None,
    probe: LockProbe | None = None,
    resources: Sequence[str] = (),
    plan: SetupPlan | None = None,
    reboot_sentinel: str | Path | None = None,
) -> SystemHealth:
    """Run all health checks and return aggregate status."""
    health = SystemHealth()

    if registry is not None:
        health.add(check_adapters(registry))

    if probe is not None and resources:
        health.add(check_locks(probe, resources))

    if plan is not None:
        health.add(check_scripts(plan))

    if reboot_sentinel is not None:
        health.add(check_reboot(reboot_sentinel))

    logger.debug("System health: %s", health.status)
    return health
