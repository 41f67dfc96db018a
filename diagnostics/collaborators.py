"""
diagnostics/collaborators.py — Boundary of the engine.

The engine never talks to a node, the management API or the shell directly.
It consumes the Protocols below; adapters for a concrete RPC client implement
them and may build the payload records from raw API responses with
Model.model_validate(...).

Every NodeAccessor call may fail independently. Callers in the check modules
catch per call, so an adapter is free to raise whatever its transport raises
(CollaboratorError is preferred).
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol

from pydantic import BaseModel, Field, field_validator

from diagnostics import FixAction

# -------------------------------------------------------------------------
# Payload records
# -------------------------------------------------------------------------


class VersionInfo(BaseModel):
    tag: str = ""
    platform: str = ""


class MemoryInfo(BaseModel):
    """Memory counters in bytes."""

    mem_total: int = Field(..., ge=0)
    mem_available: int = Field(..., ge=0)

    @property
    def used(self) -> int:
        return max(0, self.mem_total - self.mem_available)

    @property
    def usage_percent(self) -> float:
        if self.mem_total == 0:
            return 0.0
        return self.used / self.mem_total * 100.0


class LoadAverage(BaseModel):
    load1: float
    load5: float
    load15: float


class CpuInfo(BaseModel):
    cpu_count: int = 1

    @field_validator("cpu_count")
    @classmethod
    def at_least_one(cls, value: int) -> int:
        return max(1, value)


class ServiceInfo(BaseModel):
    id: str
    state: str = "Unknown"
    # Missing health data counts as unhealthy.
    healthy: bool = False
    node: str | None = None


class ConsensusStatus(BaseModel):
    member_id: int
    leader_id: int

    @property
    def is_leader(self) -> bool:
        return self.member_id == self.leader_id


class CertificateInfo(BaseModel):
    name: str
    not_after: datetime


class PodRecord(BaseModel):
    name: str
    namespace: str = ""
    phase: str = "Unknown"
    ready: bool = False
    restart_count: int = 0
    # Waiting reason of the first waiting container, e.g. CrashLoopBackOff.
    reason: str | None = None

    @property
    def healthy(self) -> bool:
        return self.phase == "Running" and self.ready

    @classmethod
    def from_manifest(cls, pod: dict[str, Any]) -> PodRecord:
        """Build a record from a Kubernetes Pod object (as returned by the API)."""
        metadata = pod.get("metadata") or {}
        status = pod.get("status") or {}
        conditions = status.get("conditions") or []
        containers = status.get("containerStatuses") or []

        ready = any(
            c.get("type") == "Ready" and c.get("status") == "True" for c in conditions
        )
        restarts = sum(int(c.get("restartCount") or 0) for c in containers)
        reason = next(
            (
                c["state"]["waiting"].get("reason")
                for c in containers
                if (c.get("state") or {}).get("waiting")
            ),
            None,
        )
        return cls(
            name=metadata.get("name") or "",
            namespace=metadata.get("namespace") or "",
            phase=status.get("phase") or "Unknown",
            ready=ready,
            restart_count=restarts,
            reason=reason,
        )


class ApplyMode(str, Enum):
    AUTO = "auto"
    NO_REBOOT = "no_reboot"
    REBOOT = "reboot"
    STAGED = "staged"


class ApplyResult(BaseModel):
    node: str = ""
    mode: ApplyMode = ApplyMode.AUTO
    mode_details: str = ""
    warnings: list[str] = []


@dataclass
class ApplyOutcome:
    """What an executor reports back for one dispatched fix action."""

    ok: bool
    results: list[ApplyResult] = field(default_factory=list)
    error: str | None = None

    @classmethod
    def success(cls, results: list[ApplyResult] | None = None) -> ApplyOutcome:
        return cls(True, list(results or []))

    @classmethod
    def failure(cls, error: str) -> ApplyOutcome:
        return cls(False, error=error)


# -------------------------------------------------------------------------
# Consumed interfaces
# -------------------------------------------------------------------------


class NodeAccessor(Protocol):
    async def version(self) -> VersionInfo: ...

    async def memory(self) -> MemoryInfo: ...

    async def load_average(self) -> LoadAverage: ...

    async def cpu_info(self) -> CpuInfo: ...

    async def services(self) -> list[ServiceInfo]: ...

    async def consensus_status(self) -> ConsensusStatus: ...

    async def certificates(self) -> list[CertificateInfo]: ...

    async def recent_log_text(self, service_id: str, max_lines: int) -> str: ...

    async def restart_service(self, service_id: str) -> None: ...

    async def apply_configuration(
        self, yaml_text: str, mode: ApplyMode, dry_run: bool = False
    ) -> list[ApplyResult]: ...


class OrchestrationQuery(Protocol):
    async def list_pods(self, namespace: str) -> list[PodRecord]: ...


# Establishes a management-API handle for the node at the given endpoint.
# Raises (ManagementApiUnavailable preferred) when it cannot be reached.
OrchestrationConnector = Callable[[str], Awaitable[OrchestrationQuery]]


class ActionExecutor(Protocol):
    async def execute(self, action: FixAction) -> ApplyOutcome: ...
