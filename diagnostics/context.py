"""
diagnostics/context.py — Per-node detection context and loaded diagnostics data.

DiagnosticContext is filled in step by step during a refresh (platform, CPU
count, network plugin, pod health) and handed read-only to the check modules.
DiagnosticsData is the snapshot a session shows: the context it was built
from plus one ordered check list per category.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum, IntEnum

from diagnostics import CheckStatus, DiagnosticCheck, worst_status
from diagnostics.collaborators import PodRecord


class NodeRole(str, Enum):
    CONTROL_PLANE = "controlplane"
    WORKER = "worker"

    @classmethod
    def parse(cls, raw: str) -> NodeRole:
        """Lenient parse: anything mentioning "control" is a control-plane node."""
        return cls.CONTROL_PLANE if "control" in raw.strip().lower() else cls.WORKER


class PluginType(str, Enum):
    FLANNEL = "flannel"
    CILIUM = "cilium"
    CALICO = "calico"
    UNKNOWN = "unknown"
    NONE = "none"

    @property
    def display_name(self) -> str:
        if self is PluginType.UNKNOWN:
            return "Unknown"
        if self is PluginType.NONE:
            return "None"
        return self.value.capitalize()


@dataclass
class NetworkPluginInfo:
    plugin_type: PluginType
    pods: list[PodRecord] = field(default_factory=list)

    @property
    def healthy_pods(self) -> list[PodRecord]:
        return [pod for pod in self.pods if pod.healthy]

    @property
    def total_restarts(self) -> int:
        return sum(pod.restart_count for pod in self.pods)

    def pods_healthy(self) -> bool:
        # No pods is not healthy; callers report it as its own state.
        return bool(self.pods) and all(pod.healthy for pod in self.pods)

    def health_summary(self) -> str:
        if not self.pods:
            return "No pods found"
        healthy = len(self.healthy_pods)
        total = len(self.pods)
        restarts = self.total_restarts
        if restarts:
            return f"{healthy}/{total} pods healthy ({restarts} restarts)"
        return f"{healthy}/{total} pods healthy"


@dataclass
class PodHealthInfo:
    crashing: list[PodRecord] = field(default_factory=list)
    image_pull_errors: list[PodRecord] = field(default_factory=list)
    total_pods: int = 0

    @property
    def has_issues(self) -> bool:
        return bool(self.crashing or self.image_pull_errors)


@dataclass
class DetectedAddons:
    """Keys from the add-on catalog found in the cluster, in catalog order."""

    names: list[str] = field(default_factory=list)

    def __contains__(self, name: object) -> bool:
        return name in self.names

    def any_detected(self) -> bool:
        return bool(self.names)


@dataclass
class DiagnosticContext:
    hostname: str = ""
    endpoint: str | None = None
    role: NodeRole = NodeRole.WORKER
    platform: str = ""
    is_container: bool = False
    cpu_count: int = 1
    network_plugin: PluginType = PluginType.UNKNOWN
    network_plugin_info: NetworkPluginInfo | None = None
    pod_health: PodHealthInfo | None = None
    # Why the management-API detector was not used, when it was not.
    management_api_error: str | None = None

    @property
    def is_control_plane(self) -> bool:
        return self.role is NodeRole.CONTROL_PLANE


class Category(IntEnum):
    SYSTEM = 0
    CONTROL_PLANE = 1
    SERVICES = 2
    NETWORK_PLUGIN = 3
    ADDONS = 4


CATEGORY_COUNT = len(Category)


@dataclass
class DiagnosticsData:
    hostname: str = ""
    address: str = ""
    context: DiagnosticContext = field(default_factory=DiagnosticContext)
    system_checks: list[DiagnosticCheck] = field(default_factory=list)
    control_plane_checks: list[DiagnosticCheck] = field(default_factory=list)
    service_checks: list[DiagnosticCheck] = field(default_factory=list)
    network_plugin_checks: list[DiagnosticCheck] = field(default_factory=list)
    addon_checks: list[DiagnosticCheck] = field(default_factory=list)
    detected_addons: DetectedAddons = field(default_factory=DetectedAddons)

    def checks(self, category: int) -> list[DiagnosticCheck]:
        """Checks for a category index; out-of-range indices give an empty list."""
        if category == Category.SYSTEM:
            return self.system_checks
        if category == Category.CONTROL_PLANE:
            return self.control_plane_checks
        if category == Category.SERVICES:
            return self.service_checks
        if category == Category.NETWORK_PLUGIN:
            return self.network_plugin_checks
        if category == Category.ADDONS:
            return self.addon_checks
        return []

    def all_checks(self) -> list[DiagnosticCheck]:
        return [check for category in Category for check in self.checks(category)]

    def status_counts(self) -> dict[CheckStatus, int]:
        counts = Counter(check.status for check in self.all_checks())
        return {status: counts.get(status, 0) for status in CheckStatus}

    def overall_status(self) -> CheckStatus:
        return worst_status(self.all_checks())
