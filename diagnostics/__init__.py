"""
diagnostics — Node health diagnostics and remediation engine.

Each category module exposes an async run_checks(node, ctx, cfg) function that
returns a list of DiagnosticCheck objects. session.py runs them all for one
node; group.py aggregates several nodes.

Usage:
    from diagnostics import CheckStatus, DiagnosticCheck
    from diagnostics.system import run_checks as system_checks
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace
from enum import Enum


class CheckStatus(str, Enum):
    PASS = "PASS"
    WARN = "WARN"
    FAIL = "FAIL"
    # The data source could not be reached. Not a failure.
    UNKNOWN = "UNKNOWN"


# Severity order used for aggregate health. UNKNOWN ranks below WARN so a
# node with an unreachable source never reads as failing.
_SEVERITY = {
    CheckStatus.PASS: 0,
    CheckStatus.UNKNOWN: 1,
    CheckStatus.WARN: 2,
    CheckStatus.FAIL: 3,
}


def worst_status(checks: Iterable[DiagnosticCheck]) -> CheckStatus:
    """Most severe status among checks (PASS for an empty list)."""
    worst = CheckStatus.PASS
    for check in checks:
        if _SEVERITY[check.status] > _SEVERITY[worst]:
            worst = check.status
    return worst


# -------------------------------------------------------------------------
# Fix actions (closed set of variants)
# -------------------------------------------------------------------------


@dataclass(frozen=True)
class AddKernelModule:
    name: str


@dataclass(frozen=True)
class ApplyConfigPatch:
    yaml: str
    reboot_required: bool = False


@dataclass(frozen=True)
class RestartService:
    service_id: str


@dataclass(frozen=True)
class ShowDetails:
    text: str


@dataclass(frozen=True)
class InstallNetworkPlugin:
    pass


@dataclass(frozen=True)
class HostCommand:
    """A command the operator must run on their own host (not on the node)."""

    command: str
    disruptive: bool = False


FixAction = (
    AddKernelModule
    | ApplyConfigPatch
    | RestartService
    | ShowDetails
    | InstallNetworkPlugin
    | HostCommand
)


def requires_reboot(action: FixAction) -> bool:
    if isinstance(action, AddKernelModule):
        return True
    if isinstance(action, ApplyConfigPatch):
        return action.reboot_required
    if isinstance(action, (RestartService, ShowDetails, InstallNetworkPlugin, HostCommand)):
        return False
    raise TypeError(f"unknown fix action: {action!r}")


def is_host_command(action: FixAction) -> bool:
    if isinstance(action, HostCommand):
        return True
    if isinstance(
        action,
        (AddKernelModule, ApplyConfigPatch, RestartService, ShowDetails, InstallNetworkPlugin),
    ):
        return False
    raise TypeError(f"unknown fix action: {action!r}")


@dataclass(frozen=True)
class DiagnosticFix:
    description: str
    action: FixAction

    @property
    def requires_reboot(self) -> bool:
        return requires_reboot(self.action)

    @property
    def is_host_command(self) -> bool:
        return is_host_command(self.action)


# -------------------------------------------------------------------------
# Check result
# -------------------------------------------------------------------------


@dataclass(frozen=True)
class DiagnosticCheck:
    id: str
    name: str
    message: str
    status: CheckStatus
    fix: DiagnosticFix | None = None
    details: str | None = None

    @classmethod
    def passed(cls, id: str, name: str, message: str) -> DiagnosticCheck:
        return cls(id, name, message, CheckStatus.PASS)

    @classmethod
    def warn(cls, id: str, name: str, message: str) -> DiagnosticCheck:
        return cls(id, name, message, CheckStatus.WARN)

    @classmethod
    def fail(
        cls, id: str, name: str, message: str, fix: DiagnosticFix | None = None
    ) -> DiagnosticCheck:
        return cls(id, name, message, CheckStatus.FAIL, fix=fix)

    @classmethod
    def unknown(cls, id: str, name: str, message: str = "Unknown") -> DiagnosticCheck:
        return cls(id, name, message, CheckStatus.UNKNOWN)

    def with_details(self, details: str) -> DiagnosticCheck:
        return replace(self, details=details)

    def with_name(self, name: str) -> DiagnosticCheck:
        return replace(self, name=name)

    def __str__(self) -> str:
        line = f"  [{self.status.value}] {self.name}: {self.message}"
        if self.fix is not None:
            line += f"\n         fix: {self.fix.description}"
        elif self.details and self.status is not CheckStatus.PASS:
            line += f"\n         {self.details}"
        return line


__all__ = [
    "AddKernelModule",
    "ApplyConfigPatch",
    "CheckStatus",
    "DiagnosticCheck",
    "DiagnosticFix",
    "FixAction",
    "HostCommand",
    "InstallNetworkPlugin",
    "RestartService",
    "ShowDetails",
    "is_host_command",
    "requires_reboot",
    "worst_status",
]
