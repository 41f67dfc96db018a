"""
diagnostics/remediation.py — Confirm → preview → apply → report protocol.

Nothing mutating happens in initiate(): it only stages the fix and renders a
preview for the operator. apply() dispatches exactly one action to the
executor and records the outcome; there is no retry. Fixes the engine cannot
carry out (host commands, details, plugin installs) are reported as handed to
the operator without reaching the executor.

States:
  IDLE        nothing staged
  CONFIRMING  a fix is staged and its preview is on screen
  APPLYING    the executor call is in flight
  REPORTED    the outcome of the last apply is available

Checks with details but no fix open a read-only DetailsView instead; that
never touches the state above.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

import yaml

from diagnostics import (
    AddKernelModule,
    ApplyConfigPatch,
    DiagnosticCheck,
    DiagnosticFix,
    FixAction,
    HostCommand,
    InstallNetworkPlugin,
    RestartService,
    ShowDetails,
)
from diagnostics.collaborators import ActionExecutor, ApplyOutcome
from diagnostics.errors import RemediationBusy

logger = logging.getLogger(__name__)


class RemediationState(str, Enum):
    IDLE = "idle"
    CONFIRMING = "confirming"
    APPLYING = "applying"
    REPORTED = "reported"


def kernel_module_patch(module: str) -> str:
    """Minimal machine-config patch that loads one kernel module."""
    patch = {"machine": {"kernel": {"modules": [{"name": module}]}}}
    return yaml.safe_dump(patch, sort_keys=False)


def render_preview(action: FixAction) -> str | None:
    if isinstance(action, AddKernelModule):
        return kernel_module_patch(action.name)
    if isinstance(action, ApplyConfigPatch):
        return action.yaml
    if isinstance(action, HostCommand):
        return action.command
    if isinstance(action, ShowDetails):
        return action.text
    if isinstance(action, (RestartService, InstallNetworkPlugin)):
        return None
    raise TypeError(f"unknown fix action: {action!r}")


def is_appliable(action: FixAction) -> bool:
    """Whether the engine itself can carry the action out on the node."""
    if isinstance(action, (AddKernelModule, ApplyConfigPatch, RestartService)):
        return True
    if isinstance(action, (HostCommand, ShowDetails, InstallNetworkPlugin)):
        return False
    raise TypeError(f"unknown fix action: {action!r}")


@dataclass(frozen=True)
class PendingFix:
    check_id: str
    check_name: str
    fix: DiagnosticFix
    preview: str | None

    @property
    def appliable(self) -> bool:
        return is_appliable(self.fix.action)

    @property
    def host_command(self) -> str | None:
        """Literal command text for the operator to copy, for host-command fixes."""
        action = self.fix.action
        return action.command if isinstance(action, HostCommand) else None


@dataclass(frozen=True)
class DetailsView:
    title: str
    content: str


class RemediationProtocol:
    def __init__(self, executor: ActionExecutor | None = None):
        self.executor = executor
        self.state = RemediationState.IDLE
        self.pending: PendingFix | None = None
        self.details: DetailsView | None = None
        self.outcome: ApplyOutcome | None = None
        # Fix whose outcome is being reported.
        self.reported_fix: PendingFix | None = None

    def initiate(self, check: DiagnosticCheck | None) -> PendingFix | DetailsView | None:
        """Stage the check's fix for confirmation, or open its details."""
        if self.state is RemediationState.APPLYING:
            raise RemediationBusy("a fix is already being applied")
        if check is None:
            return None

        if check.fix is not None:
            self.pending = PendingFix(
                check_id=check.id,
                check_name=check.name,
                fix=check.fix,
                preview=render_preview(check.fix.action),
            )
            self.details = None
            self.outcome = None
            self.reported_fix = None
            self.state = RemediationState.CONFIRMING
            return self.pending

        if check.details:
            self.details = DetailsView(check.name, check.details)
            return self.details
        return None

    def cancel(self) -> None:
        """Drop the staged fix and close any open details or report."""
        if self.state is RemediationState.APPLYING:
            raise RemediationBusy("cannot cancel while a fix is being applied")
        self.pending = None
        self.details = None
        self.outcome = None
        self.reported_fix = None
        self.state = RemediationState.IDLE

    def dismiss(self) -> None:
        """Close the details view or the report without touching a staged fix."""
        self.details = None
        if self.state is RemediationState.REPORTED:
            self.outcome = None
            self.reported_fix = None
            self.state = RemediationState.IDLE

    async def apply(self) -> ApplyOutcome:
        if self.state is RemediationState.APPLYING:
            raise RemediationBusy("a fix is already being applied")
        pending = self.pending
        if pending is None:
            logger.info("No pending fix to apply")
            return ApplyOutcome.success()

        self.pending = None
        if not pending.appliable:
            logger.info(
                "Fix for %s handed to the operator: %s", pending.check_id, pending.fix.description
            )
            return self._report(pending, ApplyOutcome.success())

        self.state = RemediationState.APPLYING
        if self.executor is None:
            outcome = ApplyOutcome.failure("No action executor configured")
        else:
            logger.info("Applying fix for %s: %s", pending.check_id, pending.fix.description)
            try:
                outcome = await self.executor.execute(pending.fix.action)
            except asyncio.CancelledError:
                logger.warning("Fix for %s cancelled while applying", pending.check_id)
                self._report(pending, ApplyOutcome.failure("cancelled"))
                raise
            except Exception as exc:  # noqa: BLE001
                outcome = ApplyOutcome.failure(str(exc))

        if outcome.ok:
            logger.info("Fix for %s applied", pending.check_id)
        else:
            logger.warning("Fix for %s failed: %s", pending.check_id, outcome.error)
        return self._report(pending, outcome)

    def _report(self, pending: PendingFix, outcome: ApplyOutcome) -> ApplyOutcome:
        self.outcome = outcome
        self.reported_fix = pending
        self.state = RemediationState.REPORTED
        return outcome
