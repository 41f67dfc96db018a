"""
diagnostics/executor.py — Default ActionExecutor backed by a NodeAccessor.

Kernel-module and config-patch fixes are applied as machine-config patches
(the YAML is handed to the node accessor in memory), service fixes restart the
service. Host commands, details and plugin installation cannot be carried out
from here and report a failure that says so.
"""

from __future__ import annotations

import logging

from diagnostics import (
    AddKernelModule,
    ApplyConfigPatch,
    FixAction,
    HostCommand,
    InstallNetworkPlugin,
    RestartService,
    ShowDetails,
)
from diagnostics.collaborators import ApplyMode, ApplyOutcome, NodeAccessor
from diagnostics.remediation import kernel_module_patch

logger = logging.getLogger(__name__)


class NodeActionExecutor:
    def __init__(self, node: NodeAccessor, dry_run: bool = False):
        self.node = node
        self.dry_run = dry_run

    async def execute(self, action: FixAction) -> ApplyOutcome:
        try:
            return await self._dispatch(action)
        except TypeError:
            raise
        except Exception as e:  # noqa: BLE001
            return ApplyOutcome.failure(str(e))

    async def _dispatch(self, action: FixAction) -> ApplyOutcome:
        if isinstance(action, AddKernelModule):
            logger.info("Adding kernel module %s (reboot)", action.name)
            results = await self.node.apply_configuration(
                kernel_module_patch(action.name), ApplyMode.REBOOT, self.dry_run
            )
            return ApplyOutcome.success(results)
        if isinstance(action, ApplyConfigPatch):
            mode = ApplyMode.REBOOT if action.reboot_required else ApplyMode.AUTO
            logger.info("Applying configuration patch (mode=%s)", mode.value)
            results = await self.node.apply_configuration(action.yaml, mode, self.dry_run)
            return ApplyOutcome.success(results)
        if isinstance(action, RestartService):
            logger.info("Restarting service %s", action.service_id)
            await self.node.restart_service(action.service_id)
            return ApplyOutcome.success()
        if isinstance(action, HostCommand):
            return ApplyOutcome.failure(
                f"Run this command on the operator host instead: {action.command}"
            )
        if isinstance(action, ShowDetails):
            return ApplyOutcome.failure("Nothing to apply: this fix only shows details")
        if isinstance(action, InstallNetworkPlugin):
            return ApplyOutcome.failure(
                "Network plugin installation is not performed by the diagnostics engine"
            )
        raise TypeError(f"unknown fix action: {action!r}")
