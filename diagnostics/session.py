"""
diagnostics/session.py — Load lifecycle and navigation state for one node.

refresh() walks the pipeline:
  1. start loading (clear the error, keep the last snapshot visible)
  2. resolve platform and CPU count, best effort
  3. connect to the management API (failure only degrades detection)
  4. detect the network plugin, pod health and add-ons
  5. run the five check categories concurrently under one timeout
  6. swap in the new snapshot and clamp the selection

A refresh is all-or-nothing: on timeout or error the previous snapshot stays
and only the error slot changes. A refresh requested while one is running is
rejected.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import replace
from enum import Enum

from config.settings import Settings
from diagnostics import DiagnosticCheck
from diagnostics import addons as addon_checks
from diagnostics import control_plane as control_plane_checks
from diagnostics import network_plugin as network_plugin_checks
from diagnostics import services as service_checks
from diagnostics import system as system_checks
from diagnostics.collaborators import (
    ActionExecutor,
    ApplyOutcome,
    NodeAccessor,
    OrchestrationConnector,
    OrchestrationQuery,
)
from diagnostics.context import (
    Category,
    DetectedAddons,
    DiagnosticContext,
    DiagnosticsData,
    NodeRole,
)
from diagnostics.detection import collect_pod_health, detect_addons, detect_network_plugin
from diagnostics.executor import NodeActionExecutor
from diagnostics.remediation import DetailsView, PendingFix, RemediationProtocol
from diagnostics.selection import Selection

logger = logging.getLogger(__name__)

CATEGORY_TITLES = {
    Category.SYSTEM: "System Health",
    Category.CONTROL_PLANE: "Kubernetes Components",
    Category.SERVICES: "Services",
    Category.NETWORK_PLUGIN: "CNI",
    Category.ADDONS: "Addons",
}


class LoadState(str, Enum):
    EMPTY = "empty"
    LOADING = "loading"
    LOADED = "loaded"
    ERROR = "error"


class DiagnosticsSession:
    def __init__(
        self,
        hostname: str,
        address: str,
        role: NodeRole | str = NodeRole.WORKER,
        node: NodeAccessor | None = None,
        connect_orchestration: OrchestrationConnector | None = None,
        executor: ActionExecutor | None = None,
        settings: Settings | None = None,
        controlplane_endpoint: str | None = None,
        data: DiagnosticsData | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.hostname = hostname
        self.address = address
        self.node = node
        self.connect_orchestration = connect_orchestration
        self.settings = settings or Settings()
        # Worker nodes reach the management API through a control-plane node.
        self.controlplane_endpoint = controlplane_endpoint
        self.auto_refresh = self.settings.AUTO_REFRESH
        self._clock = clock

        if isinstance(role, str):
            role = NodeRole.parse(role)
        self.role = role
        if data is None:
            context = DiagnosticContext(hostname=hostname, endpoint=address, role=role)
            data = DiagnosticsData(hostname=hostname, address=address, context=context)
            self.state = LoadState.EMPTY
        else:
            self.state = LoadState.LOADED
        self.data = data
        self.error: str | None = None
        # Clock reading when the last refresh completed, successfully or not.
        self.last_refresh: float | None = None
        self.has_loaded = self.state is LoadState.LOADED

        self.selection = Selection()
        if executor is None and node is not None:
            executor = NodeActionExecutor(node)
        self.remediation = RemediationProtocol(executor)

    # -------------------------------------------------------------------------
    # Read accessors
    # -------------------------------------------------------------------------

    @property
    def is_loading(self) -> bool:
        return self.state is LoadState.LOADING

    @property
    def pending_fix(self) -> PendingFix | None:
        return self.remediation.pending

    @property
    def details_view(self) -> DetailsView | None:
        return self.remediation.details

    def current_checks(self) -> list[DiagnosticCheck]:
        return self.data.checks(self.selection.category)

    def selected_check(self) -> DiagnosticCheck | None:
        checks = self.current_checks()
        if 0 <= self.selection.check < len(checks):
            return checks[self.selection.check]
        return None

    def category_title(self, category: int) -> str:
        if category == Category.NETWORK_PLUGIN:
            plugin = self.data.context.network_plugin
            if plugin.value in ("flannel", "cilium", "calico"):
                return f"CNI ({plugin.display_name})"
        if 0 <= category < len(Category):
            return CATEGORY_TITLES[Category(category)]
        return "Unknown"

    def visible_categories(self) -> list[Category]:
        """Categories worth showing; add-ons only when some were detected."""
        categories = [c for c in Category if c is not Category.ADDONS]
        if self.data.detected_addons.any_detected():
            categories.append(Category.ADDONS)
        return categories

    def should_auto_refresh(self, now: float | None = None) -> bool:
        if not self.auto_refresh or self.is_loading or self.node is None:
            return False
        if self.last_refresh is None:
            return True
        now = self._clock() if now is None else now
        return now - self.last_refresh >= self.settings.AUTO_REFRESH_INTERVAL_SECONDS

    # -------------------------------------------------------------------------
    # Navigation
    # -------------------------------------------------------------------------

    def select_category(self, delta: int) -> None:
        self.selection.move_category(delta)

    def select_check(self, delta: int) -> None:
        self.selection.move_check(delta, len(self.current_checks()))

    # -------------------------------------------------------------------------
    # Remediation
    # -------------------------------------------------------------------------

    def initiate_fix(self) -> PendingFix | DetailsView | None:
        return self.remediation.initiate(self.selected_check())

    def cancel(self) -> None:
        self.remediation.cancel()

    def dismiss(self) -> None:
        self.remediation.dismiss()

    async def confirm(self) -> ApplyOutcome:
        """Operator confirmed the staged fix: apply it."""
        return await self.apply_pending_fix()

    async def apply_pending_fix(self) -> ApplyOutcome:
        return await self.remediation.apply()

    # -------------------------------------------------------------------------
    # Refresh
    # -------------------------------------------------------------------------

    def set_error(self, error: str) -> None:
        self.error = error
        self.state = LoadState.ERROR
        self.last_refresh = self._clock()

    async def refresh(self) -> bool:
        """Reload diagnostics. Returns True when a new snapshot was installed."""
        if self.node is None:
            self.set_error("No client configured")
            return False
        if self.is_loading:
            logger.debug("Refresh for %s already in progress; ignoring", self.hostname)
            return False

        self.state = LoadState.LOADING
        self.error = None
        try:
            return await self._load()
        except asyncio.CancelledError:
            logger.info("Refresh for %s cancelled", self.hostname)
            self.state = LoadState.LOADED if self.has_loaded else LoadState.EMPTY
            raise

    async def _load(self) -> bool:
        cfg = self.settings
        ctx = replace(
            self.data.context,
            hostname=self.hostname,
            endpoint=self.address,
            role=self.role,
            network_plugin_info=None,
            pod_health=None,
            management_api_error=None,
        )
        await self._resolve_platform(ctx)
        await self._resolve_cpu_count(ctx)

        orchestration = await self._connect(ctx)
        ctx.network_plugin, ctx.network_plugin_info = await detect_network_plugin(
            orchestration, self.node, ctx, cfg
        )
        detected = DetectedAddons()
        if orchestration is not None:
            await self._collect_pod_health(orchestration, ctx)
            detected = await detect_addons(orchestration)

        try:
            system, control_plane, services, plugin, addons = await asyncio.wait_for(
                asyncio.gather(
                    system_checks.run_checks(self.node, ctx, cfg),
                    control_plane_checks.run_checks(self.node, ctx, cfg),
                    service_checks.run_checks(self.node, ctx, cfg),
                    network_plugin_checks.run_checks(self.node, ctx, cfg),
                    addon_checks.run_checks(orchestration, detected, ctx),
                ),
                timeout=cfg.REFRESH_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Diagnostics for %s timed out after %ss", self.hostname, cfg.REFRESH_TIMEOUT_SECONDS
            )
            self.set_error("Timeout fetching diagnostics")
            return False
        except Exception as exc:  # noqa: BLE001
            logger.warning("Diagnostics for %s failed: %s", self.hostname, exc)
            self.set_error(f"Diagnostics refresh failed: {exc}")
            return False

        self.data = DiagnosticsData(
            hostname=self.hostname,
            address=self.address,
            context=ctx,
            system_checks=system,
            control_plane_checks=control_plane,
            service_checks=services,
            network_plugin_checks=plugin,
            addon_checks=addons,
            detected_addons=detected,
        )
        self.selection.clamp(len(self.current_checks()))
        self.state = LoadState.LOADED
        self.has_loaded = True
        self.last_refresh = self._clock()
        logger.info(
            "Diagnostics for %s loaded (%d checks)", self.hostname, len(self.data.all_checks())
        )
        return True

    async def _resolve_platform(self, ctx: DiagnosticContext) -> None:
        try:
            version = await self.node.version()
        except Exception as exc:  # noqa: BLE001
            logger.debug("platform lookup failed for %s: %s", self.hostname, exc)
            return
        ctx.platform = version.platform
        ctx.is_container = version.platform == "container"
        logger.info("Detected platform for %s: %s", self.hostname, ctx.platform)

    async def _resolve_cpu_count(self, ctx: DiagnosticContext) -> None:
        try:
            info = await self.node.cpu_info()
        except Exception as exc:  # noqa: BLE001
            logger.debug("cpu info lookup failed for %s: %s", self.hostname, exc)
            return
        ctx.cpu_count = max(1, info.cpu_count)

    async def _connect(self, ctx: DiagnosticContext) -> OrchestrationQuery | None:
        if self.connect_orchestration is None:
            ctx.management_api_error = "No management API connection configured"
            return None
        endpoint = self.controlplane_endpoint or self.address
        try:
            orchestration = await self.connect_orchestration(endpoint)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Management API unavailable for %s: %s - checks will be limited", self.hostname, exc
            )
            ctx.management_api_error = str(exc)
            return None
        ctx.management_api_error = None
        return orchestration

    async def _collect_pod_health(
        self, orchestration: OrchestrationQuery, ctx: DiagnosticContext
    ) -> None:
        try:
            ctx.pod_health = await collect_pod_health(
                orchestration, self.settings.POD_HEALTH_NAMESPACES
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("Pod health lookup failed for %s: %s", self.hostname, exc)
