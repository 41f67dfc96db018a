"""
diagnostics/group.py — Diagnostics across the nodes of a group.

The aggregator keeps one DiagnosticsData per hostname and a merged view that
is rebuilt from scratch whenever a node's data is added or replaced, so the
merged view only ever reflects the current per-node snapshots.

Views:
  INTERLEAVED  every node's checks concatenated per category, names prefixed
               with "[hostname] " and ids with "hostname/"
  BY_NODE      one node's data, unmodified, chosen by tab index
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from enum import Enum

from diagnostics import DiagnosticCheck
from diagnostics.context import (
    DetectedAddons,
    DiagnosticContext,
    DiagnosticsData,
    NodeRole,
)
from diagnostics.selection import Selection
from diagnostics.session import DiagnosticsSession

logger = logging.getLogger(__name__)


class GroupViewMode(str, Enum):
    INTERLEAVED = "interleaved"
    BY_NODE = "by_node"


def _prefixed(hostname: str, checks: list[DiagnosticCheck]) -> list[DiagnosticCheck]:
    return [
        replace(check, id=f"{hostname}/{check.id}", name=f"[{hostname}] {check.name}")
        for check in checks
    ]


class GroupAggregator:
    def __init__(
        self,
        group_name: str,
        role: NodeRole | str,
        nodes: list[tuple[str, str]],
    ):
        """nodes: (hostname, address) pairs in display order."""
        if isinstance(role, str):
            role = NodeRole.parse(role)
        self.group_name = group_name
        self.role = role
        self.nodes = list(nodes)
        self.node_data: dict[str, DiagnosticsData] = {}
        self.node_errors: dict[str, str] = {}
        self.view_mode = GroupViewMode.INTERLEAVED
        self.selected_node_tab = 0
        self.selection = Selection()
        self.merged = self._empty_merged()

    def _empty_merged(self) -> DiagnosticsData:
        context = DiagnosticContext(hostname=self.group_name, role=self.role)
        return DiagnosticsData(hostname=self.group_name, context=context)

    # -------------------------------------------------------------------------
    # Merge
    # -------------------------------------------------------------------------

    def add_node_diagnostics(self, hostname: str, data: DiagnosticsData) -> None:
        self.node_data[hostname] = data
        self.node_errors.pop(hostname, None)
        self._rebuild()

    def _ordered_hostnames(self) -> list[str]:
        known = [hostname for hostname, _ in self.nodes if hostname in self.node_data]
        extra = [hostname for hostname in self.node_data if hostname not in known]
        return known + extra

    def _rebuild(self) -> None:
        merged = self._empty_merged()
        addons: list[str] = []
        for hostname in self._ordered_hostnames():
            data = self.node_data[hostname]
            merged.system_checks.extend(_prefixed(hostname, data.system_checks))
            merged.control_plane_checks.extend(_prefixed(hostname, data.control_plane_checks))
            merged.service_checks.extend(_prefixed(hostname, data.service_checks))
            merged.network_plugin_checks.extend(_prefixed(hostname, data.network_plugin_checks))
            merged.addon_checks.extend(_prefixed(hostname, data.addon_checks))
            addons.extend(name for name in data.detected_addons.names if name not in addons)
        merged.detected_addons = DetectedAddons(addons)
        self.merged = merged
        self.selection.clamp(len(self.current_checks()))

    # -------------------------------------------------------------------------
    # Read accessors
    # -------------------------------------------------------------------------

    def display_data(self) -> DiagnosticsData | None:
        """Data for the current view; None when the selected node has no data."""
        if self.view_mode is GroupViewMode.INTERLEAVED:
            return self.merged
        if not 0 <= self.selected_node_tab < len(self.nodes):
            return None
        hostname, _ = self.nodes[self.selected_node_tab]
        return self.node_data.get(hostname)

    def current_checks(self) -> list[DiagnosticCheck]:
        data = self.display_data()
        if data is None:
            return []
        return data.checks(self.selection.category)

    def selected_check(self) -> DiagnosticCheck | None:
        checks = self.current_checks()
        if 0 <= self.selection.check < len(checks):
            return checks[self.selection.check]
        return None

    def selected_hostname(self) -> str | None:
        if 0 <= self.selected_node_tab < len(self.nodes):
            return self.nodes[self.selected_node_tab][0]
        return None

    # -------------------------------------------------------------------------
    # Navigation
    # -------------------------------------------------------------------------

    def toggle_view_mode(self) -> None:
        if self.view_mode is GroupViewMode.INTERLEAVED:
            self.view_mode = GroupViewMode.BY_NODE
        else:
            self.view_mode = GroupViewMode.INTERLEAVED
        self.selection.reset_check()

    def select_node_tab(self, delta: int) -> None:
        if self.nodes:
            self.selected_node_tab = min(max(self.selected_node_tab + delta, 0), len(self.nodes) - 1)
        self.selection.reset_check()

    def select_category(self, delta: int) -> None:
        self.selection.move_category(delta)

    def select_check(self, delta: int) -> None:
        self.selection.move_check(delta, len(self.current_checks()))

    # -------------------------------------------------------------------------
    # Refresh
    # -------------------------------------------------------------------------

    async def refresh_nodes(self, sessions: list[DiagnosticsSession]) -> None:
        """Refresh member sessions concurrently and fold in whatever they hold."""
        await asyncio.gather(*(session.refresh() for session in sessions))
        for session in sessions:
            if session.error:
                self.node_errors[session.hostname] = session.error
                logger.warning("Diagnostics for %s: %s", session.hostname, session.error)
            if session.has_loaded:
                self.node_data[session.hostname] = session.data
            if not session.error:
                self.node_errors.pop(session.hostname, None)
        self._rebuild()
        logger.info(
            "Group %s refreshed: %d/%d nodes with data",
            self.group_name,
            len(self.node_data),
            len(self.nodes),
        )
