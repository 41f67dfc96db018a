"""
diagnostics/control_plane.py — Control-plane component checks.

Consensus-store (etcd) membership on control-plane nodes, a crash-loop scan of
recent kubelet log text, and a pod-health summary when the management API
provided one. Network-plugin specifics live in network_plugin.py.
"""

from __future__ import annotations

import logging

from config.settings import Settings
from diagnostics import DiagnosticCheck
from diagnostics.collaborators import NodeAccessor
from diagnostics.context import DiagnosticContext, PodHealthInfo
from diagnostics.detection import tail_lines

logger = logging.getLogger(__name__)

CRASH_LOOP_MARKER = "CrashLoopBackOff"


async def run_checks(
    node: NodeAccessor, ctx: DiagnosticContext, cfg: Settings | None = None
) -> list[DiagnosticCheck]:
    cfg = cfg or Settings()
    results = []
    if ctx.is_control_plane:
        results.append(await _check_consensus(node))
    results.append(await _check_crash_loops(node, cfg))
    if ctx.pod_health is not None:
        results.append(_check_pod_health(ctx.pod_health))
    return results


async def _check_consensus(node: NodeAccessor) -> DiagnosticCheck:
    try:
        status = await node.consensus_status()
    except Exception as e:  # noqa: BLE001
        logger.debug("consensus status fetch failed: %s", e)
        return DiagnosticCheck.unknown("etcd", "Etcd", "Unreachable").with_details(f"Error: {e}")

    # A follower is a normal member, not a failure.
    if status.is_leader:
        return DiagnosticCheck.passed("etcd", "Etcd", "Leader, healthy")
    return DiagnosticCheck.passed("etcd", "Etcd", f"Follower (leader: {status.leader_id:x})")


async def _check_crash_loops(node: NodeAccessor, cfg: Settings) -> DiagnosticCheck:
    try:
        logs = await node.recent_log_text(cfg.NODE_LOG_SERVICE, cfg.HEALTH_LOG_LINES)
    except Exception as e:  # noqa: BLE001
        logger.debug("%s log fetch failed: %s", cfg.NODE_LOG_SERVICE, e)
        return DiagnosticCheck.unknown("pods_crashing", "Pod Health").with_details(f"Error: {e}")

    recent = tail_lines(logs, cfg.RECENT_LOG_WINDOW)
    if CRASH_LOOP_MARKER in recent:
        return DiagnosticCheck.warn(
            "pods_crashing", "Pod Health", f"{CRASH_LOOP_MARKER} detected"
        ).with_details(
            "\n".join(line for line in recent.splitlines() if CRASH_LOOP_MARKER in line)
        )
    return DiagnosticCheck.passed("pods_crashing", "Pod Health", "No issues detected")


def _check_pod_health(health: PodHealthInfo) -> DiagnosticCheck:
    if not health.has_issues:
        return DiagnosticCheck.passed(
            "workload_pods", "Workload Pods", f"{health.total_pods} pods, no issues"
        )

    lines = []
    if health.crashing:
        lines.append("Crash-looping:")
        lines.extend(
            f"  {p.namespace}/{p.name} ({p.restart_count} restarts)" for p in health.crashing
        )
    if health.image_pull_errors:
        lines.append("Image pull errors:")
        lines.extend(f"  {p.namespace}/{p.name} - {p.reason}" for p in health.image_pull_errors)
    message = (
        f"{len(health.crashing)} crashing, "
        f"{len(health.image_pull_errors)} image pull errors"
    )
    return DiagnosticCheck.warn("workload_pods", "Workload Pods", message).with_details(
        "\n".join(lines)
    )
