"""
diagnostics/network_plugin.py — Network-plugin (CNI) health checks.

Dispatches on the plugin type detected for the node:
  Flannel          pod inventory, bridge netfilter module, pod network setup
  Cilium / Calico  pod inventory, plugin summary
  Unknown / None   pod network setup probe from kubelet log text
"""

from __future__ import annotations

import logging

from config.settings import Settings
from diagnostics import (
    AddKernelModule,
    DiagnosticCheck,
    DiagnosticFix,
    HostCommand,
    InstallNetworkPlugin,
)
from diagnostics.collaborators import NodeAccessor
from diagnostics.context import DiagnosticContext, NetworkPluginInfo, PluginType
from diagnostics.detection import tail_lines

logger = logging.getLogger(__name__)

SETUP_FAILURE_MARKERS = ("failed to setup network for sandbox", "network plugin is not ready")
SETUP_SUCCESS_MARKER = "successfully setup network"
# Searched across the whole fetched log rather than the recent window.
PLUGIN_ADD_SUCCESS_MARKER = "ADD command succeeded"
PLUGIN_NOT_READY_MARKER = "network plugin is not ready"
BRIDGE_NETFILTER_MODULE = "br_netfilter"
BRIDGE_NETFILTER_MARKERS = ("br_netfilter", "bridge-nf-call-iptables")


async def run_checks(
    node: NodeAccessor, ctx: DiagnosticContext, cfg: Settings | None = None
) -> list[DiagnosticCheck]:
    cfg = cfg or Settings()
    plugin = ctx.network_plugin
    if plugin is PluginType.FLANNEL:
        return await _flannel_checks(node, ctx, cfg)
    if plugin in (PluginType.CILIUM, PluginType.CALICO):
        return _inventory_only_checks(ctx, cfg)
    if plugin in (PluginType.UNKNOWN, PluginType.NONE):
        logs, error = await _fetch_logs(node, cfg)
        return [_setup_check(ctx, cfg, logs, error, "CNI")]
    raise ValueError(f"unhandled network plugin type: {plugin!r}")


def check_plugin_pods(name: str, info: NetworkPluginInfo, namespace: str) -> DiagnosticCheck:
    if not info.pods:
        return DiagnosticCheck.warn("cni_pods", name, "No pods found").with_details(
            f"Could not find {info.plugin_type.display_name} pods in the {namespace} namespace."
        )

    summary = info.health_summary()
    if info.pods_healthy():
        return DiagnosticCheck.passed("cni_pods", name, summary)

    unhealthy = "\n".join(
        f"  {pod.name} - {pod.phase} (ready: {str(pod.ready).lower()})"
        for pod in info.pods
        if not pod.healthy
    )
    return DiagnosticCheck.fail("cni_pods", name, summary).with_details(
        f"Unhealthy pods:\n{unhealthy}"
    )


async def _fetch_logs(node: NodeAccessor, cfg: Settings) -> tuple[str | None, str | None]:
    try:
        return await node.recent_log_text(cfg.NODE_LOG_SERVICE, cfg.HEALTH_LOG_LINES), None
    except Exception as e:  # noqa: BLE001
        logger.debug("%s log fetch failed: %s", cfg.NODE_LOG_SERVICE, e)
        return None, str(e)


def _setup_check(
    ctx: DiagnosticContext,
    cfg: Settings,
    logs: str | None,
    error: str | None,
    name: str,
) -> DiagnosticCheck:
    if logs is None:
        return DiagnosticCheck.unknown("cni", name).with_details(
            f"Could not check network health: {error}"
        )

    recent = tail_lines(logs, cfg.RECENT_LOG_WINDOW)
    has_failure = any(marker in recent for marker in SETUP_FAILURE_MARKERS)
    has_success = SETUP_SUCCESS_MARKER in recent or PLUGIN_ADD_SUCCESS_MARKER in logs
    if not has_failure or has_success:
        return DiagnosticCheck.passed("cni", name, "OK")

    fix = None
    no_plugin = ctx.network_plugin in (PluginType.UNKNOWN, PluginType.NONE)
    if no_plugin and PLUGIN_NOT_READY_MARKER in recent:
        fix = DiagnosticFix("Install a network plugin", InstallNetworkPlugin())
    return DiagnosticCheck.fail("cni", name, "Network setup failed", fix).with_details(
        "The network plugin failed to set up pod networking."
    )


async def _flannel_checks(
    node: NodeAccessor, ctx: DiagnosticContext, cfg: Settings
) -> list[DiagnosticCheck]:
    results = []
    if ctx.network_plugin_info is not None:
        results.append(
            check_plugin_pods("Flannel Pods", ctx.network_plugin_info, cfg.NETWORK_PLUGIN_NAMESPACE)
        )
    logs, error = await _fetch_logs(node, cfg)
    results.append(_bridge_netfilter_check(ctx, cfg, logs, error))
    results.append(_setup_check(ctx, cfg, logs, error, "CNI (Flannel)"))
    return results


def _bridge_netfilter_check(
    ctx: DiagnosticContext, cfg: Settings, logs: str | None, error: str | None
) -> DiagnosticCheck:
    name = BRIDGE_NETFILTER_MODULE
    if logs is None:
        return DiagnosticCheck.unknown("br_netfilter", name).with_details(f"Error: {error}")

    recent = tail_lines(logs, cfg.RECENT_LOG_WINDOW)
    if not any(marker in recent for marker in BRIDGE_NETFILTER_MARKERS):
        return DiagnosticCheck.passed("br_netfilter", name, "Loaded")

    # Nodes running as containers share the host kernel: the module has to be
    # loaded on the host, not through the node's machine config.
    if ctx.is_container:
        fix = DiagnosticFix(
            f"Load {BRIDGE_NETFILTER_MODULE} on the container host",
            HostCommand(f"sudo modprobe {BRIDGE_NETFILTER_MODULE}"),
        )
    else:
        fix = DiagnosticFix(
            f"Add {BRIDGE_NETFILTER_MODULE} kernel module",
            AddKernelModule(BRIDGE_NETFILTER_MODULE),
        )
    return DiagnosticCheck.fail(
        "br_netfilter", name, "Missing (required by Flannel)", fix
    ).with_details("Flannel needs bridged traffic to pass through iptables.")


def _inventory_only_checks(ctx: DiagnosticContext, cfg: Settings) -> list[DiagnosticCheck]:
    label = ctx.network_plugin.display_name
    results = []
    if ctx.network_plugin_info is not None:
        results.append(
            check_plugin_pods(f"{label} Pods", ctx.network_plugin_info, cfg.NETWORK_PLUGIN_NAMESPACE)
        )
    results.append(
        DiagnosticCheck.passed(
            "cni", f"CNI ({label})", "OK" if ctx.network_plugin_info is not None else "Detected"
        )
    )
    return results
