"""
diagnostics/detection.py — Network-plugin and add-on detection.

Network plugin: the management API pod inventory is tried first. Only when it
is unavailable, fails, or shows no plugin pods does detection fall back to
scanning the node's kubelet log text for plugin markers. The two paths are
never merged, and using the fallback records the reason on the context so the
console can explain why detection is less precise.

Add-ons: pod-name matching against a fixed catalog. There is no log fallback;
without the management API nothing is detected.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from config.settings import Settings
from diagnostics.collaborators import NodeAccessor, OrchestrationQuery, PodRecord
from diagnostics.context import (
    DetectedAddons,
    DiagnosticContext,
    NetworkPluginInfo,
    PluginType,
    PodHealthInfo,
)

logger = logging.getLogger(__name__)

# Priority order matters: first plugin with a match wins on both paths.
PLUGIN_POD_PREFIXES: tuple[tuple[PluginType, tuple[str, ...]], ...] = (
    (PluginType.FLANNEL, ("kube-flannel", "flannel")),
    (PluginType.CILIUM, ("cilium",)),
    (PluginType.CALICO, ("calico",)),
)
PLUGIN_LOG_MARKERS: tuple[tuple[PluginType, tuple[str, ...]], ...] = (
    (PluginType.FLANNEL, ("flannel", "subnet.env")),
    (PluginType.CILIUM, ("cilium",)),
    (PluginType.CALICO, ("calico", "felix")),
)

CRASH_REASONS = frozenset({"CrashLoopBackOff"})
IMAGE_PULL_REASONS = frozenset({"ImagePullBackOff", "ErrImagePull"})


@dataclass(frozen=True)
class AddonSpec:
    key: str
    display_name: str
    namespaces: tuple[str, ...]
    pod_prefixes: tuple[str, ...]

    def matches(self, pod: PodRecord) -> bool:
        return pod.name.lower().startswith(self.pod_prefixes)


ADDON_CATALOG: tuple[AddonSpec, ...] = (
    AddonSpec("cert-manager", "cert-manager", ("cert-manager",), ("cert-manager",)),
    AddonSpec("external-secrets", "External Secrets", ("external-secrets",), ("external-secrets",)),
    AddonSpec("kyverno", "Kyverno", ("kyverno",), ("kyverno",)),
    AddonSpec("ingress-nginx", "ingress-nginx", ("ingress-nginx",), ("ingress-nginx-controller",)),
    AddonSpec("traefik", "Traefik", ("traefik", "kube-system"), ("traefik",)),
    AddonSpec("prometheus", "Prometheus", ("monitoring", "prometheus"), ("prometheus",)),
    AddonSpec("argocd", "Argo CD", ("argocd",), ("argocd-",)),
    AddonSpec(
        "flux",
        "Flux",
        ("flux-system",),
        ("source-controller", "kustomize-controller", "helm-controller"),
    ),
)
ADDONS_BY_KEY = {spec.key: spec for spec in ADDON_CATALOG}


def tail_lines(text: str, count: int) -> str:
    """Last `count` lines of a log text block."""
    lines = text.splitlines()
    if len(lines) <= count:
        return text
    return "\n".join(lines[-count:])


# -------------------------------------------------------------------------
# Network plugin
# -------------------------------------------------------------------------


def classify_plugin_pods(pods: list[PodRecord]) -> NetworkPluginInfo | None:
    for plugin_type, prefixes in PLUGIN_POD_PREFIXES:
        matched = [pod for pod in pods if pod.name.lower().startswith(prefixes)]
        if matched:
            return NetworkPluginInfo(plugin_type, matched)
    return None


def plugin_from_log_text(text: str) -> PluginType:
    lowered = text.lower()
    for plugin_type, markers in PLUGIN_LOG_MARKERS:
        if any(marker in lowered for marker in markers):
            return plugin_type
    return PluginType.UNKNOWN


async def detect_network_plugin(
    orchestration: OrchestrationQuery | None,
    node: NodeAccessor,
    ctx: DiagnosticContext,
    cfg: Settings | None = None,
) -> tuple[PluginType, NetworkPluginInfo | None]:
    """Detect the network plugin, preferring the management API over log text.

    Returns the plugin type and, only when the management API answered, the
    plugin's pod inventory. Sets ctx.management_api_error when the log
    fallback is used.
    """
    cfg = cfg or Settings()
    namespace = cfg.NETWORK_PLUGIN_NAMESPACE

    if orchestration is None:
        reason = ctx.management_api_error or "management API unavailable"
    else:
        try:
            pods = await orchestration.list_pods(namespace)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Network-plugin detection via management API failed: %s", exc)
            reason = f"pod listing in {namespace} failed: {exc}"
        else:
            info = classify_plugin_pods(pods)
            if info is not None:
                logger.info(
                    "Network plugin detected via management API: %s (%d pods)",
                    info.plugin_type.value,
                    len(info.pods),
                )
                return info.plugin_type, info
            reason = f"no network-plugin pods found in {namespace}"

    ctx.management_api_error = reason
    logger.info("Falling back to log-based network-plugin detection (%s)", reason)
    try:
        text = await node.recent_log_text(cfg.NODE_LOG_SERVICE, cfg.DETECTION_LOG_LINES)
    except Exception as exc:  # noqa: BLE001
        logger.debug("Could not read %s logs for detection: %s", cfg.NODE_LOG_SERVICE, exc)
        return PluginType.UNKNOWN, None

    plugin_type = plugin_from_log_text(text)
    logger.info("Network plugin detected from logs: %s", plugin_type.value)
    return plugin_type, None


# -------------------------------------------------------------------------
# Add-ons
# -------------------------------------------------------------------------


async def _pods_in(
    orchestration: OrchestrationQuery,
    namespace: str,
    cache: dict[str, list[PodRecord]],
) -> list[PodRecord]:
    if namespace not in cache:
        try:
            cache[namespace] = await orchestration.list_pods(namespace)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Could not list pods in %s: %s", namespace, exc)
            cache[namespace] = []
    return cache[namespace]


async def detect_addons(orchestration: OrchestrationQuery | None) -> DetectedAddons:
    if orchestration is None:
        return DetectedAddons()

    cache: dict[str, list[PodRecord]] = {}
    found: list[str] = []
    for spec in ADDON_CATALOG:
        for namespace in spec.namespaces:
            pods = await _pods_in(orchestration, namespace, cache)
            if any(spec.matches(pod) for pod in pods):
                found.append(spec.key)
                break
    if found:
        logger.info("Detected add-ons: %s", ", ".join(found))
    return DetectedAddons(found)


# -------------------------------------------------------------------------
# Pod health summary
# -------------------------------------------------------------------------


def summarize_pod_health(pods: list[PodRecord]) -> PodHealthInfo:
    return PodHealthInfo(
        crashing=[pod for pod in pods if pod.reason in CRASH_REASONS],
        image_pull_errors=[pod for pod in pods if pod.reason in IMAGE_PULL_REASONS],
        total_pods=len(pods),
    )


async def collect_pod_health(
    orchestration: OrchestrationQuery, namespaces: list[str]
) -> PodHealthInfo:
    """Summarise pod health across namespaces. Listing errors propagate."""
    pods: list[PodRecord] = []
    for namespace in namespaces:
        pods.extend(await orchestration.list_pods(namespace))
    return summarize_pod_health(pods)
