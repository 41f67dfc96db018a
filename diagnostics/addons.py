"""
diagnostics/addons.py — Health of detected cluster add-ons.

Only add-ons found by detection.detect_addons get a check; absent add-ons are
never reported. Health comes from the management API pod inventory, so an
unreachable API yields UNKNOWN for every detected add-on.
"""

from __future__ import annotations

import logging

from diagnostics import DiagnosticCheck
from diagnostics.collaborators import OrchestrationQuery, PodRecord
from diagnostics.context import DetectedAddons, DiagnosticContext
from diagnostics.detection import ADDONS_BY_KEY, AddonSpec

logger = logging.getLogger(__name__)


async def run_checks(
    orchestration: OrchestrationQuery | None,
    detected: DetectedAddons,
    ctx: DiagnosticContext,
) -> list[DiagnosticCheck]:
    results = []
    for key in detected.names:
        spec = ADDONS_BY_KEY.get(key)
        if spec is None:
            logger.debug("Ignoring add-on outside the catalog: %s", key)
            continue
        results.append(await _check_addon(orchestration, spec, ctx))
    return results


async def _check_addon(
    orchestration: OrchestrationQuery | None, spec: AddonSpec, ctx: DiagnosticContext
) -> DiagnosticCheck:
    check_id = f"addon_{spec.key}"
    if orchestration is None:
        return DiagnosticCheck.unknown(check_id, spec.display_name).with_details(
            f"Management API unavailable: {ctx.management_api_error or 'no connection'}"
        )

    pods: list[PodRecord] = []
    try:
        for namespace in spec.namespaces:
            pods.extend(pod for pod in await orchestration.list_pods(namespace) if spec.matches(pod))
    except Exception as e:  # noqa: BLE001
        logger.debug("pod listing for %s failed: %s", spec.key, e)
        return DiagnosticCheck.unknown(check_id, spec.display_name).with_details(f"Error: {e}")

    if not pods:
        return DiagnosticCheck.warn(check_id, spec.display_name, "No pods found").with_details(
            f"Expected pods in: {', '.join(spec.namespaces)}"
        )

    healthy = sum(1 for pod in pods if pod.healthy)
    message = f"{healthy}/{len(pods)} pods healthy"
    if healthy == len(pods):
        return DiagnosticCheck.passed(check_id, spec.display_name, message)

    unhealthy = "\n".join(
        f"  {pod.namespace}/{pod.name} - {pod.reason or pod.phase}"
        for pod in pods
        if not pod.healthy
    )
    return DiagnosticCheck.fail(check_id, spec.display_name, message).with_details(
        f"Unhealthy pods:\n{unhealthy}"
    )
