"""
diagnostics/services.py — Managed system service health.

One check per service reported by the node. Unhealthy services carry a
restart fix.
"""

from __future__ import annotations

import logging

from config.settings import Settings
from diagnostics import DiagnosticCheck, DiagnosticFix, RestartService
from diagnostics.collaborators import NodeAccessor, ServiceInfo
from diagnostics.context import DiagnosticContext

logger = logging.getLogger(__name__)


async def run_checks(
    node: NodeAccessor, ctx: DiagnosticContext, cfg: Settings | None = None  # noqa: ARG001
) -> list[DiagnosticCheck]:
    try:
        services = await node.services()
    except Exception as e:  # noqa: BLE001
        logger.debug("service list fetch failed: %s", e)
        return [DiagnosticCheck.unknown("services", "Services").with_details(f"Error: {e}")]
    return [_check_service(service) for service in services]


def _check_service(service: ServiceInfo) -> DiagnosticCheck:
    check_id = f"service_{service.id}"
    if service.node:
        check_id = f"service_{service.node}_{service.id}"
    message = f"{service.state} ({'healthy' if service.healthy else 'unhealthy'})"
    if service.healthy:
        return DiagnosticCheck.passed(check_id, service.id, message)
    return DiagnosticCheck.fail(
        check_id,
        service.id,
        message,
        fix=DiagnosticFix(f"Restart {service.id}", RestartService(service.id)),
    )
