"""
diagnostics/system.py — System resource checks.

Memory pressure, 1-minute CPU load, and certificate expiry. Each data source
is fetched independently; a failing source becomes an UNKNOWN check and the
rest still run.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from config.settings import Settings
from diagnostics import DiagnosticCheck
from diagnostics.collaborators import CertificateInfo, NodeAccessor
from diagnostics.context import DiagnosticContext

logger = logging.getLogger(__name__)

GIB = 1024**3


async def run_checks(
    node: NodeAccessor,
    ctx: DiagnosticContext,
    cfg: Settings | None = None,
    now: datetime | None = None,
) -> list[DiagnosticCheck]:
    cfg = cfg or Settings()
    results = []
    results.append(await _check_memory(node, cfg))
    results.append(await _check_cpu_load(node, ctx, cfg))
    results.extend(await _check_certificates(node, cfg, now or datetime.now(tz=UTC)))
    return results


async def _check_memory(node: NodeAccessor, cfg: Settings) -> DiagnosticCheck:
    try:
        mem = await node.memory()
    except Exception as e:  # noqa: BLE001
        logger.debug("memory fetch failed: %s", e)
        return DiagnosticCheck.unknown("memory", "Memory").with_details(f"Error: {e}")

    if mem.mem_total <= 0:
        return DiagnosticCheck.unknown("memory", "Memory").with_details(
            "Node reported zero total memory"
        )

    pct = mem.usage_percent
    msg = f"{mem.used / GIB:.1f} / {mem.mem_total / GIB:.1f} GB ({pct:.0f}%)"
    if pct > cfg.MEMORY_FAIL_PERCENT:
        return DiagnosticCheck.fail("memory", "Memory", msg).with_details(
            f"Memory usage above {cfg.MEMORY_FAIL_PERCENT:.0f}%. "
            "Check for runaway workloads or add capacity."
        )
    if pct > cfg.MEMORY_WARN_PERCENT:
        return DiagnosticCheck.warn("memory", "Memory", msg)
    return DiagnosticCheck.passed("memory", "Memory", msg)


async def _check_cpu_load(
    node: NodeAccessor, ctx: DiagnosticContext, cfg: Settings
) -> DiagnosticCheck:
    try:
        load = await node.load_average()
    except Exception as e:  # noqa: BLE001
        logger.debug("load average fetch failed: %s", e)
        return DiagnosticCheck.unknown("cpu_load", "CPU Load").with_details(f"Error: {e}")

    msg = f"{load.load1:.2f} / {load.load5:.2f} / {load.load15:.2f}"
    threshold = cfg.load_warn_threshold(ctx.cpu_count)
    if load.load1 > threshold:
        return DiagnosticCheck.warn("cpu_load", "CPU Load", msg).with_details(
            f"1-minute load above {threshold:.2f} ({ctx.cpu_count} CPUs detected)"
        )
    return DiagnosticCheck.passed("cpu_load", "CPU Load", msg)


async def _check_certificates(
    node: NodeAccessor, cfg: Settings, now: datetime
) -> list[DiagnosticCheck]:
    try:
        certs = await node.certificates()
    except Exception as e:  # noqa: BLE001
        logger.debug("certificate fetch failed: %s", e)
        return [
            DiagnosticCheck.unknown("certificates", "Certificates").with_details(f"Error: {e}")
        ]
    return [_certificate_check(cert, cfg.CERT_WARN_DAYS, now) for cert in certs]


def _certificate_check(cert: CertificateInfo, warn_days: int, now: datetime) -> DiagnosticCheck:
    not_after = cert.not_after
    if not_after.tzinfo is None:
        not_after = not_after.replace(tzinfo=UTC)
    days_left = (not_after - now).total_seconds() / 86400

    check_id = f"cert_{cert.name}"
    name = f"Cert: {cert.name}"
    rotate_hint = (
        f"Certificate '{cert.name}' expires {not_after:%Y-%m-%d %H:%M} UTC.\n"
        "Rotate it (or regenerate the client config) before it lapses."
    )
    if days_left <= 0:
        return DiagnosticCheck.fail(check_id, name, "Expired").with_details(rotate_hint)
    if days_left < warn_days:
        return DiagnosticCheck.warn(
            check_id, name, f"Expires in {int(days_left)} days"
        ).with_details(rotate_hint)
    return DiagnosticCheck.passed(check_id, name, f"Valid for {int(days_left)} days")
