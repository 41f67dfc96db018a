"""
tests/conftest.py — Shared fixtures and path setup for all tests.

Adds the project root to sys.path so unit tests can import:
    from config.settings import Settings
    from diagnostics import DiagnosticCheck
    from diagnostics.session import DiagnosticsSession

Also provides in-memory collaborators (no node, cluster or network needed):
    fake_node           NodeAccessor with canned answers per call
    fake_orchestration  OrchestrationQuery backed by a namespace → pods dict
    fake_executor       ActionExecutor that records what it was asked to do
"""
import asyncio
import pathlib
import sys

import pytest

# Make project root importable without installing as a package
PROJECT_ROOT = pathlib.Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from config.settings import Settings  # noqa: E402
from diagnostics.collaborators import (  # noqa: E402
    ApplyOutcome,
    ApplyResult,
    CpuInfo,
    LoadAverage,
    MemoryInfo,
    PodRecord,
    VersionInfo,
)

GIB = 1024**3


class FakeNode:
    """NodeAccessor double.

    Each attribute holds either the value to return or an Exception instance to
    raise. `delay` (seconds) is awaited before every call so timeouts can be
    provoked.
    """

    def __init__(self, **overrides):
        self.version_info = VersionInfo(tag="v1.9.0", platform="metal")
        self.memory_info = MemoryInfo(mem_total=16 * GIB, mem_available=8 * GIB)
        self.load = LoadAverage(load1=0.5, load5=0.4, load15=0.3)
        self.cpu = CpuInfo(cpu_count=4)
        self.service_list = []
        self.consensus = None
        self.certs = []
        self.logs = ""
        self.apply_results = [ApplyResult(node="10.0.0.1")]
        self.delay = 0.0
        for key, value in overrides.items():
            setattr(self, key, value)

        self.log_requests = []
        self.restarted = []
        self.applied = []

    async def _answer(self, value):
        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(value, Exception):
            raise value
        return value

    async def version(self):
        return await self._answer(self.version_info)

    async def memory(self):
        return await self._answer(self.memory_info)

    async def load_average(self):
        return await self._answer(self.load)

    async def cpu_info(self):
        return await self._answer(self.cpu)

    async def services(self):
        return await self._answer(self.service_list)

    async def consensus_status(self):
        if self.consensus is None:
            return await self._answer(RuntimeError("not a consensus member"))
        return await self._answer(self.consensus)

    async def certificates(self):
        return await self._answer(self.certs)

    async def recent_log_text(self, service_id, max_lines):
        self.log_requests.append((service_id, max_lines))
        return await self._answer(self.logs)

    async def restart_service(self, service_id):
        self.restarted.append(service_id)
        return await self._answer(None)

    async def apply_configuration(self, yaml_text, mode, dry_run=False):
        self.applied.append((yaml_text, mode, dry_run))
        return await self._answer(self.apply_results)


class FakeOrchestration:
    """OrchestrationQuery double: namespace → list of PodRecord, or an Exception."""

    def __init__(self, pods=None, error=None):
        self.pods = pods or {}
        self.error = error
        self.calls = []

    async def list_pods(self, namespace):
        self.calls.append(namespace)
        if self.error is not None:
            raise self.error
        return list(self.pods.get(namespace, []))


class FakeExecutor:
    def __init__(self, outcome=None, error=None):
        self.outcome = outcome or ApplyOutcome.success()
        self.error = error
        self.actions = []

    async def execute(self, action):
        self.actions.append(action)
        if self.error is not None:
            raise self.error
        return self.outcome


def pod(name, namespace="kube-system", phase="Running", ready=True, restarts=0, reason=None):
    return PodRecord(
        name=name,
        namespace=namespace,
        phase=phase,
        ready=ready,
        restart_count=restarts,
        reason=reason,
    )


def connector_for(orchestration):
    """OrchestrationConnector returning `orchestration`, recording endpoints."""
    endpoints = []

    async def connect(endpoint):
        endpoints.append(endpoint)
        if isinstance(orchestration, Exception):
            raise orchestration
        return orchestration

    connect.endpoints = endpoints
    return connect


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def fake_node():
    return FakeNode()


@pytest.fixture
def fake_orchestration():
    return FakeOrchestration()


@pytest.fixture
def fake_executor():
    return FakeExecutor()


@pytest.fixture
def make_pod():
    return pod


@pytest.fixture
def make_node():
    return FakeNode


@pytest.fixture
def make_orchestration():
    return FakeOrchestration


@pytest.fixture
def make_connector():
    return connector_for


@pytest.fixture
def make_executor():
    return FakeExecutor
