"""Unit tests for diagnostics.session.DiagnosticsSession."""

from __future__ import annotations

import asyncio

import pytest

from config.settings import Settings
from diagnostics import CheckStatus, DiagnosticCheck, RestartService
from diagnostics.collaborators import ServiceInfo, VersionInfo
from diagnostics.context import Category, DetectedAddons, DiagnosticsData, PluginType
from diagnostics.errors import ManagementApiUnavailable
from diagnostics.remediation import PendingFix, RemediationState
from diagnostics.session import DiagnosticsSession, LoadState


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def _seeded(count=3):
    return DiagnosticsData(
        hostname="node-1",
        address="10.0.0.5",
        system_checks=[DiagnosticCheck.passed(f"s{i}", f"S{i}", "ok") for i in range(count)],
    )


class TestLifecycle:
    def test_new_session_is_empty_with_all_lists(self):
        session = DiagnosticsSession("node-1", "10.0.0.5")
        assert session.state is LoadState.EMPTY
        assert not session.has_loaded
        for category in Category:
            assert session.data.checks(category) == []

    def test_seeded_session_is_loaded(self):
        session = DiagnosticsSession("node-1", "10.0.0.5", data=_seeded())
        assert session.state is LoadState.LOADED
        assert session.has_loaded
        assert len(session.current_checks()) == 3

    @pytest.mark.asyncio
    async def test_refresh_without_node_sets_error(self):
        session = DiagnosticsSession("node-1", "10.0.0.5", data=_seeded())

        assert await session.refresh() is False

        assert session.state is LoadState.ERROR
        assert session.error == "No client configured"
        assert len(session.data.system_checks) == 3

    @pytest.mark.asyncio
    async def test_successful_refresh_replaces_snapshot(self, make_node, make_orchestration, make_pod, make_connector):
        node = make_node(
            logs="kube-flannel ok",
            service_list=[ServiceInfo(id="kubelet", state="Running", healthy=True)],
        )
        orchestration = make_orchestration(pods={"kube-system": [make_pod("kube-flannel-ds-1")]})
        session = DiagnosticsSession(
            "node-1", "10.0.0.5", node=node, connect_orchestration=make_connector(orchestration)
        )

        assert await session.refresh() is True

        assert session.state is LoadState.LOADED
        assert session.error is None
        ctx = session.data.context
        assert ctx.network_plugin is PluginType.FLANNEL
        assert ctx.cpu_count == 4
        assert ctx.platform == "metal"
        assert ctx.pod_health.total_pods == 1
        assert [c.id for c in session.data.system_checks] == ["memory", "cpu_load"]
        assert [c.id for c in session.data.control_plane_checks] == ["pods_crashing", "workload_pods"]
        assert [c.id for c in session.data.service_checks] == ["service_kubelet"]
        assert [c.id for c in session.data.network_plugin_checks] == ["cni_pods", "br_netfilter", "cni"]
        assert session.data.addon_checks == []

    @pytest.mark.asyncio
    async def test_error_clears_on_next_successful_refresh(self, make_node):
        session = DiagnosticsSession("node-1", "10.0.0.5", node=make_node())
        session.set_error("old failure")

        assert await session.refresh() is True
        assert session.error is None


class TestTimeout:
    @pytest.mark.asyncio
    async def test_timeout_keeps_previous_data(self, make_node):
        node = make_node(delay=0.1)
        session = DiagnosticsSession(
            "node-1",
            "10.0.0.5",
            node=node,
            settings=Settings(REFRESH_TIMEOUT_SECONDS=0.05),
            data=_seeded(),
        )
        before = session.data

        assert await session.refresh() is False

        assert session.state is LoadState.ERROR
        assert session.error == "Timeout fetching diagnostics"
        assert session.data is before
        assert session.has_loaded


class TestConcurrentRefresh:
    @pytest.mark.asyncio
    async def test_second_refresh_is_rejected_while_loading(self, make_node):
        session = DiagnosticsSession("node-1", "10.0.0.5", node=make_node(delay=0.01))
        first = asyncio.create_task(session.refresh())
        await asyncio.sleep(0)

        assert session.state is LoadState.LOADING
        assert await session.refresh() is False
        assert session.state is LoadState.LOADING

        assert await first is True
        assert session.state is LoadState.LOADED

    @pytest.mark.asyncio
    async def test_cancelled_refresh_does_not_block_the_next_one(self, make_node):
        node = make_node(delay=0.05)
        session = DiagnosticsSession("node-1", "10.0.0.5", node=node)
        task = asyncio.create_task(session.refresh())
        await asyncio.sleep(0)
        assert session.is_loading

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert session.state is LoadState.EMPTY
        node.delay = 0
        assert await session.refresh() is True
        assert session.state is LoadState.LOADED

    @pytest.mark.asyncio
    async def test_cancelled_refresh_keeps_loaded_snapshot(self, make_node):
        session = DiagnosticsSession("node-1", "10.0.0.5", node=make_node(delay=0.05), data=_seeded())
        before = session.data
        task = asyncio.create_task(session.refresh())
        await asyncio.sleep(0)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert session.state is LoadState.LOADED
        assert session.data is before


class TestManagementApi:
    @pytest.mark.asyncio
    async def test_unreachable_api_degrades_detection(self, make_node, make_connector):
        node = make_node(logs="Felix starting")
        connect = make_connector(ManagementApiUnavailable("connection refused"))
        session = DiagnosticsSession("node-1", "10.0.0.5", node=node, connect_orchestration=connect)

        assert await session.refresh() is True

        ctx = session.data.context
        assert ctx.network_plugin is PluginType.CALICO
        assert ctx.network_plugin_info is None
        assert "connection refused" in ctx.management_api_error
        assert not session.data.detected_addons.any_detected()

    @pytest.mark.asyncio
    async def test_worker_connects_through_control_plane_endpoint(self, make_node, make_orchestration, make_connector):
        connect = make_connector(make_orchestration())
        session = DiagnosticsSession(
            "worker-1",
            "10.0.0.7",
            node=make_node(),
            connect_orchestration=connect,
            controlplane_endpoint="10.0.0.5",
        )
        await session.refresh()
        assert connect.endpoints == ["10.0.0.5"]

    @pytest.mark.asyncio
    async def test_no_connector_notes_reason(self, make_node):
        session = DiagnosticsSession("node-1", "10.0.0.5", node=make_node())
        await session.refresh()
        assert session.data.context.management_api_error

    @pytest.mark.asyncio
    async def test_container_platform_is_detected(self, make_node):
        node = make_node(version_info=VersionInfo(tag="v1.9.0", platform="container"))
        session = DiagnosticsSession("node-1", "10.0.0.5", node=node)
        await session.refresh()
        assert session.data.context.is_container

    @pytest.mark.asyncio
    async def test_platform_lookup_failure_keeps_prior_value(self, make_node):
        node = make_node(version_info=RuntimeError("version rpc failed"), cpu=RuntimeError("no cpuinfo"))
        session = DiagnosticsSession("node-1", "10.0.0.5", node=node)
        assert await session.refresh() is True
        assert session.data.context.platform == ""
        assert session.data.context.cpu_count == 1


class TestSelection:
    def test_category_navigation_wraps_and_resets_check(self):
        session = DiagnosticsSession("node-1", "10.0.0.5", data=_seeded())
        session.select_check(2)
        session.select_category(-1)
        assert session.selection.category == Category.ADDONS
        assert session.selection.check == 0

    def test_check_navigation_clamps(self):
        session = DiagnosticsSession("node-1", "10.0.0.5", data=_seeded())
        session.select_check(10)
        assert session.selection.check == 2
        session.select_check(-10)
        assert session.selection.check == 0

    @pytest.mark.asyncio
    async def test_refresh_clamps_into_shorter_list(self, make_node):
        session = DiagnosticsSession("node-1", "10.0.0.5", node=make_node(), data=_seeded(5))
        session.select_check(4)

        await session.refresh()

        assert len(session.current_checks()) == 2
        assert session.selection.check == 1
        assert session.selected_check().id == "cpu_load"

    def test_selected_check_on_empty_category_is_none(self):
        session = DiagnosticsSession("node-1", "10.0.0.5")
        assert session.selected_check() is None


class TestPresentationHelpers:
    def test_network_plugin_title_names_the_plugin(self):
        data = _seeded()
        data.context.network_plugin = PluginType.CILIUM
        session = DiagnosticsSession("node-1", "10.0.0.5", data=data)
        assert session.category_title(Category.NETWORK_PLUGIN) == "CNI (Cilium)"
        assert session.category_title(Category.SYSTEM) == "System Health"
        assert session.category_title(9) == "Unknown"

    def test_addons_hidden_until_detected(self):
        data = _seeded()
        session = DiagnosticsSession("node-1", "10.0.0.5", data=data)
        assert Category.ADDONS not in session.visible_categories()
        data.detected_addons = DetectedAddons(["kyverno"])
        assert session.visible_categories()[-1] is Category.ADDONS

    @pytest.mark.asyncio
    async def test_auto_refresh_waits_for_interval(self, make_node):
        clock = FakeClock()
        session = DiagnosticsSession(
            "node-1",
            "10.0.0.5",
            node=make_node(),
            settings=Settings(AUTO_REFRESH_INTERVAL_SECONDS=10),
            clock=clock,
        )
        assert session.should_auto_refresh()

        await session.refresh()
        assert not session.should_auto_refresh()

        clock.now += 10
        assert session.should_auto_refresh()

    def test_auto_refresh_disabled(self, make_node):
        session = DiagnosticsSession(
            "node-1", "10.0.0.5", node=make_node(), settings=Settings(AUTO_REFRESH=False)
        )
        assert not session.should_auto_refresh()


class TestRemediationThroughSession:
    @pytest.mark.asyncio
    async def test_restart_fix_round_trip(self, make_node):
        node = make_node(service_list=[ServiceInfo(id="kubelet", state="Failed", healthy=False)])
        session = DiagnosticsSession("node-1", "10.0.0.5", node=node)
        await session.refresh()
        session.select_category(Category.SERVICES)

        pending = session.initiate_fix()

        assert isinstance(pending, PendingFix)
        assert pending.fix.action == RestartService("kubelet")
        assert session.pending_fix is pending

        outcome = await session.confirm()

        assert outcome.ok
        assert node.restarted == ["kubelet"]
        assert session.remediation.state is RemediationState.REPORTED
        assert session.pending_fix is None

    def test_details_view_for_check_without_fix(self):
        check = DiagnosticCheck.warn("cni_pods", "Flannel Pods", "No pods found").with_details("nothing in kube-system")
        data = DiagnosticsData(network_plugin_checks=[check])
        session = DiagnosticsSession("node-1", "10.0.0.5", data=data)
        session.select_category(Category.NETWORK_PLUGIN)

        view = session.initiate_fix()

        assert session.details_view is view
        assert view.content == "nothing in kube-system"
        assert session.remediation.state is RemediationState.IDLE
        session.dismiss()
        assert session.details_view is None

    @pytest.mark.asyncio
    async def test_apply_with_nothing_pending_is_noop(self, fake_executor):
        session = DiagnosticsSession("node-1", "10.0.0.5", executor=fake_executor)
        outcome = await session.apply_pending_fix()
        assert outcome.ok
        assert fake_executor.actions == []

    @pytest.mark.asyncio
    async def test_failing_check_statuses_survive_refresh(self, make_node):
        node = make_node(service_list=[ServiceInfo(id="apid", healthy=False)])
        session = DiagnosticsSession("node-1", "10.0.0.5", node=node)
        await session.refresh()
        assert session.data.overall_status() is CheckStatus.FAIL


@pytest.mark.asyncio
async def test_control_plane_role_applies_to_seeded_session(make_node):
    session = DiagnosticsSession("cp-1", "10.0.0.1", role="controlplane", node=make_node(), data=_seeded())
    await session.refresh()
    assert session.data.context.is_control_plane
    assert session.data.control_plane_checks[0].id == "etcd"
    assert session.data.control_plane_checks[0].status is CheckStatus.UNKNOWN
