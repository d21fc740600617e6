from __future__ import annotations

import stat
import threading
import time
import uuid
from dataclasses import replace
from pathlib import Path

import pytest
from fakes import FakeBackend, FakeCoordination, StuckService, running

from cirrus.config import ClusterConfig, ReadinessSettings
from cirrus.exceptions import (
    CoordinationConnectError,
    LaunchAborted,
    ProvisioningFailure,
    ReadinessCancelled,
    ReadinessTimeout,
    ShutdownPartialFailure,
    ShutdownTimeout,
)
from cirrus.lifecycle import ClusterLifecycleState
from cirrus.orchestrator import ClusterLifecycleOrchestrator, NoReconnectProbe, TaggedGroupProbe
from cirrus.services import PeriodicService, ServiceManager
from cirrus.types import GroupDescriptor, InstanceDescriptor

S = ClusterLifecycleState

pytestmark = [pytest.mark.xdist_group("unit"), pytest.mark.timeout(30)]

MASTER_GROUP = "cirrus-master-asg-abc"
WORKER_GROUP = "cirrus-worker-asg-abc"


class UnreadableParent:
    def is_dir(self, path: Path) -> bool:
        raise PermissionError(13, "Permission denied", str(path.parent))

    def delete_tree(self, path: Path) -> None:
        pass


class FaultyFilesystem:
    def is_dir(self, path: Path) -> bool:
        raise RuntimeError("mount table unavailable")

    def delete_tree(self, path: Path) -> None:
        pass


class FixedProbe:
    def __init__(self, cluster_id: str | None) -> None:
        self.cluster_id = cluster_id
        self.calls: list[str] = []

    def find(self, cluster_name: str) -> str | None:
        self.calls.append(cluster_name)
        return self.cluster_id


@pytest.fixture(autouse=True)
def launch_id(monkeypatch: pytest.MonkeyPatch) -> str:
    monkeypatch.setattr(uuid, "uuid4", lambda: "abc")
    return "abc"


def make(config: ClusterConfig, backend: FakeBackend, coordination: FakeCoordination,
         **kwargs) -> ClusterLifecycleOrchestrator:
    return ClusterLifecycleOrchestrator(config, backend=backend, coordination=coordination, **kwargs)


class TestLaunch:
    def test_new_cluster(self, config: ClusterConfig, backend: FakeBackend, coordination: FakeCoordination):
        orchestrator = make(config, backend, coordination)

        identity = orchestrator.launch()

        assert orchestrator.state is S.RUNNING
        assert identity.name == "ingest"
        assert identity.id == "cirrus-master-abc"
        assert orchestrator.identity == identity
        assert orchestrator.master_address == "54.1.2.3"
        assert coordination.connected

    def test_step_order(self, config: ClusterConfig, backend: FakeBackend, coordination: FakeCoordination):
        make(config, backend, coordination).launch()

        assert backend.calls == [
            ("create_security_group", "cirrus-sg-abc"),
            ("add_ingress_rule", ("sg-123", "0.0.0.0/0", "tcp", 0, 65535)),
            ("create_key_pair", "cirrus-key-abc"),
            ("create_launch_template", "cirrus-master-lt-abc"),
            ("create_autoscaling_group", MASTER_GROUP),
            ("list_instances", MASTER_GROUP),
            ("create_launch_template", "cirrus-worker-lt-abc"),
            ("create_autoscaling_group", WORKER_GROUP),
        ]

    def test_master_ready_on_second_poll(self, config: ClusterConfig, backend: FakeBackend,
                                         coordination: FakeCoordination):
        backend.instances[MASTER_GROUP] = lambda n: [] if n < 2 else [running()]
        orchestrator = make(config, backend, coordination)

        orchestrator.launch()

        assert backend.polls[MASTER_GROUP] == 2
        assert orchestrator.master is not None
        assert orchestrator.master.instances == (running(),)
        assert orchestrator.workers is not None
        assert orchestrator.workers.autoscaling_group_name == WORKER_GROUP
        group = backend.autoscaling_groups[WORKER_GROUP]
        assert (group["min_size"], group["max_size"], group["desired_capacity"]) == (1, 5, 3)
        assert "54.1.2.3:/home/ec2-user/ingest" in backend.launch_templates["cirrus-worker-lt-abc"]["user_data"]

    def test_worker_group_created_after_second_poll_interval(self, config: ClusterConfig, backend: FakeBackend,
                                                             coordination: FakeCoordination):
        interval = 0.05
        config = replace(config, readiness=ReadinessSettings(interval=interval, timeout=5.0))
        backend.instances[MASTER_GROUP] = lambda n: [] if n < 2 else [running()]
        created: dict[str, float] = {}
        create_group = backend.create_autoscaling_group

        def timed_create(name: str, **kwargs) -> None:
            created[name] = time.monotonic()
            create_group(name, **kwargs)

        backend.create_autoscaling_group = timed_create  # type: ignore[method-assign]
        orchestrator = make(config, backend, coordination)

        start = time.monotonic()
        orchestrator.launch()

        elapsed = created[WORKER_GROUP] - start
        assert 2 * interval <= elapsed < 3 * interval + 0.5
        assert backend.autoscaling_groups[WORKER_GROUP]["desired_capacity"] == 3

    def test_worker_group_only_after_master_runs(self, config: ClusterConfig, backend: FakeBackend,
                                                 coordination: FakeCoordination):
        backend.instances[MASTER_GROUP] = lambda n: (
            [InstanceDescriptor("i-1", None, "pending")] if n < 3 else [running()]
        )
        make(config, backend, coordination).launch()

        last_poll = max(i for i, op in enumerate(backend.calls) if op == ("list_instances", MASTER_GROUP))
        first_worker = backend.calls.index(("create_launch_template", "cirrus-worker-lt-abc"))
        assert last_poll < first_worker

    def test_worker_readiness_is_not_awaited(self, config: ClusterConfig, backend: FakeBackend,
                                             coordination: FakeCoordination):
        make(config, backend, coordination).launch()
        assert WORKER_GROUP not in backend.polls

    def test_services_started(self, config: ClusterConfig, backend: FakeBackend, coordination: FakeCoordination):
        services = ServiceManager([PeriodicService("p", 0.01, lambda: None)])
        orchestrator = make(config, backend, coordination, services=services)

        orchestrator.launch()
        assert services.started

        orchestrator.stop()
        assert all(not s.thread.is_alive() for s in services.services)

    def test_key_material_saved_private(self, config: ClusterConfig, backend: FakeBackend,
                                        coordination: FakeCoordination, tmp_path: Path):
        keys = tmp_path / "keys"
        config = replace(config, aws=replace(config.aws, key_material_dir=str(keys)))

        make(config, backend, coordination).launch()

        pem = keys / "cirrus-key-abc.pem"
        assert pem.read_text().startswith("-----BEGIN")
        assert stat.S_IMODE(pem.stat().st_mode) == 0o600


class TestLaunchFailures:
    def test_connect_error(self, config: ClusterConfig, backend: FakeBackend, coordination: FakeCoordination):
        coordination.connect_error = OSError("connection refused")
        orchestrator = make(config, backend, coordination)

        with pytest.raises(CoordinationConnectError, match="connection refused"):
            orchestrator.launch()
        assert orchestrator.state is S.UNCONNECTED
        assert backend.calls == []

        report = orchestrator.stop()
        assert orchestrator.state is S.STOPPED
        assert report is not None and report.ok
        assert coordination.sent == []

    def test_provisioning_failure_names_step(self, config: ClusterConfig, backend: FakeBackend,
                                             coordination: FakeCoordination):
        backend.fail_on = "create_key_pair"
        orchestrator = make(config, backend, coordination)

        with pytest.raises(ProvisioningFailure) as exc:
            orchestrator.launch()
        assert exc.value.step == "create_key_pair"
        assert orchestrator.state is S.PROVISIONING
        assert not orchestrator.identity.is_assigned
        assert "create_launch_template" not in backend.ops

    def test_master_never_runs(self, config: ClusterConfig, backend: FakeBackend, coordination: FakeCoordination,
                               work_root: Path):
        backend.instances[MASTER_GROUP] = lambda n: []
        config = replace(config, readiness=ReadinessSettings(interval=0.01, timeout=0.05))
        (work_root / "ingest").mkdir()
        orchestrator = make(config, backend, coordination)

        with pytest.raises(ReadinessTimeout):
            orchestrator.launch()
        assert WORKER_GROUP not in backend.autoscaling_groups
        assert orchestrator.identity.id is None

        report = orchestrator.stop()
        assert report is not None
        assert coordination.sent == []
        assert not report.cleaned_up
        assert report.disconnected
        assert (work_root / "ingest").is_dir()

    def test_master_without_public_address(self, config: ClusterConfig, backend: FakeBackend,
                                           coordination: FakeCoordination):
        backend.instances[MASTER_GROUP] = lambda n: [running(address=None)]

        with pytest.raises(ProvisioningFailure) as exc:
            make(config, backend, coordination).launch()
        assert exc.value.step == "resolve_master_address"
        assert WORKER_GROUP not in backend.autoscaling_groups

    def test_master_status_query_error_names_step(self, config: ClusterConfig, backend: FakeBackend,
                                                  coordination: FakeCoordination):
        backend.fail_on = "list_instances"
        orchestrator = make(config, backend, coordination)

        with pytest.raises(ProvisioningFailure) as exc:
            orchestrator.launch()
        assert exc.value.step == "await_master_ready"
        assert isinstance(exc.value.cause, RuntimeError)
        assert WORKER_GROUP not in backend.autoscaling_groups
        assert orchestrator.state is S.PROVISIONING

    def test_reconnect_lookup_error_names_step(self, config: ClusterConfig, backend: FakeBackend,
                                               coordination: FakeCoordination):
        backend.fail_on = "find_groups"
        config = replace(config, cluster=replace(config.cluster, reconnect=True))
        orchestrator = make(config, backend, coordination)

        with pytest.raises(ProvisioningFailure) as exc:
            orchestrator.launch()
        assert exc.value.step == "reconnect_check"
        assert backend.ops == ["find_groups"]
        assert orchestrator.state is S.RECONNECT_CHECKING


class TestReconnect:
    def test_adopts_found_cluster(self, config: ClusterConfig, backend: FakeBackend,
                                  coordination: FakeCoordination):
        probe = FixedProbe("cirrus-master-old")
        orchestrator = make(config, backend, coordination, probe=probe)

        identity = orchestrator.launch()

        assert probe.calls == ["ingest"]
        assert identity.id == "cirrus-master-old"
        assert orchestrator.state is S.RUNNING
        assert backend.calls == []
        assert orchestrator.master_address is None

    def test_stop_after_reconnect_cleans_adopted_dir(self, config: ClusterConfig, backend: FakeBackend,
                                                     coordination: FakeCoordination, work_root: Path):
        work_dir = work_root / "ingest" / "cirrus-master-old"
        work_dir.mkdir(parents=True)
        orchestrator = make(config, backend, coordination, probe=FixedProbe("cirrus-master-old"))
        orchestrator.launch()

        report = orchestrator.stop()

        assert report is not None and report.ok
        assert len(coordination.sent) == 1
        assert not work_dir.exists()

    def test_default_probe_follows_config(self, config: ClusterConfig, backend: FakeBackend,
                                          coordination: FakeCoordination):
        assert isinstance(make(config, backend, coordination).probe, NoReconnectProbe)

        config = replace(config, cluster=replace(config.cluster, reconnect=True))
        assert isinstance(make(config, backend, coordination).probe, TaggedGroupProbe)


class TestTaggedGroupProbe:
    def test_finds_running_master_group(self, backend: FakeBackend):
        backend.groups = [
            GroupDescriptor("cirrus-worker-asg-old", {
                "cirrus:cluster-name": "ingest", "cirrus:managed": "true", "cirrus:worker": "old",
            }),
            GroupDescriptor("cirrus-master-asg-old", {
                "cirrus:cluster-name": "ingest", "cirrus:managed": "true", "cirrus:master": "old",
            }),
        ]
        assert TaggedGroupProbe(backend, "cirrus").find("ingest") == "cirrus-master-old"
        assert backend.calls[0] == ("find_groups", {"cirrus:cluster-name": "ingest", "cirrus:managed": "true"})

    def test_ignores_master_without_running_instance(self, backend: FakeBackend):
        backend.groups = [
            GroupDescriptor("cirrus-master-asg-old", {
                "cirrus:cluster-name": "ingest", "cirrus:managed": "true", "cirrus:master": "old",
            }),
        ]
        backend.instances["cirrus-master-asg-old"] = lambda n: []
        assert TaggedGroupProbe(backend, "cirrus").find("ingest") is None

    def test_other_cluster_not_matched(self, backend: FakeBackend):
        backend.groups = [
            GroupDescriptor("cirrus-master-asg-old", {
                "cirrus:cluster-name": "billing", "cirrus:managed": "true", "cirrus:master": "old",
            }),
        ]
        assert TaggedGroupProbe(backend, "cirrus").find("ingest") is None


class TestStop:
    def test_stop_after_launch(self, config: ClusterConfig, backend: FakeBackend, coordination: FakeCoordination,
                               work_root: Path):
        work_dir = work_root / "ingest" / "cirrus-master-abc"
        orchestrator = make(config, backend, coordination)
        orchestrator.launch()
        work_dir.mkdir(parents=True)

        report = orchestrator.stop()

        assert orchestrator.state is S.STOPPED
        assert report is not None and report.ok
        assert report.signal_recipients == 1
        assert not coordination.connected
        assert not work_dir.exists()
        assert orchestrator.report is report

    def test_stop_is_idempotent(self, config: ClusterConfig, backend: FakeBackend, coordination: FakeCoordination):
        orchestrator = make(config, backend, coordination)
        orchestrator.launch()

        reports = [orchestrator.stop() for _ in range(3)]

        assert reports[0] is reports[1] is reports[2]
        assert len(coordination.sent) == 1
        assert coordination.disconnects == 1
        assert orchestrator.state is S.STOPPED

    def test_concurrent_stop_runs_once(self, config: ClusterConfig, backend: FakeBackend,
                                       coordination: FakeCoordination):
        orchestrator = make(config, backend, coordination)
        orchestrator.launch()

        threads = [threading.Thread(target=orchestrator.stop) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(coordination.sent) == 1
        assert orchestrator.state is S.STOPPED

    def test_stop_before_launch(self, config: ClusterConfig, backend: FakeBackend, coordination: FakeCoordination):
        orchestrator = make(config, backend, coordination)
        report = orchestrator.stop()
        assert orchestrator.state is S.STOPPED
        assert report is not None and not report.cleaned_up

    def test_stop_during_master_wait_cancels_it(self, config: ClusterConfig, backend: FakeBackend,
                                                coordination: FakeCoordination):
        config = replace(config, readiness=ReadinessSettings(interval=0.01, timeout=60.0))
        orchestrator = make(config, backend, coordination)

        def first_poll_interrupted(n: int) -> list[InstanceDescriptor]:
            orchestrator.stop()
            return []

        backend.instances[MASTER_GROUP] = first_poll_interrupted

        with pytest.raises(ReadinessCancelled):
            orchestrator.launch()
        assert backend.polls[MASTER_GROUP] == 1
        assert orchestrator.state is S.STOPPED
        assert coordination.sent == []
        assert WORKER_GROUP not in backend.autoscaling_groups

    def test_partial_failure_raised_once(self, config: ClusterConfig, backend: FakeBackend,
                                         coordination: FakeCoordination):
        coordination.disconnect_error = RuntimeError("session expired")
        orchestrator = make(config, backend, coordination)
        orchestrator.launch()

        with pytest.raises(ShutdownPartialFailure) as exc:
            orchestrator.stop()
        assert [f.step for f in exc.value.report.failures] == ["disconnect"]
        assert exc.value.report.cleaned_up
        assert orchestrator.stop() is exc.value.report

    def test_stuck_services_raise_timeout(self, config: ClusterConfig, backend: FakeBackend,
                                          coordination: FakeCoordination):
        config = replace(config, cluster=replace(config.cluster, halt_timeout=0.05))
        orchestrator = make(config, backend, coordination, services=ServiceManager([StuckService()]))
        orchestrator.launch()

        with pytest.raises(ShutdownTimeout):
            orchestrator.stop()
        assert orchestrator.state is S.STOPPED
        assert not coordination.connected

    def test_unreadable_work_dir_still_reaches_stopped(self, config: ClusterConfig, backend: FakeBackend,
                                                       coordination: FakeCoordination):
        orchestrator = make(config, backend, coordination, filesystem=UnreadableParent())
        orchestrator.launch()

        report = orchestrator.stop()

        assert orchestrator.state is S.STOPPED
        assert orchestrator.report is report
        assert report is not None and report.ok
        assert not report.cleaned_up

    def test_unexpected_cleanup_error_is_reported(self, config: ClusterConfig, backend: FakeBackend,
                                                  coordination: FakeCoordination):
        orchestrator = make(config, backend, coordination, filesystem=FaultyFilesystem())
        orchestrator.launch()

        with pytest.raises(ShutdownPartialFailure) as exc:
            orchestrator.stop()
        assert [f.step for f in exc.value.report.failures] == ["cleanup"]
        assert orchestrator.state is S.STOPPED
        assert orchestrator.report is exc.value.report


class TestStopDuringLaunch:
    def interrupt_on(self, backend: FakeBackend, op: str, name_part: str,
                     orchestrator: ClusterLifecycleOrchestrator) -> None:
        original = getattr(backend, op)

        def interrupted(name, *args, **kwargs):
            result = original(name, *args, **kwargs)
            if name_part in name:
                orchestrator.stop()
            return result

        setattr(backend, op, interrupted)

    def test_no_worker_group_after_stop_in_worker_template(self, config: ClusterConfig, backend: FakeBackend,
                                                           coordination: FakeCoordination):
        orchestrator = make(config, backend, coordination)
        self.interrupt_on(backend, "create_launch_template", "-worker-", orchestrator)

        with pytest.raises(LaunchAborted) as exc:
            orchestrator.launch()

        assert exc.value.step == "create_autoscaling_group"
        assert MASTER_GROUP in backend.autoscaling_groups
        assert WORKER_GROUP not in backend.autoscaling_groups
        assert orchestrator.state is S.STOPPED
        assert len(coordination.sent) == 1
        assert orchestrator.report is not None and orchestrator.report.ok

    def test_no_master_group_after_stop_in_security_group(self, config: ClusterConfig, backend: FakeBackend,
                                                          coordination: FakeCoordination):
        orchestrator = make(config, backend, coordination)
        self.interrupt_on(backend, "create_security_group", "-sg-", orchestrator)

        with pytest.raises(LaunchAborted) as exc:
            orchestrator.launch()

        assert exc.value.step == "add_ingress_rule"
        assert backend.ops == ["create_security_group"]
        assert backend.autoscaling_groups == {}
        assert orchestrator.state is S.STOPPED
        assert coordination.sent == []

    def test_stop_in_last_step_does_not_enter_running(self, config: ClusterConfig, backend: FakeBackend,
                                                      coordination: FakeCoordination):
        orchestrator = make(config, backend, coordination)
        self.interrupt_on(backend, "create_autoscaling_group", "-worker-", orchestrator)

        with pytest.raises(LaunchAborted, match="running"):
            orchestrator.launch()

        assert WORKER_GROUP in backend.autoscaling_groups
        assert orchestrator.state is S.STOPPED
        assert len(coordination.sent) == 1

    def test_stop_during_reconnect_lookup(self, config: ClusterConfig, backend: FakeBackend,
                                          coordination: FakeCoordination):
        orchestrator = make(config, backend, coordination)

        class StoppingLookup:
            def find(self, cluster_name: str) -> str | None:
                orchestrator.stop()
                return None

        orchestrator.probe = StoppingLookup()

        with pytest.raises(LaunchAborted, match="provisioning"):
            orchestrator.launch()
        assert backend.calls == []
        assert orchestrator.state is S.STOPPED
