"""Cluster lifecycle orchestration.

On launch the orchestrator connects to the coordination service, then either
adopts a live cluster found by the reconnect probe or creates a new one:
security group, key pair, the master group, a bounded wait until the master
runs, and finally the worker group. Workers register themselves with the
coordination service once booted, so their readiness is not awaited here.

``stop()`` is safe to call any number of times from any thread, including a
signal handler: the shutdown sequence runs at most once per process. A stop
that lands mid-launch aborts the remaining provisioning steps.
"""

from __future__ import annotations

import os
import threading
import uuid
from dataclasses import replace
from pathlib import Path
from typing import Protocol

from loguru import logger

from cirrus.bootstrap import BootLayout
from cirrus.config import ClusterConfig
from cirrus.constants import CirrusTag, InstanceState
from cirrus.exceptions import (
    CoordinationConnectError,
    LaunchAborted,
    ReadinessTimeout,
    ShutdownPartialFailure,
    ShutdownTimeout,
)
from cirrus.janitor import WorkingDirectoryJanitor
from cirrus.lifecycle import ClusterLifecycleState, LifecycleStateMachine
from cirrus.protocols import CloudProvisioningBackend, CoordinationService, FilesystemService
from cirrus.provisioning import ProvisioningSequencer, WorkerIdGenerator, cluster_id_for, run_step
from cirrus.services import ServiceManager
from cirrus.shutdown import ShutdownCoordinator
from cirrus.types import (
    ClusterIdentity,
    InstanceDescriptor,
    KeyPair,
    Role,
    RoleLaunchResult,
    SecurityGroup,
    ShutdownReport,
)
from cirrus.wait import ReadinessPoller, any_running

log = logger.bind(component="orchestrator")


# =============================================================================
# Reconnect Probes
# =============================================================================


class ReconnectProbe(Protocol):
    def find(self, cluster_name: str) -> str | None:
        """Return the id of a live cluster named ``cluster_name``, if any."""
        ...


class NoReconnectProbe:
    """Never finds a cluster, so every launch provisions a new one."""

    def find(self, cluster_name: str) -> str | None:
        return None


class TaggedGroupProbe:
    """Adopts a cluster whose tagged master group still has a running instance."""

    def __init__(self, backend: CloudProvisioningBackend, prefix: str) -> None:
        self.backend = backend
        self.prefix = prefix

    def find(self, cluster_name: str) -> str | None:
        groups = self.backend.find_groups({
            str(CirrusTag.CLUSTER_NAME): cluster_name,
            str(CirrusTag.MANAGED): "true",
        })
        for group in groups:
            launch_id = group.tags.get(str(CirrusTag.MASTER))
            if launch_id is None:
                continue
            if any_running(self.backend.list_instances(group.name, InstanceState.RUNNING)):
                return cluster_id_for(launch_id, self.prefix)
        return None


# =============================================================================
# Orchestrator
# =============================================================================


class ClusterLifecycleOrchestrator:
    def __init__(
        self,
        config: ClusterConfig,
        *,
        backend: CloudProvisioningBackend,
        coordination: CoordinationService,
        services: ServiceManager | None = None,
        probe: ReconnectProbe | None = None,
        filesystem: FilesystemService | None = None,
        poller: ReadinessPoller | None = None,
        worker_ids: WorkerIdGenerator | None = None,
    ) -> None:
        self.config = config
        self.backend = backend
        self.coordination = coordination
        self.services = services

        settings = config.cluster
        if probe is None:
            probe = TaggedGroupProbe(backend, settings.prefix) if settings.reconnect else NoReconnectProbe()
        self.probe = probe

        self.poller = poller or ReadinessPoller(
            interval=config.readiness.interval,
            timeout=config.readiness.timeout,
        )
        self.sequencer = ProvisioningSequencer(
            backend,
            BootLayout(settings.name, settings.nfs_parent_dir, settings.log_root_dir),
            worker_ids=worker_ids,
            prefix=settings.prefix,
            cancel=self.poller.cancel,
        )
        self.shutdown_coordinator = ShutdownCoordinator(
            coordination,
            WorkingDirectoryJanitor(settings.work_dir_root, filesystem),
            services,
            halt_timeout=settings.halt_timeout,
        )

        self._lifecycle = LifecycleStateMachine()
        self._identity = ClusterIdentity(settings.name)
        self._master_address: str | None = None
        self._master: RoleLaunchResult | None = None
        self._workers: RoleLaunchResult | None = None

        self._stop_lock = threading.RLock()
        self._stopped = False
        self._report: ShutdownReport | None = None

    # -------------------------------------------------------------------------
    # Observability
    # -------------------------------------------------------------------------

    @property
    def state(self) -> ClusterLifecycleState:
        return self._lifecycle.state

    @property
    def identity(self) -> ClusterIdentity:
        return self._identity

    @property
    def master_address(self) -> str | None:
        return self._master_address

    @property
    def master(self) -> RoleLaunchResult | None:
        return self._master

    @property
    def workers(self) -> RoleLaunchResult | None:
        return self._workers

    @property
    def report(self) -> ShutdownReport | None:
        return self._report

    # -------------------------------------------------------------------------
    # Launch
    # -------------------------------------------------------------------------

    def launch(self) -> ClusterIdentity:
        """Connect, then adopt a live cluster or provision a new one.

        Raises:
            CoordinationConnectError: If the coordination service is unreachable.
            ProvisioningFailure: If a provisioning step fails. Nothing is rolled back.
            ReadinessTimeout: If the master does not reach ``running`` in time.
            LaunchAborted: If ``stop()`` ran before provisioning finished.
        """
        self.connect()
        if self.services is not None:
            self.services.start_all()
        return self.resolve_or_create()

    def connect(self) -> None:
        try:
            self.coordination.connect()
        except Exception as e:
            log.error("Coordination service failed to connect: {error}", error=e)
            raise CoordinationConnectError(f"Failed to connect to coordination service: {e}") from e
        log.info("Connected to coordination service")

    def resolve_or_create(self) -> ClusterIdentity:
        name = self.config.cluster.name
        self._advance(ClusterLifecycleState.RECONNECT_CHECKING)

        cluster_id = run_step(
            "reconnect_check", lambda: self.probe.find(name), scope="cluster", cancel=self.poller.cancel
        )
        if cluster_id is not None:
            log.info("Found reconnectable cluster with cluster ID: {cluster_id}", cluster_id=cluster_id)
            self._identity = ClusterIdentity(name, cluster_id)
            self._advance(ClusterLifecycleState.RUNNING)
            return self._identity

        log.info("No reconnectable cluster found so creating a cluster")
        launch_id = str(uuid.uuid4())
        self._advance(ClusterLifecycleState.PROVISIONING)
        self.setup_cluster(launch_id)
        self._advance(ClusterLifecycleState.RUNNING)
        return self._identity

    def _advance(self, target: ClusterLifecycleState) -> None:
        with self._stop_lock:
            if self._stopped:
                log.warning("Not entering {state}: shutdown in progress", state=target)
                raise LaunchAborted(f"enter {target}")
            self._lifecycle.transition(target)

    def setup_cluster(self, launch_id: str) -> None:
        aws = self.config.aws
        prefix = self.config.cluster.prefix
        cancel = self.poller.cancel

        security_group = run_step(
            "create_security_group",
            lambda: self.backend.create_security_group(
                f"{prefix}-sg-{launch_id}", f"{prefix} cluster security group"
            ),
            scope="cluster",
            cancel=cancel,
        )
        run_step(
            "add_ingress_rule",
            lambda: self.backend.add_ingress_rule(
                security_group,
                aws.ingress_cidr,
                aws.ingress_protocol,
                aws.ingress_from_port,
                aws.ingress_to_port,
            ),
            scope="cluster",
            cancel=cancel,
        )
        key_pair = run_step(
            "create_key_pair",
            lambda: self.backend.create_key_pair(f"{prefix}-key-{launch_id}"),
            scope="cluster",
            cancel=cancel,
        )
        self._save_key_material(key_pair)

        self.launch_master(launch_id, key_pair, security_group)
        self.launch_workers(launch_id, key_pair, security_group)

    def launch_master(self, launch_id: str, key_pair: KeyPair, security_group: SecurityGroup) -> None:
        master = self.sequencer.provision_role(
            Role.MASTER, self.config.master, key_pair, security_group, launch_id=launch_id
        )
        group = master.autoscaling_group_name

        log.info("Waiting for cluster master to launch")
        try:
            instances = run_step(
                "await_master_ready",
                lambda: self.poller.await_condition(
                    lambda: self.backend.list_instances(group, InstanceState.RUNNING),
                    any_running,
                    description=f"cluster master in {group}",
                ),
                scope=Role.MASTER,
                cancel=self.poller.cancel,
            )
        except ReadinessTimeout:
            log.error("Timed out while waiting for cluster master. Check ASG {group} manually", group=group)
            raise

        running = [i for i in instances if i.is_running]
        address = run_step(
            "resolve_master_address",
            lambda: _public_address(running[0]),
            scope=Role.MASTER,
            cancel=self.poller.cancel,
        )

        self._master = replace(master, instances=tuple(instances))
        self._master_address = address
        self._identity = ClusterIdentity(
            self.config.cluster.name, cluster_id_for(launch_id, self.config.cluster.prefix)
        )
        log.info(
            "Cluster master {instance} running at {address}",
            instance=running[0].id,
            address=address,
        )

    def launch_workers(self, launch_id: str, key_pair: KeyPair, security_group: SecurityGroup) -> None:
        self._workers = self.sequencer.provision_role(
            Role.WORKER,
            self.config.worker,
            key_pair,
            security_group,
            launch_id=launch_id,
            master_address=self._master_address,
        )
        log.info(
            "Requested {n} worker(s) in {group}",
            n=self.config.worker.desired_count,
            group=self._workers.autoscaling_group_name,
        )

    def _save_key_material(self, key_pair: KeyPair) -> None:
        directory = self.config.aws.key_material_dir
        if directory is None:
            return
        path = Path(directory).expanduser() / f"{key_pair.name}.pem"
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(key_pair.material)
        log.info("Saved key material for {name} to {path}", name=key_pair.name, path=path)

    # -------------------------------------------------------------------------
    # Stop
    # -------------------------------------------------------------------------

    def stop(self) -> ShutdownReport | None:
        """Shut the cluster down once; later calls return the first report.

        Raises:
            ShutdownTimeout: If auxiliary services did not halt in time.
            ShutdownPartialFailure: If any other shutdown step failed.
        """
        with self._stop_lock:
            if self._stopped:
                return self._report
            self._stopped = True

            log.info("Stopping the cluster launcher")
            self.poller.cancel_wait()
            self._lifecycle.transition(ClusterLifecycleState.SHUTTING_DOWN)
            try:
                report = self.shutdown_coordinator.shutdown(self._identity)
                self._report = report
            finally:
                self._lifecycle.transition(ClusterLifecycleState.STOPPED)

        if not report.ok:
            if any(f.step == "stop_services" and isinstance(f.error, TimeoutError) for f in report.failures):
                raise ShutdownTimeout(report)
            raise ShutdownPartialFailure(report)
        return report


def _public_address(instance: InstanceDescriptor) -> str:
    if not instance.public_address:
        raise ValueError(f"master instance {instance.id} has no public address")
    return instance.public_address
