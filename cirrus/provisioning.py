"""Ordered resource creation for one cluster role.

Each role gets a launch template carrying its user-data script, then an
autoscaling group referencing that template. A failed step aborts the role
and nothing already created is rolled back.
"""

from __future__ import annotations

import itertools
import threading
from collections.abc import Callable

from loguru import logger

from cirrus.bootstrap import BootLayout, master_script, worker_instance_name, worker_script
from cirrus.constants import RESOURCE_PREFIX, WORKER_MAIN_CLASS, CirrusTag
from cirrus.exceptions import CirrusError, LaunchAborted, ProvisioningFailure
from cirrus.protocols import CloudProvisioningBackend
from cirrus.types import KeyPair, ProvisioningPlan, Role, RoleLaunchResult, SecurityGroup

log = logger.bind(component="provisioning")


def run_step[T](
    step: str,
    fn: Callable[[], T],
    *,
    scope: str,
    cancel: threading.Event | None = None,
) -> T:
    """Run one provisioning step, wrapping any error in ProvisioningFailure.

    Cirrus errors raised by the step pass through unchanged. The step is not
    started once ``cancel`` is set.

    Raises:
        LaunchAborted: If ``cancel`` is set.
        ProvisioningFailure: If the step raised anything else.
    """
    if cancel is not None and cancel.is_set():
        log.warning("Skipping {scope}: {step}, shutdown in progress", scope=scope, step=step)
        raise LaunchAborted(step)
    log.info("Provisioning {scope}: {step}", scope=scope, step=step)
    try:
        return fn()
    except CirrusError:
        raise
    except Exception as e:
        log.error("Provisioning {scope} failed at {step}: {error}", scope=scope, step=step, error=e)
        raise ProvisioningFailure(step, e) from e


def cluster_id_for(launch_id: str, prefix: str = RESOURCE_PREFIX) -> str:
    """Cluster id derived from the launch uuid; also the master group's identity."""
    return f"{prefix}-master-{launch_id}"


class WorkerIdGenerator:
    """Monotonic worker instance index, local to this launcher process.

    Not unique across launcher restarts: a restarted launcher counts from 1 again.
    """

    def __init__(self, start: int = 1) -> None:
        self._counter = itertools.count(start)
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            return next(self._counter)


class ProvisioningSequencer:
    def __init__(
        self,
        backend: CloudProvisioningBackend,
        layout: BootLayout,
        *,
        worker_ids: WorkerIdGenerator | None = None,
        prefix: str = RESOURCE_PREFIX,
        cancel: threading.Event | None = None,
    ) -> None:
        self.backend = backend
        self.layout = layout
        self.worker_ids = worker_ids or WorkerIdGenerator()
        self.prefix = prefix
        self.cancel = cancel

    def _user_data(self, role: Role, plan: ProvisioningPlan, launch_id: str, master_address: str | None) -> str:
        match role:
            case Role.MASTER:
                return master_script(self.layout, plan, cluster_id_for(launch_id, self.prefix))
            case Role.WORKER:
                if not master_address:
                    raise ValueError("worker user data requires the master's address")
                instance_name = worker_instance_name(
                    self.worker_ids.next(), plan.main_class or WORKER_MAIN_CLASS
                )
                return worker_script(self.layout, plan, master_address, instance_name)

    def provision_role(
        self,
        role: Role,
        plan: ProvisioningPlan,
        key_pair: KeyPair,
        security_group: SecurityGroup,
        *,
        launch_id: str,
        master_address: str | None = None,
    ) -> RoleLaunchResult:
        """Create the launch template and autoscaling group for ``role``.

        Args:
            role: Master or worker.
            plan: Image, instance type, JVM settings and group sizes.
            key_pair: Key pair the instances are launched with.
            security_group: Security group the instances join.
            launch_id: Launch uuid used to name and tag the resources.
            master_address: Master address; required for the worker role.

        Raises:
            ProvisioningFailure: Naming the step that failed.
            LaunchAborted: If shutdown began before a step started.
        """
        template_name = f"{self.prefix}-{role}-lt-{launch_id}"
        group_name = f"{self.prefix}-{role}-asg-{launch_id}"
        role_tag = CirrusTag.MASTER if role is Role.MASTER else CirrusTag.WORKER

        user_data = run_step(
            "build_user_data",
            lambda: self._user_data(role, plan, launch_id, master_address),
            scope=role,
            cancel=self.cancel,
        )

        run_step(
            "create_launch_template",
            lambda: self.backend.create_launch_template(
                template_name,
                ami_id=plan.ami_id,
                instance_type=plan.instance_type,
                key_name=key_pair.name,
                security_group=security_group,
                user_data=user_data,
            ),
            scope=role,
            cancel=self.cancel,
        )

        run_step(
            "create_autoscaling_group",
            lambda: self.backend.create_autoscaling_group(
                group_name,
                launch_template=template_name,
                min_size=plan.min_count,
                max_size=plan.max_count,
                desired_capacity=plan.desired_count,
                tags={
                    str(role_tag): launch_id,
                    str(CirrusTag.CLUSTER_NAME): self.layout.cluster_name,
                    str(CirrusTag.MANAGED): "true",
                },
            ),
            scope=role,
            cancel=self.cancel,
        )

        return RoleLaunchResult(
            launch_template_name=template_name,
            autoscaling_group_name=group_name,
        )
