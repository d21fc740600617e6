from __future__ import annotations

from pathlib import Path

import pytest
from fakes import FakeBackend, FakeCoordination

from cirrus.config import ClusterConfig, ClusterSettings, ReadinessSettings
from cirrus.types import ProvisioningPlan


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def coordination() -> FakeCoordination:
    return FakeCoordination()


@pytest.fixture
def master_plan() -> ProvisioningPlan:
    return ProvisioningPlan(ami_id="ami-master", instance_type="m5.large", jvm_heap_size="4g")


@pytest.fixture
def worker_plan() -> ProvisioningPlan:
    return ProvisioningPlan(
        ami_id="ami-worker",
        instance_type="m5.xlarge",
        jvm_heap_size="8g",
        min_count=1,
        max_count=5,
        desired_count=3,
    )


@pytest.fixture
def work_root(tmp_path: Path) -> Path:
    root = tmp_path / "clusters"
    root.mkdir()
    return root


@pytest.fixture
def config(master_plan: ProvisioningPlan, worker_plan: ProvisioningPlan, work_root: Path) -> ClusterConfig:
    return ClusterConfig(
        cluster=ClusterSettings(name="ingest", work_dir_root=str(work_root), halt_timeout=1.0),
        master=master_plan,
        worker=worker_plan,
        readiness=ReadinessSettings(interval=0.01, timeout=1.0),
    )
