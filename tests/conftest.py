# SPDX-License-Identifier: MIT

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from ocp_upgrade_check.config import RunConfig
from ocp_upgrade_check.models import (
    ApiLatency,
    ClusterIdentity,
    ClusterVersionInfo,
    EtcdMember,
    EtcdStatus,
    IngressControllerInfo,
    IngressStatus,
    MachineConfigPoolInfo,
    NodeInfo,
    NodeUsage,
    OperatorInfo,
    PodInfo,
    VolumeInfo,
)

START = datetime(2026, 10, 18, 12, 0, 0, tzinfo=timezone.utc)


class StepClock:
    """Returns START, START+1s, START+2s, ... on successive calls."""

    def __init__(self, start: datetime = START, step: float = 1.0) -> None:
        self.current = start
        self.step = timedelta(seconds=step)

    def __call__(self) -> datetime:
        value = self.current
        self.current += self.step
        return value


class FakeReader:
    """In-memory Cluster Reader.

    Each response is either a value, an exception instance (raised on every
    call) or a list of those consumed one call at a time via ``sequence``.
    """

    def __init__(self, **overrides) -> None:
        self.responses = healthy_responses()
        self.responses.update(overrides)
        self.calls: list[str] = []
        self.deadlines: list[float] = []

    def sequence(self, name: str, *answers) -> None:
        self.responses[name] = _Sequence(answers)

    def deadline(self, seconds):
        self.deadlines.append(seconds)
        return _NullContext()

    def _answer(self, name):
        self.calls.append(name)
        value = self.responses[name]
        if isinstance(value, _Sequence):
            value = value.next()
        if isinstance(value, BaseException):
            raise value
        return value

    def api_latency(self):
        return self._answer("api_latency")

    def cluster_version(self):
        return self._answer("cluster_version")

    def nodes(self):
        return self._answer("nodes")

    def cluster_operators(self):
        return self._answer("cluster_operators")

    def etcd_status(self):
        return self._answer("etcd_status")

    def critical_pods(self, namespaces):
        return self._answer("critical_pods")

    def volumes(self):
        return self._answer("volumes")

    def node_usage(self):
        return self._answer("node_usage")

    def pending_operations(self):
        return self._answer("pending_operations")

    def ingress_status(self):
        return self._answer("ingress_status")

    def machine_config_pools(self):
        return self._answer("machine_config_pools")


class _Sequence:
    def __init__(self, answers) -> None:
        self.answers = list(answers)

    def next(self):
        if len(self.answers) > 1:
            return self.answers.pop(0)
        return self.answers[0]


class _NullContext:
    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def healthy_responses() -> dict:
    return {
        "api_latency": ApiLatency(latency_ms=120.0, server_version="v1.26.5"),
        "cluster_version": ClusterVersionInfo(
            version="4.13.5", channel="stable-4.13", desired_version="4.13.5", history_state="Completed"),
        "nodes": [
            NodeInfo("master-0", True, roles=("master",)),
            NodeInfo("master-1", True, roles=("master",)),
            NodeInfo("master-2", True, roles=("master",)),
            NodeInfo("worker-0", True, roles=("worker",)),
        ],
        "cluster_operators": [
            OperatorInfo("authentication", available=True, version="4.13.5"),
            OperatorInfo("etcd", available=True, version="4.13.5"),
            OperatorInfo("ingress", available=True, version="4.13.5"),
        ],
        "etcd_status": EtcdStatus(
            members=tuple(EtcdMember(f"etcd-master-{i}", "Running", True, node=f"master-{i}") for i in range(3)),
            members_available=True,
        ),
        "critical_pods": [
            PodInfo("kube-apiserver-master-0", "openshift-kube-apiserver", "Running"),
            PodInfo("installer-7-master-0", "openshift-kube-apiserver", "Succeeded", ready=False),
        ],
        "volumes": [
            VolumeInfo("PV", "pvc-1234", "Bound"),
            VolumeInfo("PVC", "data", "Bound", "app"),
        ],
        "node_usage": [NodeUsage("worker-0", cpu_pct=40.0, memory_pct=55.0)],
        "pending_operations": [],
        "ingress_status": IngressStatus(
            controllers=(IngressControllerInfo("default", available=True),), dns_available=True),
        "machine_config_pools": [
            MachineConfigPoolInfo("master", 3, 3, updated=True),
            MachineConfigPoolInfo("worker", 1, 1, updated=True),
        ],
    }


@pytest.fixture
def reader():
    return FakeReader()


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def config(tmp_path):
    return RunConfig(
        cluster_name="test-cluster",
        endpoint="https://api.test-cluster.example.com:6443",
        mode="pre",
        retry_backoff=1.0,
        log_dir=str(tmp_path / "logs"),
        report_dir=str(tmp_path / "reports"),
    )


@pytest.fixture
def cluster():
    return ClusterIdentity("test-cluster", "https://api.test-cluster.example.com:6443")
