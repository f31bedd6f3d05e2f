# SPDX-License-Identifier: MIT

"""Data model for upgrade health runs.

A run produces one ``CheckResult`` per check definition, accumulated in a
``RunContext``. Once the engine freezes the context, the aggregator derives
a ``Report`` from it. The snapshot dataclasses at the bottom are the typed
answers the Cluster Reader hands to the check evaluators.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

SKIP_DEPENDENCY_UNMET = "dependency unmet"
SKIP_RUN_ABORTED = "run aborted"
SKIP_RUN_CANCELLED = "run cancelled"


# =====================================================================
# Enums
# =====================================================================

class Mode(str, Enum):
    PRE = "pre"
    POST = "post"


class Severity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"

    @property
    def sort_order(self) -> int:
        return {Severity.CRITICAL: 0, Severity.WARNING: 1, Severity.INFO: 2}[self]


class Status(str, Enum):
    PASSED = "Passed"
    WARNED = "Warned"
    FAILED = "Failed"
    ERRORED = "Errored"
    SKIPPED = "Skipped"

    @property
    def is_problem(self) -> bool:
        return self in (Status.WARNED, Status.FAILED, Status.ERRORED)

    @property
    def satisfies_dependency(self) -> bool:
        return self in (Status.PASSED, Status.WARNED)


class Verdict(str, Enum):
    PASS = "Pass"
    WARN = "Warn"
    FAIL = "Fail"


class AbortKind(str, Enum):
    ENDPOINT = "endpoint"
    CANCELLED = "cancelled"
    FAIL_FAST = "fail-fast"


# =====================================================================
# Run records
# =====================================================================

@dataclass(frozen=True)
class ClusterIdentity:
    name: str
    endpoint: str = ""

    def __str__(self) -> str:
        if self.endpoint:
            return f"{self.name} ({self.endpoint})"
        return self.name


@dataclass(frozen=True)
class CheckResult:
    check_id: str
    severity: Severity
    status: Status
    started_at: datetime
    finished_at: datetime
    attempts: int = 0
    message: str = ""
    observed: Mapping[str, Any] = field(default_factory=dict)
    skip_reason: str | None = None
    description: str = ""
    tag: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "observed", MappingProxyType(dict(self.observed)))

    @property
    def duration_ms(self) -> float:
        return (self.finished_at - self.started_at).total_seconds() * 1000

    def to_dict(self) -> dict[str, Any]:
        return {
            "check_id": self.check_id,
            "description": self.description,
            "tag": self.tag,
            "severity": self.severity.value,
            "status": self.status.value,
            "attempts": self.attempts,
            "message": self.message,
            "observed": dict(self.observed),
            "skip_reason": self.skip_reason,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "duration_ms": round(self.duration_ms, 1),
        }


@dataclass
class RunContext:
    """Mutable-then-frozen record of one check session against one cluster.

    Configuration is fixed at creation. During execution the only allowed
    mutation is appending results (and recording an abort reason). After
    ``freeze`` every mutation raises ``RuntimeError``.
    """

    cluster: ClusterIdentity
    mode: Mode
    config: Any
    started_at: datetime
    abort_reason: str | None = None
    abort_kind: AbortKind | None = None
    finished_at: datetime | None = None
    _results: list[CheckResult] = field(default_factory=list, repr=False)
    _frozen: bool = field(default=False, repr=False)

    @property
    def results(self) -> tuple[CheckResult, ...]:
        return tuple(self._results)

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def aborted(self) -> bool:
        return self.abort_reason is not None

    @property
    def cancelled(self) -> bool:
        return self.abort_kind == AbortKind.CANCELLED

    def result_for(self, check_id: str) -> CheckResult | None:
        for result in self._results:
            if result.check_id == check_id:
                return result
        return None

    def record(self, result: CheckResult) -> None:
        self._ensure_open()
        if self.result_for(result.check_id) is not None:
            raise ValueError(f"result for '{result.check_id}' already recorded")
        self._results.append(result)

    def abort(self, reason: str, kind: AbortKind = AbortKind.ENDPOINT) -> None:
        self._ensure_open()
        if self.abort_reason is None:
            self.abort_reason = reason
            self.abort_kind = kind

    def freeze(self, finished_at: datetime) -> None:
        self._ensure_open()
        self.finished_at = finished_at
        self._frozen = True

    def _ensure_open(self) -> None:
        if self._frozen:
            raise RuntimeError("run context is frozen")


@dataclass(frozen=True)
class Report:
    cluster: ClusterIdentity
    mode: Mode
    verdict: Verdict
    status_counts: Mapping[str, int]
    severity_counts: Mapping[str, int]
    results: tuple[CheckResult, ...]
    started_at: datetime
    generated_at: datetime
    abort_reason: str | None = None
    abort_kind: AbortKind | None = None

    @property
    def aborted(self) -> bool:
        return self.abort_reason is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "cluster": self.cluster.name,
            "endpoint": self.cluster.endpoint,
            "mode": self.mode.value,
            "verdict": self.verdict.value,
            "status_counts": dict(self.status_counts),
            "severity_counts": dict(self.severity_counts),
            "abort_reason": self.abort_reason,
            "abort_kind": self.abort_kind.value if self.abort_kind else None,
            "started_at": self.started_at.isoformat(),
            "generated_at": self.generated_at.isoformat(),
            "results": [r.to_dict() for r in self.results],
        }


# =====================================================================
# Cluster snapshots (Cluster Reader answers)
# =====================================================================

@dataclass(frozen=True)
class ApiLatency:
    latency_ms: float
    server_version: str = ""


@dataclass(frozen=True)
class ClusterVersionInfo:
    version: str
    channel: str = ""
    desired_version: str = ""
    available_updates: tuple[str, ...] = ()
    failing: bool = False
    failing_message: str = ""
    progressing: bool = False
    history_state: str = ""


@dataclass(frozen=True)
class NodeInfo:
    name: str
    ready: bool
    unschedulable: bool = False
    roles: tuple[str, ...] = ()
    reason: str = ""


@dataclass(frozen=True)
class OperatorInfo:
    name: str
    available: bool
    progressing: bool = False
    degraded: bool = False
    version: str = ""
    message: str = ""


@dataclass(frozen=True)
class EtcdMember:
    name: str
    phase: str
    ready: bool
    node: str = ""
    restarts: int = 0


@dataclass(frozen=True)
class EtcdStatus:
    members: tuple[EtcdMember, ...]
    members_available: bool | None = None
    message: str = ""

    @property
    def healthy_count(self) -> int:
        return sum(1 for m in self.members if m.ready and m.phase == "Running")

    @property
    def has_quorum(self) -> bool:
        return bool(self.members) and self.healthy_count > len(self.members) // 2


@dataclass(frozen=True)
class VolumeInfo:
    kind: str
    name: str
    phase: str
    namespace: str = ""

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.kind}/{self.namespace}/{self.name}"
        return f"{self.kind}/{self.name}"


@dataclass(frozen=True)
class PodInfo:
    name: str
    namespace: str
    phase: str
    ready: bool = True
    restarts: int = 0
    waiting_reason: str = ""

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class NodeUsage:
    name: str
    cpu_pct: float
    memory_pct: float


@dataclass(frozen=True)
class PendingOperation:
    kind: str
    name: str
    namespace: str = ""
    age_minutes: float = 0.0
    detail: str = ""

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.kind}/{self.namespace}/{self.name}"
        return f"{self.kind}/{self.name}"


@dataclass(frozen=True)
class IngressControllerInfo:
    name: str
    available: bool
    degraded: bool = False
    message: str = ""


@dataclass(frozen=True)
class IngressStatus:
    controllers: tuple[IngressControllerInfo, ...]
    dns_available: bool | None = None
    dns_degraded: bool = False
    dns_message: str = ""


@dataclass(frozen=True)
class MachineConfigPoolInfo:
    name: str
    machine_count: int
    updated_count: int
    degraded_count: int = 0
    updated: bool = True
    updating: bool = False
    degraded: bool = False
