# SPDX-License-Identifier: MIT

"""Check evaluators.

Each ``CheckKind`` maps to one evaluate function in ``EVALUATORS``. An
evaluator reads what it needs from the Cluster Reader and returns an
``Outcome``. Reader errors propagate untouched so the engine can apply the
retry/abort policy; evaluators never catch them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

from ocp_upgrade_check.config import Thresholds
from ocp_upgrade_check.errors import QueryError
from ocp_upgrade_check.models import Mode, Status

if TYPE_CHECKING:
    from ocp_upgrade_check.registry import CheckDefinition

MAX_LISTED = 10


class CheckKind(str, Enum):
    API_RESPONSIVENESS = "api_responsiveness"
    CLUSTER_VERSION = "cluster_version"
    NODE_READINESS = "node_readiness"
    OPERATOR_HEALTH = "operator_health"
    ETCD_HEALTH = "etcd_health"
    PERSISTENT_VOLUMES = "persistent_volumes"
    CRITICAL_PODS = "critical_pods"
    RESOURCE_UTILIZATION = "resource_utilization"
    PENDING_OPERATIONS = "pending_operations"
    INGRESS_DNS = "ingress_dns"
    MACHINE_CONFIG_POOLS = "machine_config_pools"


@dataclass(frozen=True)
class Outcome:
    status: Status
    message: str
    observed: dict[str, Any] = field(default_factory=dict)


def classify_band(value: float, thresholds: Thresholds | None) -> Status:
    """Place ``value`` in the passed / warned / failed band."""
    if thresholds is None:
        return Status.PASSED
    if thresholds.critical is not None and value >= thresholds.critical:
        return Status.FAILED
    if thresholds.warning is not None and value >= thresholds.warning:
        return Status.WARNED
    return Status.PASSED


def _listing(items: list[Any]) -> str:
    shown = ", ".join(str(i) for i in items[:MAX_LISTED])
    if len(items) > MAX_LISTED:
        shown += f" (+{len(items) - MAX_LISTED} more)"
    return shown


def _band_suffix(thresholds: Thresholds | None, unit: str = "") -> str:
    if thresholds is None:
        return ""
    parts = [f"{name} {level:g}{unit}"
             for name, level in (("warning", thresholds.warning), ("critical", thresholds.critical))
             if level is not None]
    return f" ({', '.join(parts)})" if parts else ""


# =====================================================================
# Evaluators
# =====================================================================

def evaluate_api_responsiveness(reader, definition: CheckDefinition) -> Outcome:
    answer = reader.api_latency()
    status = classify_band(answer.latency_ms, definition.thresholds)
    return Outcome(
        status=status,
        message=f"API answered in {answer.latency_ms:.0f}ms{_band_suffix(definition.thresholds, 'ms')}",
        observed={"latency_ms": round(answer.latency_ms, 1), "server_version": answer.server_version},
    )


def evaluate_cluster_version(reader, definition: CheckDefinition) -> Outcome:
    cv = reader.cluster_version()
    observed = {
        "version": cv.version,
        "channel": cv.channel,
        "desired_version": cv.desired_version,
        "available_updates": list(cv.available_updates),
        "history_state": cv.history_state,
    }
    summary = f"Cluster version {cv.version} on channel {cv.channel or '(none)'}"
    if cv.failing:
        return Outcome(Status.FAILED, f"{summary}; ClusterVersion reports Failing: {cv.failing_message}", observed)
    if definition.mode == Mode.PRE:
        if cv.progressing:
            return Outcome(Status.FAILED,
                           f"{summary}; an update to {cv.desired_version or 'unknown'} is already in progress",
                           observed)
    else:
        if cv.progressing or (cv.history_state and cv.history_state != "Completed"):
            return Outcome(Status.FAILED,
                           f"{summary}; update to {cv.desired_version or 'unknown'} has not completed "
                           f"(state {cv.history_state or 'unknown'})",
                           observed)
        if cv.desired_version and cv.desired_version != cv.version:
            return Outcome(Status.FAILED,
                           f"{summary}; desired version {cv.desired_version} not reached", observed)
    if cv.available_updates:
        summary += f"; {len(cv.available_updates)} update(s) available"
    else:
        summary += "; no pending update"
    return Outcome(Status.PASSED, summary, observed)


def evaluate_node_readiness(reader, definition: CheckDefinition) -> Outcome:
    nodes = reader.nodes()
    if not nodes:
        return Outcome(Status.FAILED, "Cluster reported no nodes", {"ready": 0, "total": 0})
    not_ready = [n.name for n in nodes if not n.ready]
    cordoned = [n.name for n in nodes if n.unschedulable]
    ready = len(nodes) - len(not_ready)
    observed = {"ready": ready, "total": len(nodes), "not_ready": not_ready, "cordoned": cordoned}
    if not_ready:
        return Outcome(Status.FAILED,
                       f"{ready} of {len(nodes)} nodes Ready; NotReady: {_listing(not_ready)}", observed)
    message = f"All {len(nodes)} nodes Ready"
    if cordoned:
        message += f"; cordoned: {_listing(cordoned)}"
    return Outcome(Status.PASSED, message, observed)


def evaluate_operator_health(reader, definition: CheckDefinition) -> Outcome:
    operators = reader.cluster_operators()
    problems = []
    for op in operators:
        flags = []
        if not op.available:
            flags.append("unavailable")
        if op.degraded:
            flags.append("degraded")
        if op.progressing:
            flags.append("progressing")
        if flags:
            problems.append(f"{op.name} ({'/'.join(flags)})")
    observed = {"total": len(operators), "unhealthy": problems}
    if problems:
        return Outcome(Status.FAILED,
                       f"{len(problems)} of {len(operators)} cluster operators unhealthy: {_listing(problems)}",
                       observed)
    return Outcome(Status.PASSED, f"All {len(operators)} cluster operators available and settled", observed)


def evaluate_etcd_health(reader, definition: CheckDefinition) -> Outcome:
    etcd = reader.etcd_status()
    total = len(etcd.members)
    healthy = etcd.healthy_count
    unhealthy = [f"{m.name} ({m.phase}{'' if m.ready else ', not ready'})"
                 for m in etcd.members if not (m.ready and m.phase == "Running")]
    observed = {"members": total, "healthy": healthy, "quorum": etcd.has_quorum,
                "members_available": etcd.members_available, "unhealthy": unhealthy}
    if not total:
        return Outcome(Status.FAILED, "No etcd members found in openshift-etcd", observed)
    if not etcd.has_quorum:
        return Outcome(Status.FAILED, f"etcd quorum lost: {healthy} of {total} members healthy", observed)
    if unhealthy or etcd.members_available is False:
        detail = _listing(unhealthy) if unhealthy else etcd.message
        return Outcome(Status.FAILED,
                       f"etcd quorum held with {healthy} of {total} members healthy; degraded: {detail}",
                       observed)
    return Outcome(Status.PASSED, f"etcd quorum healthy: {healthy} of {total} members", observed)


def evaluate_persistent_volumes(reader, definition: CheckDefinition) -> Outcome:
    volumes = reader.volumes()
    problems = [
        f"{v} ({v.phase})" for v in volumes
        if (v.kind == "PV" and v.phase not in ("Bound", "Available"))
        or (v.kind == "PVC" and v.phase != "Bound")
    ]
    observed = {"total": len(volumes), "problems": problems}
    if problems:
        return Outcome(Status.FAILED, f"{len(problems)} volume(s) not healthy: {_listing(problems)}", observed)
    return Outcome(Status.PASSED, f"All {len(volumes)} persistent volumes and claims healthy", observed)


def evaluate_critical_pods(reader, definition: CheckDefinition) -> Outcome:
    namespaces = tuple(definition.params.get("namespaces", ()))
    pods = reader.critical_pods(namespaces)
    problems = []
    for pod in pods:
        if pod.phase == "Succeeded":
            continue
        if pod.waiting_reason:
            problems.append(f"{pod} ({pod.waiting_reason}, {pod.restarts} restarts)")
        elif pod.phase != "Running":
            problems.append(f"{pod} ({pod.phase})")
        elif not pod.ready:
            problems.append(f"{pod} (not ready)")
    observed = {"pods": len(pods), "namespaces": list(namespaces), "unhealthy": problems}
    if problems:
        return Outcome(Status.FAILED,
                       f"{len(problems)} pod(s) unhealthy in critical namespaces: {_listing(problems)}",
                       observed)
    return Outcome(Status.PASSED,
                   f"All {len(pods)} pods healthy across {len(namespaces)} critical namespaces", observed)


def evaluate_resource_utilization(reader, definition: CheckDefinition) -> Outcome:
    usage = reader.node_usage()
    if not usage:
        raise QueryError("node metrics returned no samples")
    peak_value = -1.0
    peak = ""
    for node in usage:
        for resource, value in (("cpu", node.cpu_pct), ("memory", node.memory_pct)):
            if value > peak_value:
                peak_value = value
                peak = f"{node.name} {resource}"
    status = classify_band(peak_value, definition.thresholds)
    over = [f"{n.name} cpu {n.cpu_pct:.0f}% memory {n.memory_pct:.0f}%" for n in usage
            if definition.thresholds and definition.thresholds.warning is not None
            and max(n.cpu_pct, n.memory_pct) >= definition.thresholds.warning]
    message = f"Peak utilization {peak_value:.0f}% on {peak}{_band_suffix(definition.thresholds, '%')}"
    if over:
        message += f"; above warning: {_listing(over)}"
    return Outcome(status, message, {"peak_pct": round(peak_value, 1), "peak": peak, "nodes": len(usage)})


def evaluate_pending_operations(reader, definition: CheckDefinition) -> Outcome:
    pending = reader.pending_operations()
    status = classify_band(len(pending), definition.thresholds)
    items = [f"{op} ({op.detail})" if op.detail else str(op) for op in pending]
    observed = {"count": len(pending), "operations": items}
    if not pending:
        return Outcome(status, "No stuck pods, pending CSRs or unapproved install plans", observed)
    return Outcome(status, f"{len(pending)} pending operation(s): {_listing(items)}", observed)


def evaluate_ingress_dns(reader, definition: CheckDefinition) -> Outcome:
    ingress = reader.ingress_status()
    problems = []
    for ic in ingress.controllers:
        if not ic.available:
            problems.append(f"ingresscontroller/{ic.name} unavailable")
        if ic.degraded:
            problems.append(f"ingresscontroller/{ic.name} degraded: {ic.message}".rstrip(": "))
    if ingress.dns_available is False:
        problems.append("dns operator unavailable")
    if ingress.dns_degraded:
        problems.append(f"dns operator degraded: {ingress.dns_message}".rstrip(": "))
    observed = {"controllers": len(ingress.controllers), "dns_available": ingress.dns_available,
                "problems": problems}
    if not ingress.controllers:
        return Outcome(Status.FAILED, "No ingress controllers found", observed)
    if problems:
        return Outcome(Status.FAILED, f"Ingress/DNS unhealthy: {_listing(problems)}", observed)
    return Outcome(Status.PASSED,
                   f"{len(ingress.controllers)} ingress controller(s) available; DNS operator healthy", observed)


def evaluate_machine_config_pools(reader, definition: CheckDefinition) -> Outcome:
    pools = reader.machine_config_pools()
    problems = []
    for pool in pools:
        if pool.degraded or pool.degraded_count:
            problems.append(f"{pool.name} degraded ({pool.degraded_count} machine(s))")
        elif definition.mode == Mode.PRE and pool.updating:
            problems.append(f"{pool.name} still rolling out ({pool.updated_count}/{pool.machine_count})")
        elif definition.mode == Mode.POST and (not pool.updated or pool.updated_count < pool.machine_count):
            problems.append(f"{pool.name} not updated ({pool.updated_count}/{pool.machine_count})")
    observed = {"pools": len(pools), "problems": problems}
    if problems:
        return Outcome(Status.FAILED, f"Machine config pools not settled: {_listing(problems)}", observed)
    return Outcome(Status.PASSED, f"All {len(pools)} machine config pools updated", observed)


EVALUATORS: dict[CheckKind, Callable[..., Outcome]] = {
    CheckKind.API_RESPONSIVENESS: evaluate_api_responsiveness,
    CheckKind.CLUSTER_VERSION: evaluate_cluster_version,
    CheckKind.NODE_READINESS: evaluate_node_readiness,
    CheckKind.OPERATOR_HEALTH: evaluate_operator_health,
    CheckKind.ETCD_HEALTH: evaluate_etcd_health,
    CheckKind.PERSISTENT_VOLUMES: evaluate_persistent_volumes,
    CheckKind.CRITICAL_PODS: evaluate_critical_pods,
    CheckKind.RESOURCE_UTILIZATION: evaluate_resource_utilization,
    CheckKind.PENDING_OPERATIONS: evaluate_pending_operations,
    CheckKind.INGRESS_DNS: evaluate_ingress_dns,
    CheckKind.MACHINE_CONFIG_POOLS: evaluate_machine_config_pools,
}


def evaluate(reader, definition: CheckDefinition) -> Outcome:
    return EVALUATORS[definition.kind](reader, definition)
