# SPDX-License-Identifier: MIT

"""Check definitions and the per-mode registry.

The registry is loaded once per run. It rejects id collisions, unknown
dependencies and dependency cycles with ``ConfigError`` and yields each
mode's definitions in a deterministic order: declaration order, except
that a check never precedes the checks it must run after.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from ocp_upgrade_check.checks import CheckKind
from ocp_upgrade_check.config import RunConfig, Thresholds
from ocp_upgrade_check.errors import ConfigError
from ocp_upgrade_check.models import Mode, Severity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff: float = 2.0
    factor: float = 2.0
    max_delay: float = 30.0

    def delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        return min(self.backoff * (self.factor ** (attempt - 1)), self.max_delay)


@dataclass(frozen=True)
class CheckDefinition:
    id: str
    mode: Mode
    kind: CheckKind
    description: str
    severity: Severity
    tag: str = ""
    thresholds: Thresholds | None = None
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    timeout: float = 30.0
    depends_on: tuple[str, ...] = ()
    params: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "depends_on", tuple(self.depends_on))
        object.__setattr__(self, "params", MappingProxyType(dict(self.params)))


# =====================================================================
# Default catalog
# =====================================================================

# (id, kind, description, severity per mode, tag, depends_on per mode, default thresholds)
_CATALOG: tuple[tuple[str, CheckKind, str, dict[Mode, Severity], str, dict[Mode, tuple[str, ...]], Thresholds | None], ...] = (
    ("api_responsiveness", CheckKind.API_RESPONSIVENESS,
     "API server answers within the latency budget",
     {Mode.PRE: Severity.CRITICAL, Mode.POST: Severity.CRITICAL}, "control-plane",
     {}, Thresholds(warning=1000, critical=5000)),
    ("cluster_version", CheckKind.CLUSTER_VERSION,
     "Cluster version, update channel and update progress",
     {Mode.PRE: Severity.CRITICAL, Mode.POST: Severity.CRITICAL}, "control-plane",
     {Mode.PRE: ("api_responsiveness",), Mode.POST: ("api_responsiveness",)}, None),
    ("node_readiness", CheckKind.NODE_READINESS,
     "All nodes report Ready",
     {Mode.PRE: Severity.CRITICAL, Mode.POST: Severity.CRITICAL}, "nodes",
     {Mode.PRE: ("api_responsiveness",), Mode.POST: ("api_responsiveness",)}, None),
    ("operator_health", CheckKind.OPERATOR_HEALTH,
     "Cluster operators available, not degraded, not progressing",
     {Mode.PRE: Severity.CRITICAL, Mode.POST: Severity.CRITICAL}, "control-plane",
     {Mode.PRE: ("cluster_version",), Mode.POST: ("cluster_version",)}, None),
    ("etcd_health", CheckKind.ETCD_HEALTH,
     "etcd members running and quorum held",
     {Mode.PRE: Severity.CRITICAL, Mode.POST: Severity.CRITICAL}, "control-plane",
     {}, None),
    ("critical_pods", CheckKind.CRITICAL_PODS,
     "Pods in critical namespaces running and ready",
     {Mode.PRE: Severity.CRITICAL, Mode.POST: Severity.CRITICAL}, "workloads",
     {}, None),
    ("persistent_volumes", CheckKind.PERSISTENT_VOLUMES,
     "Persistent volumes and claims bound",
     {Mode.PRE: Severity.WARNING, Mode.POST: Severity.WARNING}, "storage",
     {}, None),
    ("resource_utilization", CheckKind.RESOURCE_UTILIZATION,
     "Node CPU and memory utilization below thresholds",
     {Mode.PRE: Severity.WARNING, Mode.POST: Severity.WARNING}, "capacity",
     {Mode.PRE: ("node_readiness",), Mode.POST: ("node_readiness",)}, Thresholds(warning=80, critical=95)),
    ("pending_operations", CheckKind.PENDING_OPERATIONS,
     "No stuck pods, pending CSRs or unapproved install plans",
     {Mode.PRE: Severity.WARNING, Mode.POST: Severity.WARNING}, "workloads",
     {Mode.PRE: ("cluster_version",), Mode.POST: ("cluster_version",)}, Thresholds(warning=1, critical=10)),
    ("ingress_dns", CheckKind.INGRESS_DNS,
     "Ingress controllers and DNS operator available",
     {Mode.PRE: Severity.CRITICAL, Mode.POST: Severity.CRITICAL}, "network",
     {}, None),
    ("machine_config_pools", CheckKind.MACHINE_CONFIG_POOLS,
     "Machine config pools rolled out and not degraded",
     {Mode.PRE: Severity.WARNING, Mode.POST: Severity.CRITICAL}, "nodes",
     {Mode.POST: ("node_readiness",)}, None),
)

CHECK_IDS = tuple(entry[0] for entry in _CATALOG)


def default_definitions(config: RunConfig) -> list[CheckDefinition]:
    """Build the built-in catalog for every mode, applying config overrides."""
    unknown = set(config.check_thresholds) - set(CHECK_IDS)
    if unknown:
        raise ConfigError(f"thresholds configured for unknown checks: {sorted(unknown)}")
    banded = {entry[0] for entry in _CATALOG if entry[6] is not None}
    unbanded = set(config.check_thresholds) - banded
    if unbanded:
        raise ConfigError(f"checks without numeric thresholds cannot take overrides: {sorted(unbanded)}")

    retry = RetryPolicy(max_attempts=config.max_attempts, backoff=config.retry_backoff)
    definitions = []
    for mode in (Mode.PRE, Mode.POST):
        for check_id, kind, description, severities, tag, deps, thresholds in _CATALOG:
            if mode not in severities:
                continue
            merged = thresholds.merged(config.thresholds_for(check_id)) if thresholds else None
            params = {"namespaces": config.critical_namespaces} if kind == CheckKind.CRITICAL_PODS else {}
            definitions.append(CheckDefinition(
                id=check_id,
                mode=mode,
                kind=kind,
                description=description,
                severity=severities[mode],
                tag=tag,
                thresholds=merged,
                retry=retry,
                timeout=config.check_timeout,
                depends_on=deps.get(mode, ()),
                params=params,
            ))
    return definitions


# =====================================================================
# Registry
# =====================================================================

class CheckRegistry:
    def __init__(self, definitions: Iterable[CheckDefinition] = ()) -> None:
        grouped: dict[Mode, list[CheckDefinition]] = {Mode.PRE: [], Mode.POST: []}
        for definition in definitions:
            grouped[definition.mode].append(definition)
        self._ordered = {mode: _ordered(mode, defs) for mode, defs in grouped.items()}

    @classmethod
    def default(cls, config: RunConfig) -> CheckRegistry:
        definitions = default_definitions(config)
        if config.tags:
            definitions = select_by_tags(definitions, config.tags)
        return cls(definitions)

    def definitions(self, mode: Mode) -> tuple[CheckDefinition, ...]:
        return self._ordered[mode]

    def __len__(self) -> int:
        return sum(len(defs) for defs in self._ordered.values())


def select_by_tags(definitions: Iterable[CheckDefinition], tags: Iterable[str]) -> list[CheckDefinition]:
    """Keep definitions carrying one of ``tags``.

    Dependencies on checks that were filtered out are dropped: an ordering
    constraint only binds checks that actually run.
    """
    wanted = set(tags)
    kept = [d for d in definitions if d.tag in wanted]
    if not kept:
        logger.warning("tag selection %s matched no checks", sorted(wanted))
    kept_ids = {(d.mode, d.id) for d in kept}
    return [
        replace(d, depends_on=tuple(dep for dep in d.depends_on if (d.mode, dep) in kept_ids))
        for d in kept
    ]


def _ordered(mode: Mode, definitions: list[CheckDefinition]) -> tuple[CheckDefinition, ...]:
    seen: set[str] = set()
    for definition in definitions:
        if definition.id in seen:
            raise ConfigError(f"duplicate check id '{definition.id}' in {mode.value} checks")
        seen.add(definition.id)
    for definition in definitions:
        missing = [dep for dep in definition.depends_on if dep not in seen]
        if missing:
            raise ConfigError(
                f"check '{definition.id}' ({mode.value}) depends on unknown check(s): {', '.join(missing)}")

    remaining = list(definitions)
    placed: set[str] = set()
    order: list[CheckDefinition] = []
    while remaining:
        ready = next((d for d in remaining if all(dep in placed for dep in d.depends_on)), None)
        if ready is None:
            cycle = ", ".join(d.id for d in remaining)
            raise ConfigError(f"dependency cycle among {mode.value} checks: {cycle}")
        remaining.remove(ready)
        placed.add(ready.id)
        order.append(ready)
    return tuple(order)
