# SPDX-License-Identifier: MIT

"""Immutable run configuration.

Built once per invocation (normally from the Ansible module parameters)
and passed explicitly to the registry, engine, aggregator and runner.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from ocp_upgrade_check.errors import ConfigError
from ocp_upgrade_check.models import Mode

MODES = ("pre", "post", "both")

DEFAULT_CRITICAL_NAMESPACES = (
    "openshift-etcd",
    "openshift-kube-apiserver",
    "openshift-kube-controller-manager",
    "openshift-kube-scheduler",
    "openshift-apiserver",
    "openshift-oauth-apiserver",
    "openshift-authentication",
    "openshift-ingress",
    "openshift-dns",
    "openshift-network-operator",
    "openshift-machine-config-operator",
    "openshift-cluster-version",
)


@dataclass(frozen=True)
class Thresholds:
    warning: float | None = None
    critical: float | None = None

    def __post_init__(self) -> None:
        if self.warning is not None and self.critical is not None and self.warning > self.critical:
            raise ConfigError(f"warning threshold {self.warning} is above critical threshold {self.critical}")

    def merged(self, override: Thresholds | None) -> Thresholds:
        if override is None:
            return self
        return Thresholds(
            warning=override.warning if override.warning is not None else self.warning,
            critical=override.critical if override.critical is not None else self.critical,
        )


@dataclass(frozen=True)
class RunConfig:
    cluster_name: str = "cluster"
    endpoint: str = ""
    mode: str = "both"
    fail_on_pre_check_errors: bool = True
    fail_on_post_check_errors: bool = True
    post_upgrade_wait_time: float = 0
    check_thresholds: Mapping[str, Thresholds] = field(default_factory=dict)
    critical_namespaces: tuple[str, ...] = DEFAULT_CRITICAL_NAMESPACES
    tags: tuple[str, ...] = ()
    check_timeout: float = 30.0
    max_attempts: int = 3
    retry_backoff: float = 2.0
    log_dir: str = "logs"
    report_dir: str = "reports"
    abort_on_critical_failure: bool = False

    def __post_init__(self) -> None:
        if self.mode not in MODES:
            raise ConfigError(f"mode must be one of {', '.join(MODES)}, got '{self.mode}'")
        if self.post_upgrade_wait_time < 0:
            raise ConfigError("post_upgrade_wait_time must not be negative")
        if self.check_timeout <= 0:
            raise ConfigError("check_timeout must be positive")
        if self.max_attempts < 1:
            raise ConfigError("max_attempts must be at least 1")
        if self.retry_backoff < 0:
            raise ConfigError("retry_backoff must not be negative")
        object.__setattr__(self, "check_thresholds", MappingProxyType(dict(self.check_thresholds)))
        object.__setattr__(self, "critical_namespaces", tuple(self.critical_namespaces))
        object.__setattr__(self, "tags", tuple(self.tags))

    @property
    def modes(self) -> tuple[Mode, ...]:
        if self.mode == "both":
            return (Mode.PRE, Mode.POST)
        return (Mode(self.mode),)

    def fail_on_errors(self, mode: Mode) -> bool:
        if mode == Mode.PRE:
            return self.fail_on_pre_check_errors
        return self.fail_on_post_check_errors

    def thresholds_for(self, check_id: str) -> Thresholds | None:
        return self.check_thresholds.get(check_id)

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> RunConfig:
        """Build a config from Ansible-style module parameters.

        Keys that are absent or ``None`` fall back to the dataclass defaults.
        """
        kwargs: dict[str, Any] = {}
        simple = (
            "cluster_name", "endpoint", "mode", "fail_on_pre_check_errors",
            "fail_on_post_check_errors", "post_upgrade_wait_time", "check_timeout",
            "max_attempts", "retry_backoff", "log_dir", "report_dir",
            "abort_on_critical_failure",
        )
        for key in simple:
            if params.get(key) is not None:
                kwargs[key] = params[key]
        if params.get("critical_namespaces"):
            kwargs["critical_namespaces"] = tuple(params["critical_namespaces"])
        if params.get("tags"):
            kwargs["tags"] = tuple(params["tags"])
        if params.get("check_thresholds"):
            kwargs["check_thresholds"] = _parse_thresholds(params["check_thresholds"])
        try:
            return cls(**kwargs)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"invalid run configuration: {exc}") from exc


def _parse_thresholds(raw: Mapping[str, Any]) -> dict[str, Thresholds]:
    parsed: dict[str, Thresholds] = {}
    for check_id, levels in raw.items():
        if not isinstance(levels, Mapping):
            raise ConfigError(f"thresholds for '{check_id}' must be a mapping with warning/critical keys")
        unknown = set(levels) - {"warning", "critical"}
        if unknown:
            raise ConfigError(f"unknown threshold keys for '{check_id}': {sorted(unknown)}")
        try:
            parsed[check_id] = Thresholds(
                warning=float(levels["warning"]) if levels.get("warning") is not None else None,
                critical=float(levels["critical"]) if levels.get("critical") is not None else None,
            )
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"thresholds for '{check_id}' must be numeric: {exc}") from exc
    return parsed
