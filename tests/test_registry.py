# SPDX-License-Identifier: MIT

"""Tests for check definitions, catalog construction and ordering."""

import pytest

from ocp_upgrade_check.checks import CheckKind
from ocp_upgrade_check.config import RunConfig, Thresholds
from ocp_upgrade_check.errors import ConfigError
from ocp_upgrade_check.models import Mode, Severity
from ocp_upgrade_check.registry import (
    CHECK_IDS,
    CheckDefinition,
    CheckRegistry,
    RetryPolicy,
    default_definitions,
    select_by_tags,
)


def _definition(check_id, depends_on=(), mode=Mode.PRE, tag="control-plane"):
    return CheckDefinition(
        id=check_id,
        mode=mode,
        kind=CheckKind.NODE_READINESS,
        description=check_id,
        severity=Severity.CRITICAL,
        tag=tag,
        depends_on=depends_on,
    )


class TestRetryPolicy:
    def test_exponential_delay(self):
        policy = RetryPolicy(max_attempts=4, backoff=2.0)
        assert [policy.delay(n) for n in (1, 2, 3)] == [2.0, 4.0, 8.0]

    def test_delay_is_capped(self):
        policy = RetryPolicy(backoff=10.0, max_delay=30.0)
        assert policy.delay(5) == 30.0


class TestDefaultCatalog:
    def test_every_mode_has_every_check(self):
        registry = CheckRegistry.default(RunConfig())
        for mode in (Mode.PRE, Mode.POST):
            assert {d.id for d in registry.definitions(mode)} == set(CHECK_IDS)

    def test_order_is_deterministic(self):
        first = [d.id for d in CheckRegistry.default(RunConfig()).definitions(Mode.PRE)]
        second = [d.id for d in CheckRegistry.default(RunConfig()).definitions(Mode.PRE)]
        assert first == second
        assert first[0] == "api_responsiveness"

    def test_dependencies_precede_dependents(self):
        for mode in (Mode.PRE, Mode.POST):
            ids = [d.id for d in CheckRegistry.default(RunConfig()).definitions(mode)]
            for definition in CheckRegistry.default(RunConfig()).definitions(mode):
                for dep in definition.depends_on:
                    assert ids.index(dep) < ids.index(definition.id)

    def test_machine_config_pools_severity_depends_on_mode(self):
        registry = CheckRegistry.default(RunConfig())
        pre = {d.id: d for d in registry.definitions(Mode.PRE)}
        post = {d.id: d for d in registry.definitions(Mode.POST)}
        assert pre["machine_config_pools"].severity == Severity.WARNING
        assert post["machine_config_pools"].severity == Severity.CRITICAL

    def test_threshold_override_merges_with_defaults(self):
        config = RunConfig(check_thresholds={"resource_utilization": Thresholds(warning=70)})
        defs = {d.id: d for d in default_definitions(config) if d.mode == Mode.PRE}
        assert defs["resource_utilization"].thresholds == Thresholds(warning=70, critical=95)

    def test_threshold_for_unknown_check_rejected(self):
        config = RunConfig(check_thresholds={"no_such_check": Thresholds(warning=1, critical=2)})
        with pytest.raises(ConfigError, match="no_such_check"):
            default_definitions(config)

    def test_threshold_for_check_without_band_rejected(self):
        config = RunConfig(check_thresholds={"node_readiness": Thresholds(warning=1, critical=2)})
        with pytest.raises(ConfigError, match="node_readiness"):
            default_definitions(config)

    def test_retry_and_timeout_come_from_config(self):
        config = RunConfig(max_attempts=5, retry_backoff=0.5, check_timeout=12)
        definition = default_definitions(config)[0]
        assert definition.retry.max_attempts == 5
        assert definition.retry.backoff == 0.5
        assert definition.timeout == 12

    def test_critical_namespaces_are_passed_to_pod_check(self):
        config = RunConfig(critical_namespaces=("openshift-etcd",))
        defs = {d.id: d for d in default_definitions(config) if d.mode == Mode.POST}
        assert defs["critical_pods"].params["namespaces"] == ("openshift-etcd",)


class TestRegistryValidation:
    def test_duplicate_id_rejected(self):
        with pytest.raises(ConfigError, match="duplicate check id 'a'"):
            CheckRegistry([_definition("a"), _definition("a")])

    def test_same_id_allowed_in_different_modes(self):
        registry = CheckRegistry([_definition("a", mode=Mode.PRE), _definition("a", mode=Mode.POST)])
        assert len(registry) == 2

    def test_unknown_dependency_rejected(self):
        with pytest.raises(ConfigError, match="unknown check"):
            CheckRegistry([_definition("a", depends_on=("ghost",))])

    def test_cycle_rejected(self):
        with pytest.raises(ConfigError, match="cycle"):
            CheckRegistry([
                _definition("a", depends_on=("c",)),
                _definition("b", depends_on=("a",)),
                _definition("c", depends_on=("b",)),
            ])

    def test_self_dependency_is_a_cycle(self):
        with pytest.raises(ConfigError, match="cycle"):
            CheckRegistry([_definition("a", depends_on=("a",))])

    def test_dependency_declared_later_is_moved_ahead(self):
        registry = CheckRegistry([
            _definition("x"),
            _definition("b", depends_on=("a",)),
            _definition("a"),
            _definition("y"),
        ])
        assert [d.id for d in registry.definitions(Mode.PRE)] == ["x", "a", "b", "y"]

    def test_empty_registry(self):
        registry = CheckRegistry()
        assert registry.definitions(Mode.PRE) == ()
        assert len(registry) == 0


class TestTagSelection:
    def test_keeps_only_selected_tags(self):
        defs = select_by_tags(default_definitions(RunConfig()), ["storage"])
        assert {d.id for d in defs} == {"persistent_volumes"}

    def test_dangling_dependencies_are_dropped(self):
        defs = select_by_tags(default_definitions(RunConfig()), ["capacity"])
        assert [d.depends_on for d in defs] == [(), ()]
        CheckRegistry(defs)

    def test_kept_dependencies_survive(self):
        defs = select_by_tags(default_definitions(RunConfig()), ["control-plane"])
        by_id = {d.id: d for d in defs if d.mode == Mode.PRE}
        assert by_id["operator_health"].depends_on == ("cluster_version",)

    def test_config_tags_applied_by_default_registry(self):
        registry = CheckRegistry.default(RunConfig(tags=("network",)))
        assert [d.id for d in registry.definitions(Mode.POST)] == ["ingress_dns"]
