# SPDX-License-Identifier: MIT

"""Tests for verdict computation and report aggregation."""

from itertools import product

import pytest

from ocp_upgrade_check.aggregate import aggregate, compute_verdict
from ocp_upgrade_check.config import RunConfig
from ocp_upgrade_check.engine import ExecutionEngine
from ocp_upgrade_check.errors import AuthError
from ocp_upgrade_check.models import (
    SKIP_DEPENDENCY_UNMET,
    SKIP_RUN_ABORTED,
    SKIP_RUN_CANCELLED,
    AbortKind,
    CheckResult,
    Mode,
    NodeInfo,
    NodeUsage,
    RunContext,
    Severity,
    Status,
    Verdict,
)
from ocp_upgrade_check.registry import CheckRegistry
from tests.conftest import START, FakeReader, StepClock

VERDICT_RANK = {Verdict.PASS: 0, Verdict.WARN: 1, Verdict.FAIL: 2}


def result(check_id, severity, status, skip_reason=None):
    return CheckResult(
        check_id=check_id,
        severity=severity,
        status=status,
        started_at=START,
        finished_at=START,
        attempts=0 if status == Status.SKIPPED else 1,
        skip_reason=skip_reason,
    )


def executed(reader, config, cluster, mode=Mode.PRE):
    ctx = RunContext(cluster=cluster, mode=mode, config=config, started_at=START)
    engine = ExecutionEngine(reader, sleep=lambda _: None, clock=StepClock())
    return engine.run(ctx, CheckRegistry.default(config))


class TestComputeVerdict:
    def test_empty_run_passes(self):
        assert compute_verdict([], fail_on_errors=True) == Verdict.PASS

    def test_all_passed(self):
        results = [result("a", Severity.CRITICAL, Status.PASSED), result("b", Severity.WARNING, Status.PASSED)]
        assert compute_verdict(results, fail_on_errors=True) == Verdict.PASS

    def test_critical_failure_with_toggle_fails(self):
        results = [result("a", Severity.CRITICAL, Status.FAILED)]
        assert compute_verdict(results, fail_on_errors=True) == Verdict.FAIL

    def test_critical_error_with_toggle_fails(self):
        results = [result("a", Severity.CRITICAL, Status.ERRORED)]
        assert compute_verdict(results, fail_on_errors=True) == Verdict.FAIL

    def test_critical_failure_without_toggle_warns(self):
        results = [result("a", Severity.CRITICAL, Status.FAILED)]
        assert compute_verdict(results, fail_on_errors=False) == Verdict.WARN

    def test_warning_failure_only_warns(self):
        results = [result("a", Severity.WARNING, Status.FAILED)]
        assert compute_verdict(results, fail_on_errors=True) == Verdict.WARN

    @pytest.mark.parametrize("status", list(Status))
    def test_info_results_never_fail(self, status):
        results = [result("a", Severity.INFO, status), result("b", Severity.CRITICAL, Status.PASSED)]
        assert compute_verdict(results, fail_on_errors=True) != Verdict.FAIL

    def test_dependency_skip_alone_does_not_degrade(self):
        results = [
            result("a", Severity.CRITICAL, Status.PASSED),
            result("b", Severity.CRITICAL, Status.SKIPPED, SKIP_DEPENDENCY_UNMET),
        ]
        assert compute_verdict(results, fail_on_errors=True) == Verdict.PASS

    def test_aborted_run_with_critical_error_fails(self):
        results = [
            result("a", Severity.CRITICAL, Status.ERRORED),
            result("b", Severity.CRITICAL, Status.SKIPPED, SKIP_RUN_ABORTED),
        ]
        assert compute_verdict(results, fail_on_errors=False, abort_kind=AbortKind.ENDPOINT) == Verdict.FAIL

    def test_endpoint_abort_on_warning_check_fails(self):
        results = [
            result("a", Severity.CRITICAL, Status.PASSED),
            result("b", Severity.WARNING, Status.ERRORED),
            result("c", Severity.WARNING, Status.SKIPPED, SKIP_RUN_ABORTED),
        ]
        assert compute_verdict(results, fail_on_errors=False, abort_kind=AbortKind.ENDPOINT) == Verdict.FAIL

    def test_endpoint_abort_among_info_checks_warns(self):
        results = [
            result("a", Severity.CRITICAL, Status.PASSED),
            result("b", Severity.INFO, Status.ERRORED),
            result("c", Severity.INFO, Status.SKIPPED, SKIP_RUN_ABORTED),
        ]
        assert compute_verdict(results, fail_on_errors=True, abort_kind=AbortKind.ENDPOINT) == Verdict.WARN

    def test_cancelled_run_fails_when_checks_were_lost(self):
        results = [
            result("a", Severity.CRITICAL, Status.PASSED),
            result("b", Severity.WARNING, Status.SKIPPED, SKIP_RUN_CANCELLED),
        ]
        assert compute_verdict(results, fail_on_errors=False, abort_kind=AbortKind.CANCELLED) == Verdict.FAIL

    @pytest.mark.parametrize("fail_on_errors, expected", [(True, Verdict.FAIL), (False, Verdict.WARN)])
    def test_fail_fast_abort_follows_the_toggle(self, fail_on_errors, expected):
        results = [
            result("a", Severity.CRITICAL, Status.FAILED),
            result("b", Severity.CRITICAL, Status.SKIPPED, SKIP_RUN_ABORTED),
        ]
        assert compute_verdict(results, fail_on_errors, abort_kind=AbortKind.FAIL_FAST) == expected

    def test_toggle_only_ever_raises_the_verdict(self):
        statuses = (Status.PASSED, Status.WARNED, Status.FAILED, Status.ERRORED)
        severities = (Severity.CRITICAL, Severity.WARNING)
        for combo in product(product(severities, statuses), repeat=2):
            results = [result(f"c{i}", sev, st) for i, (sev, st) in enumerate(combo)]
            off = compute_verdict(results, fail_on_errors=False)
            on = compute_verdict(results, fail_on_errors=True)
            assert VERDICT_RANK[on] >= VERDICT_RANK[off], combo

    def test_deterministic(self):
        results = [
            result("a", Severity.CRITICAL, Status.WARNED),
            result("b", Severity.WARNING, Status.FAILED),
        ]
        assert {compute_verdict(results, fail_on_errors=True) for _ in range(5)} == {Verdict.WARN}


class TestAggregate:
    def test_rejects_unfrozen_context(self, config, cluster):
        ctx = RunContext(cluster=cluster, mode=Mode.PRE, config=config, started_at=START)
        with pytest.raises(ValueError):
            aggregate(ctx)

    def test_empty_run(self, config, cluster):
        ctx = RunContext(cluster=cluster, mode=Mode.PRE, config=config, started_at=START)
        ctx.freeze(START)
        report = aggregate(ctx)
        assert report.verdict == Verdict.PASS
        assert report.results == ()
        assert sum(report.status_counts.values()) == 0

    def test_counts_cover_every_status_and_severity(self, config, cluster):
        ctx = RunContext(cluster=cluster, mode=Mode.PRE, config=config, started_at=START)
        ctx.record(result("a", Severity.CRITICAL, Status.PASSED))
        ctx.record(result("b", Severity.WARNING, Status.WARNED))
        ctx.record(result("c", Severity.CRITICAL, Status.SKIPPED, SKIP_DEPENDENCY_UNMET))
        ctx.record(result("d", Severity.INFO, Status.ERRORED))
        ctx.freeze(START)
        report = aggregate(ctx)
        assert report.status_counts == {
            "Passed": 1, "Warned": 1, "Failed": 0, "Errored": 1, "Skipped": 1,
        }
        assert report.severity_counts == {"critical": 0, "warning": 1, "info": 1}
        assert sum(report.status_counts.values()) == len(report.results)

    def test_report_keeps_run_metadata(self, config, cluster):
        ctx = RunContext(cluster=cluster, mode=Mode.POST, config=config, started_at=START)
        ctx.abort("authentication failed: HTTP 401")
        ctx.freeze(START)
        report = aggregate(ctx)
        assert report.cluster == cluster
        assert report.mode == Mode.POST
        assert report.generated_at == START
        assert report.aborted
        assert report.abort_reason == "authentication failed: HTTP 401"
        assert report.abort_kind == AbortKind.ENDPOINT
        assert report.to_dict()["abort_kind"] == "endpoint"

    def test_uses_the_toggle_of_the_run_mode(self, cluster):
        config = RunConfig(fail_on_pre_check_errors=False, fail_on_post_check_errors=True)
        for mode, expected in ((Mode.PRE, Verdict.WARN), (Mode.POST, Verdict.FAIL)):
            ctx = RunContext(cluster=cluster, mode=mode, config=config, started_at=START)
            ctx.record(result("a", Severity.CRITICAL, Status.FAILED))
            ctx.freeze(START)
            assert aggregate(ctx).verdict == expected


class TestScenarios:
    def test_one_node_not_ready_fails_and_skips_dependents(self, config, cluster):
        nodes = [NodeInfo(f"node-{i}", True) for i in range(3)] + [NodeInfo("node-3", False, reason="KubeletNotReady")]
        report = aggregate(executed(FakeReader(nodes=nodes), config, cluster))
        assert report.verdict == Verdict.FAIL
        by_id = {r.check_id: r for r in report.results}
        assert by_id["node_readiness"].status == Status.FAILED
        assert "node-3" in by_id["node_readiness"].message
        assert by_id["resource_utilization"].skip_reason == SKIP_DEPENDENCY_UNMET

    def test_high_utilization_warns_with_every_check_executed(self, config, cluster):
        reader = FakeReader(node_usage=[NodeUsage("worker-0", cpu_pct=92.0, memory_pct=60.0)])
        report = aggregate(executed(reader, config, cluster))
        assert report.verdict == Verdict.WARN
        assert report.status_counts["Skipped"] == 0
        assert report.status_counts["Warned"] == 1
        assert report.severity_counts["warning"] == 1

    def test_auth_failure_fails_the_run(self, config, cluster):
        report = aggregate(executed(FakeReader(api_latency=AuthError("HTTP 403 Forbidden")), config, cluster))
        assert report.verdict == Verdict.FAIL
        assert report.aborted
        assert report.status_counts["Errored"] == 1
        assert report.status_counts["Skipped"] == len(report.results) - 1

    def test_auth_failure_on_the_last_check_fails_the_run(self, config, cluster):
        reader = FakeReader(machine_config_pools=AuthError("HTTP 401 Unauthorized"))
        ctx = executed(reader, config, cluster)
        assert ctx.results[-1].check_id == "machine_config_pools"
        report = aggregate(ctx)
        assert report.aborted
        assert report.status_counts["Skipped"] == 0
        assert report.verdict == Verdict.FAIL

    def test_fail_fast_with_toggle_off_warns(self, cluster):
        config = RunConfig(mode="pre", fail_on_pre_check_errors=False, abort_on_critical_failure=True)
        reader = FakeReader(nodes=[NodeInfo("node-0", True), NodeInfo("node-1", False)])
        report = aggregate(executed(reader, config, cluster))
        assert report.abort_reason == "critical check 'node_readiness' failed"
        assert report.abort_kind == AbortKind.FAIL_FAST
        assert report.verdict == Verdict.WARN

    def test_fail_fast_with_toggle_on_fails(self, cluster):
        config = RunConfig(mode="pre", abort_on_critical_failure=True)
        reader = FakeReader(nodes=[NodeInfo("node-0", True), NodeInfo("node-1", False)])
        report = aggregate(executed(reader, config, cluster))
        assert report.aborted
        assert report.verdict == Verdict.FAIL

    def test_healthy_cluster_passes(self, reader, config, cluster):
        report = aggregate(executed(reader, config, cluster))
        assert report.verdict == Verdict.PASS
        assert report.status_counts["Passed"] == len(report.results)
