# SPDX-License-Identifier: MIT

"""Reduce a frozen RunContext to a Report.

Verdict rules, in order:

* run aborted by an unreachable or unauthenticated endpoint, or cancelled:
  Fail when any critical or warning check errored or was skipped by the
  abort, otherwise Warn;
* run stopped by ``abort_on_critical_failure``: the rules below apply
  unchanged, so the fail-on-error toggle still decides;
* Fail when a critical check Failed/Errored and the mode's fail-on-error
  toggle is enabled;
* Warn when any check Warned, or any check Failed/Errored;
* Pass otherwise.

Dependency skips never count on their own; the unmet dependency already
carries the failure.
"""

from __future__ import annotations

from typing import Iterable

from ocp_upgrade_check.models import (
    SKIP_RUN_ABORTED,
    SKIP_RUN_CANCELLED,
    AbortKind,
    CheckResult,
    Report,
    RunContext,
    Severity,
    Status,
    Verdict,
)

BROKEN = (Status.FAILED, Status.ERRORED)


def compute_verdict(
    results: Iterable[CheckResult],
    fail_on_errors: bool,
    abort_kind: AbortKind | None = None,
) -> Verdict:
    results = tuple(results)
    critical_broken = any(r.severity == Severity.CRITICAL and r.status in BROKEN for r in results)

    if abort_kind in (AbortKind.ENDPOINT, AbortKind.CANCELLED):
        lost = any(
            r.severity != Severity.INFO
            and (r.status == Status.ERRORED or r.skip_reason in (SKIP_RUN_ABORTED, SKIP_RUN_CANCELLED))
            for r in results
        )
        return Verdict.FAIL if lost else Verdict.WARN

    if critical_broken and fail_on_errors:
        return Verdict.FAIL
    if any(r.status == Status.WARNED or r.status in BROKEN for r in results):
        return Verdict.WARN
    return Verdict.PASS


def aggregate(ctx: RunContext) -> Report:
    if not ctx.frozen:
        raise ValueError("cannot aggregate a run that is still executing")

    results = ctx.results
    status_counts = {status.value: 0 for status in Status}
    severity_counts = {severity.value: 0 for severity in Severity}
    for result in results:
        status_counts[result.status.value] += 1
        if result.status.is_problem:
            severity_counts[result.severity.value] += 1

    return Report(
        cluster=ctx.cluster,
        mode=ctx.mode,
        verdict=compute_verdict(results, ctx.config.fail_on_errors(ctx.mode), abort_kind=ctx.abort_kind),
        status_counts=status_counts,
        severity_counts=severity_counts,
        results=results,
        started_at=ctx.started_at,
        generated_at=ctx.finished_at,
        abort_reason=ctx.abort_reason,
        abort_kind=ctx.abort_kind,
    )
