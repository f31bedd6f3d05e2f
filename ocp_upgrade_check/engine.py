# SPDX-License-Identifier: MIT

"""Sequential execution of a registry against one Cluster Reader."""

from __future__ import annotations

import logging
import threading
import time
from contextlib import nullcontext
from datetime import datetime, timezone
from typing import Callable

from ocp_upgrade_check.checks import Outcome, evaluate
from ocp_upgrade_check.errors import AuthError, ConnectivityError, QueryError
from ocp_upgrade_check.models import (
    SKIP_DEPENDENCY_UNMET,
    SKIP_RUN_ABORTED,
    SKIP_RUN_CANCELLED,
    AbortKind,
    CheckResult,
    RunContext,
    Severity,
    Status,
)
from ocp_upgrade_check.registry import CheckDefinition, CheckRegistry

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExecutionEngine:
    """Drives check definitions to completion, one at a time.

    Timeouts, transient connectivity faults and malformed responses are
    retried with exponential backoff up to each definition's attempt limit;
    only the final attempt is recorded. Authentication failures and an
    unreachable endpoint abort the run, and every check not yet executed is
    recorded as Skipped. A set ``cancel`` event has the same effect with the
    reason "run cancelled".
    """

    def __init__(
        self,
        reader,
        cancel: threading.Event | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utcnow,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.reader = reader
        self.cancel = cancel
        self._sleep = sleep
        self._clock = clock
        self._monotonic = monotonic

    def run(self, ctx: RunContext, registry: CheckRegistry) -> RunContext:
        definitions = registry.definitions(ctx.mode)
        logger.info("Running %d %s-upgrade checks against %s", len(definitions), ctx.mode.value, ctx.cluster)

        for definition in definitions:
            if not ctx.aborted and self.cancel is not None and self.cancel.is_set():
                logger.warning("Cancellation requested, skipping remaining %s checks", ctx.mode.value)
                ctx.abort(SKIP_RUN_CANCELLED, AbortKind.CANCELLED)
            if ctx.aborted:
                reason = SKIP_RUN_CANCELLED if ctx.cancelled else SKIP_RUN_ABORTED
                message = reason if ctx.abort_reason == reason else f"{reason}: {ctx.abort_reason}"
                ctx.record(self._skipped(definition, reason, message))
                continue

            unmet = []
            for dep in definition.depends_on:
                dep_result = ctx.result_for(dep)
                if dep_result is None or not dep_result.status.satisfies_dependency:
                    unmet.append(dep)
            if unmet:
                logger.info("Skipping %s: dependency unmet (%s)", definition.id, ", ".join(unmet))
                ctx.record(self._skipped(
                    definition, SKIP_DEPENDENCY_UNMET, f"{SKIP_DEPENDENCY_UNMET}: {', '.join(unmet)}"))
                continue

            result, abort_reason = self._execute(definition)
            ctx.record(result)
            logger.info("Check %s: %s (%d attempt(s)) %s",
                        definition.id, result.status.value, result.attempts, result.message)

            if abort_reason:
                logger.warning("Aborting %s-upgrade run: %s", ctx.mode.value, abort_reason)
                ctx.abort(abort_reason, AbortKind.ENDPOINT)
            elif (ctx.config.abort_on_critical_failure
                  and definition.severity == Severity.CRITICAL
                  and result.status in (Status.FAILED, Status.ERRORED)):
                reason = f"critical check '{definition.id}' {result.status.value.lower()}"
                logger.warning("Aborting %s-upgrade run: %s", ctx.mode.value, reason)
                ctx.abort(reason, AbortKind.FAIL_FAST)

        ctx.freeze(self._clock())
        return ctx

    def _execute(self, definition: CheckDefinition) -> tuple[CheckResult, str | None]:
        started = self._clock()
        policy = definition.retry
        attempt = 0
        while True:
            attempt += 1
            begin = self._monotonic()
            try:
                with self._deadline(definition.timeout):
                    outcome = evaluate(self.reader, definition)
                elapsed = self._monotonic() - begin
                if elapsed > definition.timeout:
                    raise TimeoutError(f"check took {elapsed:.1f}s, limit is {definition.timeout:g}s")
                return self._result(definition, outcome, attempt, started), None
            except AuthError as exc:
                return self._errored(definition, str(exc), attempt, started), f"authentication failed: {exc}"
            except ConnectivityError as exc:
                if exc.fatal:
                    return (self._errored(definition, str(exc), attempt, started),
                            f"cluster endpoint unreachable: {exc}")
                error: Exception = exc
            except (TimeoutError, QueryError) as exc:
                error = exc
            except Exception as exc:
                logger.exception("Check %s raised unexpectedly", definition.id)
                return self._errored(definition, f"unexpected error: {exc!r}", attempt, started), None

            if attempt >= policy.max_attempts:
                logger.warning("Check %s gave up after %d attempt(s): %s", definition.id, attempt, error)
                return (self._errored(definition, f"{type(error).__name__} after {attempt} attempt(s): {error}",
                                      attempt, started),
                        None)
            delay = policy.delay(attempt)
            logger.warning("Check %s attempt %d/%d failed (%s: %s); retrying in %.1fs",
                           definition.id, attempt, policy.max_attempts, type(error).__name__, error, delay)
            self._sleep(delay)

    def _deadline(self, seconds: float):
        deadline = getattr(self.reader, "deadline", None)
        return deadline(seconds) if deadline is not None else nullcontext()

    def _result(self, definition: CheckDefinition, outcome: Outcome, attempts: int,
                started: datetime) -> CheckResult:
        return CheckResult(
            check_id=definition.id,
            severity=definition.severity,
            status=outcome.status,
            started_at=started,
            finished_at=self._clock(),
            attempts=attempts,
            message=outcome.message,
            observed=outcome.observed,
            description=definition.description,
            tag=definition.tag,
        )

    def _errored(self, definition: CheckDefinition, message: str, attempts: int,
                 started: datetime) -> CheckResult:
        return self._result(definition, Outcome(Status.ERRORED, message), attempts, started)

    def _skipped(self, definition: CheckDefinition, reason: str, message: str) -> CheckResult:
        now = self._clock()
        return CheckResult(
            check_id=definition.id,
            severity=definition.severity,
            status=Status.SKIPPED,
            started_at=now,
            finished_at=now,
            attempts=0,
            message=message,
            skip_reason=reason,
            description=definition.description,
            tag=definition.tag,
        )
