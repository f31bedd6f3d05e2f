# SPDX-License-Identifier: MIT

"""Invocation layer: run the requested modes end to end.

For each mode a fresh RunContext is executed, aggregated, rendered,
written and announced with a RunCompleted event. Mode ``both`` runs pre
then post, pausing ``post_upgrade_wait_time`` seconds in between; a Fail
verdict on the pre run with ``fail_on_pre_check_errors`` stops before the
post run, as a failing pre-check play would.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable

from ocp_upgrade_check.aggregate import aggregate
from ocp_upgrade_check.config import RunConfig
from ocp_upgrade_check.engine import ExecutionEngine, utcnow
from ocp_upgrade_check.errors import ReportWriteError
from ocp_upgrade_check.events import EventBus, RunCompleted
from ocp_upgrade_check.models import ClusterIdentity, Mode, Report, RunContext, Verdict
from ocp_upgrade_check.registry import CheckRegistry
from ocp_upgrade_check.render import Artifacts, ArtifactWriter, RenderedReport, render

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunOutcome:
    report: Report
    rendered: RenderedReport
    artifacts: Artifacts | None = None
    write_error: str | None = None

    def to_dict(self) -> dict:
        data = self.report.to_dict()
        data["console"] = self.rendered.console
        data["log_path"] = str(self.artifacts.log_path) if self.artifacts else None
        data["report_path"] = str(self.artifacts.report_path) if self.artifacts else None
        data["write_error"] = self.write_error
        return data


def run_checks(
    config: RunConfig,
    reader,
    cluster: ClusterIdentity | None = None,
    registry: CheckRegistry | None = None,
    bus: EventBus | None = None,
    cancel: threading.Event | None = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], datetime] = utcnow,
    write_artifacts: bool = True,
) -> list[RunOutcome]:
    """Execute every mode selected by ``config`` against ``reader``.

    Registry problems raise ``ConfigError`` before anything runs. Once a
    mode starts, a report is always produced, even if every check ends up
    skipped. With ``write_artifacts`` off the report is rendered but no log
    or HTML file is touched.
    """
    if registry is None:
        registry = CheckRegistry.default(config)
    if cluster is None:
        cluster = ClusterIdentity(config.cluster_name, config.endpoint)
    engine = ExecutionEngine(reader, cancel=cancel, sleep=sleep, clock=clock)
    writer = ArtifactWriter(config.log_dir, config.report_dir) if write_artifacts else None

    outcomes: list[RunOutcome] = []
    for mode in config.modes:
        if mode == Mode.POST and outcomes:
            previous = outcomes[-1].report
            if previous.verdict == Verdict.FAIL and config.fail_on_pre_check_errors:
                logger.error("Pre-upgrade verdict is Fail, not running post-upgrade checks")
                break
        if mode == Mode.POST and config.post_upgrade_wait_time:
            logger.info("Waiting %gs before post-upgrade checks", config.post_upgrade_wait_time)
            if cancel is not None:
                cancel.wait(config.post_upgrade_wait_time)
            else:
                sleep(config.post_upgrade_wait_time)

        ctx = RunContext(cluster=cluster, mode=mode, config=config, started_at=clock())
        engine.run(ctx, registry)
        outcome = _finish(aggregate(ctx), writer)
        if bus is not None:
            bus.publish(RunCompleted(outcome.report, outcome.artifacts, outcome.write_error))
        outcomes.append(outcome)
    return outcomes


def _finish(report: Report, writer: ArtifactWriter | None) -> RunOutcome:
    rendered = render(report)
    logger.info("%s-upgrade verdict for %s: %s", report.mode.value, report.cluster, report.verdict.value)
    if writer is None:
        return RunOutcome(report, rendered)
    try:
        artifacts = writer.write(report, rendered)
    except ReportWriteError as exc:
        logger.error("%s", exc)
        return RunOutcome(report, rendered, write_error=str(exc))
    return RunOutcome(report, rendered, artifacts)


def exit_code(outcomes: Iterable[RunOutcome], config: RunConfig) -> int:
    """Non-zero when a Fail verdict meets an enabled fail-on-error toggle."""
    for outcome in outcomes:
        if outcome.report.verdict == Verdict.FAIL and config.fail_on_errors(outcome.report.mode):
            return 1
    return 0
