# SPDX-License-Identifier: MIT

"""Render a Report into console text, audit log lines and an HTML document.

Rendering is a pure function of the Report: the same Report always yields
byte-identical output. Writing the artifacts is a separate step so a
storage failure surfaces as ``ReportWriteError`` and never as a check
failure.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from jinja2 import Environment, PackageLoader, StrictUndefined, select_autoescape

from ocp_upgrade_check.errors import ReportWriteError
from ocp_upgrade_check.models import Report, Severity, Status

logger = logging.getLogger(__name__)

MAX_CONSOLE_PROBLEMS = 10

_env = Environment(
    loader=PackageLoader("ocp_upgrade_check", "templates"),
    autoescape=select_autoescape(["html", "j2"]),
    undefined=StrictUndefined,
    keep_trailing_newline=True,
)


@dataclass(frozen=True)
class RenderedReport:
    console: str
    log_entries: tuple[str, ...]
    document: str


@dataclass(frozen=True)
class Artifacts:
    log_path: Path
    report_path: Path


def render(report: Report) -> RenderedReport:
    return RenderedReport(
        console=render_console(report),
        log_entries=render_log_entries(report),
        document=render_document(report),
    )


def render_console(report: Report) -> str:
    counts = report.status_counts
    lines = [
        f"OpenShift {report.mode.value}-upgrade checks: {report.cluster}",
        f"Verdict: {report.verdict.value.upper()}",
        (f"Checks: {len(report.results)} total | {counts[Status.PASSED.value]} passed | "
         f"{counts[Status.WARNED.value]} warned | {counts[Status.FAILED.value]} failed | "
         f"{counts[Status.ERRORED.value]} errored | {counts[Status.SKIPPED.value]} skipped"),
    ]
    if report.aborted:
        lines.append(f"Abort reason: {report.abort_reason}")

    problems = sorted(
        (r for r in report.results if r.status.is_problem),
        key=lambda r: r.severity.sort_order,
    )
    if problems:
        lines.append("Problems:")
        for result in problems[:MAX_CONSOLE_PROBLEMS]:
            lines.append(f"  - [{result.severity.value.upper()}] {result.check_id}: "
                         f"{result.status.value} - {result.message}")
        if len(problems) > MAX_CONSOLE_PROBLEMS:
            lines.append(f"  ... and {len(problems) - MAX_CONSOLE_PROBLEMS} more in the report")
    return "\n".join(lines)


def render_log_entries(report: Report) -> tuple[str, ...]:
    prefix = f"{report.cluster.name} {report.mode.value}"
    entries = []
    for result in report.results:
        entries.append(
            f"{result.finished_at.isoformat()} {prefix} [{result.status.value.upper()}] {result.check_id} "
            f"severity={result.severity.value} attempts={result.attempts} {_one_line(result.message)}"
        )
    verdict = (f"{report.generated_at.isoformat()} {prefix} [VERDICT] {report.verdict.value.upper()} "
               + " ".join(f"{k.lower()}={v}" for k, v in report.status_counts.items()))
    if report.aborted:
        verdict += f" abort_reason={_one_line(report.abort_reason)}"
    entries.append(verdict)
    return tuple(entries)


def render_document(report: Report) -> str:
    template = _env.get_template("report.html.j2")
    results = [r.to_dict() for r in report.results]
    return template.render(
        report=report,
        results=results,
        severities=[s.value for s in Severity],
        statuses=[s.value for s in Status],
    )


def _one_line(text: str | None) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def artifact_stem(report: Report) -> str:
    cluster = re.sub(r"[^A-Za-z0-9._-]+", "-", report.cluster.name).strip("-") or "cluster"
    return f"{cluster}_{report.mode.value}_{report.started_at.strftime('%Y%m%dT%H%M%SZ')}"


class ArtifactWriter:
    """Persist rendered output: append-only log file plus one report document."""

    def __init__(self, log_dir: str | Path, report_dir: str | Path) -> None:
        self.log_dir = Path(log_dir)
        self.report_dir = Path(report_dir)

    def write(self, report: Report, rendered: RenderedReport) -> Artifacts:
        stem = artifact_stem(report)
        log_path = self.log_dir / f"{stem}.log"
        report_path = self.report_dir / f"{stem}.html"
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            with log_path.open("a", encoding="utf-8") as fh:
                for entry in rendered.log_entries:
                    fh.write(entry + "\n")
            self.report_dir.mkdir(parents=True, exist_ok=True)
            report_path.write_text(rendered.document, encoding="utf-8")
        except OSError as exc:
            raise ReportWriteError(f"failed to write run artifacts for {stem}: {exc}") from exc
        logger.info("Wrote %s and %s", log_path, report_path)
        return Artifacts(log_path=log_path, report_path=report_path)
