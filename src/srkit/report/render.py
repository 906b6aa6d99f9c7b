"""Report sinks — render a finished Report to the console or a file.

Sinks only read the Report. A failing sink raises ``ReportRenderError``;
the caller still holds the Report.
"""

from __future__ import annotations

import logging
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from srkit.errors import ReportRenderError
from srkit.model import Report

logger = logging.getLogger(__name__)


def _risk_color(score: float) -> str:
    if score >= 70:
        return "red"
    if score >= 40:
        return "yellow"
    return "green"


class ConsoleSink:
    """Grouped-by-category console rendering with rich."""

    def __init__(
        self,
        console: Console | None = None,
        show_evidence: bool = True,
        max_evidence: int = 5,
    ) -> None:
        self._console = console or Console()
        self._show_evidence = show_evidence
        self._max_evidence = max_evidence

    def render(self, report: Report, title: str = "") -> None:
        try:
            self._render(report, title)
        except Exception as e:
            raise ReportRenderError(f"console rendering failed: {e}") from e

    def _render(self, report: Report, title: str) -> None:
        c = self._console
        color = _risk_color(report.overall_risk_score)
        header = title or report.profile or "srkit report"
        c.print(
            Panel(
                f"[bold]{escape(header)}[/bold]\n"
                f"Binary: {escape(report.binary_id)}\n"
                f"Findings: {report.total_findings}   "
                f"Risk: [{color}]{report.overall_risk_score:.2f}/100[/{color}]",
                expand=False,
            )
        )

        summary = Table(title="Summary", show_lines=False)
        summary.add_column("Category")
        summary.add_column("Findings", justify="right")
        summary.add_column("Score", justify="right")
        for cat, s in report.summaries.items():
            summary.add_row(cat.label, str(s.total), f"{s.score:.2f}")
        c.print(summary)

        for cat, findings in report.per_category.items():
            s = report.summaries[cat]
            if not findings:
                c.print(f"[dim]{escape(cat.label)}: no indicators detected[/dim]")
                continue
            shown = f" (top {s.shown} of {s.total})" if s.shown < s.total else ""
            table = Table(title=f"{cat.label}{shown}", show_lines=True)
            table.add_column("Conf", justify="right", no_wrap=True)
            table.add_column("Location", no_wrap=True)
            table.add_column("Finding")
            for f in findings:
                body = f"[bold]{escape(f.title)}[/bold]"
                if f.is_composite:
                    body += f"\n[cyan]composite: {escape(', '.join(f.contributing_signatures))}[/cyan]"
                if self._show_evidence:
                    lines = f.evidence[: self._max_evidence]
                    body += "".join(f"\n  {escape(line)}" for line in lines)
                    if len(f.evidence) > len(lines):
                        body += f"\n  [dim]... {len(f.evidence) - len(lines)} more[/dim]"
                table.add_row(f"{f.confidence:.2f}", escape(str(f.location)), body)
            c.print(table)

            recs = report.recommendations.get(cat)
            if recs:
                c.print("[bold]Recommendations:[/bold]")
                for i, line in enumerate(recs, start=1):
                    c.print(f"  {i}. {escape(line)}")

        if report.warnings:
            c.print(f"[bold yellow]Warnings ({len(report.warnings)}):[/bold yellow]")
            for w in report.warnings:
                c.print(f"  [yellow]{escape(w)}[/yellow]")


class JsonSink:
    """Write the report as JSON to a file."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    def render(self, report: Report) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(report.to_json() + "\n", encoding="utf-8")
        except OSError as e:
            raise ReportRenderError(f"cannot write report to {self._path}: {e}") from e
        logger.info("Report written to %s", self._path)
