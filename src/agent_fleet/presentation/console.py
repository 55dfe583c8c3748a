"""Rich-based console rendering of fleet runs.

:class:`RunConsole` renders a ``FleetRunResult`` as tables: member results,
the decision or final report, tier outcomes, investigation iterations and
run metrics.  ``use_rich=False`` produces plain ``print()`` output for logs
and non-terminal streams.
"""

from __future__ import annotations

import sys
from collections.abc import Sequence
from typing import Any

from rich.console import Console as RichConsole
from rich.table import Table as RichTable

from agent_fleet.domain.entities import FleetMetrics
from agent_fleet.domain.enums import ResultStatus
from agent_fleet.domain.values import (
    AgentResult,
    ConsensusDecision,
    FinalReport,
    Iteration,
    TierOutcome,
)
from agent_fleet.services.runner import FleetRunResult

_STATUS_COLOURS = {
    ResultStatus.COMPLETED: "green",
    ResultStatus.FAILED: "red",
    ResultStatus.TIMED_OUT: "orange3",
    ResultStatus.CANCELLED: "dim",
}


def _short(value: Any, width: int = 48) -> str:
    text = str(value)
    return text if len(text) <= width else text[: width - 3] + "..."


def _fmt_conf(value: float | None) -> str:
    return "-" if value is None else f"{value:.3f}"


class RunConsole:
    """Console presentation layer for fleet runs.

    Parameters
    ----------
    use_rich:
        Render with rich tables (default) or with plain text.
    file:
        Output stream.  Defaults to ``sys.stdout``.
    """

    def __init__(self, use_rich: bool = True, file: Any = None) -> None:
        self._file = file or sys.stdout
        self._use_rich = use_rich
        self._console = RichConsole(file=self._file) if use_rich else None

    def _plain_print(self, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("file", self._file)
        print(*args, **kwargs)

    # -- public API --------------------------------------------------------

    def print_run(self, result: FleetRunResult) -> None:
        """Print everything known about one run."""
        header = (
            f"Fleet {result.spec_name} [{result.mode.value}] run {result.run_id or '-'} "
            f"in {result.elapsed_seconds:.3f}s"
        )
        if self._console is not None:
            self._console.print()
            self._console.print(f"[bold]{header}[/bold]")
        else:
            self._plain_print()
            self._plain_print(header)

        self.print_results(result.results)
        if result.tiers:
            self.print_tiers(result.tiers)
        if result.iterations:
            self.print_iterations(result.iterations)
        if result.report is not None:
            self.print_report(result.report)
        elif result.decision is not None:
            self.print_decision(result.decision)
        self.print_metrics(result.metrics)

    def print_results(self, results: Sequence[AgentResult]) -> None:
        if not results:
            self._plain_print("[no member results]")
            return
        if self._console is not None:
            table = RichTable(title="Member Results", show_header=True, header_style="bold cyan")
            table.add_column("#", justify="right")
            table.add_column("Member", style="bold")
            table.add_column("Task")
            table.add_column("Status", justify="center")
            table.add_column("Confidence", justify="right")
            table.add_column("Duration", justify="right")
            table.add_column("Output / error")
            for r in results:
                colour = _STATUS_COLOURS[r.status]
                table.add_row(
                    str(r.sequence),
                    r.member_id or "-",
                    r.task_id or "-",
                    f"[{colour}]{r.status.value}[/{colour}]",
                    _fmt_conf(r.confidence),
                    f"{r.duration:.3f}s",
                    _short(r.output if r.completed else r.error),
                )
            self._console.print(table)
            return
        self._plain_print("=== Member Results ===")
        for r in results:
            detail = r.output if r.completed else r.error
            self._plain_print(
                f"{r.sequence:>3}  {r.member_id or '-':<16} {r.status.value:<10} "
                f"conf={_fmt_conf(r.confidence)}  {_short(detail)}"
            )

    def print_decision(self, decision: ConsensusDecision) -> None:
        if decision.decided:
            line = (
                f"Decision ({decision.algorithm.value}): {_short(decision.output, 72)} "
                f"confidence={decision.confidence:.3f} votes={decision.votes}"
            )
            style = "green"
        else:
            reason = decision.reason.value if decision.reason else "-"
            line = f"No decision ({decision.algorithm.value}, {reason}): {decision.explanation}"
            style = "red"
        if decision.dissenting:
            line += f" dissenting={', '.join(decision.dissenting)}"
        if decision.approver:
            line += f" approved by {decision.approver}"
        if self._console is not None:
            self._console.print(f"[{style}]{line}[/{style}]")
        else:
            self._plain_print(line)

    def print_report(self, report: FinalReport) -> None:
        style = "yellow" if report.is_partial else "green"
        line = (
            f"Report [{report.status.value}] from {report.source or '-'}: "
            f"{_short(report.output, 72)} confidence={report.confidence:.3f}"
        )
        if report.iterations_used:
            line += f" iterations={report.iterations_used}"
        if self._console is not None:
            self._console.print(f"[{style}]{line}[/{style}]")
            for note in report.notes:
                self._console.print(f"  [dim]{note}[/dim]")
        else:
            self._plain_print(line)
            for note in report.notes:
                self._plain_print(f"  {note}")

    def print_tiers(self, tiers: Sequence[TierOutcome]) -> None:
        if self._console is not None:
            table = RichTable(title="Tiers", show_header=True, header_style="bold cyan")
            table.add_column("Tier", justify="right")
            table.add_column("Results", justify="right")
            table.add_column("Decision")
            table.add_column("Forwarded")
            table.add_column("Skipped", justify="center")
            for t in tiers:
                table.add_row(
                    str(t.tier),
                    str(len(t.results)),
                    self._decision_cell(t.decision),
                    _short(t.forwarded),
                    "[yellow]yes[/yellow]" if t.skipped else "no",
                )
            self._console.print(table)
            return
        self._plain_print("=== Tiers ===")
        for t in tiers:
            self._plain_print(
                f"tier {t.tier}: results={len(t.results)} skipped={t.skipped} "
                f"forwarded={_short(t.forwarded)}"
            )

    def print_iterations(self, iterations: Sequence[Iteration]) -> None:
        if self._console is not None:
            table = RichTable(title="Iterations", show_header=True, header_style="bold cyan")
            table.add_column("#", justify="right")
            table.add_column("Steps", justify="right")
            table.add_column("Completed", justify="right")
            table.add_column("Findings", justify="right")
            table.add_column("Confidence", justify="right")
            for it in iterations:
                table.add_row(
                    str(it.index),
                    str(len(it.plan)),
                    str(sum(1 for r in it.results if r.completed)),
                    str(len(it.findings)),
                    _fmt_conf(it.confidence),
                )
            self._console.print(table)
            return
        self._plain_print("=== Iterations ===")
        for it in iterations:
            self._plain_print(
                f"iteration {it.index}: steps={len(it.plan)} findings={len(it.findings)} "
                f"confidence={_fmt_conf(it.confidence)}"
            )

    def print_metrics(self, metrics: FleetMetrics) -> None:
        data = metrics.to_dict()
        if self._console is not None:
            table = RichTable(title="Metrics", show_header=True, header_style="bold cyan")
            table.add_column("Metric", style="bold")
            table.add_column("Value", justify="right")
            for key, value in data.items():
                table.add_row(key, f"{value:.4f}" if isinstance(value, float) else str(value))
            self._console.print(table)
            self._console.print()
            return
        self._plain_print("=== Metrics ===")
        for key, value in data.items():
            self._plain_print(f"  {key}: {value}")
        self._plain_print()

    @staticmethod
    def _decision_cell(decision: ConsensusDecision | None) -> str:
        if decision is None:
            return "[dim]-[/dim]"
        if decision.decided:
            return f"[green]{_short(decision.output, 32)}[/green]"
        reason = decision.reason.value if decision.reason else "-"
        return f"[red]{reason}[/red]"
