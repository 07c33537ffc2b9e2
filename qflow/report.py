"""Rich rendering of compliance, reversibility and health summaries."""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.table import Table

from .constraints import ComplianceSummary
from .reversibility import ReversibilityStatus

if TYPE_CHECKING:
    from .orchestrator import Orchestrator, SystemHealth


_STATUS_STYLE = {
    "healthy": "green",
    "warning": "yellow",
    "critical": "bold red",
}


def compliance_table(summary: ComplianceSummary) -> Table:
    table = Table(title="Constraint compliance", show_header=False)
    table.add_column("metric", style="dim")
    table.add_column("value", justify="right")
    table.add_row("accepted actions", str(summary.total_actions))
    table.add_row("violations", str(summary.total_violations))
    table.add_row("constraints", str(summary.total_constraints))
    table.add_row("critical violations", str(summary.critical_violations))
    table.add_row("compliance rate", f"{summary.compliance_rate:.1f}%")
    if summary.last_violation is not None:
        v = summary.last_violation
        table.add_row("last violation", f"{v.action.kind} ({v.constraint.kind.value}, severity {v.severity})")
    return table


def reversibility_table(status: ReversibilityStatus) -> Table:
    table = Table(title="Reversibility", show_header=False)
    table.add_column("metric", style="dim")
    table.add_column("value", justify="right")
    table.add_row("units", str(status.total_units))
    table.add_row("completed", str(status.completed_units))
    table.add_row("rolled back", str(status.rolled_back_units))
    table.add_row("pending", str(status.pending_units))
    table.add_row("rollbacks (ok/failed)", f"{status.successful_rollbacks}/{status.failed_rollbacks}")
    table.add_row("rollback success rate", f"{status.rollback_success_rate:.1f}%")
    table.add_row("snapshots", "yes" if status.has_snapshots else "no")
    return table


def health_table(health: SystemHealth) -> Table:
    table = Table(title="System health", show_header=False)
    table.add_column("metric", style="dim")
    table.add_column("value", justify="right")
    style = _STATUS_STYLE.get(health.system_status, "")
    table.add_row("status", f"[{style}]{health.system_status}[/{style}]" if style else health.system_status)
    table.add_row("ethical compliance", f"{health.ethical_compliance:.1f}%")
    table.add_row("rollback success", f"{health.rollback_success:.1f}%")
    table.add_row("active constraints", str(health.active_constraints))
    table.add_row("critical violations", str(health.critical_violations))
    table.add_row("reversibility enabled", "yes" if health.reversibility_enabled else "no")
    return table


def print_health(orchestrator: Orchestrator, console: Console | None = None) -> None:
    console = console or orchestrator.console
    console.print(health_table(orchestrator.get_system_health()))
    console.print(compliance_table(orchestrator.constraints.get_compliance_summary()))
    console.print(reversibility_table(orchestrator.reversibility.get_reversibility_status()))
