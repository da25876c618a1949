"""
CLI Output Formatting

Rich tables and progress bars for experiments, trials and configuration.
"""

from typing import Iterable, List, Mapping, Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

console = Console()
error_console = Console(stderr=True)

OUTCOME_STYLES = {
    "success": "green",
    "failed": "red",
    "timeout": "yellow",
}


def format_matrix_table(experiments: List, title: str = "Experiment Matrix") -> Table:
    """Table of experiments in execution order."""
    table = Table(title=title, show_header=True, header_style="bold blue")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Benchmark", style="cyan")
    table.add_column("VM", style="magenta")
    table.add_column("Instrument", style="green")

    for index, experiment in enumerate(experiments, start=1):
        table.add_row(str(index), escape(experiment.scenario.name), experiment.vm_config.name,
                      experiment.instrument_name)

    if not experiments:
        table.add_row("", "[dim]No experiments[/dim]", "", "")
    return table


def format_trials_table(trials: Iterable, title: str = "Trials") -> Table:
    """Table with one row per trial and a short measurement summary."""
    table = Table(title=title, show_header=True, header_style="bold blue")
    table.add_column("Benchmark", style="cyan")
    table.add_column("VM", style="magenta")
    table.add_column("Instrument")
    table.add_column("Outcome")
    table.add_column("Attempts", justify="right")
    table.add_column("Measurements", justify="right")
    table.add_column("Summary")

    for trial in trials:
        experiment = trial.experiment
        style = OUTCOME_STYLES.get(trial.outcome.value, "white")
        table.add_row(
            escape(experiment.scenario.name),
            experiment.vm_config.name,
            experiment.instrument_name,
            f"[{style}]{trial.outcome.value}[/{style}]",
            str(trial.attempts),
            str(len(trial.measurements)),
            escape(summarize_trial(trial)),
        )
    return table


def summarize_trial(trial) -> str:
    """One-line summary: mean time per rep, peak bytes, or the failure reason."""
    if not trial.succeeded:
        return trial.diagnostics.splitlines()[0] if trial.diagnostics else ""

    per_rep = []
    peaks = []
    for measurement in trial.measurements:
        values = measurement.values
        try:
            if "elapsed_ns" in values:
                per_rep.append(measurement.as_float("elapsed_ns") / max(1.0, float(values.get("reps", 1))))
            if "peak_bytes" in values:
                peaks.append(measurement.as_float("peak_bytes"))
        except ValueError:
            continue

    if per_rep:
        return f"{format_duration_ns(sum(per_rep) / len(per_rep))}/rep"
    if peaks:
        return f"peak {max(peaks):,.0f} B"
    return ""


def format_duration_ns(nanoseconds: float) -> str:
    for unit, scale in (("s", 1e9), ("ms", 1e6), ("µs", 1e3)):
        if nanoseconds >= scale:
            return f"{nanoseconds / scale:.3f} {unit}"
    return f"{nanoseconds:.0f} ns"


def format_config_table(store: Mapping, prefix: Optional[str] = None) -> Table:
    """Table of configuration keys and values, sorted by key."""
    title = f"Configuration ({prefix}.*)" if prefix else "Configuration"
    table = Table(title=title, show_header=True, header_style="bold blue")
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")

    for key in sorted(store):
        if prefix and not key.startswith(prefix + "."):
            continue
        table.add_row(key, store[key])
    return table


def format_progress() -> Progress:
    """Determinate progress bar for a matrix run."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.completed}/{task.total}"),
        TimeElapsedColumn(),
        console=error_console,
        transient=False,
    )


def display_error(message: str, error_type: str = "Error") -> None:
    """Display a formatted error message."""
    error_console.print(Panel(f"[red]{escape(message)}[/red]", title=error_type, border_style="red"))


def display_success(message: str, title: str = "Success") -> None:
    """Display a formatted success message."""
    console.print(Panel(f"[green]{message}[/green]", title=title, border_style="green"))
