"""
CLI Entry Point

Command-line interface for running experiment matrices, built with click
and rich output formatting.
"""

import asyncio
import dataclasses
import signal
import sys
from pathlib import Path

import click
import yaml

from benchmatrix.benchmark.orchestrator import create_run
from benchmatrix.core.config import load_config_store
from benchmatrix.core.exceptions import (
    BenchmatrixException,
    ConfigurationError,
    DeviceUnavailableError,
    UsageError,
)
from benchmatrix.core.resolver import ConfigResolver
from benchmatrix.utils.async_helpers import create_task_with_name
from benchmatrix.utils.logging import get_logger, setup_logging

from .formatting import (
    console,
    display_error,
    display_success,
    format_config_table,
    format_matrix_table,
    format_progress,
    format_trials_table,
)
from .scenarios import load_scenario_file, scenarios_from_options

logger = get_logger(__name__)

EXIT_FAILURES = 1
EXIT_CANCELLED = 130


@click.group()
@click.option('--config', '-c', 'config_path', type=click.Path(dir_okay=False), help='Configuration file path')
@click.option('--override', '-C', 'overrides', multiple=True, metavar='KEY=VALUE',
              help='Override a configuration key (repeatable)')
@click.option('--no-user-config', is_flag=True, help='Ignore ~/.benchmatrix/config.yaml')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
@click.pass_context
def cli(ctx, config_path, overrides, no_user_config, verbose):
    """benchmatrix - run benchmarks across interpreters and instruments"""
    ctx.ensure_object(dict)

    try:
        store = load_config_store(
            Path(config_path) if config_path else None,
            overrides=overrides,
            include_user_config=not no_user_config,
        )
        logging_config = ConfigResolver(store).get_logging_config()
    except UsageError as e:
        raise click.UsageError(e.message)
    except ConfigurationError as e:
        display_error(str(e), "Invalid configuration")
        ctx.exit(EXIT_FAILURES)

    if verbose:
        logging_config = dataclasses.replace(logging_config, level="DEBUG", console_level="DEBUG")
    setup_logging(logging_config)

    ctx.obj['store'] = store


@cli.command()
@click.option('--benchmark', '-b', 'targets', multiple=True,
              help='Routine to benchmark, as module:function or module:Class.method (repeatable)')
@click.option('--param', '-p', 'params', multiple=True, metavar='NAME=V1[,V2...]',
              help='Benchmark parameter; several values expand the matrix (repeatable)')
@click.option('--before', multiple=True, help='Routine run before measuring (repeatable)')
@click.option('--after', multiple=True, help='Routine run after measuring (repeatable)')
@click.option('--scenarios', 'scenario_file', type=click.Path(exists=True, dir_okay=False),
              help='YAML file listing scenarios')
@click.option('--device', '-e', 'device_name', help='Device to run on (default: run.device, else local)')
@click.option('--vm', '-m', 'vm_names', multiple=True, help='Runtime variant to run under (repeatable)')
@click.option('--instrument', '-i', 'instrument_names', multiple=True,
              help='Instrument to measure with (repeatable, default: runtime)')
@click.option('--dry-run', is_flag=True, help='Print the experiment matrix and exit')
@click.pass_context
def run(ctx, targets, params, before, after, scenario_file, device_name, vm_names, instrument_names, dry_run):
    """Run every benchmark under every runtime variant and instrument.

    \b
    EXAMPLES:

    benchmatrix run -b mypkg.bench:sort_list -p size=10,1000
    benchmatrix run --scenarios scenarios.yaml -m py311 -m py312 -i runtime -i allocation
    benchmatrix -C run.maxParallel=4 run -b mypkg.bench:Parser.parse --dry-run
    """
    store = ctx.obj['store']

    try:
        scenarios = scenarios_from_options(targets, params, before, after)
        if scenario_file:
            scenarios.extend(load_scenario_file(Path(scenario_file)))
        if not scenarios:
            raise UsageError("No benchmarks given; use --benchmark or --scenarios")

        orchestrator, experiments, instruments = create_run(
            store, scenarios, device_name, vm_names, instrument_names,
            result_processors=[] if dry_run else None,
        )
    except UsageError as e:
        raise click.UsageError(e.message)
    except ConfigurationError as e:
        display_error(str(e), "Invalid configuration")
        ctx.exit(EXIT_FAILURES)

    if dry_run:
        console.print(format_matrix_table(experiments))
        return

    if not experiments:
        console.print("[yellow]The experiment matrix is empty[/yellow]")
        return

    progress = format_progress()
    with progress:
        task_id = progress.add_task("Running experiments", total=len(experiments))

        def on_trial_completed(trial, matrix_progress):
            progress.update(
                task_id,
                completed=matrix_progress.finished,
                description=f"{matrix_progress.completed} ok, {matrix_progress.failed} failed",
            )

        orchestrator.on_trial_completed = on_trial_completed
        try:
            result = asyncio.run(_run_until_interrupted(orchestrator, experiments, instruments))
        except DeviceUnavailableError as e:
            display_error(str(e), "Device unavailable")
            ctx.exit(EXIT_FAILURES)

    if result.cancelled:
        console.print(f"[yellow]Run {result.run_id} cancelled after {len(result.trials)} trials[/yellow]")
        ctx.exit(EXIT_CANCELLED)

    failures = result.permanent_failures
    if failures:
        console.print(format_trials_table(failures, title="Failed trials"))
        display_error(
            f"{len(failures)} of {result.total_experiments} experiments failed",
            "Run failed"
        )
        ctx.exit(EXIT_FAILURES)

    display_success(
        f"Run {result.run_id}: {len(result.trials)} experiments succeeded in {result.duration_seconds:.1f}s",
        "Run complete"
    )


async def _run_until_interrupted(orchestrator, experiments, instruments):
    """Run the matrix, turning SIGINT into a clean cancellation."""
    loop = asyncio.get_running_loop()
    cancel_tasks = []

    def request_cancel():
        logger.warning("Interrupt received, cancelling run")
        cancel_tasks.append(create_task_with_name(orchestrator.cancel(), "cancel-run"))

    try:
        loop.add_signal_handler(signal.SIGINT, request_cancel)
        installed = True
    except (NotImplementedError, RuntimeError):
        installed = False

    try:
        return await orchestrator.run(experiments, instruments)
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)
        if cancel_tasks:
            await asyncio.gather(*cancel_tasks, return_exceptions=True)


# ===== CONFIG COMMANDS =====

@cli.group()
def config():
    """Configuration inspection commands."""
    pass


@config.command()
@click.option('--prefix', help='Only show keys under this prefix (e.g. vm or instrument.runtime)')
@click.option('--format', 'output_format', type=click.Choice(['table', 'yaml']), default='table',
              help='Output format')
@click.pass_context
def show(ctx, prefix, output_format):
    """Show the resolved configuration store.

    \b
    EXAMPLES:

    benchmatrix config show
    benchmatrix -C vm.args=-O config show --prefix vm
    benchmatrix config show --format yaml
    """
    store = ctx.obj['store']

    if output_format == 'yaml':
        selected = {
            key: store[key] for key in sorted(store)
            if not prefix or key.startswith(prefix + ".")
        }
        click.echo(yaml.safe_dump(selected, default_flow_style=False, sort_keys=True), nl=False)
        return

    console.print(format_config_table(store, prefix))


def main():
    """Main entry point with error handling."""
    try:
        cli()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(EXIT_CANCELLED)
    except BenchmatrixException as e:
        logger.error(f"Application error: {str(e)}")
        display_error(str(e))
        sys.exit(EXIT_FAILURES)


if __name__ == '__main__':
    main()
