# cli.py
from __future__ import annotations

import sys
from pathlib import Path

import click

from tuning.errors import TuningError
from tuning.facts import Facts
from tuning.dag import topo_levels
from tuning.logs import LOG_FORMATS, setup_logging
from tuning.runner import DEFAULT_WORKERS, load_jobs, read_config, run_graph
from tuning.ui.console import Console, get_console, set_console

APP_NAME = "tuning"


def default_config_path(facts: Facts) -> Path:
    """<config_dir>/tuning/main.toml"""
    return Path(facts.config_dir) / APP_NAME / "main.toml"


def discover_config(config_arg: str | None, facts: Facts) -> Path:
    """
    Resolve the config file from the --config argument or the default.

    Raises:
        SystemExit: If the config file cannot be found
    """
    console = get_console()

    config_path = Path(config_arg).expanduser() if config_arg else default_config_path(facts)
    if not config_path.is_file():
        console.print_error(
            "Config file not found",
            f"Could not find config file: {config_path}",
            suggestion=f"Create {default_config_path(facts)} or specify a path:\n  tuning run --config my_config.toml",
        )
        sys.exit(1)
    return config_path


def _load(config: str | None):
    """Gather facts and load the job graph; exits on load-time errors."""
    console = get_console()
    try:
        facts = Facts.gather()
    except TuningError as e:
        console.print_exception(e)
        sys.exit(1)

    config_path = discover_config(config, facts)

    try:
        graph = load_jobs(read_config(config_path), facts)
    except (TuningError, OSError) as e:
        console.print_error(
            "Invalid configuration",
            f"Could not load {config_path}",
            details=[str(e)],
        )
        sys.exit(1)

    return facts, config_path, graph


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and command output)",
)
@click.option(
    "--log-format",
    type=click.Choice(LOG_FORMATS),
    default="pretty",
    show_default=True,
    help="Per-job log lines as plain text or JSON",
)
@click.pass_context
def cli(ctx, debug, log_format):
    """tuning: apply idempotent jobs to this machine."""
    console = Console(debug=debug)
    set_console(console)
    setup_logging("DEBUG" if debug else "INFO", log_format)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option(
    "--config",
    default=None,
    envvar="TUNING_CONFIG",
    help="Config file path (defaults to <config_dir>/tuning/main.toml)",
)
@click.option(
    "--workers",
    default=DEFAULT_WORKERS,
    type=click.IntRange(min=1),
    envvar="TUNING_WORKERS",
    show_default=True,
    help="Number of jobs run at the same time",
)
@click.pass_context
def run(ctx, config, workers):
    """Apply every job in the config."""
    console = get_console()

    facts, config_path, graph = _load(config)

    try:
        console.print_run_started(
            config=str(config_path),
            os_name=facts.os_name,
            job_count=len(graph),
            workers=workers,
        )

        report = run_graph(graph, facts, max_workers=workers)

        console.print_results(report.results)
        sys.exit(report.exit_code)

    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)


@cli.command()
@click.option("--config", default=None, envvar="TUNING_CONFIG", help="Config file path")
@click.pass_context
def plan(ctx, config):
    """Show job stages without running anything."""
    console = get_console()
    _facts, _config_path, graph = _load(config)
    console.print_plan(topo_levels(graph))


@cli.command()
def facts():
    """Show the facts available to templates."""
    console = get_console()
    try:
        gathered = Facts.gather()
    except TuningError as e:
        console.print_exception(e)
        sys.exit(1)

    rows = [(k, v) for k, v in gathered.as_context().items() if k != "has_executable"]
    console.print_facts(rows)


if __name__ == "__main__":
    cli()
