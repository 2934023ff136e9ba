"""
CLI interface for dqsync.

Provides commands to inspect, compile and reconcile data-quality checks.

Check definitions live in the check_definitions table; every change to it
is captured in the change feed and reconciled into generated jobs by
`dqsync reconcile` (one pass) or `dqsync watch` (continuous loop).
"""

import json
import threading
import time
from datetime import datetime
from pathlib import Path

import click

from dqsync import __version__
from dqsync.errors import ConfigError, PermanentError, TransientError
from dqsync.utils import format_duration, print_error, print_success, print_warning, setup_logging


def _get_config(ctx):
    if "config" not in ctx.obj:
        click.echo(f"✗ Config not loaded: {ctx.obj.get('config_error', 'Unknown error')}", err=True)
        click.echo("Run 'dqsync init' to create a configuration file.", err=True)
        raise SystemExit(1)
    return ctx.obj["config"]


def _get_backends(ctx):
    """Backends from the context, built from config on first use."""
    if "backends" not in ctx.obj:
        from dqsync.stores.bigquery import build_backends

        ctx.obj["backends"] = build_backends(_get_config(ctx))
    return ctx.obj["backends"]


def _build_reconciler(ctx):
    from dqsync.dispatch import CheckDispatcher
    from dqsync.reconciler import Reconciler
    from dqsync.synchronizer import JobSynchronizer

    config = _get_config(ctx)
    backends = _get_backends(ctx)
    dispatcher = CheckDispatcher(backends.store, results_table=config.results_table_path)
    synchronizer = JobSynchronizer(backends.store, backends.scheduler, dispatcher)
    return Reconciler(
        backends.feed,
        synchronizer,
        max_workers=config.max_workers,
        batch_limit=config.batch_limit,
    )


def _get_definition(ctx, check_id: str):
    definition = _get_backends(ctx).store.get(check_id)
    if definition is None:
        click.echo(f"✗ Check not found: {check_id}", err=True)
        raise SystemExit(1)
    return definition


def _echo_outcome(outcome) -> None:
    from dqsync.schemas import OutcomeAction

    line = f"{outcome.check_id}: {outcome.action.value} - {outcome.message}"
    if outcome.action == OutcomeAction.FAILED:
        print_error(f"{line} ({outcome.error})")
    elif outcome.action in (OutcomeAction.INVALIDATED, OutcomeAction.UNSUPPORTED):
        print_warning(line)
    else:
        print_success(line)


@click.group()
@click.version_option(version=__version__, prog_name="dqsync")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx, verbose: bool):
    """
    dqsync - Data-quality check compiler and job reconciler.

    Keeps one scheduled validation job per declared check.
    """
    from dqsync.config import load_config

    ctx.ensure_object(dict)
    if "config" not in ctx.obj:
        try:
            ctx.obj["config"] = load_config()
        except (FileNotFoundError, ConfigError) as e:
            # init does not need a config; other commands check ctx.obj
            ctx.obj["config_error"] = str(e)
            return

    config = ctx.obj["config"]
    setup_logging(
        log_level="DEBUG" if verbose else config.log_level,
        log_format=config.log_format,
        log_file=config.log_file_path,
    )


@main.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
def init(force: bool):
    """Initialize dqsync configuration."""
    from dqsync.config import default_config_dict, get_dqsync_home
    import yaml

    home = get_dqsync_home()
    if not home.exists():
        home.mkdir(parents=True)

    cfg_path = home / "config.yaml"
    if cfg_path.exists() and not force:
        click.echo(f"Config already exists at {cfg_path}. Use --force to overwrite.", err=True)
        raise SystemExit(1)

    cfg_path.write_text(yaml.safe_dump(default_config_dict(home), sort_keys=False))

    env_path = home / ".env"
    if not env_path.exists():
        env_path.write_text("# GOOGLE_APPLICATION_CREDENTIALS=...\n# GOOGLE_CLOUD_PROJECT=...\n")

    click.echo(f"Initialized dqsync config at {cfg_path}")


# =============================================================================
# Compile / sync / reconcile
# =============================================================================

@main.command("compile")
@click.argument("check_id")
@click.option("--json", "as_json", is_flag=True, help="Print the generated job as JSON")
@click.pass_context
def compile_cmd(ctx, check_id: str, as_json: bool):
    """Compile a check and print its statement and parameters.

    Nothing is scheduled; use `dqsync sync` to materialize the job.

    Examples:

        dqsync compile orders_fresh

        dqsync compile orders_fresh --json
    """
    from dqsync.compiler import compile_check

    config = _get_config(ctx)
    definition = _get_definition(ctx, check_id)
    outcome = compile_check(definition, results_table=config.results_table_path)

    if not outcome.is_valid:
        click.echo(f"✗ {outcome.reason.value}: {outcome.message}", err=True)
        raise SystemExit(1)

    job = outcome.compiled.to_job()
    if as_json:
        click.echo(json.dumps(job.to_dict(), indent=2, default=str))
        return

    click.echo(f"-- job: {job.job_name}")
    click.echo(f"-- schedule: {job.schedule}")
    for param in job.parameters:
        click.echo(f"-- @{param.name} ({param.type}) = {param.value!r}")
    click.echo(job.statement)


@main.command("sync")
@click.argument("check_id")
@click.pass_context
def sync(ctx, check_id: str):
    """Reconcile a single check now.

    Creates or replaces its job, drops it when the check is invalid or
    deleted, and leaves it untouched for unsupported types.
    """
    reconciler = _build_reconciler(ctx)
    try:
        outcome = reconciler.reconcile_one(check_id)
    except TransientError as e:
        click.echo(f"✗ {check_id} failed: {e}", err=True)
        raise SystemExit(1)
    _echo_outcome(outcome)


@main.command("reconcile")
@click.pass_context
def reconcile(ctx):
    """Run one reconciliation pass over pending changes.

    Exits 1 when any check failed; failed checks are retried when their
    change is delivered again.
    """
    reconciler = _build_reconciler(ctx)
    try:
        outcomes = reconciler.reconcile_batch()
    except TransientError as e:
        click.echo(f"✗ Reconciliation failed: {e}", err=True)
        raise SystemExit(1)

    if not outcomes:
        click.echo("Nothing to reconcile.")
        return

    for outcome in outcomes:
        _echo_outcome(outcome)

    failed = [o for o in outcomes if o.failed]
    click.echo(f"{len(outcomes)} check(s) reconciled, {len(failed)} failed")
    if failed:
        raise SystemExit(1)


@main.command("watch")
@click.option("--interval", type=float, default=None, help="Seconds between polls (default: from config)")
@click.option("--max-passes", type=int, default=None, help="Stop after N non-empty passes")
@click.pass_context
def watch(ctx, interval: float | None, max_passes: int | None):
    """Reconcile continuously until interrupted."""
    config = _get_config(ctx)
    reconciler = _build_reconciler(ctx)
    poll_interval = interval if interval is not None else config.poll_interval_seconds

    stop_event = threading.Event()
    started = time.monotonic()
    click.echo(f"Watching for check changes every {poll_interval}s (Ctrl-C to stop)")
    try:
        passes = reconciler.run(poll_interval=poll_interval, stop_event=stop_event, max_passes=max_passes)
    except KeyboardInterrupt:
        stop_event.set()
        passes = None

    elapsed = format_duration(time.monotonic() - started)
    if passes is None:
        click.echo(f"Stopped after {elapsed}")
    else:
        click.echo(f"{passes} pass(es) in {elapsed}")


# =============================================================================
# Checks
# =============================================================================

@main.group("checks")
def checks_group():
    """Manage and inspect check definitions."""
    pass


@checks_group.command("list")
@click.option("--type", "check_type", help="Filter by check type (FRESHNESS, UNIQUENESS, CONSISTENCY)")
@click.pass_context
def list_checks(ctx, check_type: str | None):
    """List check definitions."""
    definitions = list(_get_backends(ctx).store.list_definitions())
    if check_type:
        definitions = [d for d in definitions if d.kind.value == check_type.strip().upper()]

    if not definitions:
        click.echo("No checks found.")
        return

    for d in definitions:
        state = "active" if d.is_active else "inactive"
        click.echo(f"{d.check_id}  {d.kind.value:<12} {state:<8} {d.schedule or '-'}  {d.check_name}")


@checks_group.command("apply")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def apply_checks(ctx, path: Path):
    """Upsert check definitions from a YAML or JSON file.

    The file holds a list of definitions (or a mapping with a `checks`
    list). Each upsert is captured in the change feed.
    """
    import yaml

    from dqsync.schemas import CheckDefinition

    data = yaml.safe_load(path.read_text()) or []
    if isinstance(data, dict):
        data = data.get("checks", [])
    if not isinstance(data, list):
        raise click.UsageError(f"{path} must contain a list of check definitions")

    store = _get_backends(ctx).store
    errors = 0
    for row in data:
        if not isinstance(row, dict):
            errors += 1
            print_error(f"{row!r}: not a check definition mapping")
            continue
        try:
            definition = CheckDefinition.from_row(row)
            store.upsert(definition)
        except (KeyError, TypeError, ValueError, PermanentError, TransientError) as e:
            # one bad row does not stop the rest of the file
            errors += 1
            print_error(f"{row.get('check_id', '?')}: {e}")
            continue
        print_success(f"{definition.check_id} applied")

    if errors:
        raise SystemExit(1)


@checks_group.command("delete")
@click.argument("check_id")
@click.pass_context
def delete_check(ctx, check_id: str):
    """Delete a check definition (its job is dropped on the next pass)."""
    if _get_backends(ctx).store.delete(check_id):
        print_success(f"{check_id} deleted")
    else:
        click.echo(f"✗ Check not found: {check_id}", err=True)
        raise SystemExit(1)


# =============================================================================
# Results / preview
# =============================================================================

@main.command("results")
@click.argument("check_id")
@click.option("--limit", default=10, show_default=True, type=int, help="Number of results to show")
@click.pass_context
def results(ctx, check_id: str, limit: int):
    """Show the most recent results of a check."""
    rows = _get_backends(ctx).results.recent_results(check_id, limit=limit)
    if not rows:
        click.echo(f"No results for {check_id}.")
        return

    for r in rows:
        executed = r.executed_at.isoformat() if r.executed_at else "-"
        click.echo(f"{executed}  {r.result.value:<5} {json.dumps(r.details, default=str)}")


@main.command("preview")
@click.argument("check_id")
@click.option(
    "--sample",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="JSON file: a list of rows, or {\"source\": [...], \"target\": [...]} for CONSISTENCY",
)
@click.option("--run-time", help="ISO timestamp used as the execution time (default: now)")
@click.pass_context
def preview(ctx, check_id: str, sample: Path, run_time: str | None):
    """Evaluate a check over sample rows without touching BigQuery.

    Examples:

        dqsync preview orders_unique --sample rows.json

        dqsync preview orders_fresh --sample rows.json --run-time 2024-01-01T12:00:00Z
    """
    from dqsync.evaluate import evaluate_check

    definition = _get_definition(ctx, check_id)
    data = json.loads(sample.read_text())

    kwargs = {}
    if isinstance(data, dict):
        kwargs["rows"] = data.get("rows")
        kwargs["source_rows"] = data.get("source")
        kwargs["target_rows"] = data.get("target")
    else:
        kwargs["rows"] = data

    if run_time:
        kwargs["run_time"] = datetime.fromisoformat(run_time.replace("Z", "+00:00"))

    try:
        result = evaluate_check(definition, **kwargs)
    except ValueError as e:
        click.echo(f"✗ {check_id}: {e}", err=True)
        raise SystemExit(1)

    click.echo(json.dumps(result.to_dict(), indent=2, default=str))
    if not result.passed:
        raise SystemExit(2)


if __name__ == "__main__":
    main()
