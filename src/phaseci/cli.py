# cli.py
from __future__ import annotations

import logging
import os
import sys
import tarfile
from pathlib import Path

import click

from phaseci.compiler import compile_workflow
from phaseci.config import ConfigError, load_settings
from phaseci.errors import GuardError, StateError, StateCorrupted
from phaseci.ir import render_json
from phaseci.loader import DEFAULT_WORKFLOW_FILE, load_workflow, resolve_workflow_file
from phaseci.runtime.archive import pack_dir, unpack_dir
from phaseci.runtime.decide import decide as decide_next, run_guard, write_outputs
from phaseci.runtime.store import open_store
from phaseci.ui.console import Console, get_console, set_console


def _settings():
    try:
        return load_settings()
    except ConfigError as e:
        get_console().print_error("Invalid configuration", str(e))
        sys.exit(1)


def _compile(ctx, workflow):
    console = get_console()
    try:
        workflow_path = resolve_workflow_file(workflow)
    except (FileNotFoundError, ValueError) as e:
        console.print_error(
            "Workflow file not resolved",
            str(e),
            suggestion=f"Create {DEFAULT_WORKFLOW_FILE} or pick a file:\n  phaseci build --workflow my_workflow.py",
        )
        sys.exit(1)
    settings = _settings()

    try:
        wf = load_workflow(workflow_path)
    except Exception as e:
        console.print_error("Failed to load workflow", f"Could not load workflow from {workflow_path}")
        console.print_exception(e)
        sys.exit(1)

    console.print_build_started(
        workflow=wf.name,
        job_count=len(wf.jobs) + sum(len(c.jobs) for c in wf.cycles),
        cycle_count=len(wf.cycles),
    )
    result = compile_workflow(wf, settings)
    console.print_diagnostics(result.diagnostics)
    if result.diagnostics:
        console.print_summary(result.diagnostics)
    return result


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """phaseci: compile looping CI workflows into DAG-only phases."""
    console = Console(debug=debug)
    set_console(console)
    if debug:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--workflow", default=None, help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW_FILE} if present)")
@click.option("--out", "out", default=None, type=click.Path(dir_okay=False), help="Write the job graph here instead of stdout")
@click.pass_context
def build(ctx, workflow, out):
    """Compile a workflow into a DAG-only job graph (JSON)."""
    console = get_console()
    # the graph itself goes to stdout, so progress output moves to stderr
    console.stdout_reserved = out is None
    result = _compile(ctx, workflow)

    if not result.success:
        console.print_error(
            "Build failed",
            "Fix the errors above; no job graph was written.",
        )
        sys.exit(1)

    for ps in result.phase_sets.values():
        console.print_phase_set(ps.cycle, ps.key, ps.jobs)

    rendered = render_json(result.workflow_ir)
    if out:
        Path(out).parent.mkdir(parents=True, exist_ok=True)
        Path(out).write_text(rendered, encoding="utf-8")
        console.print_info(f"Wrote {out}")
    else:
        click.echo(rendered, nl=False)


@cli.command()
@click.option("--workflow", default=None, help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW_FILE} if present)")
@click.pass_context
def check(ctx, workflow):
    """Report diagnostics without writing anything."""
    result = _compile(ctx, workflow)
    if not result.success:
        sys.exit(1)
    get_console().print_info("OK")


# ---------------------------------------------------------------------
# Runtime commands (called from the synthesized jobs)
# ---------------------------------------------------------------------

@cli.group()
def state():
    """Move iteration state between the runner and the state store."""


@state.command("pull")
@click.option("--key", required=True, help="Concurrency key of the loop")
@click.option("--invocation", required=True, help="Run id that saved the state")
@click.option("--dest", required=True, type=click.Path(file_okay=False), help="Directory to restore into")
@click.pass_context
def state_pull(ctx, key, invocation, dest):
    """Restore the state saved by a previous run. Fails if it is missing."""
    console = get_console()
    settings = _settings()
    try:
        if not invocation:
            raise StateError("no previous run id was passed; cannot hydrate")
        blob = open_store(settings).download(key, invocation)
        try:
            unpack_dir(blob, dest)
        except (tarfile.TarError, OSError, EOFError) as e:
            raise StateCorrupted(key=key, invocation_id=invocation, reason=str(e)) from e
    except StateError as e:
        console.print_error(
            "Cannot hydrate iteration state",
            str(e),
            suggestion="The previous iteration's state is gone; re-run the loop from iteration 0.",
        )
        sys.exit(1)
    console.print_info(f"Restored state for key={key} from run {invocation} into {dest}")


@state.command("push")
@click.option("--key", required=True, help="Concurrency key of the loop")
@click.option("--invocation", required=True, help="Id of the current run")
@click.option("--src", required=True, type=click.Path(file_okay=False), help="State directory to save")
@click.pass_context
def state_push(ctx, key, invocation, src):
    """Save the state directory for the next iteration."""
    console = get_console()
    settings = _settings()
    try:
        digest = open_store(settings).upload(key, invocation, pack_dir(src))
    except (StateError, OSError) as e:
        console.print_error("Cannot persist iteration state", str(e))
        sys.exit(1)
    console.print_info(f"Saved state for key={key} run={invocation} ({digest[:12]})")


@cli.command()
@click.option("--iteration", required=True, type=click.IntRange(min=0), help="0-based iteration that just finished")
@click.option("--max-iters", default=None, type=click.IntRange(min=1), help="Hard cap on iterations")
@click.option("--output", default=None, type=click.Path(dir_okay=False), help="Step output file (e.g. $GITHUB_OUTPUT)")
@click.pass_context
def decide(ctx, iteration, max_iters, output):
    """Run the guard (from $PHASECI_GUARD) and decide whether to continue."""
    console = get_console()
    settings = _settings()
    code = os.environ.get("PHASECI_GUARD", "")

    satisfied = False
    if code.strip():
        try:
            satisfied = run_guard(code, iteration=iteration, state_dir=settings.state_dir)
        except GuardError as e:
            console.print_error("Termination guard failed", str(e))
            sys.exit(1)

    decision = decide_next(satisfied, iteration, max_iters)
    console.print_decision(decision.should_continue, decision.reason, iteration)
    if output:
        write_outputs(decision, output)
    for k, v in decision.outputs().items():
        click.echo(f"{k}={v}")


if __name__ == "__main__":
    cli()
