# synth.py
"""
Lowering of one cycle block into a phase set.

The target scheduler only runs DAGs, so a loop is unrolled in time instead of
in the graph: every run of the workflow executes one iteration, and the last
job of the iteration re-triggers the workflow for the next one. Four roles
make up one phase:

    <cycle>_hydrate         load the state left by the previous run
    <cycle>_body_<job>      the user's jobs, once per iteration
    <cycle>_decide          run the guard, pick continue / stop, save state
    <cycle>_dispatch        re-trigger the workflow when the loop goes on

hydrate -> body_* -> decide -> dispatch are plain `needs` edges, so the
scheduler orders them itself. Any failure before dispatch stops the loop:
nothing downstream of a failed job runs, and dispatch is the only job that
can schedule another iteration.

Between runs the state directory travels through the external state store,
keyed by (concurrency key, run id of the writer). Within a run it travels
between jobs as scheduler artifacts.
"""
from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .concurrency import ConcurrencyBinding
from .config import Settings
from .ir import ConcurrencyIR, JobIR, StepIR, TriggerInput, step_to_ir
from .model import Cycle, Job

log = logging.getLogger(__name__)


TARGET_INPUT = "phaseci_target"

# reason codes written by `phaseci decide`
REASON_GUARD_SATISFIED = "guard_satisfied"
REASON_MAX_ITERATIONS = "max_iterations"
REASON_CONTINUE = "continue"
REASONS = (REASON_GUARD_SATISFIED, REASON_MAX_ITERATIONS, REASON_CONTINUE)

UPLOAD_ACTION = "actions/upload-artifact@v4"
DOWNLOAD_ACTION = "actions/download-artifact@v4"


# ---------------------------------------------------------------------
# Naming
# ---------------------------------------------------------------------

def hydrate_name(cycle_name: str) -> str:
    return f"{cycle_name}_hydrate"


def body_name(cycle_name: str, job_name: str) -> str:
    return f"{cycle_name}_body_{job_name}"


def decide_name(cycle_name: str) -> str:
    return f"{cycle_name}_decide"


def dispatch_name(cycle_name: str) -> str:
    return f"{cycle_name}_dispatch"


def iteration_input(cycle_name: str) -> str:
    return f"{cycle_name}_iteration"


def key_input(cycle_name: str) -> str:
    return f"{cycle_name}_key"


def prev_run_input(cycle_name: str) -> str:
    return f"{cycle_name}_prev_run"


def state_artifact(cycle_name: str, job_name: str | None = None) -> str:
    return f"{cycle_name}-state" if job_name is None else f"{cycle_name}-state-{job_name}"


# ---------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class PhaseSet:
    """Everything one cycle turns into."""
    cycle: str
    key: str
    jobs: Dict[str, JobIR]
    inputs: Tuple[TriggerInput, ...]
    concurrency: ConcurrencyIR
    unsafe: bool = False

    @property
    def hydrate(self) -> JobIR:
        return self.jobs[hydrate_name(self.cycle)]

    @property
    def decide(self) -> JobIR:
        return self.jobs[decide_name(self.cycle)]

    @property
    def dispatch(self) -> JobIR:
        return self.jobs[dispatch_name(self.cycle)]

    @property
    def body_jobs(self) -> Dict[str, JobIR]:
        prefix = f"{self.cycle}_body_"
        return {n: j for n, j in self.jobs.items() if n.startswith(prefix)}


@dataclass
class _Ctx:
    cycle: Cycle
    settings: Settings
    binding: ConcurrencyBinding
    state_env: Dict[str, str] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.cycle.name

    def hydrate_output(self, output: str) -> str:
        return f"${{{{ needs.{hydrate_name(self.name)}.outputs.{output} }}}}"

    def runtime(self, *args: str) -> str:
        return " ".join([self.settings.runtime_command, *args])

    def setup_steps(self) -> Tuple[StepIR, ...]:
        if not self.settings.runtime_setup.strip():
            return ()
        return (StepIR(name="Install phaseci runtime", run=self.settings.runtime_setup, shell="bash"),)


# ---------------------------------------------------------------------
# Trigger inputs
# ---------------------------------------------------------------------

def trigger_inputs(cycle: Cycle) -> Tuple[TriggerInput, ...]:
    return (
        TriggerInput(
            name=TARGET_INPUT,
            description="Cycle continued by this run (empty on a normal trigger)",
        ),
        TriggerInput(
            name=iteration_input(cycle.name),
            description=f"Iteration of cycle {cycle.name}",
            default="0",
        ),
        TriggerInput(
            name=key_input(cycle.name),
            description=f"Concurrency key of cycle {cycle.name}",
        ),
        TriggerInput(
            name=prev_run_input(cycle.name),
            description=f"Run that saved the state of cycle {cycle.name}",
        ),
    )


# ---------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------

def _hydrate(ctx: _Ctx) -> JobIR:
    name = ctx.name
    state_dir = ctx.settings.state_dir

    resolve = StepIR(
        name="Resolve loop context",
        id="ctx",
        run="\n".join([
            'ITERATION="${PHASECI_ITERATION:-0}"',
            'KEY="${PHASECI_CARRIED_KEY:-$PHASECI_KEY}"',
            'echo "iteration=$ITERATION" >> "$GITHUB_OUTPUT"',
            'echo "key=$KEY" >> "$GITHUB_OUTPUT"',
            'echo "Cycle ' + name + ' iteration $ITERATION (key: $KEY)"',
        ]),
        shell="bash",
        env={
            "PHASECI_ITERATION": f"${{{{ inputs.{iteration_input(name)} }}}}",
            "PHASECI_CARRIED_KEY": f"${{{{ inputs.{key_input(name)} }}}}",
            "PHASECI_KEY": ctx.binding.key,
        },
    )

    # iteration > 0: the previous run's state must be there, no fallback
    pull = StepIR(
        name="Restore iteration state",
        if_="steps.ctx.outputs.iteration != '0'",
        run=ctx.runtime(
            "state", "pull",
            '--key "${{ steps.ctx.outputs.key }}"',
            f'--invocation "${{{{ inputs.{prev_run_input(name)} }}}}"',
            f"--dest {shlex.quote(state_dir)}",
        ),
        shell="bash",
    )

    bootstrap = StepIR(
        name="Bootstrap iteration state",
        if_="steps.ctx.outputs.iteration == '0'",
        run=f"mkdir -p {shlex.quote(state_dir)}",
        shell="bash",
    )

    mark = StepIR(
        name="Record iteration",
        run=f'echo "${{{{ steps.ctx.outputs.iteration }}}}" > {shlex.quote(state_dir + "/.phaseci-iteration")}',
        shell="bash",
    )

    publish = StepIR(
        name="Share state with body jobs",
        uses=UPLOAD_ACTION,
        with_={
            "name": state_artifact(name),
            "path": state_dir,
            "include-hidden-files": "true",
            "if-no-files-found": "error",
        },
    )

    return JobIR(
        runs_on=ctx.settings.runs_on,
        if_=f"!inputs.{TARGET_INPUT} || inputs.{TARGET_INPUT} == '{name}'",
        env=dict(ctx.state_env),
        outputs={
            "iteration": "${{ steps.ctx.outputs.iteration }}",
            "key": "${{ steps.ctx.outputs.key }}",
        },
        steps=(resolve, *ctx.setup_steps(), pull, bootstrap, mark, publish),
        timeout_minutes=ctx.settings.timeout_minutes,
    )


def _body(ctx: _Ctx, job: Job) -> JobIR:
    name = ctx.name
    state_dir = ctx.settings.state_dir
    order = {j.name: i for i, j in enumerate(ctx.cycle.jobs)}

    needs: List[str] = [hydrate_name(name)]
    for dep in job.dependencies:
        if dep in order:
            # a body job declared at or after this one feeds the *next*
            # iteration through the state store, not this one
            if order[dep] >= order[job.name]:
                continue
            dep = body_name(name, dep)
        if dep not in needs:
            needs.append(dep)

    steps = [
        StepIR(
            name="Load iteration state",
            uses=DOWNLOAD_ACTION,
            with_={"name": state_artifact(name), "path": state_dir},
        ),
        *(step_to_ir(s) for s in job.steps),
        StepIR(
            name="Hand state to decide",
            uses=UPLOAD_ACTION,
            with_={
                "name": state_artifact(name, job.name),
                "path": state_dir,
                "include-hidden-files": "true",
                "if-no-files-found": "error",
            },
        ),
    ]

    env = dict(job.env)
    env["PHASECI_ITERATION"] = ctx.hydrate_output("iteration")
    env["PHASECI_STATE_DIR"] = state_dir

    return JobIR(
        runs_on=job.runs_on or ctx.settings.runs_on,
        needs=tuple(needs),
        env=env,
        outputs=dict(job.outputs),
        steps=tuple(steps),
        timeout_minutes=job.timeout_minutes or ctx.settings.timeout_minutes,
    )


def _decide(ctx: _Ctx, bodies: List[str]) -> JobIR:
    name = ctx.name
    cycle = ctx.cycle
    state_dir = ctx.settings.state_dir

    if bodies:
        collect = StepIR(
            name="Collect body state",
            uses=DOWNLOAD_ACTION,
            with_={"pattern": state_artifact(name) + "-*", "path": state_dir, "merge-multiple": "true"},
        )
    else:
        collect = StepIR(
            name="Collect state",
            uses=DOWNLOAD_ACTION,
            with_={"name": state_artifact(name), "path": state_dir},
        )

    args = ["decide", '--iteration "$PHASECI_ITERATION"']
    if cycle.max_iters is not None:
        args.append(f"--max-iters {cycle.max_iters}")
    args.append('--output "$GITHUB_OUTPUT"')

    decide_env = {
        "PHASECI_ITERATION": ctx.hydrate_output("iteration"),
        "PHASECI_STATE_DIR": state_dir,
    }
    if cycle.until is not None:
        # forwarded verbatim, evaluated by the runner
        decide_env["PHASECI_GUARD"] = cycle.until.code

    evaluate = StepIR(
        name="Evaluate termination",
        id="decide",
        run=ctx.runtime(*args),
        shell="bash",
        env=decide_env,
    )

    # saved whatever the decision is, so a `continue` always has state to load
    persist = StepIR(
        name="Persist iteration state",
        run=ctx.runtime(
            "state", "push",
            '--key "$PHASECI_KEY"',
            '--invocation "$PHASECI_INVOCATION"',
            f"--src {shlex.quote(state_dir)}",
        ),
        shell="bash",
        env={
            "PHASECI_KEY": ctx.hydrate_output("key"),
            "PHASECI_INVOCATION": ctx.settings.invocation_id_expr,
        },
    )

    return JobIR(
        runs_on=ctx.settings.runs_on,
        needs=tuple([hydrate_name(name), *bodies]),
        env=dict(ctx.state_env),
        outputs={
            "continue": "${{ steps.decide.outputs.continue }}",
            "reason": "${{ steps.decide.outputs.reason }}",
        },
        steps=(collect, *ctx.setup_steps(), evaluate, persist),
        timeout_minutes=ctx.settings.timeout_minutes,
    )


def dispatch_condition(cycle: Cycle) -> str:
    """
    Both must hold for another iteration: decide said continue AND the cap
    is not reached. Either failing stops the loop.
    """
    cond = f"needs.{decide_name(cycle.name)}.outputs.continue == 'true'"
    if cycle.max_iters is not None:
        # iteration is 0-based: iteration + 1 < max_iters
        cond += f" && fromJSON(needs.{hydrate_name(cycle.name)}.outputs.iteration) < {cycle.max_iters - 1}"
    return cond


def _dispatch(ctx: _Ctx) -> JobIR:
    name = ctx.name
    run = "\n".join([
        'NEXT=$(( PHASECI_ITERATION + 1 ))',
        ctx.settings.dispatch_command + " \\",
        f"  -f {TARGET_INPUT}={shlex.quote(name)} \\",
        f'  -f {iteration_input(name)}="$NEXT" \\',
        f'  -f {key_input(name)}="$PHASECI_KEY" \\',
        f'  -f {prev_run_input(name)}="$PHASECI_INVOCATION"',
        f'echo "Dispatched iteration $NEXT of cycle {name}"',
    ])

    env = dict(ctx.settings.dispatch_env)
    env.update({
        "PHASECI_ITERATION": ctx.hydrate_output("iteration"),
        "PHASECI_KEY": ctx.hydrate_output("key"),
        "PHASECI_INVOCATION": ctx.settings.invocation_id_expr,
    })

    return JobIR(
        runs_on=ctx.settings.runs_on,
        needs=(decide_name(name), hydrate_name(name)),
        if_=dispatch_condition(ctx.cycle),
        steps=(StepIR(name="Dispatch next iteration", run=run, shell="bash", env=env),),
        timeout_minutes=ctx.settings.timeout_minutes,
    )


# ---------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------

def synthesize(
    cycle: Cycle,
    *,
    binding: ConcurrencyBinding,
    settings: Optional[Settings] = None,
    unsafe: bool = False,
) -> PhaseSet:
    """Lower one cycle. Job order in the result is hydrate, bodies, decide, dispatch."""
    settings = settings or Settings()
    ctx = _Ctx(
        cycle=cycle,
        settings=settings,
        binding=binding,
        state_env={
            "PHASECI_STATE_BACKEND": settings.state_backend,
            "PHASECI_STATE_URL": settings.state_url,
        },
    )

    jobs: Dict[str, JobIR] = {hydrate_name(cycle.name): _hydrate(ctx)}

    bodies: List[str] = []
    for job in cycle.jobs:
        lowered = body_name(cycle.name, job.name)
        jobs[lowered] = _body(ctx, job)
        bodies.append(lowered)

    jobs[decide_name(cycle.name)] = _decide(ctx, bodies)
    jobs[dispatch_name(cycle.name)] = _dispatch(ctx)

    log.debug("cycle %s lowered into %d jobs (key=%s)", cycle.name, len(jobs), binding.key)
    return PhaseSet(
        cycle=cycle.name,
        key=binding.key,
        jobs=jobs,
        inputs=trigger_inputs(cycle),
        concurrency=ConcurrencyIR(
            group=binding.config.group,
            queue_policy=binding.config.queue_policy,
            jobs=tuple(jobs),
        ),
        unsafe=unsafe,
    )
