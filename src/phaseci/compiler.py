# compiler.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Dict, List, Optional, Set

from .concurrency import bind
from .config import Settings
from .dag import build_graph, topo_levels
from .diagnostics import (
    CYCLE_CROSS_REFERENCE,
    CYCLE_UNDECLARED,
    DUPLICATE_JOB,
    LOWERED_GRAPH_INVALID,
    STATE_STORE_LOCAL,
    UNKNOWN_JOB_REFERENCE,
    Diagnostic,
    error,
    has_errors,
    info,
)
from .errors import DuplicateJobName, GraphCycleError, UnknownJobReference
from .ir import JobIR, TriggerInput, TriggerIR, WorkflowIR, job_to_ir
from .model import Cycle, Job, Workflow
from .scc import GraphAnalysis, analyze
from .synth import PhaseSet, decide_name, synthesize
from .termination import is_lowerable, is_unsafe, validate

log = logging.getLogger(__name__)


@dataclass
class CompileResult:
    """
    Outcome of compiling one workflow.

    `workflow_ir` is best effort: it is filled in even when there are error
    diagnostics (so tools can show as much as possible), but it must not be
    handed to the scheduler unless `success` is True.
    """
    workflow_ir: Optional[WorkflowIR]
    diagnostics: List[Diagnostic] = field(default_factory=list)
    phase_sets: Dict[str, PhaseSet] = field(default_factory=dict)
    analysis: Optional[GraphAnalysis] = None

    @property
    def success(self) -> bool:
        return self.workflow_ir is not None and not has_errors(self.diagnostics)


def _undeclared_cycles(workflow: Workflow, analysis: GraphAnalysis, diagnostics: List[Diagnostic]) -> tuple[List[str], Set[str]]:
    """
    Match cyclic components to cycle blocks.

    Returns the cycle names in component order and the names of cycles caught
    up in a loop that crosses their body boundary.
    """
    owner: Dict[str, str] = {j.name: c.name for c in workflow.cycles for j in c.jobs}
    matched: List[str] = []
    tangled: Set[str] = set()

    for scc in analysis.cycles:
        owners = {owner.get(m) for m in scc.members}
        if len(owners) == 1 and None not in owners:
            name = owners.pop()
            if name not in matched:
                matched.append(name)
            continue

        tangled.update(o for o in owners if o is not None)
        first = analysis.graph.jobs[scc.members[0]]
        diagnostics.append(
            error(
                CYCLE_UNDECLARED,
                f"Jobs {list(scc.members)} depend on each other in a loop that is not a single cycle block",
                first.span,
            )
        )

    return matched, tangled


def _ordinary_job(job: Job, owner: Dict[str, str], lowered: Set[str], settings: Settings) -> JobIR:
    base = job_to_ir(job, runs_on=settings.runs_on, timeout_minutes=settings.timeout_minutes)

    needs: List[str] = []
    conditions: List[str] = []
    for dep in base.needs:
        cycle_name = owner.get(dep)
        if cycle_name is not None and cycle_name in lowered:
            # waits for the loop to finish: only the terminal run's decide says 'false'
            dep = decide_name(cycle_name)
            cond = f"needs.{dep}.outputs.continue == 'false'"
            if cond not in conditions:
                conditions.append(cond)
        if dep not in needs:
            needs.append(dep)

    if not conditions:
        return base
    return JobIR(
        runs_on=base.runs_on,
        steps=base.steps,
        needs=tuple(needs),
        if_=" && ".join(conditions),
        outputs=base.outputs,
        env=base.env,
        timeout_minutes=base.timeout_minutes,
    )


def _cross_references(cycle: Cycle, owner: Dict[str, str]) -> List[Diagnostic]:
    """
    Body jobs that need a job of another cycle. The other job only exists
    inside that cycle's phase set, which runs in different invocations.
    """
    found: List[Diagnostic] = []
    for job in cycle.jobs:
        for dep in job.dependencies:
            other = owner.get(dep)
            if other is not None and other != cycle.name:
                found.append(
                    error(
                        CYCLE_CROSS_REFERENCE,
                        f"Job '{job.name}' in cycle '{cycle.name}' depends on job '{dep}' of cycle '{other}'",
                        job.span,
                    )
                )
    return found


def _local_state_store(settings: Settings) -> Optional[Diagnostic]:
    if settings.state_backend != "file" or PurePosixPath(settings.state_url).is_absolute():
        return None
    return info(
        STATE_STORE_LOCAL,
        f"State store '{settings.state_url}' is a relative path on the runner; "
        "iteration state is lost between runs on ephemeral runners",
    )


def _merge_inputs(phase_sets: List[PhaseSet]) -> tuple[TriggerInput, ...]:
    seen: Dict[str, TriggerInput] = {}
    for ps in phase_sets:
        for inp in ps.inputs:
            seen.setdefault(inp.name, inp)
    return tuple(seen.values())


def compile_workflow(workflow: Workflow, settings: Optional[Settings] = None) -> CompileResult:
    """
    Lower a workflow with cycle blocks into a DAG-only job graph.

    Every diagnostic is collected in one list. A cycle with a structural
    error is skipped; other cycles are still lowered.
    """
    settings = settings or Settings()
    diagnostics: List[Diagnostic] = []

    try:
        graph = build_graph(workflow.jobs, workflow.cycles)
    except UnknownJobReference as e:
        diagnostics.append(error(UNKNOWN_JOB_REFERENCE, str(e), e.span))
        return CompileResult(workflow_ir=None, diagnostics=diagnostics)
    except DuplicateJobName as e:
        diagnostics.append(error(DUPLICATE_JOB, str(e), e.span))
        return CompileResult(workflow_ir=None, diagnostics=diagnostics)

    analysis = analyze(graph)
    scc_order, tangled = _undeclared_cycles(workflow, analysis, diagnostics)

    by_name: Dict[str, Cycle] = {c.name: c for c in workflow.cycles}
    lowerable: List[str] = []
    bindings = {}
    owner = {j.name: c.name for c in workflow.cycles for j in c.jobs}
    for c in workflow.cycles:
        found = validate(c)
        crossed = _cross_references(c, owner)
        found.extend(crossed)
        binding = bind(c, workflow.name)
        diagnostics.extend(found)
        diagnostics.extend(binding.diagnostics)
        bindings[c.name] = binding
        if is_lowerable(found) and not crossed and c.name not in tangled:
            lowerable.append(c.name)

    # cycles in dependency order, then any left over in declaration order
    ordered = [n for n in scc_order if n in lowerable]
    ordered += [n for n in lowerable if n not in ordered]

    phase_sets: Dict[str, PhaseSet] = {}
    for name in ordered:
        c = by_name[name]
        phase_sets[name] = synthesize(c, binding=bindings[name], settings=settings, unsafe=is_unsafe(c))

    jobs: Dict[str, JobIR] = {}
    for job in workflow.jobs:
        jobs[job.name] = _ordinary_job(job, owner, set(phase_sets), settings)
    for ps in phase_sets.values():
        jobs.update(ps.jobs)

    if phase_sets:
        trigger = TriggerIR(events=tuple(workflow.on), inputs=_merge_inputs(list(phase_sets.values())))
    else:
        trigger = TriggerIR(events=tuple(workflow.on))

    ir = WorkflowIR(
        name=workflow.name,
        on=trigger,
        jobs=jobs,
        concurrency=tuple(ps.concurrency for ps in phase_sets.values()),
    )

    if phase_sets:
        local = _local_state_store(settings)
        if local is not None:
            diagnostics.append(local)

    if not has_errors(diagnostics):
        # the scheduler only accepts DAGs; anything else is a lowering bug
        try:
            topo_levels(ir.edges())
        except (GraphCycleError, UnknownJobReference) as e:
            log.debug("lowered graph of %s is invalid: %s", workflow.name, e)
            diagnostics.append(error(LOWERED_GRAPH_INVALID, str(e), workflow.span))

    log.debug(
        "compiled %s: %d jobs, %d cycles lowered, %d diagnostics",
        workflow.name, len(jobs), len(phase_sets), len(diagnostics),
    )
    return CompileResult(workflow_ir=ir, diagnostics=diagnostics, phase_sets=phase_sets, analysis=analysis)
