# ir.py
"""
Lowered job graph handed to the emitter.

The shapes follow GitHub Actions workflow files (`runs-on`, `needs`, `if`,
`workflow_dispatch` inputs). `to_dict()` gives plain JSON-compatible data;
turning it into YAML is the emitter's business.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


def _prune(d: Dict[str, Any]) -> Dict[str, Any]:
    # drop unset fields so equal graphs always serialize the same way
    return {k: v for k, v in d.items() if v is not None and v != {} and v != []}


@dataclass(frozen=True)
class StepIR:
    name: str
    run: Optional[str] = None
    uses: Optional[str] = None
    with_: Dict[str, str] = field(default_factory=dict)
    id: Optional[str] = None
    if_: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)
    shell: Optional[str] = None
    working_directory: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _prune({
            "name": self.name,
            "id": self.id,
            "if": self.if_,
            "uses": self.uses,
            "with": dict(self.with_),
            "run": self.run,
            "shell": self.shell,
            "working-directory": self.working_directory,
            "env": dict(self.env),
        })


@dataclass(frozen=True)
class JobIR:
    runs_on: str
    steps: Tuple[StepIR, ...]
    needs: Tuple[str, ...] = ()
    if_: Optional[str] = None
    outputs: Dict[str, str] = field(default_factory=dict)
    env: Dict[str, str] = field(default_factory=dict)
    timeout_minutes: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return _prune({
            "runs-on": self.runs_on,
            "needs": list(self.needs),
            "if": self.if_,
            "timeout-minutes": self.timeout_minutes,
            "env": dict(self.env),
            "outputs": dict(self.outputs),
            "steps": [s.to_dict() for s in self.steps],
        })


@dataclass(frozen=True)
class TriggerInput:
    name: str
    description: str
    default: str = ""
    required: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "description": self.description,
            "required": self.required,
            "default": self.default,
        }


@dataclass(frozen=True)
class TriggerIR:
    events: Tuple[str, ...]
    inputs: Tuple[TriggerInput, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        on: Dict[str, Any] = {event: None for event in self.events if event != "workflow_dispatch"}
        if self.inputs or "workflow_dispatch" in self.events:
            on["workflow_dispatch"] = {"inputs": {i.name: i.to_dict() for i in self.inputs}}
        return on


@dataclass(frozen=True)
class ConcurrencyIR:
    group: str
    queue_policy: str
    jobs: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "group": self.group,
            "queue-policy": self.queue_policy,
            "cancel-in-progress": False,
            "jobs": list(self.jobs),
        }


@dataclass(frozen=True)
class WorkflowIR:
    name: str
    on: TriggerIR
    jobs: Dict[str, JobIR]
    concurrency: Tuple[ConcurrencyIR, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"name": self.name, "on": self.on.to_dict()}
        if self.concurrency:
            d["concurrency"] = [c.to_dict() for c in self.concurrency]
        d["jobs"] = {name: job.to_dict() for name, job in self.jobs.items()}
        return d

    def edges(self) -> Dict[str, List[str]]:
        return {name: list(job.needs) for name, job in self.jobs.items()}


def render_json(ir: WorkflowIR) -> str:
    """Stable serialization: same workflow in, same bytes out."""
    return json.dumps(ir.to_dict(), indent=2, ensure_ascii=False) + "\n"


# ---------------------------------------------------------------------
# Model -> IR
# ---------------------------------------------------------------------

def step_to_ir(step) -> StepIR:
    """User step, copied verbatim."""
    return StepIR(name=step.name, run=step.run, working_directory=step.cwd, env=dict(step.env))


def job_to_ir(job, *, runs_on: str, timeout_minutes: Optional[int] = None) -> JobIR:
    """An ordinary job, unchanged apart from the target's field names."""
    return JobIR(
        runs_on=job.runs_on or runs_on,
        steps=tuple(step_to_ir(s) for s in job.steps),
        needs=job.dependencies,
        outputs=dict(job.outputs),
        env=dict(job.env),
        timeout_minutes=job.timeout_minutes or timeout_minutes,
    )
