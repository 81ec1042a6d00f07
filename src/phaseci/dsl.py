# dsl.py
from __future__ import annotations

import sys
from dataclasses import replace
from typing import Dict, List, Optional, Sequence, Tuple, Union

from .model import ArtifactRef, Cycle, Guard, Job, Span, Step, Workflow


def _caller_span(depth: int = 2) -> Span:
    """Span of the user code that called into the DSL."""
    try:
        frame = sys._getframe(depth)
    except ValueError:
        return Span()
    return Span(file=frame.f_code.co_filename, line=frame.f_lineno)


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(name: str, cmd: str, *, cwd: str | None = None, env: Optional[Dict[str, str]] = None) -> Step:
    """Create a shell step."""
    return Step(name=name, run=cmd, cwd=cwd, env={k: str(v) for k, v in (env or {}).items()})


def consume(job: str, artifact: str) -> ArtifactRef:
    """Reference an artifact produced by another job: consume("build", "wheel")."""
    return ArtifactRef(job=job, artifact=artifact)


def guard(code: str) -> Guard:
    """
    Termination predicate, a shell command run after every iteration.
    Exit 0 stops the loop, exit 1 keeps it going.
    """
    return Guard(code=code, span=_caller_span())


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[Step]] = None,  # allow: job("x", steps_list=[...])
    needs: Optional[List[str]] = None,
    consumes: Optional[List[ArtifactRef]] = None,
    env: Optional[Dict[str, str]] = None,
    outputs: Optional[Dict[str, str]] = None,
    runs_on: str | None = None,
    timeout_minutes: int | None = None,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> Job:
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(list(steps_list))
    steps_final.extend(list(steps))

    if not steps_final:
        raise ValueError(f"job({name!r}) must have at least one step")

    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]

    return Job(
        name=name,
        steps=tuple(steps_final),
        needs=tuple(needs or []),
        consumes=tuple(consumes or []),
        env={k: str(v) for k, v in (env or {}).items()},
        outputs=dict(outputs or {}),
        runs_on=runs_on,
        timeout_minutes=timeout_minutes,
        span=_caller_span(),
    )


def cycle(
    name: str,
    *body: Union[Job, Cycle],
    max_iters: int | None = None,
    until: Union[Guard, str, None] = None,
    key: str | None = None,
) -> Cycle:
    """
    A loop over `body`.

        cycle(
            "refine",
            job("analyze", sh("Analyze", "python analyze.py")),
            max_iters=5,
            until=guard("jq -e '.quality_score > 0.95' .phaseci/state/score.json"),
            key="refine-${{ github.ref }}",
        )

    An empty body is accepted here and reported by `phaseci check`.
    """
    if isinstance(until, str):
        until = Guard(code=until, span=_caller_span())
    return Cycle(
        name=name,
        body=tuple(body),
        max_iters=max_iters,
        until=until,
        key=key,
        span=_caller_span(),
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, name: str):
        self.name = name
        self._needs: list[str] = []
        self._consumes: list[ArtifactRef] = []
        self._steps: list[Step] = []
        self._env: dict[str, str] = {}
        self._outputs: dict[str, str] = {}
        self._runs_on: Optional[str] = None
        self._timeout: Optional[int] = None
        self._span = _caller_span()

    def depends_on(self, *job_names: str):
        self._needs.extend(job_names)
        return self

    def consumes(self, job_name: str, artifact: str):
        self._consumes.append(ArtifactRef(job=job_name, artifact=artifact))
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None):
        self._steps.append(Step(name=name, run=run, cwd=cwd))
        return self

    def with_env(self, **env):
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def with_output(self, name: str, expr: str):
        self._outputs[name] = expr
        return self

    def runs_on(self, runner: str):
        self._runs_on = runner
        return self

    def timeout(self, minutes: int):
        self._timeout = minutes
        return self

    def build(self) -> Job:
        if not self._steps:
            raise ValueError(f"Job '{self.name}' has no steps")

        return Job(
            name=self.name,
            steps=tuple(self._steps),
            needs=tuple(self._needs),
            consumes=tuple(self._consumes),
            env=dict(self._env),
            outputs=dict(self._outputs),
            runs_on=self._runs_on,
            timeout_minutes=self._timeout,
            span=self._span,
        )


class CycleBuilder:
    """
    Fluent form of `cycle()`:

        CycleBuilder("refine").max_iters(5).until("test -f done").add(analyze).build()
    """
    def __init__(self, name: str):
        self.name = name
        self._body: list[Union[Job, Cycle]] = []
        self._max_iters: Optional[int] = None
        self._until: Optional[Guard] = None
        self._key: Optional[str] = None
        self._span = _caller_span()

    def add(self, *members: Union[Job, Cycle, JobBuilder]):
        for m in members:
            self._body.append(m.build() if isinstance(m, JobBuilder) else m)
        return self

    def max_iters(self, n: int):
        self._max_iters = n
        return self

    def until(self, code: str):
        self._until = Guard(code=code, span=_caller_span())
        return self

    def key(self, key: str):
        self._key = key
        return self

    def build(self) -> Cycle:
        return Cycle(
            name=self.name,
            body=tuple(self._body),
            max_iters=self._max_iters,
            until=self._until,
            key=self._key,
            span=self._span,
        )


def build(name: str) -> JobBuilder:
    """Convenience: build('test').define_step(...).build()"""
    return JobBuilder(name)


# ---------------------------------------------------------------------
# Workflow helper (single-file story)
# ---------------------------------------------------------------------

def wf(name: str, *members: Union[Job, Cycle], on: Sequence[str] = ("push",)) -> Workflow:
    """
    Workflow definition helper. Jobs and cycles can be mixed in any order.

        from phaseci import wf, job, cycle, sh

        def workflow():
            return wf(
                "ci",
                job("lint", sh("Ruff", "ruff check .")),
                cycle("refine", job("analyze", sh(...)), max_iters=5),
            )
    """
    jobs: Tuple[Job, ...] = tuple(m for m in members if isinstance(m, Job))
    cycles: Tuple[Cycle, ...] = tuple(m for m in members if isinstance(m, Cycle))
    unknown = [m for m in members if not isinstance(m, (Job, Cycle))]
    if unknown:
        raise TypeError(f"wf({name!r}) accepts Job and Cycle values, got {type(unknown[0]).__name__}")
    return Workflow(name=name, jobs=jobs, cycles=cycles, on=tuple(on), span=_caller_span())


workflow = wf  # alias (avoid naming your function workflow if you use it)
