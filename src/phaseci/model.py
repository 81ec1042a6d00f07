# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple, Union


@dataclass(frozen=True)
class Span:
    """Where something was declared (file + line of the DSL call)."""
    file: str | None = None
    line: int = 0

    def __str__(self) -> str:
        return f"{self.file or '<workflow>'}:{self.line}"


@dataclass(frozen=True)
class Step:
    """A single command (step) inside a CI job."""
    name: str
    run: str
    cwd: str | None = None
    env: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ArtifactRef:
    """An artifact consumed by a job: producer job name + artifact name."""
    job: str
    artifact: str


@dataclass(frozen=True)
class Job:
    """
    A CI job: steps + dependencies.

    Immutable once built. Dependencies come from two places:
      - `needs`: explicit ordering edges
      - `consumes`: artifacts produced by another job (implicit edge to the producer)
    """
    name: str
    steps: Tuple[Step, ...]
    needs: Tuple[str, ...] = ()
    consumes: Tuple[ArtifactRef, ...] = ()

    env: Dict[str, str] = field(default_factory=dict)
    outputs: Dict[str, str] = field(default_factory=dict)
    runs_on: Optional[str] = None
    timeout_minutes: Optional[int] = None

    span: Span = field(default_factory=Span, compare=False)

    @property
    def dependencies(self) -> Tuple[str, ...]:
        # needs first, then producers of consumed artifacts; order kept, no dupes
        deps: list[str] = []
        for name in list(self.needs) + [ref.job for ref in self.consumes]:
            if name not in deps:
                deps.append(name)
        return tuple(deps)


@dataclass(frozen=True)
class Guard:
    """
    Termination predicate of a cycle.

    `code` is a shell command run by the scheduler after each iteration:
    exit 0 means "done", exit 1 means "keep going". It is never parsed here.
    """
    code: str
    span: Span = field(default_factory=Span, compare=False)


@dataclass(frozen=True)
class Cycle:
    """
    A declared loop: its body runs once per phase until `until` is satisfied
    or `max_iters` phases have run.
    """
    name: str
    body: Tuple[Union[Job, "Cycle"], ...]
    max_iters: Optional[int] = None
    until: Optional[Guard] = None
    key: Optional[str] = None

    span: Span = field(default_factory=Span, compare=False)

    def __post_init__(self) -> None:
        if self.max_iters is not None:
            if isinstance(self.max_iters, bool) or not isinstance(self.max_iters, int) or self.max_iters < 1:
                raise ValueError(
                    f"cycle({self.name!r}): max_iters must be a positive integer, got {self.max_iters!r}"
                )

    @property
    def jobs(self) -> Tuple[Job, ...]:
        """Concrete body jobs (nested cycles excluded)."""
        return tuple(m for m in self.body if isinstance(m, Job))

    @property
    def nested(self) -> Tuple["Cycle", ...]:
        return tuple(m for m in self.body if isinstance(m, Cycle))


@dataclass(frozen=True)
class Workflow:
    """A whole workflow: trigger events, ordinary jobs and cycle blocks."""
    name: str
    jobs: Tuple[Job, ...] = ()
    cycles: Tuple[Cycle, ...] = ()
    on: Tuple[str, ...] = ("push",)

    span: Span = field(default_factory=Span, compare=False)

    def cycle_of(self, job_name: str) -> Optional[Cycle]:
        """Cycle whose body declares `job_name`, if any."""
        for c in self.cycles:
            if any(j.name == job_name for j in c.jobs):
                return c
        return None
