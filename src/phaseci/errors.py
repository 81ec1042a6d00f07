# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from .model import Span


class CompileError(Exception):
    """Base class for errors that stop compilation of a workflow."""


@dataclass
class UnknownJobReference(CompileError):
    """A `needs` or `consumes` entry names a job that is not declared."""
    job: str
    reference: str
    known: List[str] = field(default_factory=list)
    span: Span = field(default_factory=Span)

    def __str__(self) -> str:
        return (
            f"Job '{self.job}' depends on missing job '{self.reference}'. "
            f"Known jobs: {sorted(self.known)}"
        )


@dataclass
class DuplicateJobName(CompileError):
    name: str
    span: Span = field(default_factory=Span)

    def __str__(self) -> str:
        return f"Duplicate job name: {self.name}"


@dataclass
class GraphCycleError(CompileError):
    """A graph that must be a DAG still has a cycle."""
    stuck: List[str]

    def __str__(self) -> str:
        return f"DAG has a cycle. Stuck nodes: {self.stuck}"


# ---------------------------------------------------------------------
# Runtime errors (raised inside the synthesized jobs)
# ---------------------------------------------------------------------

class StateError(Exception):
    """Base class for iteration-state store failures."""


@dataclass
class StateNotFound(StateError):
    """Nothing was stored for (key, invocation). Not the same as empty state."""
    key: str
    invocation_id: str

    def __str__(self) -> str:
        return f"No iteration state for key={self.key!r} invocation={self.invocation_id!r}"


@dataclass
class StateCorrupted(StateError):
    key: str
    invocation_id: str
    reason: str

    def __str__(self) -> str:
        return f"Iteration state for key={self.key!r} invocation={self.invocation_id!r} is corrupted: {self.reason}"


@dataclass
class GuardError(Exception):
    """The termination guard exited with something other than 0 or 1."""
    code: str
    exit_code: int
    stderr: str = ""

    def __str__(self) -> str:
        msg = f"guard failed (exit={self.exit_code}): {self.code}"
        if self.stderr:
            msg += f"\n{self.stderr.strip()}"
        return msg
