# diagnostics.py
"""
Compiler diagnostics.

Every problem found while lowering a workflow is reported as a `Diagnostic`
and collected into one ordered list, so a single `phaseci check` shows all of
them at once. Codes are stable and never renamed.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional

from .model import Span


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass(frozen=True)
class DiagnosticCode:
    code: str
    severity: Severity
    description: str
    hint: Optional[str] = None


CYCLE_NO_TERMINATION = "CYCLE_NO_TERMINATION"
CYCLE_EMPTY_BODY = "CYCLE_EMPTY_BODY"
CYCLE_NESTED = "CYCLE_NESTED"
CYCLE_NO_KEY = "CYCLE_NO_KEY"
CYCLE_UNDECLARED = "CYCLE_UNDECLARED"
UNKNOWN_JOB_REFERENCE = "UNKNOWN_JOB_REFERENCE"
DUPLICATE_JOB = "DUPLICATE_JOB"
CYCLE_CROSS_REFERENCE = "CYCLE_CROSS_REFERENCE"
LOWERED_GRAPH_INVALID = "LOWERED_GRAPH_INVALID"
STATE_STORE_LOCAL = "STATE_STORE_LOCAL"


DIAGNOSTIC_CODES: Dict[str, DiagnosticCode] = {
    c.code: c
    for c in [
        DiagnosticCode(
            CYCLE_NO_TERMINATION,
            Severity.ERROR,
            "Cycle has no termination guarantee",
            "Add max_iters=N, or an until=guard(...) together with max_iters=N",
        ),
        DiagnosticCode(
            CYCLE_EMPTY_BODY,
            Severity.ERROR,
            "Cycle body has no jobs",
            "Add at least one job to the cycle body",
        ),
        DiagnosticCode(
            CYCLE_NESTED,
            Severity.ERROR,
            "Cycles cannot be nested",
            "Move the inner cycle out to the workflow level",
        ),
        DiagnosticCode(
            CYCLE_NO_KEY,
            Severity.WARNING,
            "Cycle has no concurrency key, a default was derived",
            "Set key=... to control which runs are serialized together",
        ),
        DiagnosticCode(
            CYCLE_UNDECLARED,
            Severity.ERROR,
            "Jobs depend on each other in a loop outside of a cycle block",
            "Break the dependency loop or declare the jobs inside cycle(...)",
        ),
        DiagnosticCode(
            UNKNOWN_JOB_REFERENCE,
            Severity.ERROR,
            "Job references an undeclared job",
            "Check the spelling in needs=/consumes=",
        ),
        DiagnosticCode(
            DUPLICATE_JOB,
            Severity.ERROR,
            "Job name declared more than once",
            "Job names must be unique across the workflow, cycle bodies included",
        ),
        DiagnosticCode(
            CYCLE_CROSS_REFERENCE,
            Severity.ERROR,
            "A cycle body job depends on a job inside another cycle",
            "Depend on an ordinary job that runs after the other cycle, or merge the two cycles",
        ),
        DiagnosticCode(
            LOWERED_GRAPH_INVALID,
            Severity.ERROR,
            "The lowered job graph is not a valid DAG",
            "Report this together with the workflow file; it is a phaseci bug",
        ),
        DiagnosticCode(
            STATE_STORE_LOCAL,
            Severity.INFO,
            "Iteration state is stored on the runner's own disk",
            "Set PHASECI_STATE_BACKEND=redis or sql (or an absolute path on a shared volume) so state survives between runs",
        ),
    ]
}


@dataclass(frozen=True)
class Diagnostic:
    code: str
    severity: Severity
    message: str
    span: Span = field(default_factory=Span)
    hint: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR

    def to_dict(self) -> dict:
        d = {
            "code": self.code,
            "severity": self.severity.value,
            "message": self.message,
            "span": {"file": self.span.file, "line": self.span.line},
        }
        if self.hint:
            d["hint"] = self.hint
        return d


def _make(code: str, severity: Severity, message: str, span: Span | None, hint: str | None) -> Diagnostic:
    if hint is None and code in DIAGNOSTIC_CODES:
        hint = DIAGNOSTIC_CODES[code].hint
    return Diagnostic(code=code, severity=severity, message=message, span=span or Span(), hint=hint)


def error(code: str, message: str, span: Span | None = None, hint: str | None = None) -> Diagnostic:
    return _make(code, Severity.ERROR, message, span, hint)


def warning(code: str, message: str, span: Span | None = None, hint: str | None = None) -> Diagnostic:
    return _make(code, Severity.WARNING, message, span, hint)


def info(code: str, message: str, span: Span | None = None, hint: str | None = None) -> Diagnostic:
    return _make(code, Severity.INFO, message, span, hint)


def has_errors(diagnostics: Iterable[Diagnostic]) -> bool:
    return any(d.is_error for d in diagnostics)


def count_diagnostics(diagnostics: Iterable[Diagnostic]) -> Dict[str, int]:
    counts = {s.value: 0 for s in Severity}
    for d in diagnostics:
        counts[d.severity.value] += 1
    return counts


def format_diagnostic(d: Diagnostic) -> str:
    """
    Render one diagnostic:

        workflow.py:12: error[CYCLE_EMPTY_BODY]: Cycle 'refine' has no jobs
        hint: Add at least one job to the cycle body
    """
    lines = [f"{d.span}: {d.severity.value}[{d.code}]: {d.message}"]
    if d.hint:
        lines.append(f"hint: {d.hint}")
    return "\n".join(lines)


def format_summary(diagnostics: List[Diagnostic]) -> str:
    counts = count_diagnostics(diagnostics)
    parts = []
    for sev in ("error", "warning", "info"):
        n = counts[sev]
        if n:
            parts.append(f"{n} {sev}{'s' if n != 1 else ''}")
    return ", ".join(parts) if parts else "no problems"
