# termination.py
from __future__ import annotations

from typing import List

from .diagnostics import (
    CYCLE_EMPTY_BODY,
    CYCLE_NESTED,
    CYCLE_NO_TERMINATION,
    Diagnostic,
    error,
    warning,
)
from .model import Cycle


STRUCTURAL_CODES = frozenset({CYCLE_EMPTY_BODY, CYCLE_NESTED})


def is_unsafe(cycle: Cycle) -> bool:
    """True when nothing bounds the number of iterations."""
    return cycle.max_iters is None and cycle.until is None


def validate(cycle: Cycle) -> List[Diagnostic]:
    """
    Check that a cycle is bounded and well formed.

    Only reports; the cycle is left untouched. An unsafe cycle (no cap, no
    guard) is still lowered so the rest of the workflow gets checked too.
    """
    diagnostics: List[Diagnostic] = []

    if is_unsafe(cycle):
        diagnostics.append(
            error(
                CYCLE_NO_TERMINATION,
                f"Cycle '{cycle.name}' has neither 'max_iters' nor 'until'; it would never stop",
                cycle.span,
            )
        )
    elif cycle.until is not None and cycle.max_iters is None:
        diagnostics.append(
            warning(
                CYCLE_NO_TERMINATION,
                f"Cycle '{cycle.name}' has 'until' but no 'max_iters'; "
                "consider adding a maximum iteration limit as a safety rail",
                cycle.until.span,
                hint="Add max_iters=N to prevent infinite loops if the guard has a bug",
            )
        )

    if not cycle.body:
        diagnostics.append(
            error(CYCLE_EMPTY_BODY, f"Cycle '{cycle.name}' has no jobs in its body", cycle.span)
        )

    for inner in cycle.nested:
        diagnostics.append(
            error(
                CYCLE_NESTED,
                f"Cycle '{inner.name}' is nested inside cycle '{cycle.name}'",
                inner.span,
            )
        )

    return diagnostics


def is_lowerable(diagnostics: List[Diagnostic]) -> bool:
    """A cycle can be lowered unless it has a structural error."""
    return not any(d.code in STRUCTURAL_CODES and d.is_error for d in diagnostics)
