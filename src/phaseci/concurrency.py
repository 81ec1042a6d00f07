# concurrency.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from .diagnostics import CYCLE_NO_KEY, Diagnostic, warning
from .model import Cycle


# Overlapping runs of the same loop wait for each other. Cancelling one would
# silently drop an iteration.
QUEUE_POLICY = "serialize-no-cancel"


@dataclass(frozen=True)
class ConcurrencyConfig:
    group: str
    queue_policy: str = QUEUE_POLICY


@dataclass(frozen=True)
class ConcurrencyBinding:
    key: str
    config: ConcurrencyConfig
    diagnostics: List[Diagnostic] = field(default_factory=list)

    @property
    def defaulted(self) -> bool:
        return any(d.code == CYCLE_NO_KEY for d in self.diagnostics)


def default_key(workflow_name: str, cycle_name: str) -> str:
    return f"{workflow_name}-{cycle_name}"


def bind(cycle: Cycle, workflow_name: str) -> ConcurrencyBinding:
    """
    Pick the serialization key of a cycle.

    An explicit key is used verbatim (it may hold scheduler expressions).
    Otherwise the key is derived from the workflow and cycle names, which is
    unique per cycle, and a warning is emitted.
    """
    diagnostics: List[Diagnostic] = []
    if cycle.key:
        key = cycle.key
    else:
        key = default_key(workflow_name, cycle.name)
        diagnostics.append(
            warning(
                CYCLE_NO_KEY,
                f"Cycle '{cycle.name}' has no concurrency key; using '{key}'",
                cycle.span,
            )
        )
    return ConcurrencyBinding(key=key, config=ConcurrencyConfig(group=key), diagnostics=diagnostics)
