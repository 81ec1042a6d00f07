# dag.py
from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Sequence, Set, Tuple

from .errors import DuplicateJobName, GraphCycleError, UnknownJobReference
from .model import Cycle, Job

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class DependencyGraph:
    """
    Job dependency graph.

    `edges[name]` lists the jobs `name` depends on (edge job -> dependency),
    in declaration order. Every endpoint is a vertex.
    """
    vertices: Tuple[str, ...]
    edges: Dict[str, Tuple[str, ...]]
    jobs: Dict[str, Job] = field(default_factory=dict)

    def has_edge(self, src: str, dst: str) -> bool:
        return dst in self.edges.get(src, ())

    def dependents(self, name: str) -> List[str]:
        return [v for v in self.vertices if name in self.edges[v]]


def _iteration_back_edges(cycle: Cycle) -> List[Tuple[str, str]]:
    """
    Edges closing the loop of a cycle body: the next iteration's entry jobs
    depend on this iteration's exit jobs. A one-job body becomes a self-loop.
    """
    body = cycle.jobs
    names = {j.name for j in body}
    if not names:
        return []

    entries = [j.name for j in body if not any(d in names for d in j.dependencies)]
    exits = [
        j.name for j in body
        if not any(j.name in other.dependencies for other in body if other.name != j.name)
    ]
    return [(entry, exit_) for entry in entries for exit_ in exits]


def build_graph(jobs: Iterable[Job], cycles: Iterable[Cycle] = ()) -> DependencyGraph:
    """
    Build the dependency graph of a workflow.

    Vertices are the ordinary jobs plus the jobs of every cycle body. Jobs of a
    nested cycle are left out. Raises on duplicate names or dangling
    references; no partial graph is ever returned.
    """
    jobs = list(jobs)
    cycles = list(cycles)

    all_jobs: List[Job] = list(jobs)
    for c in cycles:
        all_jobs.extend(c.jobs)

    by_name: Dict[str, Job] = {}
    for j in all_jobs:
        if j.name in by_name:
            raise DuplicateJobName(name=j.name, span=j.span)
        by_name[j.name] = j

    edges: Dict[str, List[str]] = {name: [] for name in by_name}

    for j in all_jobs:
        for dep in j.dependencies:
            if dep not in by_name:
                raise UnknownJobReference(
                    job=j.name, reference=dep, known=list(by_name), span=j.span
                )
            if dep not in edges[j.name]:
                edges[j.name].append(dep)

    for c in cycles:
        for src, dst in _iteration_back_edges(c):
            if dst not in edges[src]:
                edges[src].append(dst)

    log.debug("built graph: %d jobs, %d edges", len(by_name), sum(len(v) for v in edges.values()))
    return DependencyGraph(
        vertices=tuple(by_name),
        edges={k: tuple(v) for k, v in edges.items()},
        jobs=by_name,
    )


def topo_levels(edges: Mapping[str, Sequence[str]]) -> List[List[str]]:
    """
    Convert a DAG (job -> dependencies) into topological "levels".
    Each level only depends on earlier levels.
    """
    adj: Dict[str, Set[str]] = {n: set() for n in edges}
    indeg: Dict[str, int] = {n: 0 for n in edges}
    for name, deps in edges.items():
        for dep in set(deps):
            if dep not in adj:
                raise UnknownJobReference(job=name, reference=dep, known=list(edges))
            # Edge dep -> name (dep must run before name)
            adj[dep].add(name)
            indeg[name] += 1

    q = deque(sorted([n for n, d in indeg.items() if d == 0]))

    levels: List[List[str]] = []
    processed = 0

    while q:
        level_size = len(q)
        level: List[str] = []

        for _ in range(level_size):
            node = q.popleft()
            level.append(node)
            processed += 1

            for child in sorted(adj.get(node, set())):
                indeg[child] -= 1
                if indeg[child] == 0:
                    q.append(child)

        levels.append(level)

    if processed != len(indeg):
        remaining = sorted([n for n, d in indeg.items() if d > 0])
        raise GraphCycleError(stuck=remaining)

    return levels
