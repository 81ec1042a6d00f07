# scc.py
"""
Strongly connected components of the job graph (Tarjan).

The walk uses an explicit work stack instead of recursion, so a long chain of
`needs` cannot hit the interpreter's recursion limit.

Components come out in reverse topological order of the condensation. Edges
point from a job to its dependencies, so every component is emitted after the
components it depends on: reading the list front to back is a valid execution
order.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Set, Tuple

from .dag import DependencyGraph


@dataclass(frozen=True)
class SCC:
    members: Tuple[str, ...]
    is_cycle: bool

    def __contains__(self, name: object) -> bool:
        return name in self.members


@dataclass(frozen=True)
class GraphAnalysis:
    graph: DependencyGraph
    sccs: Tuple[SCC, ...]
    has_cycles: bool
    topological_order: Tuple[str, ...]

    @property
    def cycles(self) -> Tuple[SCC, ...]:
        return tuple(s for s in self.sccs if s.is_cycle)


def find_sccs(graph: DependencyGraph) -> List[SCC]:
    position = {name: i for i, name in enumerate(graph.vertices)}
    index: Dict[str, int] = {}
    lowlink: Dict[str, int] = {}
    on_stack: Set[str] = set()
    stack: List[str] = []
    sccs: List[SCC] = []
    counter = 0

    for root in graph.vertices:
        if root in index:
            continue

        # (vertex, next edge to look at)
        work: List[Tuple[str, int]] = [(root, 0)]
        while work:
            v, i = work[-1]
            if i == 0:
                index[v] = lowlink[v] = counter
                counter += 1
                stack.append(v)
                on_stack.add(v)

            deps = graph.edges.get(v, ())
            if i < len(deps):
                work[-1] = (v, i + 1)
                w = deps[i]
                if w not in index:
                    work.append((w, 0))
                elif w in on_stack:
                    lowlink[v] = min(lowlink[v], index[w])
                continue

            work.pop()
            if work:
                parent = work[-1][0]
                lowlink[parent] = min(lowlink[parent], lowlink[v])

            if lowlink[v] == index[v]:
                popped: List[str] = []
                while True:
                    w = stack.pop()
                    on_stack.discard(w)
                    popped.append(w)
                    if w == v:
                        break
                members = tuple(sorted(popped, key=position.__getitem__))
                is_cycle = len(members) > 1 or graph.has_edge(v, v)
                sccs.append(SCC(members=members, is_cycle=is_cycle))

    return sccs


def analyze(graph: DependencyGraph) -> GraphAnalysis:
    sccs = find_sccs(graph)
    order = tuple(name for scc in sccs for name in scc.members)
    return GraphAnalysis(
        graph=graph,
        sccs=tuple(sccs),
        has_cycles=any(s.is_cycle for s in sccs),
        topological_order=order,
    )
