# dag.py
from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Dict, List, Sequence, Set, Tuple

from .errors import CycleDetected, DuplicateName, UnknownDependency
from .model import JobSpec


@dataclass(frozen=True)
class JobGraph:
    """
    Immutable dependency graph over job specifications.

    Nodes are addressed by a stable integer id (their position in the
    config). `needs[i]` lists the ids node i waits for, `dependents[i]`
    the ids waiting on node i.
    """
    specs: Tuple[JobSpec, ...]
    names: Tuple[str, ...]
    needs: Tuple[Tuple[int, ...], ...]
    dependents: Tuple[Tuple[int, ...], ...]

    def __len__(self) -> int:
        return len(self.specs)

    def index(self, name: str) -> int:
        return self.names.index(name)


def resolve_names(specs: Sequence[JobSpec]) -> List[str]:
    """
    Assign every spec a unique name.

    Explicit names must be unique. Specs without a name get
    action.describe(), suffixed with " #2", " #3", ... when that label
    is already taken by an explicit or earlier generated name.
    """
    taken: Set[str] = set()
    for spec in specs:
        if spec.name is None:
            continue
        if spec.name in taken:
            raise DuplicateName(name=spec.name)
        taken.add(spec.name)

    names: List[str] = []
    for spec in specs:
        if spec.name is not None:
            names.append(spec.name)
            continue

        base = spec.action.describe()
        name, n = base, 1
        while name in taken:
            n += 1
            name = f"{base} #{n}"
        taken.add(name)
        names.append(name)

    return names


def build_dag(specs: Sequence[JobSpec]) -> JobGraph:
    """
    Build a JobGraph from job specifications.

    Raises:
      - DuplicateName: two specs share an explicit name
      - UnknownDependency: a `needs` entry names no job
      - CycleDetected: the `needs` relation has a cycle (self-needs included)
    """
    names = resolve_names(specs)
    by_name: Dict[str, int] = {n: i for i, n in enumerate(names)}

    needs: List[Tuple[int, ...]] = []
    dependents: List[List[int]] = [[] for _ in names]

    for i, spec in enumerate(specs):
        deps: List[int] = []
        for dep in spec.needs:
            if dep not in by_name:
                raise UnknownDependency(job=names[i], dependency=dep, known=list(names))
            d = by_name[dep]
            deps.append(d)
            # Edge dep -> job (dep must finish before job)
            dependents[d].append(i)
        needs.append(tuple(deps))

    cycle = find_cycle(needs)
    if cycle:
        raise CycleDetected(cycle=[names[i] for i in cycle])

    return JobGraph(
        specs=tuple(specs),
        names=tuple(names),
        needs=tuple(needs),
        dependents=tuple(tuple(d) for d in dependents),
    )


WHITE, GRAY, BLACK = 0, 1, 2


def find_cycle(needs: Sequence[Sequence[int]]) -> List[int]:
    """
    Depth-first search with a recursion-stack marker.

    Returns the ids on the first cycle found, in the order the walk
    discovered them, or [] when the graph is acyclic. Iterative so deep
    chains do not hit the recursion limit.
    """
    color = [WHITE] * len(needs)

    for root in range(len(needs)):
        if color[root] != WHITE:
            continue

        stack: List[int] = [root]
        cursors: List[int] = [0]
        color[root] = GRAY

        while stack:
            node = stack[-1]
            if cursors[-1] < len(needs[node]):
                nxt = needs[node][cursors[-1]]
                cursors[-1] += 1
                if color[nxt] == GRAY:
                    return stack[stack.index(nxt):]
                if color[nxt] == WHITE:
                    color[nxt] = GRAY
                    stack.append(nxt)
                    cursors.append(0)
            else:
                color[node] = BLACK
                stack.pop()
                cursors.pop()

    return []


def topo_levels(graph: JobGraph) -> List[List[str]]:
    """
    Convert the graph into topological "levels" (stages).
    Jobs inside one stage do not depend on each other.
    """
    indeg = [len(n) for n in graph.needs]
    q = deque(i for i, d in enumerate(indeg) if d == 0)

    levels: List[List[str]] = []
    while q:
        level_size = len(q)
        level: List[str] = []

        for _ in range(level_size):
            node = q.popleft()
            level.append(graph.names[node])

            for child in graph.dependents[node]:
                indeg[child] -= 1
                if indeg[child] == 0:
                    q.append(child)

        levels.append(level)

    return levels
