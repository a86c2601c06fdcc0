"""Dependency-graph operations over plan steps.

Edges point from a step to the steps it depends on. Dependency ids that do
not name a step in the same set are ignored by every function here and
dropped by ``prune_dependencies``.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence

import networkx as nx

from codeplan.planning.models import Step


def build_graph(steps: Sequence[Step]) -> nx.DiGraph:
    """Build a DiGraph with an edge dependency -> dependent for each known dependency."""
    graph = nx.DiGraph()
    ids = {s.id for s in steps}
    for step in steps:
        graph.add_node(step.id, type=step.type.value)
    for step in steps:
        for dep in step.dependencies:
            if dep in ids:
                graph.add_edge(dep, step.id)
    return graph


def find_cycle(steps: Sequence[Step]) -> list[str] | None:
    """Return one dependency cycle as a list of step ids, or None.

    Iterative DFS with an explicit recursion stack: reaching a node that is
    still on the stack is a back-edge, and the stack slice from that node is
    the cycle.
    """
    deps = _dependency_map(steps)
    visited: set[str] = set()

    for root in deps:
        if root in visited:
            continue

        path: list[str] = [root]
        on_path: set[str] = {root}
        iterators: list[Iterator[str]] = [iter(deps[root])]
        visited.add(root)

        while iterators:
            advanced = False
            for dep in iterators[-1]:
                if dep in on_path:
                    return path[path.index(dep):] + [dep]
                if dep not in visited:
                    visited.add(dep)
                    path.append(dep)
                    on_path.add(dep)
                    iterators.append(iter(deps[dep]))
                    advanced = True
                    break
            if not advanced:
                iterators.pop()
                on_path.discard(path.pop())

    return None


def has_cycle(steps: Sequence[Step]) -> bool:
    return find_cycle(steps) is not None


def unknown_dependencies(steps: Sequence[Step]) -> dict[str, list[str]]:
    """Map step id -> dependency ids that name no step in `steps`."""
    ids = {s.id for s in steps}
    dangling: dict[str, list[str]] = {}
    for step in steps:
        missing = [d for d in step.dependencies if d not in ids]
        if missing:
            dangling[step.id] = missing
    return dangling


def parallel_groups(steps: Sequence[Step]) -> dict[frozenset[str], list[str]]:
    """Group parallel-eligible steps by their exact, non-empty dependency set."""
    groups: dict[frozenset[str], list[str]] = {}
    for step in steps:
        if step.can_parallelize and step.dependencies:
            groups.setdefault(frozenset(step.dependencies), []).append(step.id)
    return groups


def reorder_steps(steps: Sequence[Step]) -> list[Step]:
    """Topologically order steps, keeping parallel-eligible siblings adjacent.

    Placement is depth-first, starting from zero-dependency steps in their
    original order. Right after a step is placed, every parallel-eligible
    step with the same dependency set is placed next to it. Steps never run
    concurrently; the grouping only keeps them together in the sequence.

    The input must be acyclic (see ``find_cycle``).
    """
    by_id: dict[str, Step] = {}
    for step in steps:
        by_id.setdefault(step.id, step)

    groups = parallel_groups(steps)
    ordered: list[Step] = []
    placed: set[str] = set()

    def place(step: Step) -> None:
        ordered.append(step)
        placed.add(step.id)
        key = frozenset(step.dependencies)
        for sibling_id in groups.get(key, []) if key else []:
            if sibling_id not in placed:
                ordered.append(by_id[sibling_id])
                placed.add(sibling_id)

    def visit(root: Step) -> None:
        if root.id in placed:
            return
        stack: list[tuple[Step, Iterator[str]]] = [(root, iter(root.dependencies))]
        on_stack = {root.id}
        while stack:
            step, pending = stack[-1]
            descended = False
            for dep_id in pending:
                dep = by_id.get(dep_id)
                if dep is not None and dep_id not in placed and dep_id not in on_stack:
                    stack.append((dep, iter(dep.dependencies)))
                    on_stack.add(dep_id)
                    descended = True
                    break
            if descended:
                continue
            stack.pop()
            on_stack.discard(step.id)
            if step.id not in placed:
                place(step)

    for step in steps:
        if not step.dependencies:
            visit(step)
    for step in steps:
        visit(step)

    return ordered


def prune_dependencies(steps: Sequence[Step]) -> None:
    """Drop dependency ids that do not name a step in `steps` (in place)."""
    ids = {s.id for s in steps}
    for step in steps:
        step.dependencies = [d for d in step.dependencies if d in ids and d != step.id]


def _dependency_map(steps: Sequence[Step]) -> dict[str, list[str]]:
    ids = {s.id for s in steps}
    deps: dict[str, list[str]] = {}
    for step in steps:
        known = [d for d in step.dependencies if d in ids]
        deps.setdefault(step.id, []).extend(known)
    return deps
