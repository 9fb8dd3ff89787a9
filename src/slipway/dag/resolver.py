"""Stage graph — an arena of stage records with adjacency sets and a status each."""

from __future__ import annotations
from collections import deque
from dataclasses import dataclass, field

from slipway.core.errors import SlipwayError
from slipway.pipeline.types import StageStatus


@dataclass
class StageNode:
    """A stage record in the graph."""
    name: str
    upstream: set[str] = field(default_factory=set)
    downstream: set[str] = field(default_factory=set)
    status: StageStatus = StageStatus.PENDING


class CycleError(SlipwayError):
    """Raised when a dependency cycle is detected."""

    code = "dependency_cycle"

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(f"Dependency cycle detected: {' → '.join(cycle)}")


class StageGraph:
    """Dependency graph of stages within a single run."""

    def __init__(self):
        self._nodes: dict[str, StageNode] = {}

    def add_stage(self, name: str, needs: list[str] | None = None) -> StageNode:
        """Register a stage, optionally with the stages it needs."""
        if name not in self._nodes:
            self._nodes[name] = StageNode(name=name)
        for dep in needs or []:
            self.add_dependency(upstream=dep, downstream=name)
        return self._nodes[name]

    def add_dependency(self, upstream: str, downstream: str) -> None:
        """Add an edge: downstream needs upstream."""
        self.add_stage(upstream)
        self.add_stage(downstream)
        self._nodes[upstream].downstream.add(downstream)
        self._nodes[downstream].upstream.add(upstream)

    @property
    def nodes(self) -> dict[str, StageNode]:
        return self._nodes

    def __contains__(self, name: str) -> bool:
        return name in self._nodes

    def __getitem__(self, name: str) -> StageNode:
        return self._nodes[name]

    def status(self, name: str) -> StageStatus:
        return self._nodes[name].status

    def set_status(self, name: str, status: StageStatus) -> None:
        self._nodes[name].status = status

    def statuses(self) -> dict[str, str]:
        return {name: node.status.value for name, node in self._nodes.items()}

    def get_upstream(self, name: str) -> set[str]:
        """All transitive upstream dependencies."""
        visited = set()
        queue = deque([name])
        while queue:
            node = queue.popleft()
            if node in visited or node not in self._nodes:
                continue
            visited.add(node)
            queue.extend(self._nodes[node].upstream)
        visited.discard(name)
        return visited

    def is_eligible(self, name: str) -> bool:
        """A stage may start only once every direct dependency has succeeded."""
        return all(
            self._nodes[dep].status == StageStatus.SUCCEEDED
            for dep in self._nodes[name].upstream
        )

    def is_blocked(self, name: str) -> bool:
        """True when some dependency ended without succeeding."""
        return any(
            self._nodes[dep].status.terminal and self._nodes[dep].status != StageStatus.SUCCEEDED
            for dep in self._nodes[name].upstream
        )

    def detect_cycles(self) -> list[str] | None:
        """Detect cycles using DFS. Returns cycle path or None."""
        WHITE, GRAY, BLACK = 0, 1, 2
        color = {n: WHITE for n in self._nodes}
        parent = {}

        def dfs(node: str) -> list[str] | None:
            color[node] = GRAY
            for child in sorted(self._nodes[node].downstream):
                if color[child] == GRAY:
                    cycle = [child, node]
                    current = node
                    while current in parent and parent[current] != child:
                        current = parent[current]
                        cycle.append(current)
                    cycle.reverse()
                    return cycle
                if color[child] == WHITE:
                    parent[child] = node
                    found = dfs(child)
                    if found:
                        return found
            color[node] = BLACK
            return None

        for node in sorted(self._nodes):
            if color[node] == WHITE:
                found = dfs(node)
                if found:
                    return found
        return None

    def topological_sort(self) -> list[str]:
        """Stage names in dependency order (upstream first).

        Raises CycleError if a cycle is detected.
        """
        return [name for group in self.parallel_groups() for name in group]

    def parallel_groups(self) -> list[list[str]]:
        """Execution waves — each wave starts only after the previous one ends."""
        cycle = self.detect_cycles()
        if cycle:
            raise CycleError(cycle)

        in_degree = {n: len(self._nodes[n].upstream) for n in self._nodes}
        current_group = [n for n, d in in_degree.items() if d == 0]
        groups = []

        while current_group:
            groups.append(sorted(current_group))
            next_group = []
            for node in current_group:
                for child in self._nodes[node].downstream:
                    in_degree[child] -= 1
                    if in_degree[child] == 0:
                        next_group.append(child)
            current_group = next_group

        return groups

    def to_dict(self) -> dict:
        """Serialize the graph for JSON output."""
        return {
            "stages": {
                name: {"needs": sorted(node.upstream), "status": node.status.value}
                for name, node in sorted(self._nodes.items())
            },
            "groups": self.parallel_groups(),
        }
