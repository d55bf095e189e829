from __future__ import annotations

import heapq
from collections.abc import Callable
from dataclasses import dataclass
from math import inf, isfinite

from .trail_graph import TrailEdge, TrailGraph

WeightFn = Callable[[TrailEdge], float]


class PathNotFoundError(ValueError):
    pass


@dataclass(frozen=True)
class PathResult:
    nodes: tuple[str, ...]
    cost: float


@dataclass(frozen=True)
class ShortestPathTree:
    start: str
    distances: dict[str, float]
    predecessors: dict[str, str]
    explored: int

    def distance_to(self, node: str) -> float:
        return self.distances.get(node, inf)

    def reached(self, node: str) -> bool:
        return isfinite(self.distance_to(node))

    def path_to(self, node: str) -> PathResult:
        if not self.reached(node):
            raise PathNotFoundError("no path")
        path = [node]
        current = node
        while current != self.start:
            current = self.predecessors[current]
            path.append(current)
        path.reverse()
        return PathResult(nodes=tuple(path), cost=self.distances[node])


def dijkstra(
    graph: TrailGraph,
    start: str,
    weight: WeightFn,
    *,
    target: str | None = None,
) -> ShortestPathTree:
    """Single-source shortest paths over non-negative edge weights.

    Edges weighted ``inf`` are skipped for this search only. With ``target``
    set, the search stops as soon as the target is settled.
    """
    if start not in graph.nodes:
        raise PathNotFoundError("start not in graph")
    distances: dict[str, float] = {start: 0.0}
    predecessors: dict[str, str] = {}
    settled: set[str] = set()
    heap: list[tuple[float, str]] = [(0.0, start)]
    while heap:
        cost, node = heapq.heappop(heap)
        if node in settled:
            continue
        settled.add(node)
        if node == target:
            break
        for edge in graph.edges_from(node):
            edge_cost = float(weight(edge))
            if not isfinite(edge_cost):
                continue
            if edge_cost < 0.0:
                raise ValueError(f"negative edge weight {edge_cost} on {edge.u}-{edge.v}")
            nxt = edge.other(node)
            if nxt in settled:
                continue
            new_cost = cost + edge_cost
            if new_cost < distances.get(nxt, inf):
                distances[nxt] = new_cost
                predecessors[nxt] = node
                heapq.heappush(heap, (new_cost, nxt))
    return ShortestPathTree(
        start=start,
        distances=distances,
        predecessors=predecessors,
        explored=len(settled),
    )
