from __future__ import annotations

from collections import deque
from dataclasses import dataclass

from .logging_utils import log_event
from .trail_graph import TrailGraph


@dataclass(frozen=True)
class ConnectivityIndex:
    component_by_node: dict[str, int]
    component_sizes: dict[int, int]
    component_count: int
    largest_component_nodes: int
    largest_component_ratio: float

    def component_of(self, node: str) -> int | None:
        return self.component_by_node.get(node)

    def connected(self, a: str, b: str) -> bool:
        comp_a = self.component_by_node.get(a)
        if comp_a is None:
            return False
        return comp_a == self.component_by_node.get(b)


def _flood(graph: TrailGraph, seed: str, label: int, component_by_node: dict[str, int]) -> int:
    component_by_node[seed] = label
    frontier = deque([seed])
    size = 1
    while frontier:
        for neighbour in graph.adjacency.get(frontier.popleft(), ()):
            if neighbour in component_by_node:
                continue
            component_by_node[neighbour] = label
            frontier.append(neighbour)
            size += 1
    return size


def compute_connectivity(graph: TrailGraph, *, top_n: int = 5) -> ConnectivityIndex:
    """Label connected components over the unfiltered topology.

    Preferences never shrink this view; it only answers whether two nodes can
    ever be joined, before any solver work.
    """
    component_by_node: dict[str, int] = {}
    component_sizes: dict[int, int] = {}
    # every node enters the graph with at least one neighbour
    for seed in graph.adjacency:
        if seed not in component_by_node:
            label = len(component_sizes) + 1
            component_sizes[label] = _flood(graph, seed, label, component_by_node)

    largest = max(component_sizes.values(), default=0)
    index = ConnectivityIndex(
        component_by_node=component_by_node,
        component_sizes=component_sizes,
        component_count=len(component_sizes),
        largest_component_nodes=largest,
        largest_component_ratio=largest / len(graph.nodes) if graph.nodes else 0.0,
    )
    # Near-duplicate vertices just outside the quantization tolerance show up
    # here as extra small components.
    log_event(
        "trail_graph_components",
        component_count=index.component_count,
        largest_component_nodes=index.largest_component_nodes,
        largest_component_ratio=round(index.largest_component_ratio, 6),
        top_component_sizes=sorted(component_sizes.values(), reverse=True)[: max(1, int(top_n))],
        two_node_components=sum(1 for size in component_sizes.values() if size <= 2),
    )
    return index
