# scheduling_service/utils/dependency_graph.py
"""
Graph algorithms over the session dependency graph (parent -> dependent).

Pure functions on a networkx DiGraph; the prerequisite validation service
builds the graph from SessionDependency rows and maps results to schemas.
"""

from typing import Dict, Iterable, List, Optional, Set, Tuple

import networkx as nx


def build_dependency_graph(
    edges: Iterable[Tuple[str, str]], nodes: Iterable[str] = ()
) -> nx.DiGraph:
    G = nx.DiGraph()
    for node in nodes:
        G.add_node(node)
    for parent, dependent in edges:
        G.add_edge(parent, dependent)
    return G


def _canonical_rotation(cycle: List[str]) -> Tuple[str, ...]:
    """Rotate a cycle so it starts at its smallest id; keeps direction."""
    start = cycle.index(min(cycle))
    return tuple(cycle[start:] + cycle[:start])


def find_cycles(G: nx.DiGraph) -> List[List[str]]:
    """
    Every elementary cycle of the graph, including cycles that share nodes.

    Cycles are returned in canonical rotation, deduplicated and sorted, so
    the result does not depend on node insertion order.
    """
    found: Set[Tuple[str, ...]] = {_canonical_rotation(cycle) for cycle in nx.simple_cycles(G)}
    return [list(cycle) for cycle in sorted(found)]


def shortest_path(G: nx.DiGraph, source: str, target: str) -> Optional[List[str]]:
    """Breadth-first shortest path, or None when target is unreachable."""
    if source not in G or target not in G:
        return None
    try:
        return nx.shortest_path(G, source, target)
    except nx.NetworkXNoPath:
        return None


def degrees(G: nx.DiGraph) -> Dict[str, Tuple[int, int]]:
    """session_id -> (fan_in, fan_out)."""
    return {node: (G.in_degree(node), G.out_degree(node)) for node in G.nodes}


def roots_and_leaves(G: nx.DiGraph) -> Tuple[List[str], List[str], List[str]]:
    """
    Roots depend on nothing but have dependents, leaves have no dependents
    but depend on something; isolated sessions take part in no edge.
    """
    roots, leaves, isolated = [], [], []
    for node in sorted(G.nodes):
        fan_in, fan_out = G.in_degree(node), G.out_degree(node)
        if fan_in == 0 and fan_out == 0:
            isolated.append(node)
        elif fan_in == 0:
            roots.append(node)
        elif fan_out == 0:
            leaves.append(node)
    return roots, leaves, isolated


def longest_chain(G: nx.DiGraph) -> List[str]:
    """
    Longest dependency chain over the acyclic part of the graph.
    Sessions on a cycle (and self loops) are left out.
    """
    cyclic: Set[str] = set()
    for component in nx.strongly_connected_components(G):
        if len(component) > 1:
            cyclic.update(component)
    cyclic.update(node for node in G.nodes if G.has_edge(node, node))

    acyclic = G.subgraph(node for node in G.nodes if node not in cyclic)
    if acyclic.number_of_edges() == 0:
        return []
    return nx.dag_longest_path(acyclic, topo_order=list(nx.lexicographical_topological_sort(acyclic)))
