# arazzoflow/graph/diagnostics.py

from typing import Any, Dict, List

import networkx as nx

from arazzoflow.graph.elements import CONTROL_KINDS, INPUT_NODE, STEP, ExecutionGraph


def control_digraph(graph: ExecutionGraph) -> nx.DiGraph:
    """Control-flow view (no data edges, no invalid self edges) of a derived graph."""
    G = nx.DiGraph()
    G.add_nodes_from(n.id for n in graph.nodes)
    for e in graph.edges:
        if e.kind in CONTROL_KINDS and not e.invalid:
            G.add_edge(e.source, e.target)
    return G


def unreachable_steps(graph: ExecutionGraph) -> List[str]:
    """Step nodes no control path from ``input`` reaches, in document order."""
    G = control_digraph(graph)
    reachable = nx.descendants(G, INPUT_NODE) if INPUT_NODE in G else set()
    return [n.id for n in graph.nodes if n.kind == STEP and n.id not in reachable]


def graph_metrics(graph: ExecutionGraph) -> Dict[str, Any]:
    """
    Plain numbers describing a derived graph:
      - node / edge counts (per edge kind)
      - acyclic over control edges (retry loops make it 0.0)
      - connected_ratio: largest weakly connected component / nodes
      - unreachable steps and dangling reference count
    """
    G = control_digraph(graph)
    n_nodes = len(G.nodes)
    steps = [n for n in graph.nodes if n.kind == STEP]

    by_kind: Dict[str, int] = {}
    for e in graph.edges:
        by_kind[e.kind] = by_kind.get(e.kind, 0) + 1

    # self loops are legal (retry) but still count as cycles
    acyclic = 1.0 if nx.is_directed_acyclic_graph(G) else 0.0
    largest_cc = max(nx.weakly_connected_components(G), key=len) if n_nodes else set()
    unreachable = unreachable_steps(graph)

    return {
        "n_nodes": n_nodes,
        "n_steps": len(steps),
        "n_edges": len(graph.edges),
        "edges_by_kind": by_kind,
        "acyclic": acyclic,
        "connected_ratio": len(largest_cc) / n_nodes if n_nodes else 0.0,
        "unreachable_steps": unreachable,
        "unreachable_ratio": len(unreachable) / len(steps) if steps else 0.0,
        "dangling_references": len(graph.diagnostics),
        "invalid_edges": sum(1 for e in graph.edges if e.invalid),
    }


def graph_issues(graph: ExecutionGraph) -> List[str]:
    """Human-readable issues: one [REFERENCE] line per dangling reference, then reachability."""
    issues = [d.message() for d in graph.diagnostics]

    unreachable = unreachable_steps(graph)
    if unreachable:
        issues.append(
            f"[REACHABILITY] Steps unreachable from workflow input: {unreachable} "
            "(no sequential or success path leads to them)"
        )
    if not any(n.kind == STEP for n in graph.nodes):
        issues.append(f"[STRUCTURE] Workflow '{graph.workflow_id}' has no steps")
    return issues
