"""
Execution graph elements produced by the deriver.

The graph is derived data: it is rebuilt from the document whenever the
workflow changes and is never edited in place.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import networkx as nx

from arazzoflow.model.errors import DanglingReference

INPUT_NODE = "input"
OUTPUT_NODE = "output"

# node kinds
INPUT = "input"
STEP = "step"
OUTPUT = "output"

# edge kinds
SEQUENTIAL = "sequential"
SUCCESS = "success"
FAILURE = "failure"
DATA = "data"
ENTRY = "input"     # input -> start step
EXIT = "output"     # end step -> output

CONTROL_KINDS = (ENTRY, SEQUENTIAL, SUCCESS, FAILURE, EXIT)


@dataclass(frozen=True)
class Node:
    id: str
    kind: str
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Edge:
    id: str
    source: str
    target: str
    kind: str
    label: Optional[str] = None
    invalid: bool = False
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TopoInfo:
    ordered: Tuple[str, ...] = ()
    start_step_ids: Tuple[str, ...] = ()
    end_step_ids: Tuple[str, ...] = ()
    unreachable_step_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ExecutionGraph:
    workflow_id: str
    nodes: Tuple[Node, ...]
    edges: Tuple[Edge, ...]
    topo: TopoInfo
    diagnostics: Tuple[DanglingReference, ...] = ()

    def node(self, node_id: str) -> Optional[Node]:
        for n in self.nodes:
            if n.id == node_id:
                return n
        return None

    def edges_of_kind(self, *kinds: str) -> List[Edge]:
        return [e for e in self.edges if e.kind in kinds]

    def edges_between(self, source: str, target: str) -> List[Edge]:
        return [e for e in self.edges if e.source == source and e.target == target]

    @property
    def has_output(self) -> bool:
        return self.node(OUTPUT_NODE) is not None

    def to_networkx(self) -> nx.MultiDiGraph:
        """MultiDiGraph view keyed by edge id (parallel data edges survive)."""
        G = nx.MultiDiGraph(workflow_id=self.workflow_id)
        for n in self.nodes:
            G.add_node(n.id, kind=n.kind, payload=n.payload)
        for e in self.edges:
            G.add_edge(e.source, e.target, key=e.id, kind=e.kind, label=e.label, invalid=e.invalid)
        return G

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflowId": self.workflow_id,
            "nodes": [{"id": n.id, "type": n.kind, "data": n.payload} for n in self.nodes],
            "edges": [
                {
                    "id": e.id,
                    "source": e.source,
                    "target": e.target,
                    "type": e.kind,
                    "label": e.label,
                    "invalid": e.invalid,
                    "data": e.data,
                }
                for e in self.edges
            ],
            "topo": {
                "ordered": list(self.topo.ordered),
                "startStepIds": list(self.topo.start_step_ids),
                "endStepIds": list(self.topo.end_step_ids),
                "unreachableStepIds": list(self.topo.unreachable_step_ids),
            },
            "diagnostics": [d.to_dict() for d in self.diagnostics],
        }
