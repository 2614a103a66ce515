"""
Layout engine: assigns 2-D positions to the nodes of a derived graph.

Positions are computed along two axes:
  * primary: the flow direction, one ``pitch`` per topological rank
  * lateral: the branch offset, one ``lateral_pitch`` per branch depth

``direction`` only decides how (primary, lateral) maps onto (x, y).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Tuple

import networkx as nx

from arazzoflow.graph.elements import (
    ENTRY,
    FAILURE,
    INPUT_NODE,
    OUTPUT,
    SEQUENTIAL,
    STEP,
    SUCCESS,
    ExecutionGraph,
)
from arazzoflow.utils.logger import get_logger

log = get_logger("graph.layout")

VERTICAL = "vertical"
HORIZONTAL = "horizontal"
DIRECTIONS = (VERTICAL, HORIZONTAL)


@dataclass(frozen=True)
class Position:
    x: float
    y: float

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y}


@dataclass(frozen=True)
class LayoutConfig:
    direction: str = VERTICAL
    pitch: float = 140.0
    lateral_pitch: float = 320.0
    anchor_x: float = 400.0
    anchor_y: float = 0.0

    def __post_init__(self):
        if self.direction not in DIRECTIONS:
            raise ValueError(f"direction must be one of {DIRECTIONS}, got {self.direction!r}")

    def place(self, primary: float, lateral: float) -> Position:
        if self.direction == HORIZONTAL:
            return Position(self.anchor_x + primary, self.anchor_y + lateral)
        return Position(self.anchor_x + lateral, self.anchor_y + primary)


def layout_from_env(base: Optional[LayoutConfig] = None) -> LayoutConfig:
    """Overlay ARAZZOFLOW_LAYOUT_{DIRECTION,PITCH,LATERAL_PITCH} on ``base``."""
    base = base or LayoutConfig()
    return LayoutConfig(
        direction=os.getenv("ARAZZOFLOW_LAYOUT_DIRECTION", base.direction).lower(),
        pitch=float(os.getenv("ARAZZOFLOW_LAYOUT_PITCH", base.pitch)),
        lateral_pitch=float(os.getenv("ARAZZOFLOW_LAYOUT_LATERAL_PITCH", base.lateral_pitch)),
        anchor_x=base.anchor_x,
        anchor_y=base.anchor_y,
    )


def main_chain(graph: ExecutionGraph) -> set:
    """Step ids reachable from the input node over input/sequential edges only."""
    G = nx.DiGraph()
    G.add_node(INPUT_NODE)
    for e in graph.edges:
        if e.kind in (ENTRY, SEQUENTIAL) and not e.invalid:
            G.add_edge(e.source, e.target)
    return nx.descendants(G, INPUT_NODE)


def _lateral_offsets(graph: ExecutionGraph, chain: set) -> Dict[str, Tuple[int, int]]:
    """
    (sign, depth) for every branch target. Sources are resolved in
    topological order so a branch off a branch sits one column further out.
    """
    incoming: Dict[str, Tuple[str, int]] = {}
    for e in graph.edges:
        if e.kind not in (SUCCESS, FAILURE) or e.invalid or e.source == e.target:
            continue
        if e.target in chain or e.target in incoming:
            continue
        incoming[e.target] = (e.source, 1 if e.kind == SUCCESS else -1)

    offsets: Dict[str, Tuple[int, int]] = {}
    for sid in graph.topo.ordered:
        if sid not in incoming:
            continue
        source, sign = incoming[sid]
        parent = offsets.get(source)
        offsets[sid] = (sign, (parent[1] if parent else 0) + 1)
    return offsets


def layout(
    graph: ExecutionGraph,
    previous_positions: Optional[Mapping[str, Position]] = None,
    config: LayoutConfig = LayoutConfig(),
) -> Dict[str, Position]:
    """
    Deterministic positions for every node of ``graph``.
    Nodes already present in ``previous_positions`` keep their position;
    only the others are computed. The graph is not modified.
    """
    previous = previous_positions or {}
    rank = {sid: i for i, sid in enumerate(graph.topo.ordered)}
    chain = main_chain(graph)
    offsets = _lateral_offsets(graph, chain)
    n_steps = sum(1 for n in graph.nodes if n.kind == STEP)

    positions: Dict[str, Position] = {}
    for node in graph.nodes:
        if node.id in previous:
            positions[node.id] = previous[node.id]
            continue
        if node.id == INPUT_NODE:
            positions[node.id] = config.place(0, 0)
        elif node.kind == OUTPUT:
            positions[node.id] = config.place((n_steps + 1) * config.pitch, 0)
        else:
            sign, depth = offsets.get(node.id, (0, 0))
            primary = (rank.get(node.id, 0) + 1) * config.pitch
            positions[node.id] = config.place(primary, sign * depth * config.lateral_pitch)

    log.debug("laid out %d node(s) (%d reused) for '%s'",
              len(positions), sum(1 for k in positions if k in previous), graph.workflow_id)
    return positions
