# arazzoflow/graph/deriver.py
"""
Graph deriver: turns one workflow's ordered steps and navigation rules into
an explicit execution graph.

Control order comes from two sources only:
  * the implicit sequential fallthrough (step[i] -> step[i+1]), computed once
    in ``sequential_pairs``;
  * concrete ``goto`` success actions whose target is a step of the workflow.

Failure actions, data references and reusable action references never shape
the order; they only add edges (or diagnostics) on top of it.
"""

from __future__ import annotations

from collections import Counter, deque
from typing import Any, Dict, List, Optional, Set, Tuple

import networkx as nx

from arazzoflow.catalog import OperationCatalog, method_for_step
from arazzoflow.expressions.classifier import find_step_references
from arazzoflow.graph.elements import (
    DATA,
    ENTRY,
    EXIT,
    FAILURE,
    INPUT,
    INPUT_NODE,
    OUTPUT,
    OUTPUT_NODE,
    SEQUENTIAL,
    STEP,
    SUCCESS,
    Edge,
    ExecutionGraph,
    Node,
    TopoInfo,
)
from arazzoflow.model.document import (
    END,
    GOTO,
    RETRY,
    AnyParameter,
    Document,
    Step,
    Workflow,
    action_target,
    find_workflow,
    is_reference_action,
    is_reference_parameter,
)
from arazzoflow.model.errors import DanglingReference, StructuralError
from arazzoflow.utils.logger import get_logger

log = get_logger("graph.deriver")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def derive_graph(
    document: Document,
    workflow_id: str,
    hide_failure_edges: bool = False,
    catalog: Optional[OperationCatalog] = None,
) -> ExecutionGraph:
    """
    Derive the execution graph of ``workflow_id``.
    Raises NotFoundError when the workflow does not exist and StructuralError
    when it repeats a stepId; malformed navigation targets never raise and
    become diagnostic edges instead.
    """
    workflow = find_workflow(document, workflow_id)
    return derive_workflow_graph(workflow, hide_failure_edges=hide_failure_edges, catalog=catalog)


def derive_workflow_graph(
    workflow: Workflow,
    hide_failure_edges: bool = False,
    catalog: Optional[OperationCatalog] = None,
) -> ExecutionGraph:
    steps = list(workflow.steps)
    duplicates = sorted(sid for sid, n in Counter(s.step_id for s in steps).items() if n > 1)
    if duplicates:
        raise StructuralError([
            f"[STRUCTURE] Duplicate stepId '{sid}' in workflow '{workflow.workflow_id}'" for sid in duplicates
        ])
    step_ids = {s.step_id for s in steps}

    seq_pairs = sequential_pairs(workflow)
    control = control_graph(workflow, seq_pairs)
    topo = topological_info(steps, control)

    edges: List[Edge] = []
    dangling: List[DanglingReference] = []
    invalid_counts: Dict[str, int] = {s.step_id: 0 for s in steps}

    # 1) input -> start steps
    for sid in topo.start_step_ids:
        edges.append(Edge(id=f"{INPUT_NODE}->{sid}", source=INPUT_NODE, target=sid, kind=ENTRY))

    # 2) sequential fallthrough
    for a, b in seq_pairs:
        edges.append(Edge(id=f"seq:{a}->{b}", source=a, target=b, kind=SEQUENTIAL))

    # 3) success / failure navigation
    for step in steps:
        edges += _navigation_edges(step, step_ids, hide_failure_edges, dangling, invalid_counts)

    # 4) data dependencies
    for step in steps:
        edges += _data_edges(step, step_ids, dangling, invalid_counts)

    # 5) end steps -> output
    if workflow.outputs is not None:
        for sid in topo.end_step_ids:
            edges.append(Edge(id=f"{sid}->{OUTPUT_NODE}", source=sid, target=OUTPUT_NODE, kind=EXIT))

    nodes = _build_nodes(workflow, topo, invalid_counts, catalog)

    for d in dangling:
        log.warning(d.message())
    log.debug(
        "derived workflow '%s': %d nodes, %d edges, %d dangling reference(s)",
        workflow.workflow_id, len(nodes), len(edges), len(dangling),
    )
    return ExecutionGraph(
        workflow_id=workflow.workflow_id,
        nodes=tuple(nodes),
        edges=tuple(edges),
        topo=topo,
        diagnostics=tuple(dangling),
    )


def sequential_pairs(workflow: Workflow) -> List[Tuple[str, str]]:
    """
    The implicit "no explicit action -> next step in list order" edges.

    step[i] -> step[i+1] is suppressed when step[i]
      - already has a concrete success goto to step[i+1] (the explicit edge
        replaces it),
      - has a concrete ``end`` success action, or
      - has an unconditional concrete success goto to another step of the
        workflow or to another workflow.
    A goto guarded by criteria is conditional, so the fallthrough stays.
    """
    steps = workflow.steps
    step_ids = {s.step_id for s in steps}
    pairs = []
    for cur, nxt in zip(steps, steps[1:]):
        if not _suppresses_fallthrough(cur, nxt.step_id, step_ids):
            pairs.append((cur.step_id, nxt.step_id))
    return pairs


def control_graph(workflow: Workflow, seq_pairs: Optional[List[Tuple[str, str]]] = None) -> nx.DiGraph:
    """
    Successor/predecessor adjacency over step ids: sequential fallthrough plus
    concrete success gotos naming an existing step. Self-loops are left out
    (a step polling itself is neither a start nor an end because of it).
    """
    if seq_pairs is None:
        seq_pairs = sequential_pairs(workflow)
    step_ids = {s.step_id for s in workflow.steps}

    G = nx.DiGraph()
    G.add_nodes_from(s.step_id for s in workflow.steps)
    # sequential first so BFS follows the main chain before branches
    for a, b in seq_pairs:
        G.add_edge(a, b)
    for step in workflow.steps:
        for action in step.on_success:
            if is_reference_action(action) or action.kind != GOTO:
                continue
            target = action.target_step_id
            if target in step_ids and target != step.step_id:
                G.add_edge(step.step_id, target)
    return G


def topological_info(steps: List[Step], control: nx.DiGraph) -> TopoInfo:
    """
    Cycle-safe ordering: BFS from the start steps with a visited set; steps
    the traversal never reaches are appended in document order, so
    ``len(ordered) == len(steps)`` always holds.
    """
    if not steps:
        return TopoInfo()

    doc_order = [s.step_id for s in steps]
    starts = [sid for sid in doc_order if control.in_degree(sid) == 0]
    # every step has a predecessor (a pure cycle): all steps become start candidates
    seeds = starts if starts else list(doc_order)

    ordered: List[str] = []
    visited: Set[str] = set()
    queue = deque(seeds)
    while queue:
        cur = queue.popleft()
        if cur in visited:
            continue
        visited.add(cur)
        ordered.append(cur)
        for nxt in control.successors(cur):
            if nxt not in visited:
                queue.append(nxt)

    unreachable = [sid for sid in doc_order if sid not in visited]
    ordered.extend(unreachable)

    ends = [sid for sid in doc_order if control.out_degree(sid) == 0]
    return TopoInfo(
        ordered=tuple(ordered),
        start_step_ids=tuple(seeds),
        end_step_ids=tuple(ends),
        unreachable_step_ids=tuple(unreachable),
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _suppresses_fallthrough(step: Step, next_id: str, step_ids: Set[str]) -> bool:
    for action in step.on_success:
        if is_reference_action(action):
            continue
        if action.kind == END:
            return True
        if action.kind != GOTO:
            continue
        if action.target_step_id == next_id:
            return True
        unconditional = not action.criteria
        if unconditional and (action.target_step_id in step_ids or action.target_workflow_id):
            return True
    return False


def _navigation_edges(
    step: Step,
    step_ids: Set[str],
    hide_failure_edges: bool,
    dangling: List[DanglingReference],
    invalid_counts: Dict[str, int],
) -> List[Edge]:
    sid = step.step_id
    edges: List[Edge] = []

    for idx, action in enumerate(step.on_success):
        if is_reference_action(action) or action.kind != GOTO or not action.target_step_id:
            continue
        target = action.target_step_id
        if target in step_ids:
            edges.append(Edge(
                id=f"success:{sid}->{target}:{idx}", source=sid, target=target, kind=SUCCESS,
                label=action.name or "success", data={"actionName": action.name},
            ))
        else:
            dangling.append(DanglingReference(step_id=sid, kind=SUCCESS, target=target,
                                              detail=f"onSuccess[{idx}] '{action.name}'"))
            invalid_counts[sid] += 1
            edges.append(_invalid_edge(f"success:{sid}->{target}:{idx}", sid, SUCCESS, target, action.name))

    for idx, action in enumerate(step.on_failure):
        if is_reference_action(action) or action.kind not in (GOTO, RETRY):
            continue
        target = action_target(action, sid)
        if not target:
            # goto another workflow: leaves this graph
            continue
        valid = target in step_ids
        if not valid:
            dangling.append(DanglingReference(step_id=sid, kind=FAILURE, target=target,
                                              detail=f"onFailure[{idx}] '{action.name}'"))
            invalid_counts[sid] += 1
        if hide_failure_edges:
            continue
        edge_id = f"failure:{sid}->{target}:{idx}"
        if valid:
            edges.append(Edge(
                id=edge_id, source=sid, target=target, kind=FAILURE,
                label=action.name or action.kind,
                data={"actionName": action.name, "retry": action.kind == RETRY,
                      "retryAfter": action.retry_delay, "retryLimit": action.retry_limit},
            ))
        else:
            edges.append(_invalid_edge(edge_id, sid, FAILURE, target, action.name))

    return edges


def _invalid_edge(edge_id: str, sid: str, kind: str, target: str, action_name: Optional[str]) -> Edge:
    """Self-referential edge marking a navigation target that names no step."""
    return Edge(
        id=edge_id, source=sid, target=sid, kind=kind,
        label=f"invalid: {target}", invalid=True,
        data={"actionName": action_name, "missingTarget": target},
    )


def _data_edges(
    step: Step,
    step_ids: Set[str],
    dangling: List[DanglingReference],
    invalid_counts: Dict[str, int],
) -> List[Edge]:
    """One edge per ``$steps.<id>.outputs.<field>`` reference in a parameter value."""
    sid = step.step_id
    edges: List[Edge] = []
    for pidx, param in enumerate(step.parameters):
        for src, field in _output_references(param):
            edge_id = f"data:{src}.{field}->{sid}.{param.name}:{pidx}"
            data = {"fromStep": src, "outputKey": field, "toParam": param.name}
            if src in step_ids:
                edges.append(Edge(id=edge_id, source=src, target=sid, kind=DATA,
                                  label=f"{field} -> {param.name}", data=data))
            else:
                dangling.append(DanglingReference(step_id=sid, kind=DATA, target=src,
                                                  detail=f"parameter '{param.name}' = {param.value}"))
                invalid_counts[sid] += 1
                edges.append(Edge(id=edge_id, source=sid, target=sid, kind=DATA,
                                  label=f"invalid: {src}", invalid=True, data=data))
    return edges


def _output_references(param: AnyParameter) -> List[Tuple[str, str]]:
    """Distinct (step_id, field) output references of an inline parameter, in order."""
    if is_reference_parameter(param):
        return []
    refs: List[Tuple[str, str]] = []
    for src, field in find_step_references(param.value):
        if field is not None and (src, field) not in refs:
            refs.append((src, field))
    return refs


def _build_nodes(
    workflow: Workflow,
    topo: TopoInfo,
    invalid_counts: Dict[str, int],
    catalog: Optional[OperationCatalog],
) -> List[Node]:
    inputs = workflow.inputs or {}
    properties = inputs.get("properties") or {}
    nodes = [Node(id=INPUT_NODE, kind=INPUT, payload={
        "workflowId": workflow.workflow_id,
        "properties": list(properties),
        "required": list(inputs.get("required") or []),
    })]

    starts = set(topo.start_step_ids)
    ends = set(topo.end_step_ids)
    for idx, step in enumerate(workflow.steps):
        nodes.append(Node(id=step.step_id, kind=STEP, payload=_step_payload(
            step, idx, step.step_id in starts, step.step_id in ends,
            invalid_counts.get(step.step_id, 0), catalog,
        )))

    if workflow.outputs is not None:
        nodes.append(Node(id=OUTPUT_NODE, kind=OUTPUT, payload={
            "workflowId": workflow.workflow_id,
            "properties": list(workflow.outputs),
            "expressions": dict(workflow.outputs),
        }))
    return nodes


def _step_payload(
    step: Step,
    index: int,
    is_start: bool,
    is_end: bool,
    invalid_link_count: int,
    catalog: Optional[OperationCatalog],
) -> Dict[str, Any]:
    op = step.operation
    has_data_links = any(_output_references(p) for p in step.parameters)
    return {
        "stepId": step.step_id,
        "index": index,
        "operation": op.value if op else None,
        "operationKind": op.kind if op else None,
        "sourceName": op.source_name if op else None,
        "method": method_for_step(step, catalog),
        "parameters": [p.name for p in step.parameters if not is_reference_parameter(p)],
        "outputs": list(step.outputs or {}),
        "hasOnSuccess": bool(step.on_success),
        "hasOnFailure": bool(step.on_failure),
        "hasDataLinks": has_data_links,
        "isStart": is_start,
        "isEnd": is_end,
        "invalidLinkCount": invalid_link_count,
        "hasInvalidLinks": invalid_link_count > 0,
    }
