"""
Editing operations over an EditorState.

Every operation is a pure function ``(state, ...) -> new state``. Inputs are
validated before anything is built, so a raised error always leaves the
caller holding the untouched original state.

Referential integrity rules:
  * renaming a step rewrites every structural reference to it in the same
    transition (goto/retry targets, derived action names, ``$steps.<id>``
    expressions, selection and stored position);
  * deleting a step strips concrete actions targeting it but leaves
    ``$steps.<id>`` data expressions in place for the diagnostics layer;
  * reusable action references are never rewritten or removed.
"""

from __future__ import annotations

from dataclasses import fields, replace
from typing import Any, Dict, Optional, Tuple

from arazzoflow.editor.state import EditorState
from arazzoflow.expressions.classifier import rewrite_step_references
from arazzoflow.graph.elements import STEP
from arazzoflow.graph.layout import Position
from arazzoflow.model.document import (
    GOTO,
    RETRY,
    WORKFLOW_ID,
    Action,
    AnyAction,
    AnyParameter,
    Criterion,
    Document,
    SourceDescription,
    Step,
    Workflow,
    find_workflow,
    goto_action,
    is_reference_action,
    is_reference_parameter,
)
from arazzoflow.model.errors import InvalidEditError, NotFoundError, StructuralError
from arazzoflow.utils.logger import get_logger

log = get_logger("editor")

_STEP_FIELDS = {f.name for f in fields(Step)}
_WORKFLOW_FIELDS = {f.name for f in fields(Workflow)}


# ---------------------------------------------------------------------------
# Rewriting helpers
# ---------------------------------------------------------------------------

def _rewrite_value(value: Any, old_id: str, new_id: str) -> Any:
    """Rewrite ``$steps.<old_id>`` in every string of a nested value."""
    if isinstance(value, str):
        return rewrite_step_references(value, old_id, new_id)
    if isinstance(value, list):
        return [_rewrite_value(v, old_id, new_id) for v in value]
    if isinstance(value, tuple):
        return tuple(_rewrite_value(v, old_id, new_id) for v in value)
    if isinstance(value, dict):
        return {k: _rewrite_value(v, old_id, new_id) for k, v in value.items()}
    return value


def _rename_criteria(criteria: Tuple[Criterion, ...], old_id: str, new_id: str) -> Tuple[Criterion, ...]:
    return tuple(replace(c, condition=rewrite_step_references(c.condition, old_id, new_id)) for c in criteria)


def _rename_action_name(name: Optional[str], old_id: str, new_id: str) -> Optional[str]:
    """Re-derive a generated name ending in ``-<old_id>``; other names are kept."""
    suffix = f"-{old_id}"
    if name and name.endswith(suffix):
        return name[: -len(suffix)] + f"-{new_id}"
    return name


def _rename_in_action(action: AnyAction, old_id: str, new_id: str) -> AnyAction:
    if is_reference_action(action):
        return action
    changes: Dict[str, Any] = {"criteria": _rename_criteria(action.criteria, old_id, new_id)}
    if action.kind in (GOTO, RETRY) and action.target_step_id == old_id:
        changes["target_step_id"] = new_id
        changes["name"] = _rename_action_name(action.name, old_id, new_id)
    return replace(action, **changes)


def _rename_in_parameter(param: AnyParameter, old_id: str, new_id: str) -> AnyParameter:
    if is_reference_parameter(param):
        return param
    return replace(param, value=_rewrite_value(param.value, old_id, new_id))


def _rename_in_step(step: Step, old_id: str, new_id: str) -> Step:
    body = step.request_body
    if body is not None:
        body = replace(body, payload=_rewrite_value(body.payload, old_id, new_id))
    return replace(
        step,
        step_id=new_id if step.step_id == old_id else step.step_id,
        parameters=tuple(_rename_in_parameter(p, old_id, new_id) for p in step.parameters),
        request_body=body,
        success_criteria=_rename_criteria(step.success_criteria, old_id, new_id),
        outputs=_rewrite_value(step.outputs, old_id, new_id),
        on_success=tuple(_rename_in_action(a, old_id, new_id) for a in step.on_success),
        on_failure=tuple(_rename_in_action(a, old_id, new_id) for a in step.on_failure),
    )


def _rename_in_workflow(workflow: Workflow, old_id: str, new_id: str) -> Workflow:
    return replace(
        workflow,
        steps=tuple(_rename_in_step(s, old_id, new_id) for s in workflow.steps),
        outputs=_rewrite_value(workflow.outputs, old_id, new_id),
    )


def _strip_actions_to(step: Step, target_id: str) -> Step:
    def keep(a: AnyAction) -> bool:
        return is_reference_action(a) or a.target_step_id != target_id
    return replace(
        step,
        on_success=tuple(a for a in step.on_success if keep(a)),
        on_failure=tuple(a for a in step.on_failure if keep(a)),
    )


def _replace_step(workflow: Workflow, step_id: str, new_step: Step) -> Workflow:
    return replace(workflow, steps=tuple(new_step if s.step_id == step_id else s for s in workflow.steps))


def _require_step(workflow: Workflow, step_id: str) -> Step:
    for s in workflow.steps:
        if s.step_id == step_id:
            return s
    raise NotFoundError("step", step_id, workflow.workflow_id)


def _check_new_step_id(workflow: Workflow, new_id: str) -> None:
    if not new_id:
        raise InvalidEditError("stepId must be a non-empty string")
    if new_id in workflow.step_ids:
        raise StructuralError([f"[STRUCTURE] Duplicate stepId '{new_id}' in workflow '{workflow.workflow_id}'"])


def _rekey(positions: Dict[str, Position], old_id: str, new_id: str) -> Dict[str, Position]:
    return {(new_id if k == old_id else k): v for k, v in positions.items()}


# ---------------------------------------------------------------------------
# Step operations
# ---------------------------------------------------------------------------

def add_step(state: EditorState, step: Step, position: Optional[Position] = None) -> EditorState:
    wf = state.workflow
    _check_new_step_id(wf, step.step_id)
    positions = state.positions
    if position is not None:
        positions = {**positions, step.step_id: position}
    log.debug("add_step '%s' to '%s'", step.step_id, wf.workflow_id)
    return state.with_workflow(replace(wf, steps=wf.steps + (step,)), positions=positions)


def delete_step(state: EditorState, step_id: str) -> EditorState:
    wf = state.workflow
    _require_step(wf, step_id)
    steps = tuple(_strip_actions_to(s, step_id) for s in wf.steps if s.step_id != step_id)
    selected = state.selected_step_id == step_id
    log.debug("delete_step '%s' from '%s'", step_id, wf.workflow_id)
    return state.with_workflow(
        replace(wf, steps=steps),
        selected_step_id=None if selected else state.selected_step_id,
        selected_node_type=None if selected else state.selected_node_type,
        positions={k: v for k, v in state.positions.items() if k != step_id},
    )


def rename_step(state: EditorState, old_id: str, new_id: str) -> EditorState:
    wf = state.workflow
    _require_step(wf, old_id)
    if old_id == new_id:
        return state
    _check_new_step_id(wf, new_id)
    log.debug("rename_step '%s' -> '%s' in '%s'", old_id, new_id, wf.workflow_id)
    return state.with_workflow(
        _rename_in_workflow(wf, old_id, new_id),
        selected_step_id=new_id if state.selected_step_id == old_id else state.selected_step_id,
        positions=_rekey(state.positions, old_id, new_id),
    )


def connect(state: EditorState, source_id: str, target_id: str) -> EditorState:
    """Append ``goto-<target>`` to the source's onSuccess. Not deduplicated."""
    wf = state.workflow
    src = _require_step(wf, source_id)
    new_src = replace(src, on_success=src.on_success + (goto_action(target_id),))
    return state.with_workflow(_replace_step(wf, source_id, new_src))


def disconnect(state: EditorState, source_id: str, target_id: str) -> EditorState:
    wf = state.workflow
    src = _require_step(wf, source_id)
    kept = tuple(
        a for a in src.on_success
        if is_reference_action(a) or not (a.kind == GOTO and a.target_step_id == target_id)
    )
    if len(kept) == len(src.on_success):
        return state
    return state.with_workflow(_replace_step(wf, source_id, replace(src, on_success=kept)))


def insert_step_on_edge(
    state: EditorState,
    new_step: Step,
    source_id: str,
    target_id: str,
    position: Optional[Position] = None,
) -> EditorState:
    """
    Splice ``new_step`` into the edge source -> target.

    Gotos from source to target are retargeted to the new step; when there
    were none (the edge was the sequential fallthrough) a goto to the new
    step is appended instead. The new step is placed right after the source
    with a single goto to the original target and becomes selected.
    """
    wf = state.workflow
    src = _require_step(wf, source_id)
    new_id = new_step.step_id
    _check_new_step_id(wf, new_id)

    retargeted = False
    on_success = []
    for a in src.on_success:
        if not is_reference_action(a) and a.kind == GOTO and a.target_step_id == target_id:
            a = replace(a, target_step_id=new_id, name=f"goto-{new_id}")
            retargeted = True
        on_success.append(a)
    if not retargeted:
        on_success.append(goto_action(new_id))

    inserted = replace(new_step, on_success=(goto_action(target_id),))
    steps = [replace(s, on_success=tuple(on_success)) if s.step_id == source_id else s for s in wf.steps]
    # the gotos of source and new step suppress fallthrough around the new step
    steps.insert(wf.index_of(source_id) + 1, inserted)
    positions = state.positions
    if position is not None:
        positions = {**positions, new_id: position}
    log.debug("insert_step_on_edge '%s' on %s -> %s", new_id, source_id, target_id)
    return state.with_workflow(
        replace(wf, steps=tuple(steps)),
        selected_step_id=new_id,
        selected_node_type=STEP,
        positions=positions,
    )


def reorder_step(state: EditorState, workflow_id: str, from_index: int, to_index: int) -> EditorState:
    """Move a step within its list; references are left as they are."""
    doc = state.document
    wf = find_workflow(doc, workflow_id)
    n = len(wf.steps)
    if not (0 <= from_index < n and 0 <= to_index < n):
        raise InvalidEditError(f"reorder indices out of range for {n} step(s): {from_index} -> {to_index}")
    steps = list(wf.steps)
    steps.insert(to_index, steps.pop(from_index))
    workflows = tuple(replace(w, steps=tuple(steps)) if w.workflow_id == workflow_id else w
                      for w in doc.workflows)
    return replace(state, document=replace(doc, workflows=workflows))


def update_step(state: EditorState, step_id: str, **changes: Any) -> EditorState:
    """
    Field update of one step (snake_case field names of ``Step``).
    A ``step_id`` change is applied with rename semantics in the same transition.
    """
    unknown = sorted(set(changes) - _STEP_FIELDS)
    if unknown:
        raise InvalidEditError(f"unknown step field(s): {unknown}")
    wf = state.workflow
    step = _require_step(wf, step_id)
    new_id = changes.pop("step_id", step_id)
    if new_id != step_id:
        _check_new_step_id(wf, new_id)

    updated = state.with_workflow(_replace_step(wf, step_id, replace(step, **changes)))
    return rename_step(updated, step_id, new_id)


def next_step_id(state: EditorState) -> Tuple[EditorState, str]:
    """Generate ``step_<N>`` from the session counter, skipping ids already in use."""
    taken = set(state.workflow.step_ids)
    counter = state.step_counter
    while True:
        counter += 1
        candidate = f"step_{counter}"
        if candidate not in taken:
            return replace(state, step_counter=counter), candidate


def new_step(state: EditorState, operation=None, position: Optional[Position] = None) -> EditorState:
    """Add an empty step with a generated id (the editor's "add step" button)."""
    state, sid = next_step_id(state)
    return add_step(state, Step(step_id=sid, operation=operation), position)


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------

def select_step(state: EditorState, step_id: Optional[str]) -> EditorState:
    return replace(state, selected_step_id=step_id, selected_node_type=STEP if step_id else None)


def select_node(state: EditorState, node_type: Optional[str], step_id: Optional[str] = None) -> EditorState:
    return replace(state, selected_node_type=node_type, selected_step_id=step_id)


# ---------------------------------------------------------------------------
# Document & workflow operations
# ---------------------------------------------------------------------------

def load_document(state: EditorState, document: Document) -> EditorState:
    return replace(state, document=document, workflow_index=0, selected_step_id=None,
                   selected_node_type=None, positions={})


def add_source(state: EditorState, name: str, url: str = "uploaded", kind: str = "openapi") -> EditorState:
    doc = state.document
    if any(s.name == name for s in doc.source_descriptions):
        raise StructuralError([f"[STRUCTURE] Duplicate sourceDescription name: '{name}'"])
    source = SourceDescription(name=name, url=url, kind=kind)
    return replace(state, document=replace(doc, source_descriptions=doc.source_descriptions + (source,)))


def add_workflow(state: EditorState, workflow: Workflow) -> EditorState:
    doc = state.document
    if any(w.workflow_id == workflow.workflow_id for w in doc.workflows):
        raise StructuralError([f"[STRUCTURE] Duplicate workflowId: '{workflow.workflow_id}'"])
    return replace(state, document=replace(doc, workflows=doc.workflows + (workflow,)))


def _retarget_workflow_refs(step: Step, old_id: str, new_id: str) -> Step:
    def fix(a: AnyAction) -> AnyAction:
        if isinstance(a, Action) and a.target_workflow_id == old_id:
            return replace(a, target_workflow_id=new_id)
        return a
    op = step.operation
    if op is not None and op.kind == WORKFLOW_ID and op.value == old_id:
        op = replace(op, value=new_id)
    return replace(step, operation=op,
                   on_success=tuple(fix(a) for a in step.on_success),
                   on_failure=tuple(fix(a) for a in step.on_failure))


def rename_workflow(state: EditorState, old_id: str, new_id: str) -> EditorState:
    """Rename a workflow and every goto / sub-workflow call that names it."""
    doc = state.document
    find_workflow(doc, old_id)
    if old_id == new_id:
        return state
    if not new_id:
        raise InvalidEditError("workflowId must be a non-empty string")
    if any(w.workflow_id == new_id for w in doc.workflows):
        raise StructuralError([f"[STRUCTURE] Duplicate workflowId: '{new_id}'"])
    workflows = []
    for w in doc.workflows:
        if w.workflow_id == old_id:
            w = replace(w, workflow_id=new_id)
        workflows.append(replace(w, steps=tuple(_retarget_workflow_refs(s, old_id, new_id) for s in w.steps)))
    log.debug("rename_workflow '%s' -> '%s'", old_id, new_id)
    return replace(state, document=replace(doc, workflows=tuple(workflows)))


def update_workflow(state: EditorState, workflow_id: str, **changes: Any) -> EditorState:
    """Field update of one workflow; a ``workflow_id`` change renames it."""
    unknown = sorted(set(changes) - _WORKFLOW_FIELDS)
    if unknown:
        raise InvalidEditError(f"unknown workflow field(s): {unknown}")
    doc = state.document
    find_workflow(doc, workflow_id)
    new_id = changes.pop("workflow_id", workflow_id)
    if new_id != workflow_id:
        # validate the rename before building anything
        rename_workflow(state, workflow_id, new_id)
    workflows = tuple(replace(w, **changes) if w.workflow_id == workflow_id else w for w in doc.workflows)
    return rename_workflow(replace(state, document=replace(doc, workflows=workflows)), workflow_id, new_id)


def delete_workflow(state: EditorState, workflow_id: str) -> EditorState:
    doc = state.document
    find_workflow(doc, workflow_id)
    if len(doc.workflows) == 1:
        raise InvalidEditError("a document must keep at least one workflow")
    workflows = tuple(w for w in doc.workflows if w.workflow_id != workflow_id)
    return replace(
        state,
        document=replace(doc, workflows=workflows),
        workflow_index=max(0, min(state.workflow_index - 1, len(workflows) - 1)),
        selected_step_id=None,
        selected_node_type=None,
    )


def set_workflow_index(state: EditorState, index: int) -> EditorState:
    if not 0 <= index < len(state.document.workflows):
        raise InvalidEditError(f"workflow index out of range: {index}")
    return replace(state, workflow_index=index, selected_step_id=None, selected_node_type=None)
