"""
Document model: documents, workflows, steps, actions and mappings.

All types are frozen dataclasses. Sequences are tuples; mapping fields
(``outputs``, schemas, payloads) are plain dicts that are never mutated in
place: every edit builds new objects via ``dataclasses.replace``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from arazzoflow.expressions.classifier import COMPONENTS, classify
from arazzoflow.model.errors import NotFoundError

GOTO = "goto"
END = "end"
RETRY = "retry"
ACTION_KINDS = (GOTO, END, RETRY)

ON_SUCCESS = "onSuccess"
ON_FAILURE = "onFailure"

OPERATION_ID = "operationId"
OPERATION_PATH = "operationPath"
WORKFLOW_ID = "workflowId"


@dataclass(frozen=True)
class Info:
    title: str
    version: str
    summary: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class SourceDescription:
    name: str
    url: str
    kind: str = "openapi"
    description: Optional[str] = None


@dataclass(frozen=True)
class Criterion:
    condition: str
    context: Optional[str] = None
    kind: Optional[str] = None


@dataclass(frozen=True)
class Action:
    """A concrete success or failure action (goto / end / retry)."""
    name: str
    kind: str
    target_step_id: Optional[str] = None
    target_workflow_id: Optional[str] = None
    criteria: Tuple[Criterion, ...] = ()
    retry_delay: Optional[float] = None
    retry_limit: Optional[int] = None


@dataclass(frozen=True)
class ActionReference:
    """Pointer to a reusable action in ``components`` (``$components.successActions.x``)."""
    reference: str
    arguments: Optional[Dict[str, Any]] = None


AnyAction = Union[Action, ActionReference]


@dataclass(frozen=True)
class Parameter:
    name: str
    value: Any = None
    location: Optional[str] = None


@dataclass(frozen=True)
class ParameterReference:
    reference: str
    value: Any = None


AnyParameter = Union[Parameter, ParameterReference]


@dataclass(frozen=True)
class RequestBody:
    payload: Any = None
    content_type: Optional[str] = None


@dataclass(frozen=True)
class OperationRef:
    """What a step invokes: an operationId, an operationPath or a sub-workflow."""
    kind: str
    value: str

    @property
    def source_name(self) -> Optional[str]:
        """``petstore`` for ``petstore.findPets``; None when unqualified."""
        if self.kind == OPERATION_ID and "." in self.value:
            return self.value.split(".", 1)[0]
        return None

    @property
    def operation_name(self) -> str:
        if self.kind == OPERATION_ID and "." in self.value:
            return self.value.rsplit(".", 1)[1]
        return self.value


@dataclass(frozen=True)
class Step:
    step_id: str
    operation: Optional[OperationRef] = None
    description: Optional[str] = None
    parameters: Tuple[AnyParameter, ...] = ()
    request_body: Optional[RequestBody] = None
    success_criteria: Tuple[Criterion, ...] = ()
    outputs: Optional[Dict[str, str]] = None
    on_success: Tuple[AnyAction, ...] = ()
    on_failure: Tuple[AnyAction, ...] = ()

    def actions(self) -> Iterator[Tuple[str, int, AnyAction]]:
        """Yield (list name, index, action) over onSuccess then onFailure."""
        for i, a in enumerate(self.on_success):
            yield ON_SUCCESS, i, a
        for i, a in enumerate(self.on_failure):
            yield ON_FAILURE, i, a


@dataclass(frozen=True)
class Workflow:
    workflow_id: str
    steps: Tuple[Step, ...] = ()
    summary: Optional[str] = None
    description: Optional[str] = None
    inputs: Optional[Dict[str, Any]] = None
    outputs: Optional[Dict[str, str]] = None
    parameters: Tuple[AnyParameter, ...] = ()

    @property
    def step_ids(self) -> List[str]:
        return [s.step_id for s in self.steps]

    def index_of(self, step_id: str) -> int:
        for i, s in enumerate(self.steps):
            if s.step_id == step_id:
                return i
        raise NotFoundError("step", step_id, self.workflow_id)


@dataclass(frozen=True)
class Components:
    inputs: Dict[str, Any] = field(default_factory=dict)
    schemas: Dict[str, Any] = field(default_factory=dict)
    parameters: Dict[str, Parameter] = field(default_factory=dict)
    success_actions: Dict[str, Action] = field(default_factory=dict)
    failure_actions: Dict[str, Action] = field(default_factory=dict)

    def category(self, name: str) -> Dict[str, Any]:
        """Look up a category by its expression name (``successActions``...)."""
        return {
            "inputs": self.inputs,
            "schemas": self.schemas,
            "parameters": self.parameters,
            "successActions": self.success_actions,
            "failureActions": self.failure_actions,
        }.get(name, {})


@dataclass(frozen=True)
class Document:
    version: str
    info: Optional[Info]
    workflows: Tuple[Workflow, ...] = ()
    source_descriptions: Tuple[SourceDescription, ...] = ()
    components: Optional[Components] = None


# ---------------------------------------------------------------------------
# Constructors
# ---------------------------------------------------------------------------

def goto_action(target_step_id: str, name: Optional[str] = None) -> Action:
    """Success ``goto`` with the conventional ``goto-<target>`` name."""
    return Action(name=name or f"goto-{target_step_id}", kind=GOTO, target_step_id=target_step_id)


def default_document() -> Document:
    """The empty document the editor starts from."""
    return Document(
        version="1.0.1",
        info=Info(title="New Workflow", version="1.0.0"),
        workflows=(Workflow(workflow_id="workflow-1"),),
    )


# ---------------------------------------------------------------------------
# Accessors & predicates
# ---------------------------------------------------------------------------

def is_reference_action(action: AnyAction) -> bool:
    return isinstance(action, ActionReference)


def is_reference_parameter(param: AnyParameter) -> bool:
    return isinstance(param, ParameterReference)


def action_target(action: AnyAction, owner_step_id: str) -> Optional[str]:
    """
    Step id a concrete action navigates to, or None.

    ``goto`` uses its explicit target; a ``retry`` without a target retries
    the owning step. References and ``end`` never navigate to a step.
    """
    if is_reference_action(action):
        return None
    if action.kind == GOTO:
        return action.target_step_id
    if action.kind == RETRY:
        return action.target_step_id or owner_step_id
    return None


def find_workflow(document: Document, workflow_id: str) -> Workflow:
    for wf in document.workflows:
        if wf.workflow_id == workflow_id:
            return wf
    raise NotFoundError("workflow", workflow_id)


def find_step(document: Document, workflow_id: str, step_id: str) -> Step:
    wf = find_workflow(document, workflow_id)
    for s in wf.steps:
        if s.step_id == step_id:
            return s
    raise NotFoundError("step", step_id, workflow_id)


def list_actions_referencing(workflow: Workflow, step_id: str) -> List[Tuple[str, str, int, Action]]:
    """
    Every concrete action in the workflow that targets ``step_id``.
    Returns (owner step id, "onSuccess"|"onFailure", index, action).
    """
    found = []
    for step in workflow.steps:
        for list_name, idx, action in step.actions():
            if is_reference_action(action):
                continue
            if action.kind in (GOTO, RETRY) and action.target_step_id == step_id:
                found.append((step.step_id, list_name, idx, action))
    return found


def resolve_action(document: Document, action: AnyAction) -> Optional[Action]:
    """
    Expand an ActionReference into the reusable Action it points at.
    Concrete actions are returned unchanged; unresolvable references give None.
    """
    if not is_reference_action(action):
        return action
    desc = classify(action.reference)
    if desc is None or desc.kind != COMPONENTS or document.components is None:
        return None
    return document.components.category(desc.category).get(desc.name)
