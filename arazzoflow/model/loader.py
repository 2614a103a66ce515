"""
Loader: converts parsed JSON/YAML mappings into the immutable document model
and back.

Raw text parsing belongs to the caller (see ``arazzoflow.utils.io``); this
module only deals with already-parsed data.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from jsonschema import Draft7Validator

from arazzoflow.model.document import (
    OPERATION_ID,
    OPERATION_PATH,
    WORKFLOW_ID,
    Action,
    ActionReference,
    AnyAction,
    AnyParameter,
    Components,
    Criterion,
    Document,
    Info,
    OperationRef,
    Parameter,
    ParameterReference,
    RequestBody,
    SourceDescription,
    Step,
    Workflow,
)
from arazzoflow.model.errors import StructuralError
from arazzoflow.model.schema import ARAZZO_MINIMAL_SCHEMA
from arazzoflow.utils.logger import get_logger

log = get_logger("model.loader")

_VALIDATOR = Draft7Validator(ARAZZO_MINIMAL_SCHEMA)


def schema_issues(raw: Any) -> List[str]:
    """Every schema violation of a raw document, tagged [SCHEMA], in path order."""
    errors = sorted(_VALIDATOR.iter_errors(raw), key=lambda e: [str(p) for p in e.absolute_path])
    issues = []
    for e in errors:
        where = "/".join(str(p) for p in e.absolute_path) or "<root>"
        issues.append(f"[SCHEMA] {where}: {e.message}")
    return issues


def document_from_dict(raw: Any) -> Document:
    """
    Validate a parsed document against the minimal schema and build the model.
    Raises StructuralError listing every schema violation.
    """
    issues = schema_issues(raw)
    if issues:
        log.debug("document rejected with %d schema issue(s)", len(issues))
        raise StructuralError(issues)

    components = None
    if raw.get("components") is not None:
        components = _components_from_dict(raw["components"])

    info = raw["info"]
    return Document(
        version=str(raw["arazzo"]),
        info=Info(
            title=info["title"],
            version=str(info["version"]),
            summary=info.get("summary"),
            description=info.get("description"),
        ),
        source_descriptions=tuple(
            SourceDescription(
                name=s["name"],
                url=s["url"],
                kind=s.get("type", "openapi"),
                description=s.get("description"),
            )
            for s in raw.get("sourceDescriptions") or []
        ),
        workflows=tuple(_workflow_from_dict(w) for w in raw["workflows"]),
        components=components,
    )


# ---------------------------------------------------------------------------
# dict -> model
# ---------------------------------------------------------------------------

def _criterion_from_dict(c: Dict[str, Any]) -> Criterion:
    return Criterion(condition=c["condition"], context=c.get("context"), kind=c.get("type"))


def action_from_dict(a: Dict[str, Any]) -> AnyAction:
    if "reference" in a:
        return ActionReference(reference=a["reference"], arguments=a.get("arguments"))
    return Action(
        name=a["name"],
        kind=a["type"],
        target_step_id=a.get("stepId"),
        target_workflow_id=a.get("workflowId"),
        criteria=tuple(_criterion_from_dict(c) for c in a.get("criteria") or []),
        retry_delay=a.get("retryAfter"),
        retry_limit=a.get("retryLimit"),
    )


def parameter_from_dict(p: Dict[str, Any]) -> AnyParameter:
    if "reference" in p:
        return ParameterReference(reference=p["reference"], value=p.get("value"))
    return Parameter(name=p["name"], value=p.get("value"), location=p.get("in"))


def _operation_from_dict(s: Dict[str, Any]) -> Optional[OperationRef]:
    for kind in (OPERATION_ID, OPERATION_PATH, WORKFLOW_ID):
        if s.get(kind):
            return OperationRef(kind=kind, value=s[kind])
    return None


def step_from_dict(s: Dict[str, Any]) -> Step:
    body = s.get("requestBody")
    return Step(
        step_id=s["stepId"],
        operation=_operation_from_dict(s),
        description=s.get("description"),
        parameters=tuple(parameter_from_dict(p) for p in s.get("parameters") or []),
        request_body=RequestBody(payload=body.get("payload"), content_type=body.get("contentType")) if body else None,
        success_criteria=tuple(_criterion_from_dict(c) for c in s.get("successCriteria") or []),
        outputs=dict(s["outputs"]) if s.get("outputs") is not None else None,
        on_success=tuple(action_from_dict(a) for a in s.get("onSuccess") or []),
        on_failure=tuple(action_from_dict(a) for a in s.get("onFailure") or []),
    )


def _workflow_from_dict(w: Dict[str, Any]) -> Workflow:
    return Workflow(
        workflow_id=w["workflowId"],
        summary=w.get("summary"),
        description=w.get("description"),
        inputs=w.get("inputs"),
        outputs=dict(w["outputs"]) if w.get("outputs") is not None else None,
        parameters=tuple(parameter_from_dict(p) for p in w.get("parameters") or []),
        steps=tuple(step_from_dict(s) for s in w["steps"]),
    )


def _components_from_dict(c: Dict[str, Any]) -> Components:
    return Components(
        inputs=dict(c.get("inputs") or {}),
        schemas=dict(c.get("schemas") or {}),
        parameters={k: parameter_from_dict(v) for k, v in (c.get("parameters") or {}).items()},
        success_actions={k: action_from_dict(v) for k, v in (c.get("successActions") or {}).items()},
        failure_actions={k: action_from_dict(v) for k, v in (c.get("failureActions") or {}).items()},
    )


# ---------------------------------------------------------------------------
# model -> dict
# ---------------------------------------------------------------------------

def _drop_none(d: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in d.items() if v is not None}


def _criterion_to_dict(c: Criterion) -> Dict[str, Any]:
    return _drop_none({"condition": c.condition, "context": c.context, "type": c.kind})


def action_to_dict(a: AnyAction) -> Dict[str, Any]:
    if isinstance(a, ActionReference):
        return _drop_none({"reference": a.reference, "arguments": a.arguments})
    return _drop_none({
        "name": a.name,
        "type": a.kind,
        "stepId": a.target_step_id,
        "workflowId": a.target_workflow_id,
        "criteria": [_criterion_to_dict(c) for c in a.criteria] or None,
        "retryAfter": a.retry_delay,
        "retryLimit": a.retry_limit,
    })


def parameter_to_dict(p: AnyParameter) -> Dict[str, Any]:
    if isinstance(p, ParameterReference):
        return _drop_none({"reference": p.reference, "value": p.value})
    return _drop_none({"name": p.name, "in": p.location, "value": p.value})


def step_to_dict(s: Step) -> Dict[str, Any]:
    out: Dict[str, Any] = {"stepId": s.step_id}
    if s.description is not None:
        out["description"] = s.description
    if s.operation is not None:
        out[s.operation.kind] = s.operation.value
    if s.parameters:
        out["parameters"] = [parameter_to_dict(p) for p in s.parameters]
    if s.request_body is not None:
        out["requestBody"] = _drop_none({"contentType": s.request_body.content_type,
                                         "payload": s.request_body.payload})
    if s.success_criteria:
        out["successCriteria"] = [_criterion_to_dict(c) for c in s.success_criteria]
    if s.outputs is not None:
        out["outputs"] = dict(s.outputs)
    if s.on_success:
        out["onSuccess"] = [action_to_dict(a) for a in s.on_success]
    if s.on_failure:
        out["onFailure"] = [action_to_dict(a) for a in s.on_failure]
    return out


def _workflow_to_dict(w: Workflow) -> Dict[str, Any]:
    out = _drop_none({
        "workflowId": w.workflow_id,
        "summary": w.summary,
        "description": w.description,
        "inputs": w.inputs,
    })
    if w.parameters:
        out["parameters"] = [parameter_to_dict(p) for p in w.parameters]
    out["steps"] = [step_to_dict(s) for s in w.steps]
    if w.outputs is not None:
        out["outputs"] = dict(w.outputs)
    return out


def document_to_dict(doc: Document) -> Dict[str, Any]:
    """Serialize back to the camelCase wire shape (optional fields omitted)."""
    out: Dict[str, Any] = {"arazzo": doc.version}
    if doc.info is not None:
        out["info"] = _drop_none({
            "title": doc.info.title,
            "version": doc.info.version,
            "summary": doc.info.summary,
            "description": doc.info.description,
        })
    out["sourceDescriptions"] = [
        _drop_none({"name": s.name, "url": s.url, "type": s.kind, "description": s.description})
        for s in doc.source_descriptions
    ]
    out["workflows"] = [_workflow_to_dict(w) for w in doc.workflows]
    if doc.components is not None:
        c = doc.components
        comp = {
            "inputs": c.inputs or None,
            "schemas": c.schemas or None,
            "parameters": {k: parameter_to_dict(v) for k, v in c.parameters.items()} or None,
            "successActions": {k: action_to_dict(v) for k, v in c.success_actions.items()} or None,
            "failureActions": {k: action_to_dict(v) for k, v in c.failure_actions.items()} or None,
        }
        out["components"] = _drop_none(comp)
    return out
