# arazzoflow/model/checker.py

from collections import Counter
from typing import Iterable, List

from arazzoflow.expressions.classifier import COMPONENTS, classify
from arazzoflow.model.document import (
    ON_FAILURE,
    ON_SUCCESS,
    Document,
    Step,
    is_reference_action,
    is_reference_parameter,
)
from arazzoflow.model.errors import StructuralError

_ACTION_CATEGORY = {ON_SUCCESS: "successActions", ON_FAILURE: "failureActions"}


def _duplicates(values: Iterable[str]) -> List[str]:
    counts = Counter(values)
    return sorted(v for v, n in counts.items() if n > 1)


def _reference_issue(doc: Document, where: str, reference: str, expected_category: str) -> List[str]:
    """Check one $components.<category>.<name> pointer resolves."""
    desc = classify(reference)
    if desc is None or desc.kind != COMPONENTS:
        return [f"[STRUCTURE] {where}: '{reference}' is not a component reference"]
    if desc.category != expected_category:
        return [f"[STRUCTURE] {where}: '{reference}' must point at components.{expected_category}"]
    if doc.components is None or desc.name not in doc.components.category(desc.category):
        return [f"[STRUCTURE] {where}: reusable component '{desc.category}.{desc.name}' does not exist"]
    return []


def _step_reference_issues(doc: Document, workflow_id: str, step: Step) -> List[str]:
    issues: List[str] = []
    where = f"workflow '{workflow_id}' step '{step.step_id}'"
    for list_name, idx, action in step.actions():
        if is_reference_action(action):
            issues += _reference_issue(doc, f"{where} {list_name}[{idx}]",
                                       action.reference, _ACTION_CATEGORY[list_name])
    for idx, param in enumerate(step.parameters):
        if is_reference_parameter(param):
            issues += _reference_issue(doc, f"{where} parameters[{idx}]", param.reference, "parameters")
    return issues


def structural_issues(doc: Document) -> List[str]:
    """
    Collect document-level problems, tagged [STRUCTURE]:
      - missing version / info
      - empty workflow list
      - duplicate workflowId, duplicate sourceDescription name
      - duplicate stepId within a workflow
      - action or parameter references to non-existent reusable components

    Expression semantics ($steps.x naming a real output) are not checked here.
    """
    issues: List[str] = []

    if not doc.version:
        issues.append("[STRUCTURE] Missing required field: arazzo (version)")
    if doc.info is None:
        issues.append("[STRUCTURE] Missing required field: info")
    if not doc.workflows:
        issues.append("[STRUCTURE] Missing or empty required field: workflows")

    for wid in _duplicates(w.workflow_id for w in doc.workflows):
        issues.append(f"[STRUCTURE] Duplicate workflowId: '{wid}'")
    for name in _duplicates(s.name for s in doc.source_descriptions):
        issues.append(f"[STRUCTURE] Duplicate sourceDescription name: '{name}'")

    for wf in doc.workflows:
        for sid in _duplicates(wf.step_ids):
            issues.append(f"[STRUCTURE] Duplicate stepId '{sid}' in workflow '{wf.workflow_id}'")
        for step in wf.steps:
            issues += _step_reference_issues(doc, wf.workflow_id, step)

    return issues


def is_structurally_valid(doc: Document) -> bool:
    """Return True, or raise StructuralError enumerating every problem found."""
    issues = structural_issues(doc)
    if issues:
        raise StructuralError(issues)
    return True
