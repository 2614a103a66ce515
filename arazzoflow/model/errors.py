# arazzoflow/model/errors.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional


class ArazzoFlowError(Exception):
    """Base class for every error raised by arazzoflow."""


class StructuralError(ArazzoFlowError):
    """
    Document-level problem (missing required fields, duplicate identifiers,
    unresolvable component references). ``issues`` holds one human-readable
    message per problem found.
    """

    def __init__(self, issues: Iterable[str]):
        self.issues: List[str] = list(issues)
        super().__init__("; ".join(self.issues) or "structural error")


class NotFoundError(ArazzoFlowError, LookupError):
    """A requested workflow or step id does not exist."""

    def __init__(self, kind: str, ident: str, scope: Optional[str] = None):
        self.kind = kind
        self.ident = ident
        self.scope = scope
        where = f" in workflow '{scope}'" if scope else ""
        super().__init__(f"{kind} not found: '{ident}'{where}")


class InvalidEditError(ArazzoFlowError, ValueError):
    """An edit that cannot be applied to the current editor state."""


@dataclass(frozen=True)
class DanglingReference:
    """
    A navigation or data reference naming a step that does not exist in the
    workflow. This is diagnostic data attached to a derived graph, never raised.
    """
    step_id: str
    kind: str          # "success" | "failure" | "data"
    target: str
    detail: str = ""

    def message(self) -> str:
        what = {"success": "onSuccess action", "failure": "onFailure action",
                "data": "data expression"}.get(self.kind, self.kind)
        extra = f" ({self.detail})" if self.detail else ""
        return f"[REFERENCE] Step '{self.step_id}' {what} targets unknown step '{self.target}'{extra}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stepId": self.step_id,
            "kind": self.kind,
            "target": self.target,
            "detail": self.detail,
        }
