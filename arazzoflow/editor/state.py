# arazzoflow/editor/state.py
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, Optional

from arazzoflow.graph.layout import Position
from arazzoflow.model.document import Document, Workflow, default_document


@dataclass(frozen=True)
class EditorState:
    """
    Everything an editing session needs, as one immutable value.

    ``workflow_index`` selects the active workflow; ``positions`` holds
    user-placed node positions keyed by node id; ``step_counter`` feeds
    ``next_step_id`` so generated ids are scoped to this session.
    """
    document: Document = field(default_factory=default_document)
    workflow_index: int = 0
    selected_step_id: Optional[str] = None
    selected_node_type: Optional[str] = None
    positions: Dict[str, Position] = field(default_factory=dict)
    step_counter: int = 0

    @property
    def workflow(self) -> Workflow:
        return self.document.workflows[self.workflow_index]

    def with_workflow(self, workflow: Workflow, **changes) -> "EditorState":
        """New state with the active workflow replaced (plus any other field changes)."""
        workflows = list(self.document.workflows)
        workflows[self.workflow_index] = workflow
        doc = replace(self.document, workflows=tuple(workflows))
        return replace(self, document=doc, **changes)


def initial_state(document: Optional[Document] = None) -> EditorState:
    return EditorState(document=document or default_document())
