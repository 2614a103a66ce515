# arazzoflow/editor/history.py
from __future__ import annotations

from typing import Any, Callable, List, Optional

from arazzoflow.editor.state import EditorState
from arazzoflow.utils.logger import get_logger

log = get_logger("editor.history")


class EditorHistory:
    """
    Undo/redo over EditorState snapshots.

    States are immutable, so a snapshot is just the previous value. A failed
    operation raises before anything is recorded.
    """

    def __init__(self, state: Optional[EditorState] = None, limit: int = 100):
        if limit < 1:
            raise ValueError("history limit must be >= 1")
        self.state: EditorState = state if state is not None else EditorState()
        self.limit = limit
        self._undo: List[EditorState] = []
        self._redo: List[EditorState] = []

    @property
    def can_undo(self) -> bool:
        return bool(self._undo)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    def apply(self, operation: Callable[..., EditorState], *args: Any, **kwargs: Any) -> EditorState:
        """Run ``operation(state, *args, **kwargs)`` and record the previous state."""
        new_state = operation(self.state, *args, **kwargs)
        if new_state is self.state:
            return self.state
        self._undo.append(self.state)
        if len(self._undo) > self.limit:
            del self._undo[0]
        self._redo.clear()
        self.state = new_state
        log.debug("applied %s (undo depth %d)", getattr(operation, "__name__", operation), len(self._undo))
        return self.state

    def undo(self) -> EditorState:
        if not self._undo:
            return self.state
        self._redo.append(self.state)
        self.state = self._undo.pop()
        return self.state

    def redo(self) -> EditorState:
        if not self._redo:
            return self.state
        self._undo.append(self.state)
        self.state = self._redo.pop()
        return self.state
