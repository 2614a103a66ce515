# arazzoflow/catalog.py
from __future__ import annotations

from typing import Callable, Mapping, Optional, Union

from arazzoflow.model.document import OPERATION_ID, Step

# An operation catalog is either a mapping "operation id -> method" or a
# callable returning the method (or None). Keys may be qualified
# ("petstore.findPets") or bare ("findPets").
OperationCatalog = Union[Mapping[str, str], Callable[[str], Optional[str]]]

# checked in order; first keyword contained in the operation name wins
_METHOD_KEYWORDS = (
    ("GET", ("get", "find", "list", "search", "retrieve", "verify")),
    ("POST", ("post", "create", "place", "add", "log", "upsert")),
    ("PUT", ("put", "update")),
    ("DELETE", ("delete", "remove")),
    ("PATCH", ("patch",)),
)


def guess_http_method(operation_id: Optional[str]) -> Optional[str]:
    """Naming heuristic: findPetsByStatus -> GET, createUser -> POST, ..."""
    if not operation_id:
        return None
    op = operation_id.rsplit(".", 1)[-1].lower()
    for method, keywords in _METHOD_KEYWORDS:
        if any(k in op for k in keywords):
            return method
    return None


def _lookup(catalog: OperationCatalog, key: str) -> Optional[str]:
    if callable(catalog):
        return catalog(key)
    return catalog.get(key)


def method_for_step(step: Step, catalog: Optional[OperationCatalog] = None) -> Optional[str]:
    """
    HTTP method hint for a step: catalog first (qualified id, then bare
    name), naming heuristic otherwise. Steps that call an operationPath or a
    sub-workflow only get a catalog answer.
    """
    op = step.operation
    if op is None:
        return None
    if catalog is not None:
        method = _lookup(catalog, op.value)
        if method is None and op.operation_name != op.value:
            method = _lookup(catalog, op.operation_name)
        if method:
            return method.upper()
    if op.kind == OPERATION_ID:
        return guess_http_method(op.value)
    return None
