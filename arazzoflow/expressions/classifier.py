# arazzoflow/expressions/classifier.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
import re

# ---------------------------------------------------------------------------
# Descriptor
# ---------------------------------------------------------------------------

INPUTS = "inputs"
STEPS = "steps"
URL = "url"
METHOD = "method"
STATUS_CODE = "statusCode"
REQUEST = "request"
RESPONSE = "response"
COMPONENTS = "components"

COMPONENT_CATEGORIES = ("inputs", "parameters", "successActions", "failureActions")


@dataclass(frozen=True)
class ExpressionDescriptor:
    """
    Typed view of a runtime expression.

    Only the fields relevant to ``kind`` are set:
      - inputs:      name
      - steps:       step_id, field
      - request:     part (header|query|path|body), name (not for body)
      - response:    part (header|body), name (not for body)
      - components:  category, name
    """
    kind: str
    name: Optional[str] = None
    step_id: Optional[str] = None
    field: Optional[str] = None
    part: Optional[str] = None
    category: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"type": self.kind}
        if self.kind == STEPS:
            out["source"] = self.step_id
            out["field"] = self.field
        elif self.kind == INPUTS:
            out["source"] = self.name
        elif self.kind in (REQUEST, RESPONSE):
            out["part"] = self.part
            if self.name is not None:
                out["name"] = self.name
        elif self.kind == COMPONENTS:
            out["category"] = self.category
            out["name"] = self.name
        return out


# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

_NAME = r"[\w-]+"
# bare tokens must not run into a longer identifier ($urlFoo, $request.bodyX)
_END = r"(?![\w-])"

_URL_RE = re.compile(r"\$url" + _END)
_METHOD_RE = re.compile(r"\$method" + _END)
_STATUS_RE = re.compile(r"\$statusCode" + _END)
_INPUTS_RE = re.compile(rf"\$inputs\.({_NAME})")
_STEPS_RE = re.compile(rf"\$steps\.({_NAME})\.outputs\.({_NAME})")
_REQUEST_BODY_RE = re.compile(r"\$request\.body" + _END)
_REQUEST_PART_RE = re.compile(rf"\$request\.(header|query|path)\.({_NAME})")
_RESPONSE_BODY_RE = re.compile(r"\$response\.body" + _END)
_RESPONSE_HEADER_RE = re.compile(rf"\$response\.header\.({_NAME})")
_COMPONENTS_RE = re.compile(
    rf"\$components\.({'|'.join(COMPONENT_CATEGORIES)})\.({_NAME})"
)

# any "$steps.<id>" token, with or without the ".outputs.<field>" tail
_STEP_TOKEN_RE = re.compile(rf"\$steps\.({_NAME})(?:\.outputs\.({_NAME}))?")


def _inputs(m: re.Match) -> ExpressionDescriptor:
    return ExpressionDescriptor(kind=INPUTS, name=m.group(1))


def _steps(m: re.Match) -> ExpressionDescriptor:
    return ExpressionDescriptor(kind=STEPS, step_id=m.group(1), field=m.group(2))


def _request_part(m: re.Match) -> ExpressionDescriptor:
    return ExpressionDescriptor(kind=REQUEST, part=m.group(1), name=m.group(2))


def _response_header(m: re.Match) -> ExpressionDescriptor:
    return ExpressionDescriptor(kind=RESPONSE, part="header", name=m.group(1))


def _components(m: re.Match) -> ExpressionDescriptor:
    return ExpressionDescriptor(kind=COMPONENTS, category=m.group(1), name=m.group(2))


# Precedence order: the first pattern found anywhere in the text wins.
_RULES = (
    (_URL_RE, lambda m: ExpressionDescriptor(kind=URL)),
    (_METHOD_RE, lambda m: ExpressionDescriptor(kind=METHOD)),
    (_STATUS_RE, lambda m: ExpressionDescriptor(kind=STATUS_CODE)),
    (_INPUTS_RE, _inputs),
    (_STEPS_RE, _steps),
    (_REQUEST_BODY_RE, lambda m: ExpressionDescriptor(kind=REQUEST, part="body")),
    (_REQUEST_PART_RE, _request_part),
    (_RESPONSE_BODY_RE, lambda m: ExpressionDescriptor(kind=RESPONSE, part="body")),
    (_RESPONSE_HEADER_RE, _response_header),
    (_COMPONENTS_RE, _components),
)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def classify(text: Any) -> Optional[ExpressionDescriptor]:
    """
    Classify a reference string.

    Matching is lenient: a reference embedded in a longer sentence
    ("Bearer $steps.login.outputs.token") is still recognized, so literal
    text that happens to contain a ``$``-prefixed token is classified too.

    Returns None for anything that is not a recognized expression; callers
    treat that as a literal value.
    """
    if not isinstance(text, str) or "$" not in text:
        return None
    for pattern, build in _RULES:
        m = pattern.search(text)
        if m:
            return build(m)
    return None


def is_expression(text: Any) -> bool:
    return classify(text) is not None


def find_step_references(text: Any) -> List[Tuple[str, Optional[str]]]:
    """
    Return every (step_id, field) referenced via ``$steps.<id>`` in text.
    ``field`` is None when the token has no ``.outputs.<field>`` tail.
    """
    if not isinstance(text, str):
        return []
    return [(m.group(1), m.group(2)) for m in _STEP_TOKEN_RE.finditer(text)]


def rewrite_step_references(text: str, old_id: str, new_id: str) -> str:
    """
    Rewrite every ``$steps.<old_id>`` token to ``$steps.<new_id>``.
    Only exact id matches are rewritten ($steps.fetchAll is untouched when
    renaming fetch).
    """
    pattern = re.compile(r"\$steps\." + re.escape(old_id) + r"(?![\w-])")
    return pattern.sub(lambda _m: f"$steps.{new_id}", text)


def references_step(text: Any, step_id: str) -> bool:
    return any(sid == step_id for sid, _ in find_step_references(text))
