from dataclasses import replace

import pytest

from arazzoflow.editor import operations as ops
from arazzoflow.editor.state import EditorState, initial_state
from arazzoflow.graph.deriver import derive_graph
from arazzoflow.graph.elements import DATA, SEQUENTIAL, SUCCESS
from arazzoflow.graph.layout import Position
from arazzoflow.model.document import (
    GOTO,
    RETRY,
    WORKFLOW_ID,
    Action,
    ActionReference,
    Criterion,
    Document,
    Info,
    OperationRef,
    Parameter,
    RequestBody,
    Step,
    Workflow,
    goto_action,
)
from arazzoflow.model.errors import InvalidEditError, NotFoundError, StructuralError


def make_state(*steps, outputs=None, **kw) -> EditorState:
    wf = Workflow(workflow_id="wf", steps=tuple(steps), outputs=outputs)
    doc = Document(version="1.0.1", info=Info(title="t", version="1"), workflows=(wf,))
    return EditorState(document=doc, **kw)


def step_of(state, step_id) -> Step:
    return next(s for s in state.workflow.steps if s.step_id == step_id)


# -- add / delete -----------------------------------------------------------

def test_initial_state_uses_default_document():
    s = initial_state()
    assert s.workflow.workflow_id == "workflow-1"
    assert s.workflow.steps == ()


def test_add_step_appends_and_stores_position():
    s = ops.add_step(make_state(Step("a")), Step("b"), Position(10, 20))
    assert s.workflow.step_ids == ["a", "b"]
    assert s.positions["b"] == Position(10, 20)


def test_add_step_duplicate_id():
    s = make_state(Step("a"))
    with pytest.raises(StructuralError):
        ops.add_step(s, Step("a"))


def test_delete_step_strips_actions_and_selection():
    ref = ActionReference("$components.successActions.toB")
    s = make_state(
        Step("a", on_success=(goto_action("b"), goto_action("c"), ref),
             on_failure=(Action(name="back", kind=RETRY, target_step_id="b"),)),
        Step("b"),
        Step("c", parameters=(Parameter("x", "$steps.b.outputs.x"),)),
        selected_step_id="b", selected_node_type="step", positions={"b": Position(1, 2)},
    )
    out = ops.delete_step(s, "b")

    a = step_of(out, "a")
    assert a.on_success == (goto_action("c"), ref)
    assert a.on_failure == ()  # emptied, never None
    assert out.selected_step_id is None and out.selected_node_type is None
    assert "b" not in out.positions
    # data expression is left in place and surfaces as a dangling reference
    assert step_of(out, "c").parameters[0].value == "$steps.b.outputs.x"
    g = derive_graph(out.document, "wf")
    assert [d.target for d in g.diagnostics] == ["b"]
    assert g.edges_between("c", "c")[0].kind == DATA


def test_delete_safety_no_action_targets_deleted_step():
    s = make_state(Step("a", on_success=(goto_action("x"),)), Step("x", on_failure=(Action(name="r", kind=RETRY, target_step_id="x"),)),
                   Step("y", on_failure=(Action(name="g", kind=GOTO, target_step_id="x"),)))
    out = ops.delete_step(s, "x")
    for st in out.workflow.steps:
        for _, _, a in st.actions():
            assert getattr(a, "target_step_id", None) != "x"


def test_delete_unknown_step():
    with pytest.raises(NotFoundError):
        ops.delete_step(make_state(Step("a")), "zzz")


# -- rename -----------------------------------------------------------------

def test_rename_closure():
    s = make_state(
        Step("fetch", outputs={"items": "$response.body"},
             on_failure=(Action(name="retry-fetch", kind=RETRY, target_step_id="fetch"),)),
        Step("fetchAll", parameters=(Parameter("q", "$steps.fetch.outputs.items"),)),
        Step("use",
             parameters=(Parameter("items", "$steps.fetch.outputs.items"),
                         Parameter("all", "$steps.fetchAll.outputs.items")),
             request_body=RequestBody(payload={"ids": ["$steps.fetch.outputs.items"], "n": 3}),
             success_criteria=(Criterion("$steps.fetch.outputs.items != null"),),
             on_success=(goto_action("fetch"),
                         Action(name="again", kind=GOTO, target_step_id="fetch",
                                criteria=(Criterion("$steps.fetch.outputs.items == []"),)),
                         ActionReference("$components.successActions.fetch"))),
        outputs={"items": "$steps.fetch.outputs.items"},
        selected_step_id="fetch", positions={"fetch": Position(0, 140)},
    )
    out = ops.rename_step(s, "fetch", "load")

    assert out.workflow.step_ids == ["load", "fetchAll", "use"]
    load = step_of(out, "load")
    assert load.on_failure[0].target_step_id == "load"
    assert load.on_failure[0].name == "retry-load"

    use = step_of(out, "use")
    assert use.parameters[0].value == "$steps.load.outputs.items"
    assert use.parameters[1].value == "$steps.fetchAll.outputs.items"
    assert use.request_body.payload == {"ids": ["$steps.load.outputs.items"], "n": 3}
    assert use.success_criteria[0].condition == "$steps.load.outputs.items != null"
    assert use.on_success[0] == goto_action("load")
    assert use.on_success[1].criteria[0].condition == "$steps.load.outputs.items == []"
    assert use.on_success[2] == ActionReference("$components.successActions.fetch")
    assert step_of(out, "fetchAll").parameters[0].value == "$steps.load.outputs.items"

    assert out.workflow.outputs == {"items": "$steps.load.outputs.items"}
    assert out.selected_step_id == "load"
    assert out.positions == {"load": Position(0, 140)}

    # closure: no structural reference to the old id survives
    g = derive_graph(out.document, "wf")
    assert g.diagnostics == ()
    for st in out.workflow.steps:
        for _, _, a in st.actions():
            assert getattr(a, "target_step_id", None) != "fetch"


def test_rename_short_id_rederives_action_names():
    s = make_state(
        Step("go", on_success=(goto_action("o"),)),
        Step("o", on_failure=(Action(name="retry-o", kind=RETRY, target_step_id="o"),
                              Action(name="loop", kind=GOTO, target_step_id="o"))),
    )
    out = ops.rename_step(s, "o", "x")
    assert step_of(out, "go").on_success == (goto_action("x"),)
    assert [a.name for a in step_of(out, "x").on_failure] == ["retry-x", "loop"]


def test_rename_errors_and_noop():
    s = make_state(Step("a"), Step("b"))
    with pytest.raises(StructuralError):
        ops.rename_step(s, "a", "b")
    with pytest.raises(NotFoundError):
        ops.rename_step(s, "zzz", "c")
    with pytest.raises(InvalidEditError):
        ops.rename_step(s, "a", "")
    assert ops.rename_step(s, "a", "a") is s


def test_failed_edit_leaves_state_untouched():
    s = make_state(Step("a", on_success=(goto_action("b"),)), Step("b"))
    snapshot = repr(s)
    with pytest.raises(StructuralError):
        ops.rename_step(s, "a", "b")
    with pytest.raises(StructuralError):
        ops.update_step(s, "a", description="changed", step_id="b")
    assert repr(s) == snapshot


# -- connect / disconnect ---------------------------------------------------

def test_connect_appends_without_dedup():
    s = make_state(Step("a"), Step("b"))
    out = ops.connect(ops.connect(s, "a", "b"), "a", "b")
    assert step_of(out, "a").on_success == (goto_action("b"), goto_action("b"))
    assert step_of(out, "a").on_success[0].name == "goto-b"


def test_connect_unknown_source():
    with pytest.raises(NotFoundError):
        ops.connect(make_state(Step("a")), "zzz", "a")


def test_disconnect():
    keep = Action(name="end", kind="end")
    s = make_state(Step("a", on_success=(goto_action("b"), keep, goto_action("b"), goto_action("c"))), Step("b"), Step("c"))
    out = ops.disconnect(s, "a", "b")
    assert step_of(out, "a").on_success == (keep, goto_action("c"))
    assert ops.disconnect(out, "a", "b") is out


# -- insert on edge ---------------------------------------------------------

def test_insert_on_goto_edge():
    s = make_state(Step("a", on_success=(goto_action("c"),)), Step("b"), Step("c"))
    out = ops.insert_step_on_edge(s, Step("n"), "a", "c")

    assert step_of(out, "a").on_success == (goto_action("n"),)
    assert step_of(out, "n").on_success == (goto_action("c"),)
    assert out.workflow.step_ids == ["a", "n", "b", "c"]
    assert out.selected_step_id == "n" and out.selected_node_type == "step"

    g = derive_graph(out.document, "wf")
    assert [e.kind for e in g.edges_between("a", "n")] == [SUCCESS]
    assert [e.kind for e in g.edges_between("n", "c")] == [SUCCESS]
    assert g.edges_between("a", "c") == []


def test_insert_on_sequential_edge():
    s = make_state(Step("a"), Step("b"))
    assert [e.kind for e in derive_graph(s.document, "wf").edges_between("a", "b")] == [SEQUENTIAL]

    out = ops.insert_step_on_edge(s, Step("n"), "a", "b", Position(5, 5))
    g = derive_graph(out.document, "wf")
    assert g.edges_between("a", "n") and g.edges_between("n", "b")
    assert g.edges_between("a", "b") == []
    assert out.positions["n"] == Position(5, 5)


def test_insert_keeps_rest_of_graph():
    s = make_state(Step("a"), Step("b"), Step("c"), outputs={"result": "$steps.c.outputs.v"})
    before = derive_graph(s.document, "wf")
    assert list(before.topo.end_step_ids) == ["c"]

    out = ops.insert_step_on_edge(s, Step("n"), "a", "b")
    g = derive_graph(out.document, "wf")
    assert out.workflow.step_ids == ["a", "n", "b", "c"]
    assert list(g.topo.ordered) == ["a", "n", "b", "c"]
    assert list(g.topo.end_step_ids) == ["c"]
    assert g.edges_between("c", "n") == []
    assert g.edges_between("c", "output")
    assert sorted(e.id for e in g.edges) == [
        "c->output", "input->a", "seq:b->c", "success:a->n:0", "success:n->b:0",
    ]


def test_insert_duplicate_id():
    s = make_state(Step("a"), Step("b"))
    with pytest.raises(StructuralError):
        ops.insert_step_on_edge(s, Step("b"), "a", "b")


# -- reorder / update -------------------------------------------------------

def test_reorder_step_keeps_references():
    s = make_state(Step("a", on_success=(goto_action("c"),)), Step("b"), Step("c"))
    out = ops.reorder_step(s, "wf", 2, 0)
    assert out.workflow.step_ids == ["c", "a", "b"]
    assert step_of(out, "a").on_success == (goto_action("c"),)


@pytest.mark.parametrize("frm,to", [(-1, 0), (0, 3), (5, 1)])
def test_reorder_out_of_range(frm, to):
    with pytest.raises(InvalidEditError):
        ops.reorder_step(make_state(Step("a"), Step("b"), Step("c")), "wf", frm, to)


def test_reorder_unknown_workflow():
    with pytest.raises(NotFoundError):
        ops.reorder_step(make_state(Step("a")), "nope", 0, 0)


def test_update_step_fields_and_rename_together():
    s = make_state(Step("a"), Step("b", parameters=(Parameter("x", "$steps.a.outputs.x"),)), selected_step_id="a")
    out = ops.update_step(s, "a", step_id="first", description="entry point",
                          operation=OperationRef(kind="operationId", value="api.getThing"))
    first = step_of(out, "first")
    assert first.description == "entry point"
    assert first.operation.value == "api.getThing"
    assert step_of(out, "b").parameters[0].value == "$steps.first.outputs.x"
    assert out.selected_step_id == "first"


def test_update_step_unknown_field():
    with pytest.raises(InvalidEditError):
        ops.update_step(make_state(Step("a")), "a", colour="red")


# -- ids, selection ---------------------------------------------------------

def test_next_step_id_is_session_scoped():
    s = make_state(Step("step_2"))
    s, first = ops.next_step_id(s)
    s, second = ops.next_step_id(s)
    assert (first, second) == ("step_1", "step_3")
    assert s.step_counter == 3
    # a fresh session starts over
    assert ops.next_step_id(make_state())[1] == "step_1"


def test_new_step_uses_generated_id():
    out = ops.new_step(make_state(Step("step_1")))
    assert out.workflow.step_ids == ["step_1", "step_2"]


def test_selection():
    s = ops.select_step(make_state(Step("a")), "a")
    assert (s.selected_step_id, s.selected_node_type) == ("a", "step")
    s = ops.select_step(s, None)
    assert (s.selected_step_id, s.selected_node_type) == (None, None)
    s = ops.select_node(s, "input")
    assert (s.selected_step_id, s.selected_node_type) == (None, "input")


# -- document & workflows ---------------------------------------------------

def test_add_source():
    s = ops.add_source(make_state(), "petstore")
    assert s.document.source_descriptions[0].url == "uploaded"
    with pytest.raises(StructuralError):
        ops.add_source(s, "petstore")


def test_workflow_lifecycle():
    s = make_state(Step("a"))
    s = ops.add_workflow(s, Workflow(workflow_id="sub"))
    with pytest.raises(StructuralError):
        ops.add_workflow(s, Workflow(workflow_id="sub"))

    s = ops.set_workflow_index(s, 1)
    assert s.workflow.workflow_id == "sub"
    with pytest.raises(InvalidEditError):
        ops.set_workflow_index(s, 2)

    s = ops.delete_workflow(s, "sub")
    assert s.workflow_index == 0 and s.workflow.workflow_id == "wf"
    with pytest.raises(InvalidEditError):
        ops.delete_workflow(s, "wf")


def test_rename_workflow_rewrites_calls_and_gotos():
    caller = Step("call", operation=OperationRef(kind=WORKFLOW_ID, value="sub"),
                  on_success=(Action(name="jump", kind=GOTO, target_workflow_id="sub"),))
    s = ops.add_workflow(make_state(caller), Workflow(workflow_id="sub"))
    out = ops.rename_workflow(s, "sub", "child")

    assert [w.workflow_id for w in out.document.workflows] == ["wf", "child"]
    call = step_of(out, "call")
    assert call.operation.value == "child"
    assert call.on_success[0].target_workflow_id == "child"
    with pytest.raises(StructuralError):
        ops.rename_workflow(out, "child", "wf")


def test_update_workflow():
    s = make_state(Step("a"))
    out = ops.update_workflow(s, "wf", summary="Main flow", workflow_id="main")
    assert out.workflow.workflow_id == "main"
    assert out.workflow.summary == "Main flow"
    with pytest.raises(InvalidEditError):
        ops.update_workflow(s, "wf", nope=1)


def test_load_document_resets_session_view():
    s = make_state(Step("a"), selected_step_id="a", positions={"a": Position(1, 1)})
    other = replace(s.document, workflows=(Workflow(workflow_id="x"),))
    out = ops.load_document(s, other)
    assert out.document is other
    assert out.selected_step_id is None and out.positions == {}
