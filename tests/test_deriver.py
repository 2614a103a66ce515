import pytest

from arazzoflow.catalog import guess_http_method, method_for_step
from arazzoflow.graph.deriver import derive_graph, derive_workflow_graph, sequential_pairs
from arazzoflow.graph.elements import DATA, ENTRY, EXIT, FAILURE, INPUT_NODE, OUTPUT_NODE, SEQUENTIAL, SUCCESS
from arazzoflow.model.document import (
    END,
    GOTO,
    OPERATION_ID,
    WORKFLOW_ID,
    Action,
    ActionReference,
    Criterion,
    Document,
    Info,
    OperationRef,
    Parameter,
    Step,
    Workflow,
    goto_action,
)
from arazzoflow.model.errors import NotFoundError, StructuralError


def op(value, kind=OPERATION_ID):
    return OperationRef(kind=kind, value=value)


def wf(*steps, outputs=None, inputs=None):
    return Workflow(workflow_id="wf", steps=tuple(steps), outputs=outputs, inputs=inputs)


def doc_of(workflow):
    return Document(version="1.0.1", info=Info(title="t", version="1"), workflows=(workflow,))


def kinds_between(graph, a, b):
    return sorted(e.kind for e in graph.edges_between(a, b))


def test_linear_workflow():
    g = derive_workflow_graph(wf(Step("step1"), Step("step2"), Step("step3"), outputs={"r": "$steps.step3.outputs.r"}))
    assert [(e.source, e.target, e.kind) for e in g.edges] == [
        (INPUT_NODE, "step1", ENTRY),
        ("step1", "step2", SEQUENTIAL),
        ("step2", "step3", SEQUENTIAL),
        ("step3", OUTPUT_NODE, EXIT),
    ]
    assert g.topo.ordered == ("step1", "step2", "step3")
    assert g.topo.start_step_ids == ("step1",)
    assert g.topo.end_step_ids == ("step3",)
    assert [n.id for n in g.nodes] == [INPUT_NODE, "step1", "step2", "step3", OUTPUT_NODE]


def test_no_outputs_means_no_output_node():
    g = derive_workflow_graph(wf(Step("a"), Step("b")))
    assert not g.has_output
    assert g.edges_of_kind(EXIT) == []


def test_empty_workflow():
    g = derive_workflow_graph(wf())
    assert g.edges == ()
    assert g.topo.ordered == ()
    assert [n.id for n in g.nodes] == [INPUT_NODE]


def test_branching_goto_suppresses_fallthrough():
    start = Step("start", on_success=(Action(name="go", kind=GOTO, target_step_id="end"),))
    g = derive_workflow_graph(wf(start, Step("middle"), Step("end")))

    assert kinds_between(g, "start", "end") == [SUCCESS]
    assert kinds_between(g, "start", "middle") == []
    assert kinds_between(g, "middle", "end") == [SEQUENTIAL]
    assert g.edges_between("start", "end")[0].label == "go"


def test_explicit_goto_to_next_replaces_sequential_edge():
    g = derive_workflow_graph(wf(Step("a", on_success=(goto_action("b"),)), Step("b")))
    assert kinds_between(g, "a", "b") == [SUCCESS]
    assert sequential_pairs(wf(Step("a", on_success=(goto_action("b"),)), Step("b"))) == []


def test_conditional_goto_keeps_fallthrough():
    guarded = Action(name="maybe", kind=GOTO, target_step_id="c", criteria=(Criterion("$statusCode == 204"),))
    g = derive_workflow_graph(wf(Step("a", on_success=(guarded,)), Step("b"), Step("c")))
    assert kinds_between(g, "a", "b") == [SEQUENTIAL]
    assert kinds_between(g, "a", "c") == [SUCCESS]
    assert g.topo.ordered == ("a", "b", "c")


def test_end_action_stops_fallthrough():
    g = derive_workflow_graph(wf(Step("a", on_success=(Action(name="done", kind=END),)), Step("b")))
    assert kinds_between(g, "a", "b") == []
    assert g.topo.start_step_ids == ("a", "b")
    assert set(g.topo.end_step_ids) == {"a", "b"}


def test_goto_other_workflow_stops_fallthrough_without_edge():
    jump = Action(name="sub", kind=GOTO, target_workflow_id="other")
    g = derive_workflow_graph(wf(Step("a", on_success=(jump,)), Step("b")))
    assert kinds_between(g, "a", "b") == []
    assert g.diagnostics == ()


def test_reference_actions_are_opaque():
    ref = ActionReference("$components.successActions.toB")
    g = derive_workflow_graph(wf(Step("a", on_success=(ref,)), Step("b")))
    # the reference neither adds an edge nor suppresses the fallthrough
    assert kinds_between(g, "a", "b") == [SEQUENTIAL]
    assert g.diagnostics == ()


@pytest.mark.parametrize("hide", [False, True])
def test_self_retry(hide):
    retry = Action(name="again", kind="retry", target_step_id="risky", retry_delay=2, retry_limit=3)
    workflow = wf(Step("risky", on_failure=(retry,)), Step("next"))
    shown = derive_workflow_graph(workflow)
    g = derive_workflow_graph(workflow, hide_failure_edges=hide)

    loops = [e for e in g.edges_between("risky", "risky") if e.kind == FAILURE]
    assert len(loops) == (0 if hide else 1)
    others = [e for e in shown.edges if e.kind != FAILURE]
    assert [e for e in g.edges if e.kind != FAILURE] == others
    if not hide:
        assert loops[0].data["retry"] is True
        assert loops[0].data["retryLimit"] == 3


def test_retry_without_target_retries_owner():
    retry = Action(name="retry", kind="retry")
    g = derive_workflow_graph(wf(Step("s", on_failure=(retry,))))
    assert kinds_between(g, "s", "s") == [FAILURE]
    assert not g.edges_between("s", "s")[0].invalid


def test_self_loop_does_not_change_start_end():
    loop = Step("poll", on_success=(Action(name="again", kind=GOTO, target_step_id="poll",
                                          criteria=(Criterion("$response.body#/state != 'done'"),)),))
    g = derive_workflow_graph(wf(loop, Step("after")))
    assert g.topo.start_step_ids == ("poll",)
    assert g.topo.end_step_ids == ("after",)
    assert kinds_between(g, "poll", "poll") == [SUCCESS]


def test_failure_goto_does_not_shape_order():
    back = Action(name="fallback", kind=GOTO, target_step_id="a")
    g = derive_workflow_graph(wf(Step("a"), Step("b", on_failure=(back,))))
    assert g.topo.start_step_ids == ("a",)
    assert g.topo.end_step_ids == ("b",)
    assert kinds_between(g, "b", "a") == [FAILURE]


def test_dangling_targets_become_invalid_self_edges():
    a = Step(
        "a",
        parameters=(Parameter("id", "$steps.b.outputs.x", "path"),),
        on_success=(goto_action("ghost"),),
        on_failure=(Action(name="oops", kind=GOTO, target_step_id="nowhere"),),
    )
    g = derive_workflow_graph(wf(a, Step("c")))

    invalid = [e for e in g.edges if e.invalid]
    assert sorted(e.kind for e in invalid) == [DATA, FAILURE, SUCCESS]
    assert all(e.source == e.target == "a" for e in invalid)
    assert {d.target for d in g.diagnostics} == {"ghost", "nowhere", "b"}
    assert g.node("a").payload["invalidLinkCount"] == 3
    assert g.node("c").payload["invalidLinkCount"] == 0
    # a dangling goto does not suppress the fallthrough
    assert kinds_between(g, "a", "c") == [SEQUENTIAL]


def test_hidden_failure_edges_keep_diagnostics():
    a = Step("a", on_failure=(Action(name="oops", kind=GOTO, target_step_id="nowhere"),))
    g = derive_workflow_graph(wf(a), hide_failure_edges=True)
    assert g.edges_of_kind(FAILURE) == []
    assert len(g.diagnostics) == 1
    assert g.node("a").payload["invalidLinkCount"] == 1


def test_multiple_data_edges_between_same_pair():
    a = Step("a", outputs={"x": "$response.body#/x", "y": "$response.body#/y"})
    b = Step("b", parameters=(Parameter("x", "$steps.a.outputs.x"), Parameter("y", "$steps.a.outputs.y")))
    g = derive_workflow_graph(wf(a, b))
    data = [e for e in g.edges_between("a", "b") if e.kind == DATA]
    assert len(data) == 2
    assert len({e.id for e in data}) == 2
    assert g.node("b").payload["hasDataLinks"] is True


def test_data_edges_from_mixed_expression():
    login = Step("login", outputs={"token": "$response.body#/token"})
    call = Step("call", parameters=(
        Parameter("auth", "$inputs.scheme $steps.login.outputs.token"),
        Parameter("url", "$url"),
    ))
    g = derive_workflow_graph(wf(login, call))
    data = g.edges_of_kind(DATA)
    assert [e.id for e in data] == ["data:login.token->call.auth:0"]
    assert g.node("call").payload["hasDataLinks"] is True

    orphan = derive_workflow_graph(wf(call))
    assert [(d.kind, d.target) for d in orphan.diagnostics] == [(DATA, "login")]
    assert orphan.node("call").payload["invalidLinkCount"] == 1


def test_duplicate_step_ids_are_fatal():
    with pytest.raises(StructuralError) as err:
        derive_graph(doc_of(wf(Step("a"), Step("b"), Step("a"))), "wf")
    assert err.value.issues == ["[STRUCTURE] Duplicate stepId 'a' in workflow 'wf'"]


def test_pure_cycle_every_step_is_start():
    g = derive_workflow_graph(wf(Step("x", on_success=(goto_action("y"),)), Step("y", on_success=(goto_action("x"),))))
    assert g.topo.start_step_ids == ("x", "y")
    assert g.topo.end_step_ids == ()
    assert g.topo.ordered == ("x", "y")
    assert len(g.edges_of_kind(ENTRY)) == 2


@pytest.mark.parametrize("n", [1, 2, 5, 12])
def test_totality(n):
    # every step jumps back to the first: cycles everywhere
    steps = [Step(f"s{i}", on_success=(goto_action("s0"),) if i else ()) for i in range(n)]
    g = derive_workflow_graph(wf(*steps))
    assert len(g.topo.ordered) == n
    assert sorted(g.topo.ordered) == sorted(s.step_id for s in steps)


def test_derive_graph_unknown_workflow():
    with pytest.raises(NotFoundError):
        derive_graph(doc_of(wf(Step("a"))), "missing")


def test_derivation_does_not_mutate_document():
    document = doc_of(wf(Step("a", on_success=(goto_action("b"),)), Step("b")))
    before = repr(document)
    derive_graph(document, "wf")
    assert repr(document) == before


def test_input_and_output_payloads():
    g = derive_workflow_graph(wf(
        Step("a"),
        inputs={"type": "object", "properties": {"user": {}, "pass": {}}, "required": ["user"]},
        outputs={"token": "$steps.a.outputs.token"},
    ))
    assert g.node(INPUT_NODE).payload["properties"] == ["user", "pass"]
    assert g.node(INPUT_NODE).payload["required"] == ["user"]
    assert g.node(OUTPUT_NODE).payload["expressions"] == {"token": "$steps.a.outputs.token"}


def test_to_networkx_keeps_parallel_edges():
    a = Step("a")
    b = Step("b", parameters=(Parameter("x", "$steps.a.outputs.x"),))
    G = derive_workflow_graph(wf(a, b)).to_networkx()
    assert G.number_of_edges("a", "b") == 2
    assert G.nodes["a"]["kind"] == "step"


def test_to_dict_shape():
    d = derive_workflow_graph(wf(Step("a"))).to_dict()
    assert d["workflowId"] == "wf"
    assert d["topo"]["ordered"] == ["a"]
    assert d["edges"][0] == {"id": "input->a", "source": "input", "target": "a", "type": "input",
                             "label": None, "invalid": False, "data": {}}


# -- operation hints --------------------------------------------------------

@pytest.mark.parametrize("operation_id,method", [
    ("findPetsByStatus", "GET"),
    ("petstore.listOrders", "GET"),
    ("createUser", "POST"),
    ("updatePet", "PUT"),
    ("deletePet", "DELETE"),
    ("patchOrder", "PATCH"),
    ("doSomething", None),
    (None, None),
])
def test_guess_http_method(operation_id, method):
    assert guess_http_method(operation_id) == method


def test_catalog_overrides_heuristic():
    step = Step("s", operation=op("petstore.findPets"))
    assert method_for_step(step) == "GET"
    assert method_for_step(step, {"petstore.findPets": "post"}) == "POST"
    assert method_for_step(step, {"findPets": "put"}) == "PUT"
    assert method_for_step(step, lambda key: None) == "GET"


def test_sub_workflow_step_has_no_method():
    step = Step("s", operation=op("other", kind=WORKFLOW_ID))
    assert method_for_step(step) is None
    assert method_for_step(Step("bare")) is None


def test_catalog_reaches_node_payload():
    g = derive_graph(doc_of(wf(Step("s", operation=op("api.thing")))), "wf", catalog={"api.thing": "delete"})
    assert g.node("s").payload["method"] == "DELETE"
    assert g.node("s").payload["sourceName"] == "api"
