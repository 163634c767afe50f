import pytest

from conftest import main_link, node
from flowguard.connections.cycles import find_cycle, has_cycle
from flowguard.utils.graph import (
    build_graph,
    build_reverse_index,
    is_tool_variant_type,
    is_trigger_node,
    longest_linear_chain,
    node_has_input,
    normalize_node_type,
    to_workflow_format,
)


@pytest.mark.parametrize(
    "raw, short",
    [
        ("n8n-nodes-base.webhook", "nodes-base.webhook"),
        ("@n8n/n8n-nodes-langchain.agent", "nodes-langchain.agent"),
        ("n8n-nodes-langchain.agent", "nodes-langchain.agent"),
        ("nodes-base.set", "nodes-base.set"),
        ("httpRequest", "httpRequest"),
        (None, ""),
    ],
)
def test_normalize_node_type(raw, short):
    assert normalize_node_type(raw) == short


def test_workflow_format_inverts_normalization():
    assert to_workflow_format("nodes-base.webhook") == "n8n-nodes-base.webhook"
    assert to_workflow_format("nodes-langchain.agent") == "@n8n/n8n-nodes-langchain.agent"
    assert to_workflow_format("custom.thing") == "custom.thing"


@pytest.mark.parametrize(
    "node_type, expected",
    [
        ("n8n-nodes-base.webhook", True),
        ("n8n-nodes-base.respondToWebhook", False),
        ("n8n-nodes-base.scheduleTrigger", True),
        ("n8n-nodes-base.manualTrigger", True),
        ("n8n-nodes-base.set", False),
    ],
)
def test_is_trigger_node(node_type, expected):
    assert is_trigger_node(node_type) is expected


@pytest.mark.parametrize(
    "node_type, expected",
    [
        ("nodes-base.slackTool", True),
        ("nodes-base.slackToolTool", False),
        ("nodes-base.slack", False),
        ("Tool", False),
    ],
)
def test_is_tool_variant_type(node_type, expected):
    assert is_tool_variant_type(node_type) is expected


def _workflow(edges, types=None):
    names = sorted({n for e in edges for n in e})
    types = types or {}
    connections = {}
    for src, tgt in edges:
        connections.setdefault(src, {"main": [[]]})["main"][0].append(main_link(tgt))
    return {
        "nodes": [node(n, types.get(n, "n8n-nodes-base.noOp")) for n in names],
        "connections": connections,
    }


def test_build_graph_and_reverse_index():
    wf = _workflow([("A", "B"), ("B", "C")])
    wf["connections"]["A"]["main"][0].append(main_link("Ghost"))
    G = build_graph(wf)
    assert set(G.edges) == {("A", "B"), ("B", "C"), ("A", "Ghost")}
    reverse = build_reverse_index(wf["connections"])
    assert reverse["C"] == [{"source_name": "B", "port_type": "main", "slot": 0, "index": 0}]
    assert node_has_input(wf, "B")
    assert not node_has_input(wf, "A")


def test_plain_cycle_is_found():
    wf = _workflow([("A", "B"), ("B", "C"), ("C", "A")])
    assert find_cycle(wf) == ["A", "B", "C", "A"]


def test_loop_node_cycles_are_allowed():
    wf = _workflow(
        [("Start", "Loop"), ("Loop", "Work"), ("Work", "Loop")],
        types={"Loop": "n8n-nodes-base.splitInBatches"},
    )
    assert not has_cycle(wf)


def test_cycles_downstream_of_loop_node_are_immune():
    wf = _workflow(
        [("Batch", "X"), ("X", "Y"), ("Y", "X")],
        types={"Batch": "n8n-nodes-base.splitInBatches"},
    )
    assert not has_cycle(wf)


def test_longest_linear_chain():
    wf = _workflow([("A", "B"), ("B", "C"), ("A", "D")])
    assert longest_linear_chain(wf) == 3
    assert longest_linear_chain(_workflow([("A", "B"), ("B", "A")])) == 0


def test_longest_linear_chain_handles_long_workflows():
    names = [f"N{i:04d}" for i in range(3000)]
    assert longest_linear_chain(_workflow(list(zip(names, names[1:])))) == 3000
