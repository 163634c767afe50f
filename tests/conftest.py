import copy

import pytest


def node(name, node_type, node_id=None, type_version=1, parameters=None, position=None, **extra):
    n = {
        "id": node_id or name.lower().replace(" ", "-"),
        "name": name,
        "type": node_type,
        "typeVersion": type_version,
        "position": position or [0, 0],
        "parameters": parameters or {},
    }
    n.update(extra)
    return n


def main_link(target, index=0):
    return {"node": target, "type": "main", "index": index}


TWO_NODE = {
    "name": "Two node",
    "nodes": [
        node("Manual Trigger", "n8n-nodes-base.manualTrigger", "t1"),
        node("Set", "n8n-nodes-base.set", "s1", type_version=3.4, position=[200, 0]),
    ],
    "connections": {"Manual Trigger": {"main": [[main_link("Set")]]}},
}


@pytest.fixture
def two_node():
    return copy.deepcopy(TWO_NODE)


@pytest.fixture
def if_workflow():
    return {
        "name": "Branching",
        "nodes": [
            node("Start", "n8n-nodes-base.manualTrigger", "n1"),
            node("Check", "n8n-nodes-base.if", "n2", type_version=2.2),
            node("Yes", "n8n-nodes-base.set", "n3", type_version=3.4),
            node("No", "n8n-nodes-base.set", "n4", type_version=3.4),
        ],
        "connections": {"Start": {"main": [[main_link("Check")]]}},
    }
