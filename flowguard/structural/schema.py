# flowguard/structural/schema.py
# Top-level shape only; per-node and per-connection rules live in the validators,
# which need to keep going after the first violation.
WORKFLOW_SHAPE_SCHEMA = {
    "type": "object",
    "required": ["nodes", "connections"],
    "properties": {
        "nodes": {
            "type": "array",
            "items": {"type": "object"},
        },
        "connections": {
            "type": "object",
        },
    },
    "additionalProperties": True,
}

# field -> (message when missing, message when present with the wrong type)
SHAPE_MESSAGES = {
    "nodes": ("Workflow must have a nodes array", "nodes must be an array"),
    "connections": ("Workflow must have a connections object", "connections must be an object"),
}
