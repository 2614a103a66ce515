# arazzoflow/model/schema.py
# Minimal structural schema: only what is needed to build the model and the
# graph. Unknown keys (x- extensions, descriptions) are allowed everywhere.

_NON_EMPTY_STRING = {"type": "string", "minLength": 1}

_CRITERION = {
    "type": "object",
    "required": ["condition"],
    "properties": {
        "condition": {"type": "string"},
        "context": {"type": "string"},
        "type": {
            # either a plain criterion type or a {type, version} expression-type object
            "anyOf": [{"type": "string"}, {"type": "object"}]
        },
    },
    "additionalProperties": True,
}

_ACTION = {
    "anyOf": [
        # reusable action reference
        {
            "type": "object",
            "required": ["reference"],
            "properties": {"reference": {"type": "string"}},
            "additionalProperties": True,
        },
        # concrete action
        {
            "type": "object",
            "required": ["name", "type"],
            "properties": {
                "name": {"type": "string"},
                "type": {"enum": ["goto", "end", "retry"]},
                "stepId": {"type": "string"},
                "workflowId": {"type": "string"},
                "criteria": {"type": "array", "items": _CRITERION},
                "retryAfter": {"type": "number", "minimum": 0},
                "retryLimit": {"type": "integer", "minimum": 0},
            },
            "additionalProperties": True,
        },
    ]
}

_PARAMETER = {
    "anyOf": [
        {
            "type": "object",
            "required": ["reference"],
            "properties": {"reference": {"type": "string"}},
            "additionalProperties": True,
        },
        {
            "type": "object",
            "required": ["name"],
            "properties": {
                "name": {"type": "string"},
                "in": {"enum": ["query", "header", "path", "cookie"]},
            },
            "additionalProperties": True,
        },
    ]
}

_STEP = {
    "type": "object",
    "required": ["stepId"],
    "properties": {
        "stepId": _NON_EMPTY_STRING,
        "operationId": {"type": "string"},
        "operationPath": {"type": "string"},
        "workflowId": {"type": "string"},
        "parameters": {"type": "array", "items": _PARAMETER},
        "requestBody": {"type": "object"},
        "successCriteria": {"type": "array", "items": _CRITERION},
        "outputs": {"type": "object", "additionalProperties": {"type": "string"}},
        "onSuccess": {"type": "array", "items": _ACTION},
        "onFailure": {"type": "array", "items": _ACTION},
    },
    "additionalProperties": True,
}

_WORKFLOW = {
    "type": "object",
    "required": ["workflowId", "steps"],
    "properties": {
        "workflowId": _NON_EMPTY_STRING,
        "inputs": {"type": "object"},
        "outputs": {"type": "object", "additionalProperties": {"type": "string"}},
        "parameters": {"type": "array", "items": _PARAMETER},
        "steps": {"type": "array", "items": _STEP},
    },
    "additionalProperties": True,
}

ARAZZO_MINIMAL_SCHEMA = {
    "type": "object",
    "required": ["arazzo", "info", "workflows"],
    "properties": {
        "arazzo": {"type": ["string", "number"]},
        "info": {
            "type": "object",
            "required": ["title", "version"],
            "properties": {
                "title": {"type": "string"},
                "version": {"type": ["string", "number"]},
            },
            "additionalProperties": True,
        },
        "sourceDescriptions": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name", "url"],
                "properties": {
                    "name": _NON_EMPTY_STRING,
                    "url": {"type": "string"},
                    "type": {"enum": ["openapi", "arazzo"]},
                },
                "additionalProperties": True,
            },
        },
        "workflows": {"type": "array", "items": _WORKFLOW, "minItems": 1},
        "components": {
            "type": "object",
            "properties": {
                "inputs": {"type": "object"},
                "schemas": {"type": "object"},
                "parameters": {"type": "object", "additionalProperties": _PARAMETER},
                "successActions": {"type": "object", "additionalProperties": _ACTION},
                "failureActions": {"type": "object", "additionalProperties": _ACTION},
            },
            "additionalProperties": True,
        },
    },
    "additionalProperties": True,
}
