"""JSON-schema validation of model-supplied tool arguments."""

from __future__ import annotations

import logging

import jsonschema

from linchat.tools.base import Tool, normalize_schema

logger = logging.getLogger(__name__)


def validate_arguments(tool: Tool, arguments: dict) -> str | None:
    """
    Check *arguments* against the tool's parameter schema.

    Returns a short error message, or ``None`` when the arguments are
    acceptable.  A tool whose own schema is broken is not held against the
    model: the problem is logged and the call goes through.
    """
    try:
        jsonschema.validate(instance=arguments, schema=normalize_schema(tool.parameters))
    except jsonschema.ValidationError as e:
        path = ".".join(str(p) for p in e.absolute_path)
        return f"{path}: {e.message}" if path else e.message
    except jsonschema.SchemaError:
        logger.exception("Tool %s has an invalid parameter schema", tool.name)
    return None
