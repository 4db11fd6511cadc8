"""Render a tracker schema as an example instance in JSON or XML.

The example shows the model the expected output shape. The XML form repeats
an element per array item and never wraps the fields in a document element,
so ``parse_response(..., "xml", schema=...)`` reads it back unchanged.
"""
import json
from typing import Any, List
from xml.sax.saxutils import escape

from ztracker.schemas.tracker_schema import (
    ArrayNode,
    ObjectNode,
    parse_schema,
)

STRING_PLACEHOLDER = "string"
XML_INDENT = "  "
# Used when the schema itself is not an object, so there is no field name.
XML_VALUE_TAG = "value"


def schema_to_example(schema: Any, response_format: str) -> str:
    """Example instance for ``schema`` serialized as ``"json"`` or ``"xml"``."""
    example = build_example(schema)
    if response_format == "json":
        return json.dumps(example, indent=2, ensure_ascii=False)
    if response_format == "xml":
        return _to_xml(example)
    raise ValueError(f"Unsupported example format: {response_format!r}")


def build_example(schema: Any) -> Any:
    """Example value for a raw schema (object, list or scalar)."""
    return _example_for(parse_schema(schema))


def _example_for(node: Any) -> Any:
    if isinstance(node, ObjectNode):
        return {name: _example_for(child) for name, child in node.properties.items()}
    if isinstance(node, ArrayNode):
        return [_example_for(node.items) if node.items is not None else STRING_PLACEHOLDER]

    kind = node.primary_type
    if kind == "string":
        if node.description:
            return node.description
        if node.enum:
            return node.enum[0]
        return STRING_PLACEHOLDER
    if node.enum:
        return node.enum[0]
    if kind in ("number", "integer"):
        return 0
    if kind == "boolean":
        return False
    return None


# ---------------------------------------------------------------------------
# XML serialization
# ---------------------------------------------------------------------------

def _to_xml(example: Any) -> str:
    if isinstance(example, dict):
        lines: List[str] = []
        for name, value in example.items():
            lines.extend(_element_lines(name, value, 0))
        return "\n".join(lines)
    return "\n".join(_element_lines(XML_VALUE_TAG, example, 0))


def _element_lines(tag: str, value: Any, depth: int) -> List[str]:
    indent = XML_INDENT * depth

    if isinstance(value, list):
        # One element per item, all sharing the field's tag.
        lines: List[str] = []
        for item in value:
            lines.extend(_element_lines(tag, item, depth))
        return lines

    if isinstance(value, dict):
        if not value:
            return [f"{indent}<{tag}></{tag}>"]
        lines = [f"{indent}<{tag}>"]
        for name, child in value.items():
            lines.extend(_element_lines(name, child, depth + 1))
        lines.append(f"{indent}</{tag}>")
        return lines

    return [f"{indent}<{tag}>{escape(_scalar_text(value))}</{tag}>"]


def _scalar_text(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
