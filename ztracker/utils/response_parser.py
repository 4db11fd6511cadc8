"""
Model response parsing for tracker generation.

Turns raw model text into a structured value, in JSON or XML framing.

Strategy:
    1. Take the payload of the **last** fenced code block (with or without a
       language tag); without a fence the whole text is the payload.
    2. JSON: parse the payload; if that fails, fall back to the first
       outermost balanced ``{…}`` block that parses. Blocks nested inside a
       larger ``{…}`` or ``[…]`` are never candidates.
    3. XML: parse the payload into a plain tree (repeated siblings become
       lists, leaves become text), then let the schema put back the arrays
       XML cannot express and coerce typed scalars.
"""
import json
import logging
import re
import xml.etree.ElementTree as ET
from typing import Any, Dict, List, Optional

from ztracker.errors import ParseError
from ztracker.schemas.tracker_schema import (
    ArrayNode,
    ObjectNode,
    ScalarNode,
    parse_schema,
)

logger = logging.getLogger(__name__)

JSON_ERROR_MESSAGE = "Model response is not valid JSON."
SUPPORTED_FORMATS = ("json", "xml")

_FENCE_RE = re.compile(r"```[ \t]*[\w+.-]*[ \t]*\r?\n?(.*?)```", re.DOTALL)
_OPEN_FENCE_RE = re.compile(r"```[ \t]*[\w+.-]*[ \t]*\r?\n?(.*)\Z", re.DOTALL)
_XML_DECLARATION_RE = re.compile(r"^\s*<\?xml[^>]*\?>", re.IGNORECASE)
_BARE_AMPERSAND_RE = re.compile(r"&(?!(?:[A-Za-z][A-Za-z0-9]*|#\d+|#x[0-9A-Fa-f]+);)")
_OPENER_RE = re.compile(r"[{\[]")
_INTEGER_RE = re.compile(r"^[+-]?\d+$")
_NUMBER_RE = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?$")

# Synthetic document element so several top-level elements still parse.
_WRAPPER_TAG = "ztracker-response"

# Document elements models commonly put around the fields.
DOCUMENT_WRAPPER_TAGS = frozenset({"root", "tracker", "response", "result", "output", "data"})


def parse_response(raw_text: Optional[str], response_format: str, schema: Any = None) -> Any:
    """
    Extract the structured value from raw model output.

    Args:
        raw_text: Model output, possibly with prose around a fenced block
        response_format: ``"json"`` or ``"xml"``
        schema: JSON Schema the output should conform to; required for XML
            so single repetitions are rebuilt as one-element arrays

    Raises:
        ParseError: the payload is empty, not valid JSON, or not valid XML
    """
    if response_format not in SUPPORTED_FORMATS:
        raise ValueError(f"Unsupported response format: {response_format!r}")
    if not isinstance(raw_text, str) or not raw_text.strip():
        # JSON mode reports every failure with the same message.
        message = JSON_ERROR_MESSAGE if response_format == "json" else "Model response is empty."
        raise ParseError(message, raw=raw_text if isinstance(raw_text, str) else None)

    payload = extract_payload(raw_text)

    if response_format == "json":
        return _parse_json(payload)

    node = parse_schema(schema) if schema is not None else None
    value = _parse_xml(payload, node)
    if node is None:
        return value
    return normalize_xml_value(value, node)


def extract_payload(text: str) -> str:
    """Payload of the last fenced code block, or the whole text when unfenced."""
    blocks = _FENCE_RE.findall(text)
    if blocks:
        return blocks[-1].strip()

    # Unclosed fence: take everything after the opening marker.
    unclosed = _OPEN_FENCE_RE.search(text)
    if unclosed:
        return unclosed.group(1).strip()

    return text.strip()


# ---------------------------------------------------------------------------
# JSON
# ---------------------------------------------------------------------------

def _parse_json(payload: str) -> Any:
    try:
        return json.loads(payload)
    except json.JSONDecodeError as exc:
        candidate = _extract_by_brace_scan(payload)
        if candidate is None:
            logger.warning(
                "json_parse_failed | error=%s | raw_head=%.500s",
                exc, payload[:500],
            )
            raise ParseError(JSON_ERROR_MESSAGE, raw=payload[:500]) from exc

    logger.info("json_parse_repaired | strategy=brace_scan | payload_len=%d", len(payload))
    return json.loads(candidate)


def _extract_by_brace_scan(text: str) -> Optional[str]:
    """
    Find the first top-level balanced ``{…}`` block in *text* that parses.

    Scans forward one outermost block at a time. A block that does not parse
    is skipped whole, so nothing inside it (or inside a ``[…]`` block) is
    ever returned in place of the enclosing value. An unbalanced opener
    ends the scan: everything after it would be a nested fragment.
    """
    search_from = 0

    while True:
        opener = _OPENER_RE.search(text, search_from)
        if opener is None:
            return None

        open_idx = opener.start()
        close_idx = _find_matching_brace(text, open_idx)
        if close_idx is None:
            return None

        if text[open_idx] == "{":
            candidate = text[open_idx : close_idx + 1]
            try:
                json.loads(candidate)
                return candidate
            except json.JSONDecodeError:
                pass

        search_from = close_idx + 1


def _find_matching_brace(text: str, start: int) -> Optional[int]:
    """
    Return the index of the bracket that balances the ``{`` or ``[`` at
    *start*, respecting JSON string literals so embedded brackets don't
    confuse the count.
    """
    depth = 0
    in_string = False
    escape = False

    for i in range(start, len(text)):
        ch = text[i]

        if escape:
            escape = False
            continue

        if ch == "\\":
            if in_string:
                escape = True
            continue

        if ch == '"':
            in_string = not in_string
            continue

        if in_string:
            continue

        if ch in "{[":
            depth += 1
        elif ch in "}]":
            depth -= 1
            if depth == 0:
                return i

    return None


# ---------------------------------------------------------------------------
# XML
# ---------------------------------------------------------------------------

def _parse_xml(payload: str, node: Optional[Any]) -> Dict[str, Any]:
    cleaned = _XML_DECLARATION_RE.sub("", payload, count=1).strip()
    if not cleaned:
        raise ParseError("Model response is empty; expected XML.", raw=payload)

    repaired = _BARE_AMPERSAND_RE.sub("&amp;", cleaned)
    if repaired != cleaned:
        logger.info("xml_parse_repaired | strategy=escape_ampersand")

    try:
        wrapper = ET.fromstring(f"<{_WRAPPER_TAG}>{repaired}</{_WRAPPER_TAG}>")
    except ET.ParseError as exc:
        logger.warning("xml_parse_failed | error=%s | raw_head=%.500s", exc, cleaned[:500])
        raise ParseError(f"Model response is not valid XML: {exc}", raw=cleaned[:500]) from exc

    if len(wrapper) == 0:
        raise ParseError("Model response contains no XML elements.", raw=cleaned[:500])

    return _element_to_value(_document_root(wrapper, node))


def _document_root(wrapper: ET.Element, node: Optional[Any]) -> ET.Element:
    """
    Pick the element whose children are the tracker fields.

    With an object schema, a lone element with children is a wrapper
    (``<root>``, ``<tracker>``…) unless the schema declares it as a field.
    Without one, only the conventional wrapper tags are unwrapped.
    """
    if len(wrapper) != 1:
        return wrapper
    only = wrapper[0]
    if len(only) == 0:
        return wrapper
    tag = _local_name(only.tag)
    if isinstance(node, ObjectNode):
        return wrapper if tag in node.properties else only
    return only if tag.lower() in DOCUMENT_WRAPPER_TAGS else wrapper


def _element_to_value(element: ET.Element) -> Any:
    children = list(element)
    if not children:
        return (element.text or "").strip()

    result: Dict[str, Any] = {}
    for child in children:
        tag = _local_name(child.tag)
        value = _element_to_value(child)
        if tag not in result:
            result[tag] = value
        elif isinstance(result[tag], list):
            # Element values are dicts or strings, so a list means "repeated".
            result[tag].append(value)
        else:
            result[tag] = [result[tag], value]
    return result


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1] if tag.startswith("{") else tag


def normalize_xml_value(value: Any, node: Any) -> Any:
    """
    Reshape an XML-derived value to match its schema node.

    - array fields: a single element becomes a one-element list, an empty
      element an empty list
    - object fields: recurse into declared properties, keep undeclared ones
    - scalar fields: coerce text for number / integer / boolean / null

    Repeated elements for a field the schema does not declare as an array
    stay a list; each element is still normalized against the field schema.
    """
    if isinstance(node, ArrayNode):
        if value is None or value == "":
            items: List[Any] = []
        elif isinstance(value, list):
            items = value
        else:
            items = [value]
        if node.items is None:
            return items
        return [normalize_xml_value(item, node.items) for item in items]

    if isinstance(value, list):
        return [normalize_xml_value(item, node) for item in value]

    if isinstance(node, ObjectNode):
        if value == "":
            return {}
        if not isinstance(value, dict):
            return value
        return {
            key: normalize_xml_value(child, node.properties[key]) if key in node.properties else child
            for key, child in value.items()
        }

    if isinstance(node, ScalarNode):
        return _coerce_scalar(value, node)

    return value


def _coerce_scalar(value: Any, node: ScalarNode) -> Any:
    if not isinstance(value, str):
        return value

    kind = node.primary_type
    text = value.strip()

    if kind == "integer" and _INTEGER_RE.match(text):
        return int(text)
    if kind == "number":
        if _INTEGER_RE.match(text):
            return int(text)
        if _NUMBER_RE.match(text):
            return float(text)
    if kind == "boolean" and text.lower() in ("true", "false"):
        return text.lower() == "true"
    if kind == "null" and text.lower() in ("", "null"):
        return None

    return value
