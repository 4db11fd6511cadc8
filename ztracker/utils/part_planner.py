"""
Schema part planning.

Decides *what* to generate for a tracker schema:

- ``get_top_level_keys`` / ``resolve_top_level_order``: the parts and the
  dependency-respecting order they are generated in
- ``get_array_identity_key`` / ``build_parts_meta``: how array items are
  matched across regenerations
- ``build_field_schema`` / ``build_array_item_schema`` /
  ``build_array_item_field_schema``: reduced schemas for regenerating one
  part, one array item, or one field of one array item

Input schemas are never mutated; reduced schemas carry deep copies.
"""
from __future__ import annotations

import copy
import heapq
import logging
from typing import Any, Dict, List

from ztracker.errors import NotArrayError, NotObjectError, UnknownPartError
from ztracker.schemas.tracker_schema import (
    DEFAULT_ID_KEY,
    ArrayNode,
    ObjectNode,
    parse_schema,
)

logger = logging.getLogger(__name__)

DEFAULT_SCHEMA_URI = "http://json-schema.org/draft-07/schema#"
DEFAULT_SCHEMA_TITLE = "SceneTracker"

ITEM_PROPERTY = "item"
VALUE_PROPERTY = "value"


def get_top_level_keys(schema: Any) -> List[str]:
    """Top-level property names in declaration order."""
    props = schema.get("properties") if isinstance(schema, dict) else None
    if not isinstance(props, dict):
        return []
    return list(props.keys())


def resolve_top_level_order(schema: Any) -> List[str]:
    """
    Order top-level keys so every part comes after the parts it depends on.

    Dependencies come from ``x-ztracker-dependsOn``; names that are not
    top-level keys are ignored. Among parts that are ready at the same time
    the earliest declared one goes first. A dependency cycle falls back to
    the declared order.
    """
    keys = get_top_level_keys(schema)
    if len(keys) <= 1:
        return keys

    root = parse_schema(schema)
    if not isinstance(root, ObjectNode):
        return keys

    index = {key: i for i, key in enumerate(keys)}
    dependents: Dict[str, List[str]] = {key: [] for key in keys}
    in_degree = {key: 0 for key in keys}

    for key in keys:
        node = root.properties.get(key)
        deps = node.depends_on if node is not None else []
        for dep in dict.fromkeys(deps):
            if dep not in index:
                continue
            dependents[dep].append(key)
            in_degree[key] += 1

    ready = [index[key] for key in keys if in_degree[key] == 0]
    heapq.heapify(ready)

    order: List[str] = []
    while ready:
        key = keys[heapq.heappop(ready)]
        order.append(key)
        for dependent in dependents[key]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                heapq.heappush(ready, index[dependent])

    if len(order) != len(keys):
        logger.warning(
            "parts_order_cycle | placed=%d | total=%d | fallback=declared_order",
            len(order), len(keys),
        )
        return keys

    return order


def get_array_identity_key(schema: Any, field_name: str) -> str:
    """``x-ztracker-idKey`` of a top-level field, defaulting to ``"name"``."""
    root = parse_schema(schema)
    if isinstance(root, ObjectNode):
        node = root.properties.get(field_name)
        if node is not None and node.id_key:
            return node.id_key
    return DEFAULT_ID_KEY


def build_parts_meta(schema: Any) -> Dict[str, Dict[str, str]]:
    """Map each array-typed top-level field to ``{"idKey": ...}``."""
    root = parse_schema(schema)
    if not isinstance(root, ObjectNode):
        return {}
    return {
        key: {"idKey": node.id_key or DEFAULT_ID_KEY}
        for key, node in root.properties.items()
        if isinstance(node, ArrayNode)
    }


# ---------------------------------------------------------------------------
# Reduced schemas
# ---------------------------------------------------------------------------

def build_field_schema(schema: Any, field_name: str) -> Dict[str, Any]:
    """Schema requiring only ``field_name``, with its original definition."""
    return _wrap(schema, field_name, _field_definition(schema, field_name))


def build_array_item_schema(schema: Any, field_name: str) -> Dict[str, Any]:
    """Schema for one array item of ``field_name``, under the ``item`` key."""
    items = _items_definition(schema, field_name)
    return _wrap(schema, ITEM_PROPERTY, items)


def build_array_item_field_schema(schema: Any, field_name: str, sub_field_name: str) -> Dict[str, Any]:
    """Schema for one property of an array item, under the ``value`` key."""
    items = _items_definition(schema, field_name)
    item_node = parse_schema(items)
    if not isinstance(item_node, ObjectNode):
        raise NotObjectError(f"Array items are not objects: {field_name}")

    item_props = items.get("properties")
    if not isinstance(item_props, dict) or sub_field_name not in item_props:
        raise UnknownPartError(
            sub_field_name,
            f"Unknown array item field: {field_name}.{sub_field_name}",
        )
    return _wrap(schema, VALUE_PROPERTY, item_props[sub_field_name])


def _field_definition(schema: Any, field_name: str) -> Any:
    props = schema.get("properties") if isinstance(schema, dict) else None
    if not isinstance(props, dict) or field_name not in props:
        raise UnknownPartError(field_name)
    return props[field_name]


def _items_definition(schema: Any, field_name: str) -> Dict[str, Any]:
    definition = _field_definition(schema, field_name)
    items = definition.get("items") if isinstance(definition, dict) else None
    if not isinstance(items, dict):
        raise NotArrayError(f"Schema part is not an array: {field_name}")
    return items


def _wrap(schema: Any, property_name: str, definition: Any) -> Dict[str, Any]:
    source = schema if isinstance(schema, dict) else {}
    schema_uri = source.get("$schema")
    reduced: Dict[str, Any] = {
        "$schema": DEFAULT_SCHEMA_URI if schema_uri is None else schema_uri,
        "title": f"{source.get('title') or DEFAULT_SCHEMA_TITLE}Part",
        "type": "object",
        "properties": {property_name: copy.deepcopy(definition)},
        "required": [property_name],
    }

    # $ref targets must stay resolvable inside the reduced schema.
    for defs_key in ("definitions", "$defs"):
        if defs_key in source:
            reduced[defs_key] = copy.deepcopy(source[defs_key])

    return reduced
