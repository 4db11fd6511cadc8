"""
Tracker Schema Nodes

Parsed, typed view of the loosely-typed JSON Schema that drives tracker
generation. The raw schema dict stays the source of truth for whatever is
sent to the model; these models are what the engine walks when it needs to
know the *shape* of a field.

Usage:
    from ztracker.schemas import parse_schema, ObjectNode, ArrayNode

    node = parse_schema(raw_schema)
    if isinstance(node, ObjectNode):
        for name, child in node.properties.items():
            ...

All models use extra="allow" so unknown JSON Schema keywords survive.
"""
from __future__ import annotations

from typing import Annotated, Any, Dict, List, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    TypeAdapter,
    field_validator,
    model_validator,
)

DEPENDS_ON_KEY = "x-ztracker-dependsOn"
ID_KEY_KEY = "x-ztracker-idKey"
DEFAULT_ID_KEY = "name"

SCALAR_TYPES = frozenset({"string", "number", "integer", "boolean", "null"})


def primary_type(raw_type: Any) -> Optional[str]:
    """Return the first non-null entry of a JSON Schema ``type`` keyword.

    ``["string", "null"]`` → ``"string"``; ``"null"`` alone stays ``"null"``.
    """
    if isinstance(raw_type, str):
        return raw_type
    if isinstance(raw_type, list):
        names = [t for t in raw_type if isinstance(t, str)]
        for name in names:
            if name != "null":
                return name
        return names[0] if names else None
    return None


def _node_kind(value: Any) -> str:
    """Discriminator: decide which node model a raw schema dict maps to."""
    if isinstance(value, BaseModel):
        return getattr(value, "kind", "scalar")
    if not isinstance(value, dict):
        return "scalar"
    kind = primary_type(value.get("type"))
    if kind == "object":
        return "object"
    if kind == "array":
        return "array"
    if kind is None:
        # Untyped but structurally obvious.
        if isinstance(value.get("properties"), dict):
            return "object"
        if "items" in value:
            return "array"
    return "scalar"


class SchemaNode(BaseModel):
    """Fields shared by every schema node."""
    model_config = ConfigDict(extra="allow", populate_by_name=True, frozen=True)

    type: Optional[Union[str, List[str]]] = None
    title: Optional[str] = None
    description: Optional[str] = None
    enum: Optional[List[Any]] = None
    depends_on: List[str] = Field(default_factory=list, alias=DEPENDS_ON_KEY)
    id_key: Optional[str] = Field(default=None, alias=ID_KEY_KEY)

    @model_validator(mode="before")
    @classmethod
    def _coerce_non_mapping(cls, data: Any) -> Any:
        # `true` / `false` / junk subschemas behave as untyped leaves.
        if isinstance(data, (dict, BaseModel)):
            return data
        return {}

    @field_validator("type", mode="before")
    @classmethod
    def _drop_invalid_type(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value
        if isinstance(value, list):
            return [v for v in value if isinstance(v, str)]
        return None

    @field_validator("title", "description", mode="before")
    @classmethod
    def _drop_non_string(cls, value: Any) -> Any:
        return value if isinstance(value, str) else None

    @field_validator("enum", mode="before")
    @classmethod
    def _drop_non_list(cls, value: Any) -> Any:
        return value if isinstance(value, list) else None

    @field_validator("depends_on", mode="before")
    @classmethod
    def _normalize_depends_on(cls, value: Any) -> List[str]:
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, list):
            return []
        return [v.strip() for v in value if isinstance(v, str) and v.strip()]

    @field_validator("id_key", mode="before")
    @classmethod
    def _normalize_id_key(cls, value: Any) -> Optional[str]:
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None

    @property
    def primary_type(self) -> Optional[str]:
        return primary_type(self.type)


class ScalarNode(SchemaNode):
    """A leaf: string, number, integer, boolean, null or untyped."""

    kind: str = Field(default="scalar", exclude=True)


class ArrayNode(SchemaNode):
    """``type: array``; ``items`` is ``None`` when the schema omits it."""

    kind: str = Field(default="array", exclude=True)
    items: Optional["SchemaNodeUnion"] = None

    @field_validator("items", mode="before")
    @classmethod
    def _single_items_only(cls, value: Any) -> Any:
        # Tuple-style `items: [...]` is not supported; treat as absent.
        return value if isinstance(value, dict) else None


class ObjectNode(SchemaNode):
    """``type: object`` with ordered ``properties``."""

    kind: str = Field(default="object", exclude=True)
    properties: Dict[str, "SchemaNodeUnion"] = Field(default_factory=dict)
    required: List[str] = Field(default_factory=list)

    @field_validator("properties", mode="before")
    @classmethod
    def _properties_mapping(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else {}

    @field_validator("required", mode="before")
    @classmethod
    def _required_names(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return []
        return [v for v in value if isinstance(v, str)]


SchemaNodeUnion = Annotated[
    Union[
        Annotated[ObjectNode, Tag("object")],
        Annotated[ArrayNode, Tag("array")],
        Annotated[ScalarNode, Tag("scalar")],
    ],
    Discriminator(_node_kind),
]

ArrayNode.model_rebuild()
ObjectNode.model_rebuild()

_NODE_ADAPTER: TypeAdapter = TypeAdapter(SchemaNodeUnion)


def parse_schema(raw: Any) -> Union[ObjectNode, ArrayNode, ScalarNode]:
    """Parse a raw JSON Schema value into the node tagged union.

    Never raises on odd input: non-mapping nodes become untyped scalars and
    a non-mapping ``properties`` becomes empty.
    """
    return _NODE_ADAPTER.validate_python(raw if isinstance(raw, dict) else {})
