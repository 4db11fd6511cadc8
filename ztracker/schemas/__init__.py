# Tracker engine schema definitions
from .tracker_schema import (
    DEFAULT_ID_KEY,
    DEPENDS_ON_KEY,
    ID_KEY_KEY,
    ArrayNode,
    ObjectNode,
    ScalarNode,
    SchemaNode,
    parse_schema,
    primary_type,
)
from .world_info import (
    WorldInfoBook,
    WorldInfoEntry,
    WorldInfoPolicyMode,
    WorldInfosByBook,
    parse_world_info_book,
)
from .embed_preset import (
    DEFAULT_PRESET_KEY,
    MINIMAL_PRESET_KEY,
    EmbedTransformPreset,
    FormattedSnapshot,
    default_embed_presets,
)

__all__ = [
    # Schema nodes
    "DEFAULT_ID_KEY",
    "DEPENDS_ON_KEY",
    "ID_KEY_KEY",
    "ArrayNode",
    "ObjectNode",
    "ScalarNode",
    "SchemaNode",
    "parse_schema",
    "primary_type",
    # World info
    "WorldInfoBook",
    "WorldInfoEntry",
    "WorldInfoPolicyMode",
    "WorldInfosByBook",
    "parse_world_info_book",
    # Embed presets
    "DEFAULT_PRESET_KEY",
    "MINIMAL_PRESET_KEY",
    "EmbedTransformPreset",
    "FormattedSnapshot",
    "default_embed_presets",
]
