from __future__ import annotations

from functools import lru_cache
from typing import Dict, List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ztracker.schemas.embed_preset import (
    DEFAULT_PRESET_KEY,
    EmbedTransformPreset,
    default_embed_presets,
)
from ztracker.schemas.world_info import WorldInfoPolicyMode

# Key under which tracker data lives in a chat message's `extra` mapping.
EXTENSION_KEY = "zTracker"
CHAT_MESSAGE_SCHEMA_VALUE_KEY = "value"


class Settings(BaseSettings):
    # Diagnostics
    debug_logging: bool = False
    log_file: Optional[str] = None
    log_level: str = "INFO"

    # Number of earlier tracker snapshots re-embedded into prompts (0 disables)
    include_last_x_tracker_messages: int = 1

    # Snapshot embedding
    embed_snapshot_header: str = "Tracker:"
    embed_snapshot_transform_preset: str = DEFAULT_PRESET_KEY
    embed_snapshot_transform_presets: Dict[str, EmbedTransformPreset] = Field(
        default_factory=default_embed_presets
    )

    # World Info during tracker generation
    world_info_policy_mode: WorldInfoPolicyMode = WorldInfoPolicyMode.include_all
    world_info_allowlist_book_names: List[str] = Field(default_factory=list)
    world_info_allowlist_entry_ids: List[int] = Field(default_factory=list)

    model_config = SettingsConfigDict(env_prefix="ZTRACKER_", env_file=".env", extra="ignore")

    @property
    def active_embed_preset(self) -> Optional[EmbedTransformPreset]:
        """The selected embed preset, falling back to ``default``."""
        presets = self.embed_snapshot_transform_presets
        key = self.embed_snapshot_transform_preset
        return (key and presets.get(key)) or presets.get(DEFAULT_PRESET_KEY)


@lru_cache
def get_settings():
    return Settings()
