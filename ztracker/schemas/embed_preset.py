"""Embed snapshot transform presets."""
from __future__ import annotations

from typing import Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

SnapshotInput = Literal["pretty_json", "top_level_lines"]


class EmbedTransformPreset(BaseModel):
    """How a tracker document is rendered when re-embedded into a prompt.

    Field aliases match the camelCase keys stored in host settings.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = ""
    input: SnapshotInput = "pretty_json"
    pattern: str = ""
    flags: str = ""
    replacement: str = ""
    code_fence_lang: str = Field(default="", alias="codeFenceLang")
    wrap_in_code_fence: Optional[bool] = Field(default=None, alias="wrapInCodeFence")


DEFAULT_PRESET_KEY = "default"
MINIMAL_PRESET_KEY = "minimal"


def default_embed_presets() -> Dict[str, EmbedTransformPreset]:
    """Built-in preset table: pretty JSON and the minimal top-level rendering."""
    return {
        DEFAULT_PRESET_KEY: EmbedTransformPreset(
            name="Default (JSON)",
            input="pretty_json",
            flags="g",
            code_fence_lang="json",
            wrap_in_code_fence=True,
        ),
        MINIMAL_PRESET_KEY: EmbedTransformPreset(
            name="Minimal (top-level properties)",
            input="top_level_lines",
            flags="g",
            code_fence_lang="text",
            wrap_in_code_fence=False,
        ),
    }


class FormattedSnapshot(BaseModel):
    """A rendered snapshot plus how it should be fenced."""
    model_config = ConfigDict(frozen=True)

    lang: str
    text: str
    wrap_in_code_fence: bool
