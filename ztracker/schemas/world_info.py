"""
World Info (lorebook) models.

Entries are immutable snapshots of what the host chat application stores
in a lorebook. ``WorldInfoEntry.from_raw`` maps one raw host record onto the
model, tolerating the older ``enabled`` flag and loosely-typed keys.
"""
from __future__ import annotations

import math
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class WorldInfoPolicyMode(str, Enum):
    """How lorebook content is treated while building tracker prompts."""
    include_all = "include_all"
    exclude_all = "exclude_all"
    allowlist = "allowlist"


class WorldInfoEntry(BaseModel):
    """One lorebook entry."""
    model_config = ConfigDict(frozen=True)

    uid: int
    key: List[str] = Field(default_factory=list)
    keysecondary: Optional[List[str]] = None
    content: str = ""
    comment: Optional[str] = None
    disable: bool = False

    @classmethod
    def from_raw(cls, raw: Any, uid_fallback: int = -1) -> Optional["WorldInfoEntry"]:
        """Build an entry from a raw host record, or ``None`` if it is not an object."""
        if not isinstance(raw, dict):
            return None

        uid = _coerce_uid(raw.get("uid"))
        if uid is None:
            uid = uid_fallback

        key = _string_list(raw.get("key")) or []
        keysecondary = _string_list(raw.get("keysecondary"))

        # Current hosts store `disable`; older exports store `enabled`.
        disable = raw["disable"] if isinstance(raw.get("disable"), bool) else raw.get("enabled") is False

        content = raw.get("content")
        comment = raw.get("comment")

        return cls(
            uid=uid,
            key=key,
            keysecondary=keysecondary,
            content=content if isinstance(content, str) else "",
            comment=comment if isinstance(comment, str) else None,
            disable=disable,
        )


class WorldInfoBook(BaseModel):
    """A named lorebook with its entries."""
    name: str
    entries: List[WorldInfoEntry] = Field(default_factory=list)


WorldInfosByBook = Dict[str, List[WorldInfoEntry]]


def _coerce_uid(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return math.trunc(number)


def _string_list(value: Any) -> Optional[List[str]]:
    if not isinstance(value, list):
        return None
    return [str(v) for v in value if v is not None and str(v)]


def parse_world_info_book(name: Any, entries_record: Any) -> Optional[WorldInfoBook]:
    """Normalize the ``entries`` mapping of a host lorebook response.

    Record keys are used as uid fallback. Returns ``None`` for a blank name
    or a missing/non-mapping entries record.
    """
    trimmed = str(name if name is not None else "").strip()
    if not trimmed:
        return None
    if not isinstance(entries_record, dict):
        return None

    entries: List[WorldInfoEntry] = []
    for uid_key, raw in entries_record.items():
        fallback = _coerce_uid(uid_key)
        entry = WorldInfoEntry.from_raw(raw, -1 if fallback is None else fallback)
        if entry is not None:
            entries.append(entry)

    return WorldInfoBook(name=trimmed, entries=entries)
