"""
World Info allowlist filtering.

Builds the lorebook text injected into tracker-generation prompts when the
world-info policy is ``allowlist``.

- ``format_allowlisted_world_info``: pure filter + render
- ``merge_world_infos``: fold separately-fetched books into the active set
- ``build_allowlisted_world_info_text``: fetch (concurrently) then render
- ``build_world_info_injection``: the same, driven by settings

Lorebook fetch failures never propagate: a failed source contributes no
entries.
"""
from __future__ import annotations

import asyncio
import math
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from pydantic import ValidationError

from ztracker.config import Settings, get_settings
from ztracker.schemas.world_info import (
    WorldInfoBook,
    WorldInfoEntry,
    WorldInfoPolicyMode,
    WorldInfosByBook,
)
from ztracker.utils.logging_config import get_logger

logger = get_logger(__name__)

GetActiveWorldInfos = Callable[[], Awaitable[Optional[WorldInfosByBook]]]
LoadBookByName = Callable[[str], Awaitable[Optional[WorldInfoBook]]]


def should_ignore_world_info_during_tracker_build(mode: WorldInfoPolicyMode | str) -> bool:
    """Host world info is only kept in the prompt under ``include_all``."""
    return WorldInfoPolicyMode(mode) != WorldInfoPolicyMode.include_all


def normalize_world_info_name(name: str) -> str:
    return name.strip().lower()


def format_allowlisted_world_info(
    world_infos: WorldInfosByBook,
    allowlist_book_names: Iterable[str],
    allowlist_entry_ids: Iterable[float],
) -> str:
    """
    Render the enabled entries that are allowlisted by book or by uid.

    Books are visited in sorted name order and entries in their stored
    order; only trimmed entry content is emitted, one entry per line, with a
    blank line between books. Returns ``""`` when nothing matches, which
    callers treat as "inject nothing".
    """
    allow_books = {normalize_world_info_name(name) for name in allowlist_book_names}
    allow_ids = {int(math.trunc(i)) for i in allowlist_entry_ids if math.trunc(i) >= 0}

    lines: List[str] = []
    for book_name in sorted(world_infos):
        book_allowed = normalize_world_info_name(book_name) in allow_books
        entries = [
            entry for entry in world_infos.get(book_name) or []
            if not entry.disable and (book_allowed or entry.uid in allow_ids)
        ]
        if not entries:
            continue

        for entry in entries:
            content = (entry.content or "").strip()
            if content:
                lines.append(content)
        lines.append("")

    return "\n".join(lines).strip()


def merge_world_infos(base: WorldInfosByBook, extra: WorldInfosByBook) -> WorldInfosByBook:
    """
    Add ``extra`` books to ``base``. For a book present in both, entries are
    de-duplicated by uid and the first-seen entry wins.
    """
    merged: Dict[str, List[WorldInfoEntry]] = dict(base)

    for book_name, entries in extra.items():
        existing = merged.get(book_name) or []
        if not existing:
            merged[book_name] = list(entries)
            continue

        seen = {entry.uid for entry in existing}
        combined = list(existing)
        for entry in entries:
            if entry.uid in seen:
                continue
            seen.add(entry.uid)
            combined.append(entry)
        merged[book_name] = combined

    return merged


async def build_allowlisted_world_info_text(
    allowlist_book_names: List[str],
    allowlist_entry_ids: List[int],
    get_active_world_infos: GetActiveWorldInfos,
    load_book_by_name: LoadBookByName,
    debug: bool = False,
) -> str:
    """
    Fetch active world info plus every allowlisted book (concurrently) and
    render the allowlisted text.

    A failing active-world-info fetch counts as empty; a failing, empty or
    malformed book fetch simply leaves that book out.
    """
    allowlist_book_names = allowlist_book_names or []
    allowlist_entry_ids = allowlist_entry_ids or []

    world_infos: WorldInfosByBook = {}
    try:
        world_infos = _as_books(await get_active_world_infos() or {})
    except Exception as exc:
        _debug_log(debug, "world_info_fetch_failed | source=active | error=%s", exc)

    if allowlist_book_names:
        results = await asyncio.gather(
            *(load_book_by_name(name) for name in allowlist_book_names),
            return_exceptions=True,
        )

        fetched: WorldInfosByBook = {}
        for name, result in zip(allowlist_book_names, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                _debug_log(debug, "world_info_fetch_failed | source=book | book=%s | error=%s", name, result)
                continue
            if result is None:
                _debug_log(debug, "world_info_book_missing | book=%s", name)
                continue
            if not isinstance(result, WorldInfoBook):
                try:
                    result = WorldInfoBook.model_validate(result)
                except ValidationError as exc:
                    _debug_log(debug, "world_info_book_invalid | book=%s | error=%s", name, exc)
                    continue
            fetched[result.name] = list(result.entries)

        world_infos = merge_world_infos(world_infos, fetched)

    text = format_allowlisted_world_info(world_infos, allowlist_book_names, allowlist_entry_ids)
    _debug_log(
        debug,
        "world_info_allowlist_built | books=%d | chars=%d",
        len(world_infos), len(text),
    )
    return text


async def build_world_info_injection(
    get_active_world_infos: GetActiveWorldInfos,
    load_book_by_name: LoadBookByName,
    settings: Optional[Settings] = None,
) -> str:
    """Allowlisted lorebook text to inject, or ``""`` when the policy does not call for it."""
    settings = settings or get_settings()
    if settings.world_info_policy_mode != WorldInfoPolicyMode.allowlist:
        return ""

    book_names = settings.world_info_allowlist_book_names
    entry_ids = settings.world_info_allowlist_entry_ids
    if not book_names and not entry_ids:
        return ""

    return await build_allowlisted_world_info_text(
        book_names,
        entry_ids,
        get_active_world_infos,
        load_book_by_name,
        debug=settings.debug_logging,
    )


def _debug_log(debug: bool, message: str, *args: Any) -> None:
    if debug:
        logger.info(message, *args)


def _as_books(world_infos: Dict[str, Any]) -> WorldInfosByBook:
    # Hosts may hand back plain dicts instead of entry models.
    return {
        name: [
            entry if isinstance(entry, WorldInfoEntry) else WorldInfoEntry.model_validate(entry)
            for entry in entries or []
        ]
        for name, entries in world_infos.items()
    }
