"""Tracker snapshot formatting for prompt embedding.

Contains:
- ``format_snapshot``: render a tracker document under an embed preset
- ``format_embedded_snapshot``: same, with the preset picked from settings
- ``render_embedded_snapshot``: header + (optionally fenced) snapshot text
- ``include_tracker_snapshots``: re-insert earlier snapshots into a prompt
- ``build_snapshot_message``: system message carrying a reference snapshot
"""

from __future__ import annotations

import copy
import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional, Tuple

from ztracker.config import (
    CHAT_MESSAGE_SCHEMA_VALUE_KEY,
    EXTENSION_KEY,
    Settings,
    get_settings,
)
from ztracker.schemas.embed_preset import (
    MINIMAL_PRESET_KEY,
    EmbedTransformPreset,
    FormattedSnapshot,
)

logger = logging.getLogger(__name__)

NESTED_INDENT = "  "


def format_snapshot(
    document: Any,
    preset: EmbedTransformPreset | Dict[str, Any] | None = None,
    *,
    minimal: bool = False,
) -> FormattedSnapshot:
    """
    Render ``document`` for re-embedding into prompt context.

    ``minimal`` selects the compact variant: ambiguity-driven quoting for
    strings, no blank lines, no trailing whitespace, and no code fence
    unless the preset asks for one.

    The preset's regex transform is best-effort: an invalid pattern, flag
    or replacement leaves the rendered text untransformed.
    """
    if preset is None:
        preset = EmbedTransformPreset()
    elif isinstance(preset, dict):
        preset = EmbedTransformPreset.model_validate(preset)

    if preset.input == "top_level_lines":
        if minimal:
            text = _top_level_lines(document, _format_scalar_minimal, "\n")
        else:
            text = _top_level_lines(document, _format_scalar_json, "\n\n")
    else:
        text = json.dumps({} if document is None else document, indent=2, ensure_ascii=False, default=str)

    if minimal:
        text = minify_whitespace(text)

    lang = preset.code_fence_lang or ("json" if preset.input == "pretty_json" else "text")
    if isinstance(preset.wrap_in_code_fence, bool):
        wrap = preset.wrap_in_code_fence
    else:
        wrap = not minimal

    if preset.pattern.strip():
        text = _apply_transform(text, preset)

    return FormattedSnapshot(lang=lang, text=text, wrap_in_code_fence=wrap)


def format_embedded_snapshot(document: Any, settings: Optional[Settings] = None) -> FormattedSnapshot:
    """Format with the preset selected in settings (falling back to ``default``)."""
    settings = settings or get_settings()
    key = settings.embed_snapshot_transform_preset
    return format_snapshot(
        document,
        settings.active_embed_preset,
        minimal=key == MINIMAL_PRESET_KEY,
    )


def render_embedded_snapshot(document: Any, settings: Optional[Settings] = None) -> str:
    """Header line followed by the snapshot, fenced when the preset says so."""
    settings = settings or get_settings()
    snapshot = format_embedded_snapshot(document, settings)
    body = snapshot.text.rstrip("\n")
    if snapshot.wrap_in_code_fence:
        body = f"```{snapshot.lang}\n{body}\n```"
    header = settings.embed_snapshot_header
    return f"{header}\n{body}" if header else body


def include_tracker_snapshots(
    messages: List[Dict[str, Any]],
    settings: Optional[Settings] = None,
    user_name: str = "You",
) -> List[Dict[str, Any]]:
    """
    Return a copy of ``messages`` with earlier tracker snapshots re-inserted.

    Scans backwards from the second-to-last message for up to
    ``include_last_x_tracker_messages`` distinct messages carrying a tracker
    and inserts a user message with the rendered snapshot right after each.
    """
    settings = settings or get_settings()
    result = copy.deepcopy(messages)
    used: set[int] = set()

    for _ in range(max(settings.include_last_x_tracker_messages, 0)):
        found_index = -1
        tracker = None
        for j in range(len(result) - 2, -1, -1):
            message = result[j]
            if id(message) in used:
                continue
            tracker = tracker_value_of(message)
            if isinstance(tracker, (dict, list)) or tracker:
                used.add(id(message))
                found_index = j
                break

        if found_index == -1:
            break

        content = render_embedded_snapshot(tracker, settings)
        result.insert(found_index + 1, {
            "content": content,
            "role": "user",
            "name": user_name,
            "is_user": True,
            "mes": content,
            "is_system": False,
        })

    return result


def tracker_value_of(message: Any) -> Any:
    """Tracker value stored on a chat message (or a prompt message's ``source``)."""
    if not isinstance(message, dict):
        return None
    holder = message.get("source") if "source" in message else message
    extra = holder.get("extra") if isinstance(holder, dict) else None
    if not isinstance(extra, dict):
        return None
    data = extra.get(EXTENSION_KEY)
    if not isinstance(data, dict):
        return None
    return data.get(CHAT_MESSAGE_SCHEMA_VALUE_KEY)


def build_snapshot_message(tracker: Any, label: str) -> Optional[Dict[str, str]]:
    """System message with ``label`` and a fenced pretty-JSON snapshot."""
    if not isinstance(tracker, (dict, list)):
        return None
    text = json.dumps(tracker, indent=2, ensure_ascii=False, default=str)
    return {"role": "system", "content": f"{label}\n\n```json\n{text}\n```"}


def minify_whitespace(text: str) -> str:
    """Drop blank lines and trailing whitespace; keep indentation."""
    lines = [
        line.rstrip("\t ")
        for line in text.replace("\r\n", "\n").split("\n")
    ]
    lines = [line for line in lines if line.strip()]
    if not lines:
        return ""
    return "\n".join(lines) + "\n"


# ---------------------------------------------------------------------------
# top_level_lines rendering
# ---------------------------------------------------------------------------

def _top_level_lines(value: Any, scalar: Callable[[Any], str], separator: str) -> str:
    if not isinstance(value, dict):
        return _nested_lines(value, "", scalar)

    blocks = []
    for key, child in value.items():
        if isinstance(child, (dict, list)):
            blocks.append(f"{key}:\n{_nested_lines(child, NESTED_INDENT, scalar)}".rstrip())
        else:
            blocks.append(f"{key}: {scalar(child)}")
    return separator.join(blocks) + "\n"


def _nested_lines(value: Any, indent: str, scalar: Callable[[Any], str]) -> str:
    deeper = indent + NESTED_INDENT

    if isinstance(value, list):
        if not value:
            return f"{indent}(empty)\n"
        parts = []
        for index, item in enumerate(value):
            if isinstance(item, (dict, list)):
                label = _array_item_label(item, index) if isinstance(item, dict) else f"item{index + 1}"
                parts.append(f"{indent}[{label}:\n{_nested_lines(item, deeper, scalar)}{indent}]\n")
            else:
                parts.append(f"{indent}- {scalar(item)}\n")
        return "".join(parts)

    if isinstance(value, dict):
        if not value:
            return f"{indent}(empty)\n"
        parts = []
        for key, child in value.items():
            if isinstance(child, (dict, list)):
                parts.append(f"{indent}{key}:\n{_nested_lines(child, deeper, scalar)}")
            else:
                parts.append(f"{indent}{key}: {scalar(child)}\n")
        return "".join(parts)

    return f"{indent}{scalar(value)}\n"


def _array_item_label(item: Dict[str, Any], index: int) -> str:
    candidates = []
    for field in ("name", "id", "uid", "key"):
        value = item.get(field)
        if isinstance(value, str):
            candidates.append(value)
        elif field in ("id", "uid") and isinstance(value, (int, float)) and not isinstance(value, bool):
            candidates.append(str(value))

    for candidate in candidates:
        if candidate.strip() and "]" not in candidate and "\n" not in candidate:
            return candidate
    return f"item{index + 1}"


def _format_scalar_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


def _format_scalar_minimal(value: Any) -> str:
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False) if _should_quote(value) else value
    return _format_scalar_json(value)


def _should_quote(value: str) -> bool:
    # Quote only direct quotes and values that would be ambiguous as plain text.
    return (
        not value
        or '"' in value
        or "\n" in value
        or value[0] in " \t"
        or value[-1] in " \t"
    )


# ---------------------------------------------------------------------------
# JavaScript-style regex transform
# ---------------------------------------------------------------------------

_JS_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL, "u": 0, "y": 0, "d": 0}
_JS_NAMED_GROUP_RE = re.compile(r"\(\?<(?![=!])")
_JS_REPLACEMENT_TOKEN_RE = re.compile(r"\$(\$|&|`|'|\d{1,2}|<[^>]*>)")


def _apply_transform(text: str, preset: EmbedTransformPreset) -> str:
    try:
        pattern, replace_all = compile_js_regex(preset.pattern, preset.flags)

        def replace(match: re.Match) -> str:
            return expand_js_replacement(match, preset.replacement)

        if "y" in preset.flags:
            return _sticky_sub(pattern, replace, text, replace_all)
        return pattern.sub(replace, text, count=0 if replace_all else 1)
    except (re.error, ValueError, IndexError) as exc:
        logger.warning(
            "embed_transform_failed | error=%s | pattern=%.200s | flags=%s",
            exc, preset.pattern, preset.flags,
        )
        return text


def _sticky_sub(pattern: re.Pattern, replace: Callable[[re.Match], str], text: str, replace_all: bool) -> str:
    # Sticky matches start at 0 and, with `g`, continue only while they are contiguous.
    parts: List[str] = []
    pos = 0
    while pos <= len(text):
        match = pattern.match(text, pos)
        if match is None:
            break
        parts.append(replace(match))
        if match.end() > pos:
            pos = match.end()
        else:
            parts.append(text[pos:pos + 1])
            pos += 1
        if not replace_all:
            break
    parts.append(text[pos:])
    return "".join(parts)


def compile_js_regex(pattern: str, flags: str) -> Tuple[re.Pattern, bool]:
    """Compile a JavaScript regex; returns the pattern and whether ``g`` was set."""
    if len(set(flags)) != len(flags):
        raise ValueError(f"Invalid regular expression flags: {flags!r}")

    re_flags = 0
    replace_all = False
    for flag in flags:
        if flag == "g":
            replace_all = True
        elif flag in _JS_FLAGS:
            re_flags |= _JS_FLAGS[flag]
        else:
            raise ValueError(f"Invalid regular expression flags: {flags!r}")

    return re.compile(_JS_NAMED_GROUP_RE.sub("(?P<", pattern), re_flags), replace_all


def expand_js_replacement(match: re.Match, replacement: str) -> str:
    """Expand ``$1``, ``$&``, ``$<name>``, ``$$`` etc. the way String.replace does."""
    group_count = match.re.groups

    def expand(token_match: re.Match) -> str:
        token = token_match.group(1)
        if token == "$":
            return "$"
        if token == "&":
            return match.group(0)
        if token == "`":
            return match.string[: match.start()]
        if token == "'":
            return match.string[match.end():]
        if token.startswith("<"):
            if not match.re.groupindex:
                return token_match.group(0)
            return match.groupdict().get(token[1:-1]) or ""

        number = int(token)
        if 1 <= number <= group_count:
            return match.group(number) or ""
        # "$12" with a single group means group 1 followed by "2".
        if len(token) == 2 and 1 <= int(token[0]) <= group_count:
            return (match.group(int(token[0])) or "") + token[1]
        return token_match.group(0)

    return _JS_REPLACEMENT_TOKEN_RE.sub(expand, replacement)
