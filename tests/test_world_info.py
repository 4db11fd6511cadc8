"""Tests for World Info models and allowlist filtering."""

import asyncio
import logging

import pytest
from pydantic import ValidationError

from ztracker.config import Settings
from ztracker.schemas import (
    WorldInfoBook,
    WorldInfoEntry,
    WorldInfoPolicyMode,
    parse_world_info_book,
)
from ztracker.utils.world_info import (
    build_allowlisted_world_info_text,
    build_world_info_injection,
    format_allowlisted_world_info,
    merge_world_infos,
    normalize_world_info_name,
    should_ignore_world_info_during_tracker_build,
)


def entry(uid, content, disable=False):
    return WorldInfoEntry(uid=uid, key=[], content=content, disable=disable)


def _fetchers(active=None, books=None, active_error=None):
    """Fake host lookups; a book mapped to an exception raises it."""
    calls = []

    async def get_active():
        calls.append("active")
        if active_error is not None:
            raise active_error
        return active

    async def load_book(name):
        calls.append(name)
        result = (books or {}).get(name)
        if isinstance(result, Exception):
            raise result
        return result

    return get_active, load_book, calls


class TestPolicy:

    def test_only_include_all_keeps_host_world_info(self):
        assert should_ignore_world_info_during_tracker_build(WorldInfoPolicyMode.include_all) is False
        assert should_ignore_world_info_during_tracker_build(WorldInfoPolicyMode.exclude_all) is True
        assert should_ignore_world_info_during_tracker_build("allowlist") is True

    def test_unknown_mode(self):
        with pytest.raises(ValueError):
            should_ignore_world_info_during_tracker_build("sometimes")

    def test_normalize_name(self):
        assert normalize_world_info_name("  My Lore ") == "my lore"


class TestFormatAllowlisted:

    def test_books_and_entry_ids(self):
        world_infos = {
            "Zeta": [entry(5, "  E  ")],
            "Lore": [entry(1, "A"), entry(2, "B", disable=True)],
            "Other": [entry(3, "C"), entry(4, "D")],
        }
        text = format_allowlisted_world_info(world_infos, [" lore "], [4, 5.9, -1])
        assert text == "A\n\nD\n\nE"

    def test_disabled_entries_are_skipped_even_when_allowlisted_by_id(self):
        world_infos = {"Lore": [entry(1, "A", disable=True)]}
        assert format_allowlisted_world_info(world_infos, [], [1]) == ""

    def test_nothing_allowlisted(self):
        world_infos = {"Lore": [entry(1, "A")]}
        assert format_allowlisted_world_info(world_infos, [], []) == ""
        assert format_allowlisted_world_info({}, ["Lore"], [1]) == ""

    def test_entries_within_a_book_share_a_block(self):
        world_infos = {"Lore": [entry(1, "A"), entry(2, ""), entry(3, "C")]}
        assert format_allowlisted_world_info(world_infos, ["Lore"], []) == "A\nC"


class TestMergeWorldInfos:

    def test_dedupes_by_uid_first_seen_wins(self):
        first = entry(2, "base two")
        base = {"A": [entry(1, "one"), first]}
        extra = {"A": [entry(2, "extra two"), entry(3, "three")], "B": [entry(4, "four")]}

        merged = merge_world_infos(base, extra)

        assert [e.uid for e in merged["A"]] == [1, 2, 3]
        assert merged["A"][1] is first
        assert [e.uid for e in merged["B"]] == [4]
        assert [e.uid for e in base["A"]] == [1, 2]


class TestBuildAllowlistedText:

    def test_fetches_books_and_tolerates_failures(self):
        get_active, load_book, calls = _fetchers(
            active={"Active": [entry(9, "Active nine"), entry(10, "Active ten")]},
            books={
                "Lore": WorldInfoBook(name="Lore", entries=[entry(1, "Lore one")]),
                "Broken": RuntimeError("boom"),
                "Missing": None,
            },
        )

        text = asyncio.run(build_allowlisted_world_info_text(
            ["Lore", "Broken", "Missing"], [9], get_active, load_book,
        ))

        assert text == "Active nine\n\nLore one"
        assert calls == ["active", "Lore", "Broken", "Missing"]

    def test_active_fetch_failure_counts_as_empty(self):
        get_active, load_book, _ = _fetchers(
            active_error=RuntimeError("host down"),
            books={"Lore": WorldInfoBook(name="Lore", entries=[entry(1, "Lore one")])},
        )
        text = asyncio.run(build_allowlisted_world_info_text(["Lore"], [], get_active, load_book))
        assert text == "Lore one"

    def test_plain_dict_results_are_accepted(self):
        get_active, load_book, _ = _fetchers(
            active={"Active": [{"uid": 9, "content": "nine"}]},
            books={"Lore": {"name": "Lore", "entries": [{"uid": 1, "content": "one"}]}},
        )
        text = asyncio.run(build_allowlisted_world_info_text(["Lore"], [9], get_active, load_book))
        assert text == "nine\n\none"

    def test_fetched_book_does_not_duplicate_active_entries(self):
        get_active, load_book, _ = _fetchers(
            active={"Lore": [entry(1, "active copy")]},
            books={"Lore": WorldInfoBook(name="Lore", entries=[entry(1, "fetched copy"), entry(2, "two")])},
        )
        text = asyncio.run(build_allowlisted_world_info_text(["Lore"], [], get_active, load_book))
        assert text == "active copy\ntwo"

    def test_malformed_book_is_left_out(self, caplog):
        caplog.set_level(logging.INFO, logger="ztracker")
        get_active, load_book, _ = _fetchers(
            active={},
            books={
                "Good": {"name": "Good", "entries": [{"uid": 1, "content": "good"}]},
                "Bad": {"name": "Bad", "entries": [{"uid": "x1", "content": "bad"}]},
                "Odd": "not a book",
            },
        )

        text = asyncio.run(build_allowlisted_world_info_text(
            ["Good", "Bad", "Odd"], [], get_active, load_book, debug=True,
        ))

        assert text == "good"
        assert any("world_info_book_invalid" in r.getMessage() for r in caplog.records)

    def test_failures_are_logged_in_debug_mode(self, caplog):
        caplog.set_level(logging.INFO, logger="ztracker")
        get_active, load_book, _ = _fetchers(active={}, books={"Broken": RuntimeError("boom")})

        asyncio.run(build_allowlisted_world_info_text(["Broken"], [], get_active, load_book, debug=True))

        assert any("world_info_fetch_failed" in r.getMessage() for r in caplog.records)


class TestBuildWorldInfoInjection:

    def test_not_allowlist_mode(self):
        get_active, load_book, calls = _fetchers(active={"Lore": [entry(1, "A")]})
        settings = Settings(world_info_policy_mode="include_all", world_info_allowlist_book_names=["Lore"])
        assert asyncio.run(build_world_info_injection(get_active, load_book, settings)) == ""
        assert calls == []

    def test_empty_allowlists(self):
        get_active, load_book, calls = _fetchers(active={"Lore": [entry(1, "A")]})
        settings = Settings(world_info_policy_mode="allowlist")
        assert asyncio.run(build_world_info_injection(get_active, load_book, settings)) == ""
        assert calls == []

    def test_allowlist_mode(self):
        get_active, load_book, _ = _fetchers(
            active={},
            books={"Lore": WorldInfoBook(name="Lore", entries=[entry(1, "A")])},
        )
        settings = Settings(world_info_policy_mode="allowlist", world_info_allowlist_book_names=["Lore"])
        assert asyncio.run(build_world_info_injection(get_active, load_book, settings)) == "A"


class TestWorldInfoModels:

    def test_from_raw_coerces_host_record(self):
        parsed = WorldInfoEntry.from_raw(
            {"uid": "7", "key": ["a", 1, None, ""], "content": "c", "enabled": False},
        )
        assert parsed.uid == 7
        assert parsed.key == ["a", "1"]
        assert parsed.keysecondary is None
        assert parsed.disable is True

    def test_disable_flag_wins_over_enabled(self):
        parsed = WorldInfoEntry.from_raw({"uid": 1, "disable": False, "enabled": False})
        assert parsed.disable is False

    def test_uid_fallback(self):
        assert WorldInfoEntry.from_raw({"uid": 3.9}).uid == 3
        assert WorldInfoEntry.from_raw({"uid": True}, uid_fallback=4).uid == 4
        assert WorldInfoEntry.from_raw({}).uid == -1

    def test_non_string_content(self):
        parsed = WorldInfoEntry.from_raw({"uid": 1, "content": 5, "comment": ["x"]})
        assert parsed.content == ""
        assert parsed.comment is None

    def test_non_mapping_record(self):
        assert WorldInfoEntry.from_raw("entry") is None

    def test_parse_book_uses_record_keys_as_uid_fallback(self):
        book = parse_world_info_book("  Lore ", {"12": {"content": "x"}, "bad": "nope", "5": {"uid": 8}})
        assert book.name == "Lore"
        assert [e.uid for e in book.entries] == [12, 8]

    def test_parse_book_rejects_blank_name_or_bad_record(self):
        assert parse_world_info_book("   ", {"1": {}}) is None
        assert parse_world_info_book(None, {"1": {}}) is None
        assert parse_world_info_book("Lore", [{"uid": 1}]) is None

    def test_entries_are_immutable(self):
        with pytest.raises(ValidationError):
            entry(1, "A").content = "B"
