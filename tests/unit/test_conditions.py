"""Tests for contextual rule conditions."""

from __future__ import annotations

from datetime import datetime, time, timezone

import pytest

from toolgate.permissions.conditions import (
    Condition,
    SizeRange,
    TimeWindow,
    compile_condition,
    condition_from_mapping,
    holds,
    parse_time,
    parse_time_window,
)
from toolgate.permissions.policy import normalize_document
from toolgate.permissions.rules import ConfigError, Scope
from toolgate.types.requests import FileMeta


def at(hour: int, minute: int = 0) -> datetime:
    return datetime(2026, 3, 2, hour, minute)


class TestTimeWindow:
    def test_half_open_interval(self):
        window = TimeWindow(time(9), time(17))
        assert window.contains(time(9))
        assert window.contains(time(16, 59))
        assert not window.contains(time(17))
        assert not window.contains(time(20))

    def test_wraps_past_midnight(self):
        window = TimeWindow(time(22), time(6))
        assert window.contains(time(23))
        assert window.contains(time(2))
        assert window.contains(time(22))
        assert not window.contains(time(6))
        assert not window.contains(time(12))

    def test_equal_bounds_is_empty(self):
        window = TimeWindow(time(9), time(9))
        assert not window.contains(time(9))
        assert not window.contains(time(12))

    def test_str(self):
        assert str(TimeWindow(time(9), time(17, 30))) == "09:00-17:30"


class TestParsing:
    def test_parse_time_string(self):
        assert parse_time("09:30") == time(9, 30)

    def test_parse_time_small_int_is_hours(self):
        assert parse_time(9) == time(9)

    def test_parse_time_yaml_sexagesimal(self):
        # YAML 1.1 loads an unquoted 17:00 as 1020
        assert parse_time(1020) == time(17)

    def test_parse_time_invalid(self):
        with pytest.raises(ConfigError):
            parse_time("noon")

    def test_parse_time_rejects_utc_offset(self):
        with pytest.raises(ConfigError, match="UTC offset"):
            parse_time("09:00+02:00")
        with pytest.raises(ConfigError, match="UTC offset"):
            parse_time(time(9, tzinfo=timezone.utc))

    def test_offset_window_rejected_at_load(self):
        with pytest.raises(ConfigError):
            condition_from_mapping({"time_window": "09:00+02:00-17:00+02:00"})
        with pytest.raises(ConfigError):
            normalize_document(Scope.GLOBAL, {"Bash": [{
                "patterns": ["*"],
                "action": "allow",
                "when": {"time_window": "09:00+02:00-17:00+02:00"},
            }]})

    def test_window_forms(self):
        expected = TimeWindow(time(9), time(17))
        assert parse_time_window("09:00-17:00") == expected
        assert parse_time_window({"start": "09:00", "end": "17:00"}) == expected
        assert parse_time_window(["09:00", "17:00"]) == expected

    def test_window_missing_separator(self):
        with pytest.raises(ConfigError):
            parse_time_window("09:00")

    def test_window_missing_end(self):
        with pytest.raises(ConfigError):
            parse_time_window({"start": "09:00"})


class TestCompileCondition:
    def test_invalid_regex(self):
        with pytest.raises(ConfigError):
            compile_condition(content_pattern=r"[invalid")

    def test_regex_too_long(self):
        with pytest.raises(ConfigError, match="exceeds"):
            compile_condition(content_pattern="a" * 2000)

    def test_negative_size(self):
        with pytest.raises(ConfigError):
            compile_condition(file_size=SizeRange(min=-1))

    def test_min_above_max(self):
        with pytest.raises(ConfigError, match="exceeds"):
            compile_condition(file_size=SizeRange(min=10, max=5))

    def test_offset_aware_window(self):
        window = TimeWindow(time(9, tzinfo=timezone.utc), time(17, tzinfo=timezone.utc))
        with pytest.raises(ConfigError):
            compile_condition(time_window=window)

    def test_regex_compiled_eagerly(self):
        cond = compile_condition(content_pattern=r"\d+")
        assert cond._compiled_re is not None

    def test_from_mapping(self):
        cond = condition_from_mapping({
            "environments": ["prod", "staging"],
            "user": "alice",
            "time_window": "09:00-17:00",
            "file_size": {"max": 1024},
            "content_matches": "SECRET",
        })
        assert cond.environments == frozenset({"prod", "staging"})
        assert cond.users == frozenset({"alice"})
        assert cond.time_window == TimeWindow(time(9), time(17))
        assert cond.file_size == SizeRange(max=1024)
        assert cond.content_pattern == "SECRET"

    def test_from_mapping_unknown_key(self):
        with pytest.raises(ConfigError, match="Unknown condition keys"):
            condition_from_mapping({"weekday": "monday"})

    def test_from_mapping_bad_size(self):
        with pytest.raises(ConfigError):
            condition_from_mapping({"file_size": {"max": "big"}})
        with pytest.raises(ConfigError):
            condition_from_mapping({"file_size": 100})


class TestHolds:
    def test_no_condition_holds(self, make_request):
        assert holds(None, make_request())

    def test_empty_condition_holds(self, make_request):
        assert holds(Condition(), make_request())

    def test_environment_membership(self, make_request):
        cond = compile_condition(environments=["prod"])
        assert holds(cond, make_request(environment="prod"))
        assert not holds(cond, make_request(environment="dev"))

    def test_user_membership(self, make_request):
        cond = compile_condition(users=["alice", "bob"])
        assert holds(cond, make_request(user_id="bob"))
        assert not holds(cond, make_request(user_id="mallory"))

    def test_time_window(self, make_request):
        cond = compile_condition(time_window=TimeWindow(time(9), time(17)))
        assert holds(cond, make_request(timestamp=at(10)))
        assert not holds(cond, make_request(timestamp=at(20)))

    def test_overnight_window(self, make_request):
        cond = compile_condition(time_window=TimeWindow(time(22), time(6)))
        assert holds(cond, make_request(timestamp=at(23, 30)))
        assert holds(cond, make_request(timestamp=at(5, 59)))
        assert not holds(cond, make_request(timestamp=at(6)))

    def test_file_size_fails_closed(self, make_request):
        cond = compile_condition(file_size=SizeRange(max=100))
        assert not holds(cond, make_request("Read", "a.txt"))
        assert holds(cond, make_request("Read", "a.txt", file_meta=FileMeta(size=100)))
        assert not holds(cond, make_request("Read", "a.txt", file_meta=FileMeta(size=101)))

    def test_file_size_open_bounds(self, make_request):
        cond = compile_condition(file_size=SizeRange(min=10))
        assert holds(cond, make_request("Read", "a", file_meta=FileMeta(size=10_000)))
        assert not holds(cond, make_request("Read", "a", file_meta=FileMeta(size=9)))

    def test_content_fails_closed(self, make_request):
        cond = compile_condition(content_pattern=r"API_KEY=\w+")
        assert not holds(cond, make_request("Read", ".env"))
        assert not holds(cond, make_request("Read", ".env", file_meta=FileMeta(size=3)))
        meta = FileMeta(size=20, content="API_KEY=abc123\n")
        assert holds(cond, make_request("Read", ".env", file_meta=meta))
        meta = FileMeta(size=5, content="DEBUG=1")
        assert not holds(cond, make_request("Read", ".env", file_meta=meta))

    def test_all_subchecks_are_anded(self, make_request):
        cond = compile_condition(
            environments=["prod"],
            users=["alice"],
            time_window=TimeWindow(time(9), time(17)),
        )
        assert holds(cond, make_request(environment="prod", user_id="alice", timestamp=at(10)))
        assert not holds(cond, make_request(environment="prod", user_id="bob", timestamp=at(10)))
        assert not holds(cond, make_request(environment="dev", user_id="alice", timestamp=at(10)))
        assert not holds(cond, make_request(environment="prod", user_id="alice", timestamp=at(18)))

    def test_uncompiled_invalid_regex_is_false(self, make_request):
        cond = Condition(content_pattern="[broken")
        meta = FileMeta(size=1, content="x")
        assert not holds(cond, make_request("Read", "a", file_meta=meta))
