import json
import os

import pytest

from autodrive.agent.decision.parser import (
    extract_first_balanced_object,
    is_likely_truncated,
    parse_model_response,
    strip_code_fences,
)


def _dbg_enabled() -> bool:
    # Pytest captures stdout by default. To see prints:
    #   pytest -s tests/unit_test/test_parser.py
    # or:
    #   AUTODRIVE_TEST_DEBUG=1 pytest -q tests/unit_test/test_parser.py
    return os.environ.get("AUTODRIVE_TEST_DEBUG", "").strip().lower() in {"1", "true", "yes", "y"}


def _dbg(title: str, obj) -> None:
    if _dbg_enabled():
        print(f"\n[{title}]")
        print(obj)


STRICT = '{"strategy": {"mode": "TARGET_LOCK", "confidence": 0.8}, "control": {"throttle": 0.4, "steering": 0.1}}'


def test_strict_json_parses_without_recovery():
    result = parse_model_response(STRICT)
    _dbg("strict", result)
    assert result.ok
    assert result.method == "strict"
    assert result.recovered is False
    assert result.data == json.loads(STRICT)


def test_trailing_commas_and_single_quotes_parse_equal_to_strict():
    trailing = '{"strategy": {"mode": "TARGET_LOCK", "confidence": 0.8,}, "control": {"throttle": 0.4, "steering": 0.1,},}'
    quoted = "{'strategy': {'mode': 'TARGET_LOCK', 'confidence': 0.8}, 'control': {'throttle': 0.4, 'steering': 0.1}}"

    r1 = parse_model_response(trailing)
    r2 = parse_model_response(quoted)
    _dbg("trailing", r1)
    _dbg("quoted", r2)
    assert r1.method == "trim_trailing_commas"
    assert r2.method == "repair_single_quotes"
    assert r1.recovered and r2.recovered
    assert r1.data == r2.data == json.loads(STRICT)


def test_code_fences_are_stripped():
    fenced = f"```json\n{STRICT}\n```"
    assert strip_code_fences(fenced) == STRICT
    result = parse_model_response(fenced)
    assert result.method == "strict"
    assert result.data["control"]["throttle"] == 0.4


def test_json_wrapped_in_prose_uses_balanced_region():
    result = parse_model_response(f"Sure, here is my decision: {STRICT} Drive safe!")
    _dbg("balanced", result)
    assert result.ok
    assert result.method == "balanced_strict"
    assert result.recovered is True


def test_truncated_json_falls_back_to_loose_recovery():
    truncated = '{"strategy": {"mode": "ESCAPE_RECOVERY", "confidence": 0.6}, "control": {"throttle": -0.4, "steering": 0.5'
    assert is_likely_truncated(truncated)
    result = parse_model_response(truncated)
    _dbg("loose", result)
    assert result.method == "loose_recovery"
    assert result.recovered is True
    assert result.data["strategy"]["mode"] == "ESCAPE_RECOVERY"
    assert result.data["strategy"]["confidence"] == 0.6
    assert result.data["control"]["throttle"] == -0.4
    assert result.data["control"]["steering"] == 0.5
    # duration was never emitted -> default
    assert result.data["control"]["duration"] == 0.3


def test_unparseable_text_is_a_typed_failure():
    result = parse_model_response("I am not able to decide right now.")
    assert not result.ok
    assert result.method == "unparseable"
    assert parse_model_response(None).ok is False


@pytest.mark.parametrize(
    "text,expected",
    [
        ('{"a": 1}', False),
        ('```json\n{"a": 1}\n```', False),
        ('{"a": {"b": 1}', True),
        ('{"a": 1', True),
        ("", True),
        (None, True),
    ],
)
def test_truncation_heuristic(text, expected):
    assert is_likely_truncated(text) is expected


def test_balanced_extraction_ignores_braces_inside_strings():
    assert extract_first_balanced_object('x {"a": "}{"} y {"b": 2}') == '{"a": "}{"}'
    assert extract_first_balanced_object("no braces here") is None
    assert extract_first_balanced_object('{"open": 1') is None


def test_single_quoted_brace_ends_balanced_region_and_falls_to_loose_recovery():
    # Only double-quoted strings are tracked; a '}' inside single quotes closes the region.
    text = "Plan: {'thought': 'wall }', 'control': {'throttle': 0.3, 'steering': 0.1, 'duration': 0.4}} done"
    assert extract_first_balanced_object(text) == "{'thought': 'wall }"

    result = parse_model_response(text)
    assert result.method == "loose_recovery"
    assert result.recovered
    assert result.data["thought"] == "wall }"
    assert result.data["control"] == {"throttle": 0.3, "steering": 0.1, "duration": 0.4}
    assert result.data["strategy"]["mode"] == "MEMORY_EXPLORE"


if __name__ == "__main__":
    pytest.main(["-v", __file__])
