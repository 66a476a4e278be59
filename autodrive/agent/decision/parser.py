from __future__ import annotations

"""
Response Parsing & Repair.

Model output is free-form text that usually, but not always, contains one JSON
object. Parsing is an ordered list of strategies; the first success wins:

  strict -> trim_trailing_commas -> repair_single_quotes
  (then the same three on the first balanced {...} region, prefixed "balanced_")
  -> loose_recovery (regex field scraping, recovered=True)

Exhausting every strategy yields `ParseResult.failed("unparseable")`; nothing
in this module raises.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from .schemas import clamp_number, normalize_skill

_FENCE_JSON_RE = re.compile(r"```json", re.IGNORECASE)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_SINGLE_QUOTED_KEY_RE = re.compile(r"([{,]\s*)'([^']+?)'\s*:")
_SINGLE_QUOTED_VALUE_RE = re.compile(r":\s*'([^']*?)'(?=\s*[,}\]])")

_MODE_RE = re.compile(r"TARGET_LOCK|MEMORY_EXPLORE|ESCAPE_RECOVERY", re.IGNORECASE)
_TRANSITION_RE = re.compile(r"\bSWITCH\b|\bHOLD\b", re.IGNORECASE)
_CHOSEN_SECTOR_RE = re.compile(r"chosenSector[\"'\s:]+([LFRB])", re.IGNORECASE)
_SECTOR_RE = re.compile(r"\bsector[\"'\s:]+([LFRB])", re.IGNORECASE)
_SKILL_RE = re.compile(r"APPROACH_TARGET|MOVE_TO_FRONTIER|SCAN_SECTOR|BACKOFF_AND_TURN|HOLD_POSITION", re.IGNORECASE)


@dataclass
class ParseResult:
    data: Optional[Dict[str, Any]]
    recovered: bool
    method: str

    @property
    def ok(self) -> bool:
        return self.data is not None

    @classmethod
    def failed(cls, method: str = "unparseable") -> "ParseResult":
        return cls(data=None, recovered=False, method=method)


def strip_code_fences(text: Any) -> str:
    if not isinstance(text, str):
        return ""
    return _FENCE_JSON_RE.sub("", text).replace("```", "").strip()


def is_likely_truncated(raw_text: Any) -> bool:
    if not isinstance(raw_text, str):
        return True
    cleaned = strip_code_fences(raw_text)
    if not cleaned or not cleaned.endswith("}"):
        return True
    return cleaned.count("}") < cleaned.count("{")


def extract_first_balanced_object(text: str) -> Optional[str]:
    """First top-level {...} region, skipping braces inside JSON strings."""
    start = text.find("{") if text else -1
    if start < 0:
        return None
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def _load_object(text: str) -> Optional[Dict[str, Any]]:
    try:
        parsed = json.loads(text)
    except (ValueError, TypeError):
        return None
    return parsed if isinstance(parsed, dict) else None


def _strict(text: str) -> str:
    return text


def _trim_trailing_commas(text: str) -> str:
    return _TRAILING_COMMA_RE.sub(r"\1", text)


def _repair_single_quotes(text: str) -> str:
    repaired = _SINGLE_QUOTED_KEY_RE.sub(r'\1"\2":', _trim_trailing_commas(text))
    return _SINGLE_QUOTED_VALUE_RE.sub(r': "\1"', repaired)


# (method, transform, recovered)
REPAIR_STRATEGIES: List[Tuple[str, Callable[[str], str], bool]] = [
    ("strict", _strict, False),
    ("trim_trailing_commas", _trim_trailing_commas, True),
    ("repair_single_quotes", _repair_single_quotes, True),
]


def try_parse_with_repairs(text: str, prefix: str = "") -> Optional[ParseResult]:
    if not text:
        return None
    for method, transform, recovered in REPAIR_STRATEGIES:
        data = _load_object(transform(text))
        if data is not None:
            return ParseResult(data=data, recovered=recovered or bool(prefix), method=f"{prefix}{method}")
    return None


def _number_for(text: str, label: str) -> Optional[float]:
    m = re.search(label + r"[\"'\s:]+(-?\d+(?:\.\d+)?)", text, re.IGNORECASE)
    return float(m.group(1)) if m else None


def _string_for(text: str, label: str) -> Optional[str]:
    m = re.search(label + r"[\"'\s:]+[\"']([^\"'\n\r]+)[\"']", text, re.IGNORECASE)
    return m.group(1) if m else None


def recover_loose_payload(text: str) -> Optional[Dict[str, Any]]:
    """Best-effort field scraping; None when no control value and no mode is visible."""
    if not text:
        return None
    mode = _MODE_RE.search(text)
    transition = _TRANSITION_RE.search(text)
    sector = _CHOSEN_SECTOR_RE.search(text) or _SECTOR_RE.search(text)
    skill = _SKILL_RE.search(text)

    throttle = _number_for(text, "throttle")
    steering = _number_for(text, "steering")
    duration = _number_for(text, "duration")
    if throttle is None and steering is None and duration is None and mode is None:
        return None

    confidence = _number_for(text, "confidence")
    intensity = _number_for(text, "intensity")
    return {
        "strategy": {
            "mode": mode.group(0).upper() if mode else "MEMORY_EXPLORE",
            "transition": transition.group(0).upper() if transition else "HOLD",
            "confidence": 0.35 if confidence is None else confidence,
            "chosenSector": sector.group(1).upper() if sector else "F",
            "targetCue": "",
            "memoryCue": "",
            "riskCue": "loose_recovery",
        },
        "skill": {
            "name": normalize_skill(skill.group(0), "MOVE_TO_FRONTIER") if skill else "MOVE_TO_FRONTIER",
            "intensity": 0.45 if intensity is None else clamp_number(intensity, 0.0, 1.0, 0.45),
            "rationale": "loose_recovery_default",
        },
        "reflection": {
            "lastOutcomeAssessment": "unknown",
            "adjustment": _string_for(text, "adjustment") or "Use safe exploratory movement and avoid blocked sectors.",
        },
        "thought": _string_for(text, "thought") or "Recovered from malformed JSON",
        "analysis": _string_for(text, "analysis") or "",
        "control": {
            "throttle": 0.2 if throttle is None else throttle,
            "steering": 0.0 if steering is None else steering,
            "duration": 0.3 if duration is None else duration,
        },
    }


def parse_model_response(raw_text: Any) -> ParseResult:
    cleaned = strip_code_fences(raw_text)

    result = try_parse_with_repairs(cleaned)
    if result is not None:
        return result

    extracted = extract_first_balanced_object(cleaned)
    if extracted and extracted != cleaned:
        result = try_parse_with_repairs(extracted, prefix="balanced_")
        if result is not None:
            return result

    loose = recover_loose_payload(cleaned)
    if loose is not None:
        return ParseResult(data=loose, recovered=True, method="loose_recovery")
    return ParseResult.failed("unparseable")
