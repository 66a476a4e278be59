from __future__ import annotations

"""
Action Plan Compiler (non-LLM).

Converts the model's optional multi-step `actions` list into a bounded plan:
- throttle / steering clamped to [-1, 1], per-step duration to [0.1, 3.0] s
- at most 5 steps, total duration capped at 1.2 s
- every step carries a non-empty `ReasonEnvelope`; when the model supplied
  nothing usable, one is synthesized deterministically from the control signs

The compiler never decides *whether* a step may run; that is the critic's job.
"""

import re
from typing import Any, Dict, List, Mapping, Optional, Union

from .config import DEFAULT_CONFIG, PlanConfig
from .schemas import (
    ActionStep,
    ReasonEnvelope,
    as_num,
    clamp_number,
    control_sign,
    normalize_mode,
    normalize_sector,
    normalize_skill,
)

_SEPARATORS_RE = re.compile(r"[\s-]+")
_INVALID_CODE_RE = re.compile(r"[^A-Z0-9_]")
_MULTISPACE_RE = re.compile(r"\s+")

_POSITIVE_TOKENS = {"1", "+1", "FORWARD", "LEFT", "POSITIVE"}
_NEGATIVE_TOKENS = {"-1", "REVERSE", "RIGHT", "NEGATIVE"}
_NEUTRAL_TOKENS = {"0", "HOLD", "NEUTRAL", "STRAIGHT", "CENTER"}
_VALID_SOURCES = ("model", "runtime", "fallback")

ReasonLike = Union[ReasonEnvelope, Mapping[str, Any], str, None]


def normalize_reason_code(raw: Any, fallback: str = "UNSPECIFIED_REASON") -> str:
    text = raw if isinstance(raw, str) else ""
    code = _INVALID_CODE_RE.sub("", _SEPARATORS_RE.sub("_", text.strip().upper()))
    return code[:48] if code else fallback


def normalize_reason_sign(raw: Any, fallback: Optional[int] = None) -> Optional[int]:
    if raw is None or isinstance(raw, bool):
        return fallback
    if isinstance(raw, (int, float)):
        n = as_num(raw, None)
        if n is None:
            return fallback
        if n > 0.2:
            return 1
        if n < -0.2:
            return -1
        return 0
    if isinstance(raw, str):
        token = raw.strip().upper()
        if not token or token in ("ANY", "AUTO"):
            return fallback
        if token in _POSITIVE_TOKENS:
            return 1
        if token in _NEGATIVE_TOKENS:
            return -1
        if token in _NEUTRAL_TOKENS:
            return 0
    return fallback


def _summary_text(raw: Any) -> str:
    if not isinstance(raw, str):
        return ""
    return _MULTISPACE_RE.sub(" ", raw.strip())[:180]


def _as_reason_dict(raw: ReasonLike) -> Dict[str, Any]:
    if isinstance(raw, ReasonEnvelope):
        return {
            "code": raw.code,
            "summary": raw.summary,
            "expectedThrottleSign": raw.expected_throttle_sign,
            "expectedSteeringSign": raw.expected_steering_sign,
            "source": raw.source,
        }
    if isinstance(raw, str):
        return {"summary": raw}
    if isinstance(raw, Mapping):
        return dict(raw)
    return {}


def infer_fallback_reason(throttle: float, steering: float, fallback: ReasonLike = None) -> ReasonEnvelope:
    """Deterministic envelope from control signs (or from `fallback` when it has a summary)."""
    throttle_sign = control_sign(throttle)
    steering_sign = control_sign(steering)
    fb = _as_reason_dict(fallback)
    fb_summary = _summary_text(fb.get("summary"))
    if fb_summary:
        source = fb.get("source") if fb.get("source") in _VALID_SOURCES else "fallback"
        return ReasonEnvelope(
            code=normalize_reason_code(fb.get("code")),
            summary=fb_summary,
            expected_throttle_sign=normalize_reason_sign(fb.get("expectedThrottleSign"), throttle_sign),
            expected_steering_sign=normalize_reason_sign(fb.get("expectedSteeringSign"), steering_sign),
            source=source,
        )

    if throttle_sign > 0 and steering_sign == 0:
        return ReasonEnvelope("FORWARD_PROBE", "Advance straight toward safe frontier and target cue.", 1, 0)
    if throttle_sign > 0:
        return ReasonEnvelope(
            "FORWARD_TURN_APPROACH", "Advance while turning to align with safer target direction.", 1, steering_sign
        )
    if throttle_sign < 0:
        return ReasonEnvelope("REVERSE_ESCAPE", "Back off to avoid obstacle pressure and re-open path.", -1, steering_sign)
    if steering_sign != 0:
        return ReasonEnvelope("PIVOT_SCAN", "Hold throttle and pivot to scan safer heading.", 0, steering_sign)
    return ReasonEnvelope("HOLD_AND_REASSESS", "Hold briefly to stabilize and request next decision.", 0, 0)


def normalize_reason(
    raw: ReasonLike,
    fallback: ReasonLike,
    throttle: float,
    steering: float,
    trust_source: bool = False,
) -> ReasonEnvelope:
    """
    Normalize a reason from any shape into a complete envelope.

    `trust_source=False` (model payloads) ignores a declared `source`: a model
    cannot tag its own step as runtime-sourced. Missing pieces inherit from
    `fallback`, then from the control signs.
    """
    fb = infer_fallback_reason(throttle, steering, fallback)
    obj = _as_reason_dict(raw)
    has_model_text = bool(_summary_text(obj.get("code")) or _summary_text(obj.get("summary")))

    code = normalize_reason_code(obj.get("code") or obj.get("reasonCode") or obj.get("label") or fb.code, fb.code)
    summary = ""
    for key in ("summary", "reason", "text", "rationale"):
        summary = _summary_text(obj.get(key))
        if summary:
            break
    expected = obj.get("expected") if isinstance(obj.get("expected"), Mapping) else {}
    throttle_raw = _first_present(obj, ("expectedThrottleSign", "throttleSign"), expected.get("throttleSign"))
    steering_raw = _first_present(obj, ("expectedSteeringSign", "steeringSign"), expected.get("steeringSign"))

    declared = obj.get("source").strip().lower() if isinstance(obj.get("source"), str) else ""
    if trust_source and declared in _VALID_SOURCES:
        source = declared
    elif has_model_text:
        source = "model"
    else:
        source = fb.source

    return ReasonEnvelope(
        code=code,
        summary=summary or fb.summary,
        expected_throttle_sign=normalize_reason_sign(throttle_raw, fb.expected_throttle_sign),
        expected_steering_sign=normalize_reason_sign(steering_raw, fb.expected_steering_sign),
        source=source,
    )


def _first_present(obj: Mapping[str, Any], keys, default: Any = None) -> Any:
    for key in keys:
        if obj.get(key) is not None:
            return obj[key]
    return default


def default_decision_reason(mode: str, skill: str, sector: str, throttle: float, steering: float) -> ReasonEnvelope:
    mode = normalize_mode(mode, "MEMORY_EXPLORE")
    skill = normalize_skill(skill, "MOVE_TO_FRONTIER")
    sector = normalize_sector(sector, "F")
    envelope = normalize_reason(
        {"code": normalize_reason_code(f"{mode}_{skill}", "STRATEGY_EXECUTION"), "summary": f"{mode} with {skill} toward sector {sector}."},
        None,
        throttle,
        steering,
    )
    envelope.source = "fallback"
    return envelope


def runtime_reason(code: str, summary: str, throttle: float, steering: float) -> ReasonEnvelope:
    return ReasonEnvelope(
        code=normalize_reason_code(code, "RUNTIME_OVERRIDE"),
        summary=_summary_text(summary) or "Runtime control substitution.",
        expected_throttle_sign=control_sign(throttle),
        expected_steering_sign=control_sign(steering),
        source="runtime",
    )


def normalize_action_step(raw: Any, fallback: ActionStep, config: Optional[PlanConfig] = None) -> ActionStep:
    cfg = config or DEFAULT_CONFIG.plan
    obj = raw if isinstance(raw, Mapping) else {}
    throttle = clamp_number(obj.get("throttle"), -1.0, 1.0, fallback.throttle)
    steering = clamp_number(obj.get("steering"), -1.0, 1.0, fallback.steering)
    duration = clamp_number(obj.get("duration"), cfg.min_step_s, cfg.max_step_s, fallback.duration)
    reason_raw = _first_present(obj, ("reason", "why", "rationale"))
    if reason_raw is None:
        reason_raw = {
            "code": obj.get("reasonCode"),
            "summary": obj.get("reasonText"),
            "expectedThrottleSign": obj.get("expectedThrottleSign"),
            "expectedSteeringSign": obj.get("expectedSteeringSign"),
        }
    reason = normalize_reason(reason_raw, fallback.reason, throttle, steering)
    return ActionStep(throttle=throttle, steering=steering, duration=duration, reason=reason)


def normalize_action_plan(raw_actions: Any, fallback: ActionStep, config: Optional[PlanConfig] = None) -> List[ActionStep]:
    """Bound a raw `actions` list. Returns [] when nothing usable was supplied."""
    cfg = config or DEFAULT_CONFIG.plan
    if not isinstance(raw_actions, list) or not raw_actions:
        return []
    plan: List[ActionStep] = []
    total = 0.0
    for raw in raw_actions[: cfg.max_steps]:
        step = normalize_action_step(raw, fallback, cfg)
        remaining = cfg.max_total_s - total
        if remaining < cfg.min_step_s:
            break
        step.duration = round(max(cfg.min_step_s, min(step.duration, remaining)), 3)
        plan.append(step)
        total += step.duration
    return plan


def finalize_plan(plan: List[ActionStep], first: ActionStep, config: Optional[PlanConfig] = None) -> List[ActionStep]:
    """
    Replace step 0 with the final (guarded) controls and re-apply the duration
    cap, so the plan always has >= 1 step and a total of at most 1.2 s.
    """
    cfg = config or DEFAULT_CONFIG.plan
    steps = [first] + list(plan[1:])
    out: List[ActionStep] = []
    total = 0.0
    for step in steps[: cfg.max_steps]:
        remaining = cfg.max_total_s - total
        if out and remaining < cfg.min_step_s:
            break
        step.duration = round(max(cfg.min_step_s, min(step.duration, remaining)), 3)
        out.append(step)
        total += step.duration
    return out


def action_description(throttle: float, steering: float) -> str:
    if throttle < -0.1:
        label = "REVERSE"
    elif throttle > 0.1:
        label = "FORWARD"
    else:
        label = "IDLE"
    if steering < -0.3:
        label += "_RIGHT"
    elif steering > 0.3:
        label += "_LEFT"
    return label
