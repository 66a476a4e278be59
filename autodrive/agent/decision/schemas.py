from __future__ import annotations

"""
Shared schemas for the decision core.

`ParsedDecision` is the tagged intermediate form of a model response:
every field is optional and already type-checked, so downstream modules
(strategy / skills / guard / compiler) never touch raw model JSON.

`DecisionOutput` is the stable contract handed to the vehicle controller and
to the decision log.
"""

import math
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Literal, Mapping, Optional

StrategyMode = Literal["TARGET_LOCK", "MEMORY_EXPLORE", "ESCAPE_RECOVERY"]
SkillName = Literal["APPROACH_TARGET", "MOVE_TO_FRONTIER", "SCAN_SECTOR", "BACKOFF_AND_TURN", "HOLD_POSITION"]
Sector = Literal["L", "F", "R", "B"]
ReasonSource = Literal["model", "runtime", "fallback"]

STRATEGY_MODES = ("TARGET_LOCK", "MEMORY_EXPLORE", "ESCAPE_RECOVERY")
SKILL_NAMES = ("APPROACH_TARGET", "MOVE_TO_FRONTIER", "SCAN_SECTOR", "BACKOFF_AND_TURN", "HOLD_POSITION")
SECTORS = ("L", "F", "R", "B")

# (name, heading offset in degrees). Heading 0 is +Z; positive offsets turn left (+X).
SENSOR_RAYS = (
    ("front", 0.0),
    ("left_diag", 45.0),
    ("left", 90.0),
    ("back_left", 135.0),
    ("back", 180.0),
    ("back_right", -135.0),
    ("right", -90.0),
    ("right_diag", -45.0),
)

_CAMEL_KEYS = {
    "leftDiag": "left_diag",
    "rightDiag": "right_diag",
    "backLeft": "back_left",
    "backRight": "back_right",
    "worldX": "world_x",
    "worldZ": "world_z",
    "headingDeg": "heading_deg",
    "verticalSpeed": "vertical_speed",
    "isStuck": "is_stuck",
    "targetHits": "target_hits",
    "distanceToTarget": "distance_to_target",
    "angleToTarget": "angle_to_target",
    "sensorRange": "sensor_range",
}


def as_num(value: Any, fallback: Optional[float] = 0.0) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return fallback
    if not math.isfinite(value):
        return fallback
    return float(value)


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def clamp_number(value: Any, lo: float, hi: float, fallback: float) -> float:
    return clamp(as_num(value, fallback), lo, hi)


def clamp01(value: Any) -> float:
    return clamp(as_num(value, 0.0), 0.0, 1.0)


def normalize_mode(raw: Any, fallback: Optional[str] = "MEMORY_EXPLORE") -> Optional[str]:
    token = raw.strip().upper() if isinstance(raw, str) else ""
    return token if token in STRATEGY_MODES else fallback


def normalize_skill(raw: Any, fallback: str = "MOVE_TO_FRONTIER") -> str:
    token = raw.strip().upper() if isinstance(raw, str) else ""
    return token if token in SKILL_NAMES else fallback


def normalize_sector(raw: Any, fallback: str = "F") -> str:
    token = raw.strip().upper() if isinstance(raw, str) else ""
    return token if token in SECTORS else fallback


def control_sign(value: Any, deadzone: float = 0.08) -> int:
    n = as_num(value, 0.0)
    if n > deadzone:
        return 1
    if n < -deadzone:
        return -1
    return 0


# Steering convention: +1 = LEFT, -1 = RIGHT.
def sector_from_steering(steering: float) -> str:
    if steering > 0.25:
        return "L"
    if steering < -0.25:
        return "R"
    return "F"


def steering_for_sector(sector: Any, fallback_steering: float = 0.0) -> float:
    s = normalize_sector(sector)
    if s == "L":
        return 0.62
    if s == "R":
        return -0.62
    if s == "F":
        return 0.0
    return fallback_steering


@dataclass
class DrivePromptProfile:
    """
    Swappable prompt configuration. A new task or model family should ideally be
    handled by a new profile, not by editing planner code.
    """

    name: str
    system_prompt: str = ""
    priority: str = "target_capture > safe_motion > anti_loop"
    max_cue_words: int = 12
    retry_max_words: int = 10


@dataclass(frozen=True)
class SensorSnapshot:
    """One simulator tick. Missing rays are `None` and read as "no obstacle seen"."""

    front: Optional[float] = None
    left_diag: Optional[float] = None
    left: Optional[float] = None
    back_left: Optional[float] = None
    back: Optional[float] = None
    back_right: Optional[float] = None
    right: Optional[float] = None
    right_diag: Optional[float] = None

    world_x: Optional[float] = None
    world_z: Optional[float] = None
    heading_deg: float = 0.0
    speed: float = 0.0
    vertical_speed: float = 0.0
    is_stuck: bool = False
    target_hits: Mapping[str, bool] = field(default_factory=dict)
    distance_to_target: float = 99.0
    angle_to_target: float = 180.0
    sensor_range: Optional[float] = None

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "SensorSnapshot":
        """Build from a simulator payload (camelCase or snake_case keys)."""
        kwargs: Dict[str, Any] = {}
        for key, value in (payload or {}).items():
            name = _CAMEL_KEYS.get(key, key)
            if name in cls.__dataclass_fields__:
                kwargs[name] = value

        for name, _ in SENSOR_RAYS:
            kwargs[name] = as_num(kwargs.get(name), None)
        kwargs["world_x"] = as_num(kwargs.get("world_x"), None)
        kwargs["world_z"] = as_num(kwargs.get("world_z"), None)
        kwargs["sensor_range"] = as_num(kwargs.get("sensor_range"), None)
        kwargs["heading_deg"] = as_num(kwargs.get("heading_deg"), 0.0)
        kwargs["speed"] = as_num(kwargs.get("speed"), 0.0)
        kwargs["vertical_speed"] = as_num(kwargs.get("vertical_speed"), 0.0)
        kwargs["distance_to_target"] = as_num(kwargs.get("distance_to_target"), 99.0)
        kwargs["angle_to_target"] = as_num(kwargs.get("angle_to_target"), 180.0)
        kwargs["is_stuck"] = bool(kwargs.get("is_stuck", False))
        hits = kwargs.get("target_hits")
        kwargs["target_hits"] = {str(k): bool(v) for k, v in hits.items()} if isinstance(hits, Mapping) else {}
        return cls(**kwargs)

    def ray(self, name: str, default: float = 99.0) -> float:
        value = getattr(self, name)
        return default if value is None else value

    @property
    def target_hit_count(self) -> int:
        return sum(1 for hit in self.target_hits.values() if hit)

    @property
    def has_position(self) -> bool:
        return self.world_x is not None and self.world_z is not None

    def min_front_dist(self) -> float:
        return min(self.ray("front"), self.ray("left_diag"), self.ray("right_diag"))

    def min_obstacle_dist(self, default: float = 10.0) -> float:
        return min(self.ray(name, default) for name, _ in SENSOR_RAYS)

    def sector_clearance(self) -> Dict[str, float]:
        return {
            "L": min(self.ray("left"), self.ray("left_diag")),
            "F": self.min_front_dist(),
            "R": min(self.ray("right"), self.ray("right_diag")),
            "B": min(self.ray("back"), self.ray("back_left"), self.ray("back_right")),
        }


@dataclass
class ReasonEnvelope:
    code: str
    summary: str
    expected_throttle_sign: Optional[int] = None
    expected_steering_sign: Optional[int] = None
    source: str = "fallback"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ActionStep:
    throttle: float
    steering: float
    duration: float
    reason: ReasonEnvelope


@dataclass
class StrategyDecision:
    mode: str = "MEMORY_EXPLORE"
    transition: str = "HOLD"
    confidence: float = 0.5
    chosen_sector: str = "F"
    target_cue: str = ""
    memory_cue: str = ""
    risk_cue: str = ""
    rationale: str = ""


@dataclass
class SkillDecision:
    name: str = "MOVE_TO_FRONTIER"
    intensity: float = 0.5
    rationale: str = ""
    executor_note: str = ""


@dataclass
class Reflection:
    last_outcome_assessment: str = "no_assessment"
    adjustment: str = ""


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _obj(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


@dataclass
class ParsedDecision:
    """Validated, all-optional view of one model response."""

    mode: Optional[str] = None
    transition: str = "HOLD"
    confidence: Optional[float] = None
    chosen_sector: Optional[str] = None
    target_cue: str = ""
    memory_cue: str = ""
    risk_cue: str = ""
    rationale: str = ""

    skill_name: Optional[str] = None
    skill_intensity: Optional[float] = None
    skill_rationale: str = ""

    outcome_assessment: str = ""
    adjustment: str = ""

    reason: Any = None
    thought: str = ""
    analysis: str = ""

    throttle: Optional[float] = None
    steering: Optional[float] = None
    duration: Optional[float] = None
    actions: List[Any] = field(default_factory=list)

    @classmethod
    def from_json(cls, data: Any) -> "ParsedDecision":
        data = _obj(data)
        strategy = _obj(data.get("strategy"))
        skill = _obj(data.get("skill"))
        reflection = _obj(data.get("reflection"))
        # Some models flatten control into the root object.
        control = data.get("control") if isinstance(data.get("control"), dict) else data

        root_actions = data.get("actions") if isinstance(data.get("actions"), list) else []
        control_actions = control.get("actions") if isinstance(control.get("actions"), list) else []

        raw_sector = _text(strategy.get("chosenSector")).upper()
        raw_transition = _text(strategy.get("transition")).upper()
        raw_reason = data.get("reason")

        return cls(
            mode=normalize_mode(strategy.get("mode"), None),
            transition="SWITCH" if raw_transition == "SWITCH" else "HOLD",
            confidence=as_num(strategy.get("confidence"), None),
            chosen_sector=raw_sector if raw_sector in SECTORS else None,
            target_cue=_text(strategy.get("targetCue")),
            memory_cue=_text(strategy.get("memoryCue")),
            risk_cue=_text(strategy.get("riskCue")),
            rationale=_text(strategy.get("rationale")),
            skill_name=normalize_skill(skill.get("name"), "") or None,
            skill_intensity=as_num(skill.get("intensity"), None),
            skill_rationale=_text(skill.get("rationale")),
            outcome_assessment=_text(reflection.get("lastOutcomeAssessment")),
            adjustment=_text(reflection.get("adjustment")),
            reason=raw_reason if isinstance(raw_reason, (dict, str)) else None,
            thought=_text(data.get("thought")),
            analysis=_text(data.get("analysis")),
            throttle=as_num(control.get("throttle"), None),
            steering=as_num(control.get("steering"), None),
            duration=as_num(control.get("duration"), None),
            actions=list(root_actions or control_actions),
        )


@dataclass
class CollisionSummary:
    total_count: int = 0
    same_wall_repeat_count: int = 0
    same_wall_consecutive_repeat_count: int = 0
    by_region: Dict[str, int] = field(default_factory=dict)
    last_region: str = "NONE"
    last_collision_at: float = 0.0


@dataclass
class DecisionOutput:
    throttle: float
    steering: float
    duration: float
    action_plan: List[ActionStep]
    reason: ReasonEnvelope
    strategy: StrategyDecision
    skill: SkillDecision
    reflection: Reflection
    action: str = "IDLE"
    thought: str = ""
    analysis: str = ""

    # audit trail (consumed by logging)
    raw: str = ""
    prompt: str = ""
    model: str = ""
    latency_ms: int = 0
    parse_method: str = ""
    parse_recovered: bool = False
    safety_guard: Optional[Dict[str, Any]] = None
    reason_validation: Optional[Dict[str, Any]] = None

    @property
    def is_fallback(self) -> bool:
        return self.action == "ERROR"

    def to_log_dict(self) -> Dict[str, Any]:
        return asdict(self)
