from __future__ import annotations

"""
Prompt profiles for the driving model.

A new model family or task variant should be handled by swapping a
`DrivePromptProfile`, not by editing planner code. `DriveAgent` copies the
profile per agent so instances never share a mutable profile.
"""

from .schemas import DrivePromptProfile

RESPONSE_SCHEMA = """{
  "strategy": {
    "mode": "TARGET_LOCK|MEMORY_EXPLORE|ESCAPE_RECOVERY",
    "transition": "HOLD|SWITCH",
    "confidence": 0.0,
    "chosenSector": "L|F|R|B",
    "targetCue": "short text",
    "memoryCue": "short text",
    "riskCue": "short text",
    "rationale": "one sentence"
  },
  "skill": {
    "name": "APPROACH_TARGET|MOVE_TO_FRONTIER|SCAN_SECTOR|BACKOFF_AND_TURN|HOLD_POSITION",
    "intensity": 0.0,
    "rationale": "one sentence"
  },
  "reflection": {
    "lastOutcomeAssessment": "short text",
    "adjustment": "one sentence for next cycle"
  },
  "reason": {
    "code": "UPPER_SNAKE_CASE",
    "summary": "one sentence",
    "expectedThrottleSign": -1,
    "expectedSteeringSign": 1
  },
  "thought": "short driving intent",
  "analysis": "Obstacle summary + target summary",
  "control": {
    "throttle": 0.0,
    "steering": 0.0,
    "duration": 0.2
  },
  "actions": [
    {
      "throttle": 0.2,
      "steering": 0.1,
      "duration": 0.25,
      "reason": {
        "code": "FORWARD_TURN_APPROACH",
        "summary": "turn toward safer target side",
        "expectedThrottleSign": 1,
        "expectedSteeringSign": 1
      }
    }
  ]
}"""


def build_default_system_prompt(max_cue_words: int = 12) -> str:
    return f"""You are the PRIMARY autonomous driving intelligence of a simulated vehicle.
Goal: capture blue targets accurately and repeatedly while avoiding obstacles.
You are responsible for BOTH strategy and control each cycle.

Controls: throttle in [-1, 1] (+ forward), steering in [-1, 1] (+1 = LEFT, -1 = RIGHT), duration in seconds.

Rules:
1) Choose one strategy mode: TARGET_LOCK / MEMORY_EXPLORE / ESCAPE_RECOVERY.
2) Decide transition: HOLD or SWITCH. If mode changed from previous mode, transition must be SWITCH.
3) Choose sector: L/F/R/B.
4) Choose one skill: APPROACH_TARGET / MOVE_TO_FRONTIER / SCAN_SECTOR / BACKOFF_AND_TURN / HOLD_POSITION.
5) Use target cues + memory cues together.
6) Avoid no-go memory cells (outsideBounds/barrierBlocked/obstacleDominant).
7) If obstacle in front arc is very close or stuck, prioritize safe escape.
7a) If LockHoldWindow=true and no critical danger, keep TARGET_LOCK.
8) If ReacquireActive=true and no strong target cue, use MEMORY_EXPLORE and perform explicit scan behavior.
9) Use Previous Outcome Signal to avoid repeating failed action.
10) PseudoContactScore>=0.68 with ReliableDirectionCue=true is lock-ready even if direct targetHits are zero.
11) Keep text concise: targetCue/memoryCue/riskCue/rationale/adjustment <= {max_cue_words} words each.
12) Always provide top-level reason object with code/summary/expectedThrottleSign/expectedSteeringSign.
13) You may optionally provide an actions array (2-5 steps) for smoother trajectory.
14) Each action step must include throttle, steering, duration, and reason object.
15) Do not output markdown. JSON only.

Return JSON with this schema:
{RESPONSE_SCHEMA}
"""


def build_retry_prompt(previous_tail: str, max_words: int = 10) -> str:
    return (
        "Return ONLY one complete JSON object in the required schema.\n"
        "Your previous output was incomplete or malformed.\n"
        "Do not add comments.\n"
        f"Keep text fields short (<= {max_words} words).\n"
        "If uncertain, still fill all required fields with safe defaults.\n"
        "Previous partial tail:\n"
        f"{previous_tail}\n"
    )


DEFAULT_PROFILE = DrivePromptProfile(
    name="default",
    system_prompt="",  # filled at runtime from build_default_system_prompt
)
