import json
import sys
from pathlib import Path
from types import SimpleNamespace

import pytest


# Ensure the repo root is on PYTHONPATH so `import autodrive` works in tests
_ROOT = Path(__file__).resolve().parents[1]
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from autodrive.agent.decision import DecisionNavigator, SensorSnapshot, SessionState, SpatialMemoryGrid  # noqa: E402
from autodrive.agent.decision.config import DecisionCoreConfig  # noqa: E402

RAY_KEYS = ("front", "left_diag", "left", "back_left", "back", "back_right", "right", "right_diag")


class FakeChatClient:
    """Stands in for `openai.OpenAI`: replays scripted replies (str or exception); the last one repeats."""

    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    def _create(self, **kwargs):
        self.calls.append(kwargs)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=reply))])


def decision_json(
    mode="TARGET_LOCK",
    skill="APPROACH_TARGET",
    throttle=0.45,
    steering=0.0,
    duration=0.4,
    sector="F",
    throttle_sign=1,
    steering_sign=0,
    with_actions=True,
):
    reason = {
        "code": "MODEL_STEP",
        "summary": "Model chosen control for this cycle.",
        "expectedThrottleSign": throttle_sign,
        "expectedSteeringSign": steering_sign,
    }
    payload = {
        "strategy": {
            "mode": mode,
            "transition": "HOLD",
            "confidence": 0.8,
            "chosenSector": sector,
            "targetCue": "t",
            "memoryCue": "m",
            "riskCue": "r",
            "rationale": "test rationale",
        },
        "skill": {"name": skill, "intensity": 0.5, "rationale": "s"},
        "reflection": {"lastOutcomeAssessment": "ok", "adjustment": "keep going"},
        "reason": reason,
        "thought": "test thought",
        "analysis": "test analysis",
        "control": {"throttle": throttle, "steering": steering, "duration": duration},
    }
    if with_actions:
        payload["actions"] = [{"throttle": throttle, "steering": steering, "duration": duration, "reason": reason}]
    return json.dumps(payload)


@pytest.fixture
def make_snapshot():
    def _make(rays=9.0, **overrides):
        data = {k: rays for k in RAY_KEYS}
        data.update(world_x=0.0, world_z=0.0, heading_deg=0.0, distance_to_target=50.0, angle_to_target=90.0)
        data.update(overrides)
        return SensorSnapshot.from_dict(data)

    return _make


@pytest.fixture
def make_navigator():
    def _make(replies, config=None):
        config = config or DecisionCoreConfig()
        nav = DecisionNavigator(
            state=SessionState(run_id="test"),
            memory=SpatialMemoryGrid(config.memory),
            model_name="mock-model",
            api_key="EMPTY",
            base_url="http://127.0.0.1:9/v1",
            config=config,
        )
        client = FakeChatClient(replies)
        nav.planner.client = client
        return nav, client

    return _make
