import json
import os
import re
import time

from flask import Flask, jsonify, request
import logging

app = Flask(__name__)
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("MockLLM")

# Scenario state
step_count = 0

# Cycle through response shapes the parser has to cope with.
MALFORMED_CYCLE = os.environ.get("MOCK_LLM_MALFORMED", "1") != "0"
RESPONSE_STYLES = ("strict", "trailing_comma", "single_quotes", "fenced", "truncated")

_EXPECTED_MODE_RE = re.compile(r"Expected Mode From Context: (TARGET_LOCK|MEMORY_EXPLORE|ESCAPE_RECOVERY)")

_DECISIONS = {
    "TARGET_LOCK": {
        "skill": "APPROACH_TARGET",
        "sector": "F",
        "control": {"throttle": 0.45, "steering": 0.0, "duration": 0.4},
        "reason": {
            "code": "FORWARD_PROBE",
            "summary": "Target ahead and front clear, approach straight.",
            "expectedThrottleSign": 1,
            "expectedSteeringSign": 0,
        },
    },
    "ESCAPE_RECOVERY": {
        "skill": "BACKOFF_AND_TURN",
        "sector": "B",
        "control": {"throttle": -0.5, "steering": 0.6, "duration": 0.5},
        "reason": {
            "code": "REVERSE_ESCAPE",
            "summary": "Front arc blocked, back off and turn left.",
            "expectedThrottleSign": -1,
            "expectedSteeringSign": 1,
        },
    },
    "MEMORY_EXPLORE": {
        "skill": "MOVE_TO_FRONTIER",
        "sector": "F",
        "control": {"throttle": 0.35, "steering": 0.0, "duration": 0.4},
        "reason": {
            "code": "FORWARD_PROBE",
            "summary": "No target cue, probe the open frontier ahead.",
            "expectedThrottleSign": 1,
            "expectedSteeringSign": 0,
        },
    },
}


def build_decision(mode: str) -> dict:
    spec = _DECISIONS.get(mode, _DECISIONS["MEMORY_EXPLORE"])
    return {
        "strategy": {
            "mode": mode,
            "transition": "HOLD",
            "confidence": 0.7,
            "chosenSector": spec["sector"],
            "targetCue": "mock target cue",
            "memoryCue": "mock memory cue",
            "riskCue": "mock risk cue",
            "rationale": f"Mock decision for {mode}.",
        },
        "skill": {"name": spec["skill"], "intensity": 0.5, "rationale": "mock skill"},
        "reflection": {"lastOutcomeAssessment": "mock", "adjustment": "Keep steady progress."},
        "reason": spec["reason"],
        "thought": f"Mock {mode}",
        "analysis": "Mock analysis.",
        "control": spec["control"],
        "actions": [dict(spec["control"], reason=spec["reason"])],
    }


def render(decision: dict, style: str) -> str:
    text = json.dumps(decision, indent=2)
    if style == "trailing_comma":
        return text.rstrip()[:-1].rstrip() + ",\n}"
    if style == "single_quotes":
        thought = decision["thought"]
        return text.replace(f'"thought": "{thought}"', f"'thought': '{thought}'")
    if style == "fenced":
        return f"```json\n{text}\n```"
    if style == "truncated":
        return text[: len(text) // 2]
    return text


@app.route("/v1/chat/completions", methods=['POST'])
def chat_completions():
    global step_count
    data = request.json or {}
    messages = data.get('messages', [])
    logger.info(f"Received request with {len(messages)} messages")

    user_text = messages[-1].get("content", "") if messages else ""
    if not isinstance(user_text, str):
        user_text = ""
    match = _EXPECTED_MODE_RE.search(user_text)
    mode = match.group(1) if match else "MEMORY_EXPLORE"

    step_count += 1
    if "previous output was incomplete" in user_text:
        # Retry requests always get strict JSON.
        style = "strict"
    elif MALFORMED_CYCLE:
        style = RESPONSE_STYLES[(step_count - 1) % len(RESPONSE_STYLES)]
    else:
        style = "strict"
    content = render(build_decision(mode), style)
    logger.info(f"Responding mode={mode} style={style}")

    # Mimic OpenAI Response Format
    response = {
        "id": f"chatcmpl-mock-{step_count}",
        "object": "chat.completion",
        "created": int(time.time()),
        "model": "mock-model",
        "choices": [{
            "index": 0,
            "message": {
                "role": "assistant",
                "content": content
            },
            "finish_reason": "length" if style == "truncated" else "stop"
        }],
        "usage": {
            "prompt_tokens": 100,
            "completion_tokens": 50,
            "total_tokens": 150
        }
    }

    return jsonify(response)


@app.route("/v1/models", methods=['GET'])
def list_models():
    return jsonify({
        "object": "list",
        "data": [{
            "id": "mock-model",
            "object": "model",
            "created": 1677610602,
            "owned_by": "mock"
        }]
    })


if __name__ == "__main__":
    port = int(os.environ.get("MOCK_LLM_PORT", "8080"))
    print(f"Starting Mock LLM on port {port}...")
    app.run(host='0.0.0.0', port=port)
