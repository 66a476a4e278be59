"""
Agent package entrypoints.

Keep `autodrive.agent` import-light: the decision core is usable on its own
(e.g. from tests or the preflight script) without pulling in the run loop.
The agent wrapper is exposed via lazy imports.
"""

from __future__ import annotations

__all__ = [
    'DriveAgent',
    'DriveAgentCfg',
]


def __getattr__(name: str):
    # Lazy imports so `autodrive.agent.decision` can be imported without the wrapper.
    if name == "DriveAgent":
        from autodrive.agent.drive_agent import DriveAgent

        return DriveAgent
    if name == "DriveAgentCfg":
        from autodrive.agent.drive_agent import DriveAgentCfg

        return DriveAgentCfg

    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
