"""Deterministic plan source for replay.

Stands in for the live model during replay: planning prompts receive the
episode's originally recorded plan, intent prompts receive a fixed intent
document, and everything else receives a small deterministic note.
"""

from __future__ import annotations

import json
import logging
from typing import Any

logger = logging.getLogger(__name__)


def normalize_plan(plan: str) -> dict[str, Any]:
    """Coerce a recorded plan into ``{"steps": [...]}`` form."""
    try:
        parsed = json.loads(plan)
    except (TypeError, ValueError):
        return {"steps": []}

    if isinstance(parsed, list):
        return {"steps": parsed}
    if isinstance(parsed, dict) and isinstance(parsed.get("steps"), list):
        return parsed
    return {"steps": []}


class ReplayPlanSource:
    """Replays a recorded plan instead of calling a model."""

    def __init__(self, original_plan: str) -> None:
        self._plan = normalize_plan(original_plan)
        self._call_count = 0

    @property
    def call_count(self) -> int:
        return self._call_count

    def plan(self) -> dict[str, Any]:
        return json.loads(json.dumps(self._plan))

    async def generate(self, system: str, messages: list[dict[str, Any]]) -> str:
        self._call_count += 1
        system = system or ""

        if "strategic planner" in system:
            return f"```json\n{json.dumps(self._plan)}\n```"

        if "intent analysis" in system:
            summary = str(messages[0].get("content", "")) if messages else ""
            summary = summary or "replay intent"
            return json.dumps(
                {
                    "category": "action",
                    "summary": summary,
                    "entities": [],
                    "complexity": "simple",
                    "goal": summary,
                    "deliverables": [],
                    "constraints": [],
                    "successCriteria": [],
                    "assumptions": [],
                    "requiredTools": [],
                }
            )

        logger.debug(f"Replay plan source returning note for call {self._call_count}")
        return json.dumps({"note": "replay-mock", "call": self._call_count})
