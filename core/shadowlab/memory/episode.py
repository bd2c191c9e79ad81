"""Episode and trace models.

An Episode is one recorded historical task execution:
- Input: the user request the agent received
- Plan: the plan the agent produced (JSON text)
- Result: the final answer text
- Strategy: which strategy id/version was active

A Trace is one recorded tool invocation within an episode. Both are
immutable once written; stores only ever append.
"""

from __future__ import annotations

import math
import time
from enum import StrEnum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def _now_ms() -> int:
    return int(time.time() * 1000)


class TraceStatus(StrEnum):
    """Recorded outcome of a single tool invocation."""

    SUCCESS = "success"
    FAILED = "failed"


class Episode(BaseModel):
    """A single recorded task execution."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid4().hex[:16])
    input: str = ""
    plan: str = ""
    result: str = ""
    strategy_id: str = ""
    strategy_version: str = ""
    created_at: int = Field(default_factory=_now_ms)


class Trace(BaseModel):
    """A single recorded tool call inside an episode."""

    model_config = ConfigDict(frozen=True)

    episode_id: str = ""
    step_index: int = Field(default=0, ge=0)
    tool_name: str
    tool_args: str = "{}"
    tool_output: str = ""
    duration: int = Field(default=0, ge=0)
    status: TraceStatus = TraceStatus.SUCCESS

    @property
    def failed(self) -> bool:
        return self.status == TraceStatus.FAILED


class StrategyEpisodeSummary(BaseModel):
    """Aggregated live evidence for one strategy id/version."""

    strategy_id: str
    strategy_version: str
    total: int = 0
    success: int = 0
    failure: int = 0
    avg_duration_ms: int = 0

    @classmethod
    def from_episodes(
        cls,
        strategy_id: str,
        strategy_version: str,
        episodes_with_traces: list[tuple[Episode, list[Trace]]],
    ) -> "StrategyEpisodeSummary":
        """Compute a summary from episodes and their traces.

        An episode counts as a failure if any of its traces failed. Its
        duration is the sum of its trace durations; the average rounds half up.
        """
        if not episodes_with_traces:
            return cls(strategy_id=strategy_id, strategy_version=strategy_version)

        success = 0
        failure = 0
        total_duration = 0

        for _episode, traces in episodes_with_traces:
            total_duration += sum(t.duration for t in traces)
            if any(t.failed for t in traces):
                failure += 1
            else:
                success += 1

        total = len(episodes_with_traces)
        return cls(
            strategy_id=strategy_id,
            strategy_version=strategy_version,
            total=total,
            success=success,
            failure=failure,
            avg_duration_ms=math.floor(total_duration / total + 0.5),
        )
