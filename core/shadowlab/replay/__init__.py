"""Replay Module - offline evaluation of strategies on recorded episodes.

- ReplaySandbox: deterministic tool layer (trace alignment + virtual fs/git)
- ReplayPlanSource: replays the episode's recorded plan instead of a model
- StrategyEvaluator: scores outcomes and compares strategy variants
- ReplayOrchestrator: wires the above into one agent run per episode
"""

from shadowlab.replay.agent import Agent, PlanFollowingAgent, Task, TaskStatus
from shadowlab.replay.errors import (
    EpisodeNotFoundError,
    ReplayError,
    ReplayExhausted,
    ReplayToolFailed,
)
from shadowlab.replay.evaluator import (
    EvaluationMetrics,
    EvaluationResult,
    EvaluationSummary,
    ScoringThresholds,
    StrategyComparison,
    StrategyEvaluator,
)
from shadowlab.replay.orchestrator import ReplayOrchestrator
from shadowlab.replay.plan import ReplayPlanSource
from shadowlab.replay.sandbox import (
    DriftEvent,
    DriftType,
    ReplaySandbox,
    ToolResult,
    VirtualWorkspace,
)

__all__ = [
    "Agent",
    "DriftEvent",
    "DriftType",
    "EpisodeNotFoundError",
    "EvaluationMetrics",
    "EvaluationResult",
    "EvaluationSummary",
    "PlanFollowingAgent",
    "ReplayError",
    "ReplayExhausted",
    "ReplayOrchestrator",
    "ReplayPlanSource",
    "ReplaySandbox",
    "ReplayToolFailed",
    "ScoringThresholds",
    "StrategyComparison",
    "StrategyEvaluator",
    "Task",
    "TaskStatus",
    "ToolResult",
    "VirtualWorkspace",
]
