"""Agent seam used by replay.

The real agent runtime (planning loop, live model and tool integrations)
lives outside this package. Replay only needs three contracts:

- PlanSource: where the agent gets its plan (a live model, or a recorded plan)
- ToolClient: where the agent sends tool calls (live tools, or the sandbox)
- Agent: something that runs an input to a finished Task

PlanFollowingAgent is a deterministic stand-in that executes a plan's tool
steps in order. Production deployments pass their own agent factory to the
orchestrator instead.
"""

from __future__ import annotations

import json
import logging
import time
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol
from uuid import uuid4

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from shadowlab.strategy.strategy import Strategy

logger = logging.getLogger(__name__)

PLANNER_SYSTEM_PROMPT = "You are a strategic planner for an AI Agent."


class TaskStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Task(BaseModel):
    """A unit of work run by an agent."""

    id: str = Field(default_factory=lambda: uuid4().hex[:12])
    description: str = ""
    created_at: int = Field(default_factory=lambda: int(time.time() * 1000))
    status: TaskStatus = TaskStatus.PENDING
    result: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ToolClient(Protocol):
    async def call_tool(self, name: str, args: dict[str, Any] | None = None) -> Any:
        """Execute a tool; the result exposes ``is_error`` and ``text``."""
        ...


class PlanSource(Protocol):
    async def generate(self, system: str, messages: list[dict[str, Any]]) -> str:
        """Return the model's text response."""
        ...


class Agent(Protocol):
    async def run(self, input: str) -> Task:
        ...


def _extract_json(text: str) -> Any:
    body = text.strip()
    if body.startswith("```"):
        body = body.strip("`")
        if body.startswith("json"):
            body = body[len("json") :]
    try:
        return json.loads(body)
    except ValueError:
        return None


class PlanFollowingAgent:
    """Executes the tool steps of a generated plan, in order.

    Steps without a ``tool`` key are treated as thoughts and skipped. The
    task fails on the first tool result flagged as an error; exceptions from
    the tool client propagate to the caller.
    """

    def __init__(
        self,
        plan_source: PlanSource,
        tools: ToolClient,
        strategy: Strategy,
    ) -> None:
        self._plan_source = plan_source
        self._tools = tools
        self._strategy = strategy

    async def run(self, input: str) -> Task:
        task = Task(description=input, status=TaskStatus.RUNNING)
        task.metadata["strategy_id"] = self._strategy.metadata.id
        task.metadata["strategy_version"] = self._strategy.metadata.version

        system = self._strategy.system.role or PLANNER_SYSTEM_PROMPT
        if "strategic planner" not in system:
            system = f"{PLANNER_SYSTEM_PROMPT}\n{system}"

        raw_plan = await self._plan_source.generate(system, [{"role": "user", "content": input}])
        plan = _extract_json(raw_plan)
        steps = plan.get("steps", []) if isinstance(plan, dict) else []

        max_steps = self._strategy.planning.max_steps if self._strategy.planning else None
        last_output = ""
        executed = 0

        for step in steps:
            if not isinstance(step, dict) or not step.get("tool"):
                continue
            if max_steps is not None and executed >= max_steps:
                logger.info(f"Task {task.id} reached max_steps={max_steps}")
                break

            result = await self._tools.call_tool(step["tool"], step.get("args") or {})
            executed += 1
            if result.is_error:
                task.status = TaskStatus.FAILED
                task.result = result.text
                return task
            last_output = result.text

        task.status = TaskStatus.COMPLETED
        task.result = last_output or (plan.get("result", "") if isinstance(plan, dict) else "")
        return task
