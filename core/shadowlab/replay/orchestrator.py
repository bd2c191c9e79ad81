"""Replay Orchestrator - re-runs recorded episodes under a strategy.

For each episode the orchestrator:
1. Loads the episode and its ordered traces from the store
2. Builds a fresh ReplaySandbox and a ReplayPlanSource for the recorded plan
3. Runs an agent wired to both against the episode's input
4. Scores the outcome against the recorded result

Usage:
    orchestrator = ReplayOrchestrator(store)
    result = await orchestrator.replay("episode_123")

    comparison = await orchestrator.replay_compare(ids, baseline, candidate)
    if comparison.improvement > 0:
        ...
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from shadowlab.memory.store import EpisodeStore
from shadowlab.replay.agent import Agent, PlanFollowingAgent, PlanSource, Task, TaskStatus, ToolClient
from shadowlab.replay.errors import EpisodeNotFoundError
from shadowlab.replay.evaluator import (
    EvaluationMetrics,
    EvaluationResult,
    StrategyComparison,
    StrategyEvaluator,
)
from shadowlab.replay.plan import ReplayPlanSource
from shadowlab.replay.sandbox import ReplaySandbox
from shadowlab.strategy.config import StrategyConfig
from shadowlab.strategy.registry import StrategyRegistry
from shadowlab.strategy.strategy import Strategy

logger = logging.getLogger(__name__)

AgentFactory = Callable[[PlanSource, ToolClient, Strategy], Agent]


def default_agent_factory(plan_source: PlanSource, tools: ToolClient, strategy: Strategy) -> Agent:
    return PlanFollowingAgent(plan_source, tools, strategy)


class ReplayOrchestrator:
    """Replays episodes in isolated sandboxes and scores them."""

    def __init__(
        self,
        store: EpisodeStore,
        evaluator: StrategyEvaluator | None = None,
        registry: StrategyRegistry | None = None,
        agent_factory: AgentFactory = default_agent_factory,
    ) -> None:
        self._store = store
        self._evaluator = evaluator or StrategyEvaluator()
        self._registry = registry or StrategyRegistry()
        self._agent_factory = agent_factory

    @property
    def evaluator(self) -> StrategyEvaluator:
        return self._evaluator

    async def replay(self, episode_id: str, strategy: Strategy | None = None) -> EvaluationResult:
        """Replay one episode.

        Setup and agent failures become a failed task and are scored, never
        raised.

        Raises:
            EpisodeNotFoundError: the episode is not in the store.
        """
        episode = self._store.get_episode(episode_id)
        if episode is None:
            raise EpisodeNotFoundError(episode_id)

        sandbox: ReplaySandbox | None = None
        started = time.perf_counter()
        try:
            traces = self._store.get_traces(episode_id)
            strategy = strategy or self._registry.load_default()
            logger.info(
                f"Replaying episode {episode_id} ({len(traces)} steps) under "
                f"{strategy.metadata.id}@{strategy.metadata.version}"
            )

            sandbox = ReplaySandbox(traces)
            plan_source = ReplayPlanSource(episode.plan)
            agent = self._agent_factory(plan_source, sandbox, strategy)
            task = await agent.run(episode.input)
        except Exception as e:
            logger.error(f"Replay of episode {episode_id} failed: {e}")
            task = Task(
                id=f"replay-failed-{episode_id}",
                description=episode.input,
                status=TaskStatus.FAILED,
                result=str(e),
            )
        duration_ms = (time.perf_counter() - started) * 1000

        metrics = EvaluationMetrics(
            duration=duration_ms,
            steps=sandbox.invocation_count if sandbox else 0,
            cost=None,
            drift_detected=sandbox.drift_detected if sandbox else False,
            risk_events=sandbox.risk_event_count if sandbox else 0,
            human_interrupts=sandbox.human_interrupt_count if sandbox else 0,
        )
        evaluation = self._evaluator.evaluate_task(task, episode.result, metrics)
        result = evaluation.model_copy(update={"task_id": episode_id})

        logger.info(
            f"Replay of episode {episode_id} finished: success={result.success} "
            f"score={result.score:.3f} drifts={len(sandbox.drifts) if sandbox else 0}"
        )
        return result

    async def replay_batch(
        self,
        episode_ids: list[str],
        strategy: Strategy | None = None,
        concurrency: int = 1,
    ) -> list[EvaluationResult]:
        """Replay several episodes; a failing id is logged and skipped.

        Results keep the order of ``episode_ids``. Each episode has its own
        sandbox, so ``concurrency > 1`` replays episodes in parallel.
        """
        semaphore = asyncio.Semaphore(max(1, concurrency))

        async def _run(episode_id: str) -> EvaluationResult | None:
            async with semaphore:
                try:
                    return await self.replay(episode_id, strategy)
                except Exception as e:
                    logger.warning(f"Skipping episode {episode_id}: {e}")
                    return None

        if concurrency <= 1:
            outcomes = [await _run(episode_id) for episode_id in episode_ids]
        else:
            outcomes = await asyncio.gather(*(_run(episode_id) for episode_id in episode_ids))

        return [r for r in outcomes if r is not None]

    async def replay_compare(
        self,
        episode_ids: list[str],
        baseline: Strategy,
        candidate: Strategy,
        concurrency: int = 1,
    ) -> StrategyComparison:
        """Replay the same episodes under two strategies and compare."""
        baseline_results = await self.replay_batch(episode_ids, baseline, concurrency)
        candidate_results = await self.replay_batch(episode_ids, candidate, concurrency)
        return self._evaluator.compare_results(
            baseline_results,
            candidate_results,
            baseline_id=f"{baseline.metadata.id}@{baseline.metadata.version}",
            candidate_id=f"{candidate.metadata.id}@{candidate.metadata.version}",
        )

    async def compare_on_recent_episodes(
        self,
        baseline: Strategy,
        candidate: Strategy,
        config: StrategyConfig,
    ) -> StrategyComparison:
        """Compare strategies on the baseline's most recent recorded episodes.

        Replays at most ``config.replay_episodes`` episodes, newest first.
        """
        episodes = self._store.list_episodes_by_strategy(
            baseline.metadata.id,
            baseline.metadata.version,
            limit=config.replay_episodes,
        )
        logger.info(
            f"Comparing {candidate.metadata.id}@{candidate.metadata.version} against "
            f"{baseline.metadata.id}@{baseline.metadata.version} on {len(episodes)} episodes"
        )
        return await self.replay_compare([ep.id for ep in episodes], baseline, candidate)
