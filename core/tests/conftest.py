"""
Shared fixtures for core tests.

This module provides reusable pytest fixtures to reduce
code duplication in test files.
"""

import json
from typing import Callable

import pytest

from shadowlab.memory import Episode, JsonlEpisodeStore, Trace, TraceStatus
from shadowlab.strategy import Strategy, StrategyRegistry


@pytest.fixture
def episode_store(tmp_path) -> JsonlEpisodeStore:
    """Create a fresh on-disk episode store for testing."""
    store = JsonlEpisodeStore(tmp_path / "episodes")
    store.ensure_dirs()
    return store


@pytest.fixture
def registry() -> StrategyRegistry:
    return StrategyRegistry()


@pytest.fixture
def record_episode(episode_store) -> Callable[..., str]:
    """
    Factory fixture that records an episode whose plan matches its traces.

    Returns:
        A function that takes (episode_id, steps, result) where steps is a
        list of (tool, args, output) or (tool, args, output, status) tuples.
    """

    def _record(
        episode_id: str,
        steps: list[tuple],
        result: str,
        strategy_id: str = "default",
        strategy_version: str = "1.0.0",
        created_at: int | None = None,
    ) -> str:
        plan = [{"tool": step[0], "args": step[1]} for step in steps]
        episode = Episode(
            id=episode_id,
            input=f"replay {episode_id}",
            plan=json.dumps({"steps": plan}),
            result=result,
            strategy_id=strategy_id,
            strategy_version=strategy_version,
            **({"created_at": created_at} if created_at is not None else {}),
        )
        episode_store.record_episode(episode)
        episode_store.record_traces(
            episode_id,
            [
                Trace(
                    step_index=i,
                    tool_name=step[0],
                    tool_args=json.dumps(step[1]),
                    tool_output=step[2],
                    duration=250,
                    status=step[3] if len(step) > 3 else TraceStatus.SUCCESS,
                )
                for i, step in enumerate(steps)
            ],
        )
        return episode_id

    return _record


@pytest.fixture
def make_strategy(registry, tmp_path) -> Callable[..., tuple[Strategy, str]]:
    """Factory fixture that derives a strategy from the default and saves it."""

    def _make(strategy_id: str, version: str = "1.0.0", **planning) -> tuple[Strategy, str]:
        document = registry.load_default().to_document()
        document["metadata"]["id"] = strategy_id
        document["metadata"]["version"] = version
        document["planning"].update(planning)
        strategy = Strategy.from_document(document)
        path = registry.save_to_file(strategy, tmp_path / "strategies" / f"{strategy_id}.yml")
        return strategy, str(path)

    return _make
