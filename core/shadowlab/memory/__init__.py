"""Episodic memory for strategy evaluation.

- Episode / Trace: immutable records of historical task executions
- StrategyEpisodeSummary: per-strategy aggregate used by the shadow router
- EpisodeStore: read protocol, with in-memory and JSONL implementations
"""

from shadowlab.memory.episode import (
    Episode,
    StrategyEpisodeSummary,
    Trace,
    TraceStatus,
)
from shadowlab.memory.store import EpisodeStore, InMemoryEpisodeStore, JsonlEpisodeStore

__all__ = [
    "Episode",
    "EpisodeStore",
    "InMemoryEpisodeStore",
    "JsonlEpisodeStore",
    "StrategyEpisodeSummary",
    "Trace",
    "TraceStatus",
]
