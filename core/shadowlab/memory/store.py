"""Episode Store - read access to recorded episodes and traces.

The replay orchestrator and the shadow router only ever read from the
store. Two reference implementations are provided:

- InMemoryEpisodeStore: dict-backed, for tests and embedding
- JsonlEpisodeStore: append-only JSONL files on disk

Storage layout for JsonlEpisodeStore:
    {base_path}/
      episodes.jsonl      # One Episode per line (append-only)
      traces.jsonl        # One Trace per line (append-only)
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Protocol

from shadowlab.memory.episode import Episode, StrategyEpisodeSummary, Trace

logger = logging.getLogger(__name__)


class EpisodeStore(Protocol):
    """Protocol for episode stores consumed by replay and routing."""

    def get_episode(self, episode_id: str) -> Episode | None:
        """Return the episode or None when unknown."""
        ...

    def get_traces(self, episode_id: str) -> list[Trace]:
        """Return the episode's traces ordered by step_index."""
        ...

    def list_episodes_by_strategy(
        self,
        strategy_id: str,
        strategy_version: str,
        since_ms: int | None = None,
        limit: int | None = None,
    ) -> list[Episode]:
        """Return one strategy's episodes, newest first."""
        ...

    def summarize_episodes_by_strategy(
        self,
        strategy_id: str,
        strategy_version: str,
        since_ms: int | None = None,
        limit: int | None = None,
    ) -> StrategyEpisodeSummary:
        """Summarize the trailing window of episodes for one strategy."""
        ...


def _check_step_order(existing: list[Trace], new: list[Trace]) -> None:
    last = existing[-1].step_index if existing else -1
    for trace in new:
        if trace.step_index <= last:
            raise ValueError(
                f"step_index must be strictly increasing: got {trace.step_index} after {last}"
            )
        last = trace.step_index


class InMemoryEpisodeStore:
    """Dict-backed episode store."""

    def __init__(self) -> None:
        self._episodes: dict[str, Episode] = {}
        self._traces: dict[str, list[Trace]] = {}
        self._lock = threading.Lock()

    def record_episode(self, episode: Episode) -> str:
        with self._lock:
            if episode.id in self._episodes:
                raise ValueError(f"Episode {episode.id} already recorded")
            self._episodes[episode.id] = episode
            self._traces.setdefault(episode.id, [])
        return episode.id

    def record_traces(self, episode_id: str, traces: list[Trace]) -> None:
        bound = [t.model_copy(update={"episode_id": episode_id}) for t in traces]
        with self._lock:
            existing = self._traces.setdefault(episode_id, [])
            _check_step_order(existing, bound)
            existing.extend(bound)

    def get_episode(self, episode_id: str) -> Episode | None:
        return self._episodes.get(episode_id)

    def get_traces(self, episode_id: str) -> list[Trace]:
        return sorted(self._traces.get(episode_id, []), key=lambda t: t.step_index)

    def list_episodes_by_strategy(
        self,
        strategy_id: str,
        strategy_version: str,
        since_ms: int | None = None,
        limit: int | None = None,
    ) -> list[Episode]:
        """List a strategy's episodes, newest first."""
        matches = [
            ep
            for ep in self._episodes.values()
            if ep.strategy_id == strategy_id
            and ep.strategy_version == strategy_version
            and (since_ms is None or ep.created_at >= since_ms)
        ]
        matches.sort(key=lambda ep: ep.created_at, reverse=True)
        if limit is not None:
            matches = matches[:limit]
        return matches

    def summarize_episodes_by_strategy(
        self,
        strategy_id: str,
        strategy_version: str,
        since_ms: int | None = None,
        limit: int | None = None,
    ) -> StrategyEpisodeSummary:
        episodes = self.list_episodes_by_strategy(strategy_id, strategy_version, since_ms, limit)
        return StrategyEpisodeSummary.from_episodes(
            strategy_id,
            strategy_version,
            [(ep, self.get_traces(ep.id)) for ep in episodes],
        )


class JsonlEpisodeStore(InMemoryEpisodeStore):
    """Append-only JSONL episode store.

    Files are loaded once on first access; writes are appended to both the
    in-memory index and the files.
    """

    def __init__(self, base_path: Path) -> None:
        super().__init__()
        self._base_path = Path(base_path)
        self._episodes_file = self._base_path / "episodes.jsonl"
        self._traces_file = self._base_path / "traces.jsonl"
        self._loaded = False

    def ensure_dirs(self) -> None:
        """Create storage directories if they don't exist."""
        self._base_path.mkdir(parents=True, exist_ok=True)

    def _load(self) -> None:
        if self._loaded:
            return
        self._loaded = True

        if self._episodes_file.exists():
            for line in self._episodes_file.read_text(encoding="utf-8").splitlines():
                if not line.strip():
                    continue
                try:
                    episode = Episode.model_validate_json(line)
                except ValueError as e:
                    logger.warning(f"Skipping unreadable episode line in {self._episodes_file}: {e}")
                    continue
                self._episodes[episode.id] = episode
                self._traces.setdefault(episode.id, [])

        if self._traces_file.exists():
            for line in self._traces_file.read_text(encoding="utf-8").splitlines():
                if not line.strip():
                    continue
                try:
                    trace = Trace.model_validate_json(line)
                except ValueError as e:
                    logger.warning(f"Skipping unreadable trace line in {self._traces_file}: {e}")
                    continue
                self._traces.setdefault(trace.episode_id, []).append(trace)

    def _append(self, path: Path, lines: list[str]) -> None:
        self.ensure_dirs()
        with path.open("a", encoding="utf-8") as fh:
            for line in lines:
                fh.write(line + "\n")

    def record_episode(self, episode: Episode) -> str:
        self._load()
        episode_id = super().record_episode(episode)
        self._append(self._episodes_file, [episode.model_dump_json()])
        logger.info(f"Recorded episode {episode_id} to {self._episodes_file}")
        return episode_id

    def record_traces(self, episode_id: str, traces: list[Trace]) -> None:
        self._load()
        super().record_traces(episode_id, traces)
        bound = [t.model_copy(update={"episode_id": episode_id}) for t in traces]
        self._append(self._traces_file, [t.model_dump_json() for t in bound])

    def get_episode(self, episode_id: str) -> Episode | None:
        self._load()
        return super().get_episode(episode_id)

    def get_traces(self, episode_id: str) -> list[Trace]:
        self._load()
        return super().get_traces(episode_id)

    def list_episodes_by_strategy(
        self,
        strategy_id: str,
        strategy_version: str,
        since_ms: int | None = None,
        limit: int | None = None,
    ) -> list[Episode]:
        self._load()
        return super().list_episodes_by_strategy(strategy_id, strategy_version, since_ms, limit)

    def export_episode(self, episode_id: str) -> dict | None:
        """Return an episode with its traces as a plain dict."""
        episode = self.get_episode(episode_id)
        if episode is None:
            return None
        return {
            "episode": episode.model_dump(),
            "traces": [json.loads(t.model_dump_json()) for t in self.get_traces(episode_id)],
        }
