"""StrategyRegistry - loads strategy documents from disk.

Strategy files are YAML (JSON documents load too, being valid YAML).
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from shadowlab.strategy.strategy import DEFAULT_STRATEGY_DOCUMENT, Strategy

logger = logging.getLogger(__name__)


class StrategyLoadError(Exception):
    """A strategy file could not be read or failed validation."""

    def __init__(self, path: str | Path, reason: str) -> None:
        super().__init__(f"Failed to load strategy from {path}: {reason}")
        self.path = str(path)
        self.reason = reason


class StrategyRegistry:
    """Reads strategies by path and provides the built-in default."""

    def __init__(self, default: Strategy | None = None) -> None:
        self._default = default or Strategy.from_document(DEFAULT_STRATEGY_DOCUMENT)

    def load_default(self) -> Strategy:
        return self._default.model_copy(deep=True)

    def load_from_file(self, path: str | Path) -> Strategy:
        file_path = Path(path).expanduser()
        try:
            raw = yaml.safe_load(file_path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as e:
            raise StrategyLoadError(file_path, str(e)) from e
        except yaml.YAMLError as e:
            raise StrategyLoadError(file_path, f"invalid YAML: {e}") from e

        if not isinstance(raw, dict):
            raise StrategyLoadError(file_path, "document is not a mapping")

        try:
            strategy = Strategy.from_document(raw)
        except ValidationError as e:
            raise StrategyLoadError(file_path, str(e)) from e

        logger.debug(
            f"Loaded strategy {strategy.metadata.id}@{strategy.metadata.version} from {file_path}"
        )
        return strategy

    async def load_from_file_async(self, path: str | Path) -> Strategy:
        """Async version of load_from_file."""
        return await asyncio.to_thread(self.load_from_file, path)

    def save_to_file(self, strategy: Strategy, path: str | Path) -> Path:
        file_path = Path(path).expanduser()
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(
            yaml.safe_dump(strategy.to_document(), sort_keys=False),
            encoding="utf-8",
        )
        logger.info(f"Saved strategy {strategy.metadata.id}@{strategy.metadata.version} to {file_path}")
        return file_path
