"""Strategy routing and promotion configuration.

Values are validated on construction. Files may use either snake_case or
camelCase keys, and may nest everything under a top-level ``strategy:``
section:

    strategy:
      activePath: strategies/baseline.yml
      shadowModeEnabled: true
      shadowTrafficRatio: 0.2
      shadowCandidatePaths:
        - strategies/candidate-a.yml
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class StrategyConfig(BaseModel):
    """Configuration for the shadow router and auto-promotion."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    active_path: str = ""

    shadow_mode_enabled: bool = False
    shadow_traffic_ratio: float = Field(default=0.1, ge=0.0, le=1.0)
    shadow_window_days: int = Field(default=14, ge=1)
    shadow_candidate_paths: list[str] = Field(default_factory=list)

    auto_promote_enabled: bool = False
    auto_promote_min_tasks: int = Field(default=20, ge=1)
    auto_promote_min_improvement: float = Field(default=0.05, ge=0.0, le=1.0)
    auto_promote_confidence: float = Field(default=0.95, ge=0.0, le=1.0)

    replay_episodes: int = Field(default=10, ge=1)

    @property
    def shadow_window_ms(self) -> int:
        return self.shadow_window_days * 24 * 60 * 60 * 1000

    @property
    def max_p_value(self) -> float:
        return 1.0 - self.auto_promote_confidence

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StrategyConfig":
        section = data.get("strategy", data) if isinstance(data, dict) else {}
        return cls.model_validate(section or {})

    @classmethod
    def from_file(cls, path: str | Path) -> "StrategyConfig":
        raw = yaml.safe_load(Path(path).expanduser().read_text(encoding="utf-8"))
        return cls.from_dict(raw or {})

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump()
