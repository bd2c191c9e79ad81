"""Strategy documents.

A Strategy is the policy/prompt/constraint configuration an agent runs
under. Beyond ``metadata.id`` and ``metadata.version`` (its identity for
grouping, routing and promotion) the contents are opaque to replay and
routing; the gate validators inspect the planning and execution sections.

Documents use camelCase keys on disk (``maxSteps``, ``riskTolerance``);
both spellings are accepted.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _StrategyModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RiskTolerance(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class StrategyMetadata(_StrategyModel):
    id: str
    version: str
    name: str = ""
    description: str | None = None
    author: str | None = None
    inherit_from: str | None = None


class StrategySystem(_StrategyModel):
    role: str = "You are a strategic planner for an AI Agent."
    personality: str | None = None
    constraints: list[str] = Field(default_factory=list)
    goals: list[str] = Field(default_factory=list)


class StrategyPrompts(_StrategyModel):
    planning: str | None = None
    reflection: str | None = None
    intent: str | None = None


class StrategyPlanning(_StrategyModel):
    model: str | None = None
    temperature: float = 0
    max_steps: int = 10
    thinking_process: bool = True


class StrategyExecution(_StrategyModel):
    risk_tolerance: RiskTolerance = RiskTolerance.LOW
    requires_confirmation: list[str] = Field(default_factory=list)
    auto_retry: bool = True
    max_retries: int = 3


class Strategy(_StrategyModel):
    metadata: StrategyMetadata
    system: StrategySystem = Field(default_factory=StrategySystem)
    prompts: StrategyPrompts | None = None
    planning: StrategyPlanning | None = None
    execution: StrategyExecution | None = None

    @property
    def key(self) -> tuple[str, str]:
        """(id, version) grouping key."""
        return self.metadata.id, self.metadata.version

    @classmethod
    def from_document(cls, raw: Any) -> "Strategy":
        """Validate a parsed document, migrating the legacy flat layout."""
        return cls.model_validate(migrate_legacy_strategy(raw))

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def migrate_legacy_strategy(raw: Any) -> Any:
    """Lift top-level id/version/name into a metadata section."""
    source = raw if isinstance(raw, dict) else {}
    if isinstance(source.get("metadata"), dict):
        return raw

    def _text(key: str, default: str | None = None) -> str | None:
        value = source.get(key)
        return value if isinstance(value, str) else default

    migrated = {k: v for k, v in source.items() if k not in ("id", "version", "name")}
    migrated["metadata"] = {
        "id": _text("id", "default"),
        "version": _text("version", "1.0.0"),
        "name": _text("name", "Default Strategy"),
        "description": _text("description"),
        "author": _text("author"),
        "inheritFrom": _text("inheritFrom"),
    }
    migrated.pop("description", None)
    migrated.pop("author", None)
    migrated.pop("inheritFrom", None)
    return migrated


DEFAULT_STRATEGY_DOCUMENT: dict[str, Any] = {
    "metadata": {
        "id": "default",
        "version": "1.0.0",
        "name": "Default Strategy",
        "description": "Conservative baseline strategy",
    },
    "system": {
        "role": "You are a strategic planner for an AI Agent.",
        "constraints": [
            "Prefer read-only tools before making changes",
            "Ask the user before destructive actions",
        ],
        "goals": ["Complete the task with the fewest safe steps"],
    },
    "planning": {"temperature": 0, "maxSteps": 10, "thinkingProcess": True},
    "execution": {
        "riskTolerance": "low",
        "requiresConfirmation": ["shell_execute", "fs_delete_file", "git_push"],
        "autoRetry": True,
        "maxRetries": 3,
    },
}
