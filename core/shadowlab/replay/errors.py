"""Errors raised during replay."""

from __future__ import annotations


class ReplayError(Exception):
    """Base class for replay failures."""


class ReplayExhausted(ReplayError):
    """No recorded trace can satisfy a non-simulated tool call."""

    def __init__(self, tool_name: str) -> None:
        super().__init__(f"Replay Error: No trace available for tool '{tool_name}'.")
        self.tool_name = tool_name


class ReplayToolFailed(ReplayError):
    """A replayed tool call failed historically, so it fails again."""

    def __init__(self, tool_name: str, output: str) -> None:
        super().__init__(output or "Replay tool execution failed")
        self.tool_name = tool_name
        self.output = output


class EpisodeNotFoundError(ReplayError):
    """The requested episode does not exist in the store."""

    def __init__(self, episode_id: str) -> None:
        super().__init__(f"Episode {episode_id} not found.")
        self.episode_id = episode_id
