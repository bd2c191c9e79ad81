"""shadowlab - replay evaluation and shadow promotion for agent strategies.

Two evaluation paths share the strategy model:

1. Offline (replay): re-run recorded episodes under a baseline and a
   candidate strategy in a deterministic sandbox and compare scores.
2. Online (shadow): split live traffic toward candidates with a UCB bandit
   and promote a candidate once a significance test says it is better.
"""

from shadowlab.memory import Episode, InMemoryEpisodeStore, JsonlEpisodeStore, Trace
from shadowlab.replay import ReplayOrchestrator, ReplaySandbox, StrategyEvaluator
from shadowlab.strategy import ShadowRouter, Strategy, StrategyConfig, StrategyRegistry

__version__ = "0.1.0"

__all__ = [
    "Episode",
    "InMemoryEpisodeStore",
    "JsonlEpisodeStore",
    "ReplayOrchestrator",
    "ReplaySandbox",
    "ShadowRouter",
    "Strategy",
    "StrategyConfig",
    "StrategyEvaluator",
    "StrategyRegistry",
    "Trace",
]
