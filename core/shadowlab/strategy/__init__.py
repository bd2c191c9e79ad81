"""Strategy management.

- Strategy / StrategyRegistry: strategy documents and how they are loaded
- StrategyConfig: routing and promotion settings
- ShadowRouter: live traffic split (UCB) and auto-promotion (z-test)
- StrategyUpdateGate: ordered validators for candidate strategies
"""

from shadowlab.strategy.config import StrategyConfig
from shadowlab.strategy.gate import (
    GateStatus,
    GateValidator,
    StrategyBranch,
    StrategyUpdateGate,
    ValidationResult,
)
from shadowlab.strategy.registry import StrategyLoadError, StrategyRegistry
from shadowlab.strategy.router import (
    RoutedStrategy,
    RouteRole,
    ShadowPromotionDecision,
    ShadowRouter,
)
from shadowlab.strategy.strategy import Strategy, StrategyMetadata

__all__ = [
    "GateStatus",
    "GateValidator",
    "RouteRole",
    "RoutedStrategy",
    "ShadowPromotionDecision",
    "ShadowRouter",
    "Strategy",
    "StrategyBranch",
    "StrategyConfig",
    "StrategyLoadError",
    "StrategyMetadata",
    "StrategyRegistry",
    "StrategyUpdateGate",
    "ValidationResult",
]
