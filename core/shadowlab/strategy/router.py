"""Shadow Router - live traffic allocation and auto-promotion.

Two decisions are made from trailing-window episode summaries:

1. select_strategy: per request, route a fixed fraction of traffic to the
   shadow slice, then pick a candidate with a UCB1 bound so under-sampled
   candidates get explored.
2. evaluate_auto_promotion: periodically, test each candidate against the
   baseline with a two-proportion z-test and promote only when sample size,
   improvement and significance thresholds all hold.

Usage:
    router = ShadowRouter(store, registry)
    routed = await router.select_strategy(config)
    decision = await router.evaluate_auto_promotion(config)
    if decision:
        promote(decision.candidate_path)
"""

from __future__ import annotations

import logging
import math
import random
import time
from dataclasses import dataclass
from enum import StrEnum
from typing import Callable

from pydantic import BaseModel

from shadowlab.memory.episode import StrategyEpisodeSummary
from shadowlab.memory.store import EpisodeStore
from shadowlab.strategy.config import StrategyConfig
from shadowlab.strategy.registry import StrategyLoadError, StrategyRegistry
from shadowlab.strategy.strategy import Strategy

logger = logging.getLogger(__name__)

SELECTION_SAMPLE_LIMIT = 500
PROMOTION_SAMPLE_LIMIT = 1000
MAX_DURATION_REGRESSION = 1.1


class RouteRole(StrEnum):
    BASELINE = "baseline"
    CANDIDATE = "candidate"


class RoutedStrategy(BaseModel):
    role: RouteRole
    path: str | None = None
    strategy_id: str
    strategy_version: str
    reason: str


class ShadowPromotionDecision(BaseModel):
    candidate_path: str
    candidate_id: str
    candidate_version: str
    baseline_id: str
    baseline_version: str
    candidate_summary: StrategyEpisodeSummary
    baseline_summary: StrategyEpisodeSummary
    success_improvement: float
    p_value: float


@dataclass
class _Candidate:
    path: str
    strategy: Strategy


def safe_rate(success: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return success / total


def ucb_score(summary: StrategyEpisodeSummary, candidate_count: int) -> float:
    """UCB1 upper bound; unsampled candidates score +inf."""
    if summary.total <= 0:
        return math.inf
    exploration = math.sqrt(2 * math.log(candidate_count + summary.total + 1) / summary.total)
    return safe_rate(summary.success, summary.total) + exploration


def normal_cdf(z: float) -> float:
    """Standard normal CDF for z >= 0 (Abramowitz-Stegun 26.2.17)."""
    t = 1 / (1 + 0.2316419 * z)
    d = 0.3989423 * math.exp(-z * z / 2)
    return 1 - d * t * (
        0.3193815 + t * (-0.3565638 + t * (1.781478 + t * (-1.821256 + t * 1.330274)))
    )


def two_proportion_p_value(success_a: int, total_a: int, success_b: int, total_b: int) -> float:
    """Two-tailed p-value of a pooled two-proportion z-test.

    Degenerate inputs (empty groups, zero pooled variance) return 1.0.
    """
    if total_a <= 0 or total_b <= 0:
        return 1.0

    p1 = success_a / total_a
    p2 = success_b / total_b
    pooled = (success_a + success_b) / (total_a + total_b)
    variance = pooled * (1 - pooled) * (1 / total_a + 1 / total_b)
    if variance <= 0 or not math.isfinite(variance):
        return 1.0

    z = abs(p2 - p1) / math.sqrt(variance)
    p = 2 * (1 - normal_cdf(z))
    if not math.isfinite(p):
        return 1.0
    return max(0.0, min(1.0, p))


class ShadowRouter:
    """Routes live traffic between a baseline and shadow candidates."""

    def __init__(
        self,
        store: EpisodeStore,
        registry: StrategyRegistry | None = None,
        random_fn: Callable[[], float] = random.random,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._registry = registry or StrategyRegistry()
        self._random = random_fn
        self._clock = clock

    async def select_strategy(self, config: StrategyConfig) -> RoutedStrategy:
        baseline = await self._load_baseline(config)
        candidates = await self._load_candidates(config)

        if not config.shadow_mode_enabled or not candidates:
            return self._baseline_route(config, baseline, "shadow_mode_disabled_or_no_candidates")

        if self._random() > config.shadow_traffic_ratio:
            return self._baseline_route(config, baseline, "traffic_routed_to_baseline")

        since_ms = self._window_start_ms(config)
        best: tuple[float, _Candidate] | None = None
        for candidate in candidates:
            summary = self._summarize(candidate.strategy, since_ms, SELECTION_SAMPLE_LIMIT)
            score = ucb_score(summary, len(candidates))
            if best is None or score > best[0]:
                best = (score, candidate)

        if best is None:
            return self._baseline_route(config, baseline, "fallback_no_candidate_selected")

        score, chosen = best
        routed = RoutedStrategy(
            role=RouteRole.CANDIDATE,
            path=chosen.path,
            strategy_id=chosen.strategy.metadata.id,
            strategy_version=chosen.strategy.metadata.version,
            reason=f"shadow_candidate_ucb={score:.4f}",
        )
        logger.info(f"Routed to candidate {routed.strategy_id}@{routed.strategy_version} ({routed.reason})")
        return routed

    async def evaluate_auto_promotion(
        self,
        config: StrategyConfig,
    ) -> ShadowPromotionDecision | None:
        if not config.auto_promote_enabled:
            return None

        baseline = await self._load_baseline(config)
        candidates = await self._load_candidates(config)
        if not candidates:
            return None

        since_ms = self._window_start_ms(config)
        baseline_summary = self._summarize(baseline, since_ms, PROMOTION_SAMPLE_LIMIT)
        if baseline_summary.total < config.auto_promote_min_tasks:
            logger.info(
                f"Auto-promotion skipped: baseline has {baseline_summary.total} samples "
                f"< {config.auto_promote_min_tasks}"
            )
            return None

        baseline_rate = safe_rate(baseline_summary.success, baseline_summary.total)
        selected: ShadowPromotionDecision | None = None

        for candidate in candidates:
            summary = self._summarize(candidate.strategy, since_ms, PROMOTION_SAMPLE_LIMIT)
            if summary.total < config.auto_promote_min_tasks:
                continue

            improvement = safe_rate(summary.success, summary.total) - baseline_rate
            p_value = two_proportion_p_value(
                baseline_summary.success,
                baseline_summary.total,
                summary.success,
                summary.total,
            )
            duration_ok = (
                baseline_summary.avg_duration_ms <= 0
                or summary.avg_duration_ms
                <= baseline_summary.avg_duration_ms * MAX_DURATION_REGRESSION
            )

            logger.debug(
                f"Candidate {candidate.strategy.metadata.id}: improvement={improvement:.4f} "
                f"p={p_value:.4f} duration_ok={duration_ok}"
            )

            if (
                improvement < config.auto_promote_min_improvement
                or p_value > config.max_p_value
                or not duration_ok
            ):
                continue

            if selected is None or improvement > selected.success_improvement:
                selected = ShadowPromotionDecision(
                    candidate_path=candidate.path,
                    candidate_id=candidate.strategy.metadata.id,
                    candidate_version=candidate.strategy.metadata.version,
                    baseline_id=baseline.metadata.id,
                    baseline_version=baseline.metadata.version,
                    candidate_summary=summary,
                    baseline_summary=baseline_summary,
                    success_improvement=improvement,
                    p_value=p_value,
                )

        if selected:
            logger.info(
                f"Auto-promotion eligible: {selected.candidate_id}@{selected.candidate_version} "
                f"improvement={selected.success_improvement:.4f} p={selected.p_value:.4f}"
            )
        return selected

    def _window_start_ms(self, config: StrategyConfig) -> int:
        return int(self._clock() * 1000) - config.shadow_window_ms

    def _summarize(self, strategy: Strategy, since_ms: int, limit: int) -> StrategyEpisodeSummary:
        return self._store.summarize_episodes_by_strategy(
            strategy.metadata.id,
            strategy.metadata.version,
            since_ms=since_ms,
            limit=limit,
        )

    def _baseline_route(self, config: StrategyConfig, baseline: Strategy, reason: str) -> RoutedStrategy:
        return RoutedStrategy(
            role=RouteRole.BASELINE,
            path=config.active_path or None,
            strategy_id=baseline.metadata.id,
            strategy_version=baseline.metadata.version,
            reason=reason,
        )

    async def _load_baseline(self, config: StrategyConfig) -> Strategy:
        if config.active_path:
            return await self._registry.load_from_file_async(config.active_path)
        return self._registry.load_default()

    async def _load_candidates(self, config: StrategyConfig) -> list[_Candidate]:
        candidates = []
        for path in config.shadow_candidate_paths:
            try:
                strategy = await self._registry.load_from_file_async(path)
            except StrategyLoadError as e:
                logger.warning(f"Ignoring shadow candidate {path}: {e.reason}")
                continue
            candidates.append(_Candidate(path=path, strategy=strategy))
        return candidates
