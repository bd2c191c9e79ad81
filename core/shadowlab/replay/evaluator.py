"""Strategy Evaluator - scores replayed tasks and compares strategies.

Scoring combines correctness with efficiency and safety:
1. Success or failure of the task (dominant, via a 0.45 base)
2. Textual similarity of the result to the historical result
3. Duration, step count and cost ("lower is better" curves)
4. Risk events and human interrupts ("lower is better" curves)
5. A flat penalty when the replay drifted from history

All functions here are pure; results are immutable.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field

from shadowlab.replay.agent import Task, TaskStatus

_PUNCTUATION_RE = re.compile(r"[^\w\s]")


@dataclass(frozen=True)
class Threshold:
    """A "lower is better" curve: 1.0 at or below best, 0.0 at or above worst."""

    best: float
    worst: float


@dataclass(frozen=True)
class ScoringThresholds:
    """Default thresholds for the efficiency and safety terms."""

    duration: Threshold = Threshold(best=2000, worst=60000)
    steps: Threshold = Threshold(best=3, worst=20)
    cost: Threshold = Threshold(best=1000, worst=50000)
    risk_events: Threshold = Threshold(best=0, worst=5)
    human_interrupts: Threshold = Threshold(best=0, worst=5)
    unknown_cost_score: float = 0.5


class EvaluationMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    duration: float = 0
    steps: int = 0
    cost: float | None = None
    drift_detected: bool = False
    risk_events: int = 0
    human_interrupts: int = 0


class EvaluationResult(BaseModel):
    """Score for a single replayed task."""

    model_config = ConfigDict(frozen=True)

    task_id: str
    success: bool
    score: float = Field(ge=0.0, le=1.0)
    metrics: EvaluationMetrics = Field(default_factory=EvaluationMetrics)
    details: str | None = None


class EvaluationSummary(BaseModel):
    """Aggregate over a set of evaluation results."""

    tasks: int = 0
    success_rate: float = 0.0
    average_score: float = 0.0
    average_duration: float = 0.0
    average_cost: float = 0.0
    drift_rate: float = 0.0
    average_risk_events: float = 0.0
    average_human_interrupts: float = 0.0


class StrategyComparison(BaseModel):
    baseline_id: str = "baseline"
    candidate_id: str = "candidate"
    tasks_evaluated: int = 0
    baseline: EvaluationSummary
    candidate: EvaluationSummary
    delta: dict[str, float] = Field(default_factory=dict)
    improvement: float = 0.0

    @property
    def baseline_score(self) -> float:
        return self.baseline.average_score

    @property
    def candidate_score(self) -> float:
        return self.candidate.average_score


def clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def lower_is_better(value: float, threshold: Threshold) -> float:
    if value <= threshold.best:
        return 1.0
    if value >= threshold.worst:
        return 0.0
    return 1.0 - (value - threshold.best) / (threshold.worst - threshold.best)


def _tokenize(text: str) -> set[str]:
    return set(_PUNCTUATION_RE.sub(" ", text.lower()).split())


def text_similarity(actual: str | None, reference: str | None) -> float:
    """Jaccard similarity of the word sets of two texts."""
    left = _tokenize(actual or "")
    right = _tokenize(reference or "")
    if not left and not right:
        return 1.0
    if not left or not right:
        return 0.5
    return len(left & right) / len(left | right)


class StrategyEvaluator:
    """Scores replay outcomes and compares strategy variants.

    Usage:
        evaluator = StrategyEvaluator()
        result = evaluator.evaluate_task(task, episode.result, metrics)
        comparison = evaluator.compare_results(baseline_results, candidate_results)
    """

    def __init__(self, thresholds: ScoringThresholds | None = None) -> None:
        self.thresholds = thresholds or ScoringThresholds()

    def evaluate_task(
        self,
        task: Task,
        reference_result: str | None,
        metrics: EvaluationMetrics,
    ) -> EvaluationResult:
        success = task.status == TaskStatus.COMPLETED
        similarity = text_similarity(task.result, reference_result)
        drift = 1.0 if metrics.drift_detected else 0.0

        if not success:
            score = clamp01(0.1 * similarity - 0.05 * drift)
        else:
            t = self.thresholds
            cost_score = (
                t.unknown_cost_score
                if metrics.cost is None
                else lower_is_better(metrics.cost, t.cost)
            )
            score = clamp01(
                0.45
                + 0.15 * similarity
                + 0.15 * lower_is_better(metrics.duration, t.duration)
                + 0.10 * lower_is_better(metrics.steps, t.steps)
                + 0.05 * cost_score
                + 0.05 * lower_is_better(metrics.risk_events, t.risk_events)
                + 0.05 * lower_is_better(metrics.human_interrupts, t.human_interrupts)
                - 0.15 * drift
            )

        return EvaluationResult(
            task_id=task.id,
            success=success,
            score=score,
            metrics=metrics,
            details=task.result,
        )

    def summarize(self, results: list[EvaluationResult]) -> EvaluationSummary:
        if not results:
            return EvaluationSummary()

        n = len(results)
        return EvaluationSummary(
            tasks=n,
            success_rate=sum(1 for r in results if r.success) / n,
            average_score=sum(r.score for r in results) / n,
            average_duration=sum(r.metrics.duration for r in results) / n,
            average_cost=sum(r.metrics.cost or 0 for r in results) / n,
            drift_rate=sum(1 for r in results if r.metrics.drift_detected) / n,
            average_risk_events=sum(r.metrics.risk_events for r in results) / n,
            average_human_interrupts=sum(r.metrics.human_interrupts for r in results) / n,
        )

    def compare_results(
        self,
        baseline: list[EvaluationResult],
        candidate: list[EvaluationResult],
        baseline_id: str = "baseline",
        candidate_id: str = "candidate",
    ) -> StrategyComparison:
        base = self.summarize(baseline)
        cand = self.summarize(candidate)
        delta = {
            key: value - getattr(base, key)
            for key, value in cand.model_dump().items()
        }
        return StrategyComparison(
            baseline_id=baseline_id,
            candidate_id=candidate_id,
            tasks_evaluated=len(baseline),
            baseline=base,
            candidate=cand,
            delta=delta,
            improvement=(cand.average_score - base.average_score) / (base.average_score or 1),
        )
