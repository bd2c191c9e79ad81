"""Strategy Update Gate - ordered validators for candidate strategies.

Each validator is an interchangeable object implementing GateValidator.
The gate runs them in order and stops at the first REJECT or NEEDS_HUMAN.
Replay evidence (EvaluationResult lists) is passed through to validators
that want it.

Usage:
    gate = StrategyUpdateGate()
    result = await gate.process(candidate, branch, evaluations, baseline)
    if result.status == GateStatus.PASS:
        ...
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

from shadowlab.strategy.strategy import RiskTolerance, Strategy

if TYPE_CHECKING:
    from shadowlab.replay.evaluator import EvaluationResult

logger = logging.getLogger(__name__)


class GateStatus(StrEnum):
    PASS = "PASS"
    REJECT = "REJECT"
    NEEDS_HUMAN = "NEEDS_HUMAN"


@dataclass(frozen=True)
class ValidationResult:
    status: GateStatus
    reason: str | None = None

    @classmethod
    def passed(cls) -> "ValidationResult":
        return cls(GateStatus.PASS)


@dataclass
class StrategyBranch:
    """Where a candidate strategy lives and what it was derived from."""

    name: str
    version: str
    path: str
    parent: str | None = None
    created_at: int = field(default_factory=lambda: int(time.time() * 1000))


class GateValidator(Protocol):
    name: str

    async def validate(
        self,
        candidate: Strategy,
        branch: StrategyBranch,
        evaluations: list[EvaluationResult] | None,
        baseline: Strategy | None,
    ) -> ValidationResult:
        ...


class MetadataValidator:
    name = "metadata_validator"

    async def validate(
        self,
        candidate: Strategy,
        branch: StrategyBranch,
        evaluations: list[EvaluationResult] | None,
        baseline: Strategy | None,
    ) -> ValidationResult:
        if not candidate.metadata.id or not candidate.metadata.version:
            return ValidationResult(GateStatus.REJECT, "missing metadata.id or metadata.version")
        return ValidationResult.passed()


class SafetyPolicyValidator:
    """Rejects obviously unsafe or ambiguous execution settings."""

    name = "safety_policy_validator"

    def __init__(self, max_planning_temperature: float = 0.7) -> None:
        self.max_planning_temperature = max_planning_temperature

    async def validate(
        self,
        candidate: Strategy,
        branch: StrategyBranch,
        evaluations: list[EvaluationResult] | None,
        baseline: Strategy | None,
    ) -> ValidationResult:
        execution = candidate.execution
        if execution is not None:
            if execution.risk_tolerance == RiskTolerance.HIGH:
                return ValidationResult(GateStatus.REJECT, "riskTolerance is too permissive")
            if (
                "requires_confirmation" in execution.model_fields_set
                and not execution.requires_confirmation
            ):
                return ValidationResult(GateStatus.REJECT, "requiresConfirmation cannot be empty")

        planning = candidate.planning
        if planning is not None and planning.temperature > self.max_planning_temperature:
            return ValidationResult(GateStatus.REJECT, "planning.temperature is too high")

        return ValidationResult.passed()


class ReplayPerformanceValidator:
    """Requires replay evidence and bounds the replay failure rate."""

    name = "replay_performance_validator"

    def __init__(self, max_failure_rate: float = 0.2) -> None:
        self.max_failure_rate = max_failure_rate

    async def validate(
        self,
        candidate: Strategy,
        branch: StrategyBranch,
        evaluations: list[EvaluationResult] | None,
        baseline: Strategy | None,
    ) -> ValidationResult:
        if not evaluations:
            return ValidationResult(GateStatus.NEEDS_HUMAN, "No replay evaluations available")

        failure_rate = sum(1 for e in evaluations if not e.success) / len(evaluations)
        if failure_rate > self.max_failure_rate:
            return ValidationResult(
                GateStatus.REJECT, f"High failure rate: {failure_rate * 100:.1f}%"
            )
        return ValidationResult.passed()


def default_validators() -> list[GateValidator]:
    # replay performance last, it depends on replay data
    return [MetadataValidator(), SafetyPolicyValidator(), ReplayPerformanceValidator()]


class StrategyUpdateGate:
    def __init__(self, validators: list[GateValidator] | None = None) -> None:
        self.validators = list(validators) if validators is not None else default_validators()

    async def process(
        self,
        candidate: Strategy,
        branch: StrategyBranch,
        evaluations: list[EvaluationResult] | None = None,
        baseline: Strategy | None = None,
    ) -> ValidationResult:
        for validator in self.validators:
            try:
                result = await validator.validate(candidate, branch, evaluations, baseline)
            except Exception as e:
                logger.error(f"Validator {validator.name} failed: {e}")
                return ValidationResult(GateStatus.NEEDS_HUMAN, f"Validator error: {e}")

            if result.status != GateStatus.PASS:
                logger.info(f"Gate {result.status.value} [{validator.name}]: {result.reason}")
                return result

        logger.info(f"Gate PASS for {candidate.metadata.id}@{candidate.metadata.version}")
        return ValidationResult.passed()
