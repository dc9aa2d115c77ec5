"""Stage 1: strategy decision.

Decides how to approach the request (create, update or extend), in which
order to do the work, and how confident the pipeline is in that plan.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from src.core.parsing import as_bool, as_choice, as_dict, as_int, as_str, as_str_list
from src.core.stages import StageId

from .base import (
    InsightsMixin,
    StageDefinition,
    StageInputs,
    ValidationResult,
    require_mapping,
    require_section,
    risk_level,
)
from .context import specification_overview

OPERATIONS = ("create", "update", "extend")
PRIORITIES = ("agent-first", "database-first", "actions-first")
COMPLEXITIES = ("low", "medium", "high", "very-high")

MIN_CONFIDENCE = 50
VERY_HIGH_MIN_RISK_FACTORS = 3
FALLBACK_CONFIDENCE = 70


@dataclass
class StrategyOutput:
    analysis_reasoning: str = ""
    needs_full_agent: bool = False
    needs_database: bool = True
    needs_actions: bool = True
    operation: str = "create"
    priority: str = "database-first"
    scope: dict[str, str] = field(default_factory=dict)
    confidence: int = 0
    risk_factors: list[str] = field(default_factory=list)
    success_criteria: list[str] = field(default_factory=list)
    estimated_complexity: str = "medium"
    recommended_phases: list[str] = field(default_factory=list)
    dependencies: list[str] = field(default_factory=list)
    fallback_strategies: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StrategyOutput:
        stage = StageId.STRATEGY.value
        data = require_mapping(data, stage)
        reasoning = require_section(data, stage, "analysis_reasoning", str)
        return cls(
            analysis_reasoning=reasoning,
            needs_full_agent=as_bool(data.get("needs_full_agent")),
            needs_database=as_bool(data.get("needs_database"), True),
            needs_actions=as_bool(data.get("needs_actions"), True),
            operation=as_choice(data.get("operation"), OPERATIONS, "create"),
            priority=as_choice(data.get("priority"), PRIORITIES, "database-first"),
            scope={k: as_str(v) for k, v in as_dict(data.get("scope")).items()},
            confidence=as_int(data.get("confidence")),
            risk_factors=as_str_list(data.get("risk_factors")),
            success_criteria=as_str_list(data.get("success_criteria")),
            estimated_complexity=as_choice(
                data.get("estimated_complexity"), COMPLEXITIES, "medium"
            ),
            recommended_phases=as_str_list(data.get("recommended_phases")),
            dependencies=as_str_list(data.get("dependencies")),
            fallback_strategies=as_str_list(data.get("fallback_strategies")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "analysis_reasoning": self.analysis_reasoning,
            "needs_full_agent": self.needs_full_agent,
            "needs_database": self.needs_database,
            "needs_actions": self.needs_actions,
            "operation": self.operation,
            "priority": self.priority,
            "scope": dict(self.scope),
            "confidence": self.confidence,
            "risk_factors": list(self.risk_factors),
            "success_criteria": list(self.success_criteria),
            "estimated_complexity": self.estimated_complexity,
            "recommended_phases": list(self.recommended_phases),
            "dependencies": list(self.dependencies),
            "fallback_strategies": list(self.fallback_strategies),
        }


@dataclass(frozen=True)
class StrategyInsights(InsightsMixin):
    approach: str = "create"
    priority: str = "database-first"
    confidence: int = 0
    complexity: str = "medium"
    phases: tuple[str, ...] = ()
    dependencies: tuple[str, ...] = ()
    risk_level: str = "low"
    needs_full_generation: bool = False
    can_use_incremental_approach: bool = False
    requires_careful_validation: bool = False

    def summary(self) -> str:
        return (
            f"{self.approach} ({self.priority}), confidence {self.confidence}%, "
            f"{self.complexity} complexity, {self.risk_level} risk"
        )


def validate(output: StrategyOutput) -> ValidationResult:
    reasons: list[str] = []
    if not output.analysis_reasoning:
        reasons.append("Missing analysis reasoning")
    if output.confidence < MIN_CONFIDENCE:
        reasons.append(f"Low confidence level: {output.confidence}%")
    if not output.success_criteria:
        reasons.append("No success criteria defined")
    if (
        output.estimated_complexity == "very-high"
        and len(output.risk_factors) < VERY_HIGH_MIN_RISK_FACTORS
    ):
        reasons.append("Very high complexity but insufficient risk analysis")
    return ValidationResult.from_reasons(reasons)


def extract_insights(output: StrategyOutput) -> StrategyInsights:
    return StrategyInsights(
        approach=output.operation,
        priority=output.priority,
        confidence=output.confidence,
        complexity=output.estimated_complexity,
        phases=tuple(output.recommended_phases),
        dependencies=tuple(output.dependencies),
        risk_level=risk_level(len(output.risk_factors)),
        needs_full_generation=output.needs_full_agent,
        can_use_incremental_approach=output.operation in ("update", "extend"),
        requires_careful_validation=output.estimated_complexity in ("high", "very-high"),
    )


def should_activate_fallback(
    output: StrategyOutput, error: BaseException | None = None
) -> bool:
    """Whether the plan is shaky enough to warrant a fallback strategy."""
    return (
        output.confidence < FALLBACK_CONFIDENCE
        or len(output.risk_factors) > 2
        or output.estimated_complexity == "very-high"
        or error is not None
    )


def recommended_fallback(
    output: StrategyOutput, error: BaseException | None = None
) -> str:
    if error is not None:
        if output.fallback_strategies:
            return output.fallback_strategies[0]
        return "Retry with simplified approach"
    if output.estimated_complexity == "very-high":
        return "Break down into smaller, manageable phases"
    if output.confidence < 60:
        return "Request more specific requirements from user"
    return "Proceed with additional validation checks"


def build_context(inputs: StageInputs) -> dict[str, Any]:
    return {
        "command": inputs.command,
        "existing_specification": specification_overview(inputs.existing),
        **inputs.prior_context(StageId.UNDERSTANDING),
    }


OUTPUT_SHAPE: dict[str, Any] = {
    "analysis_reasoning": "string",
    "needs_full_agent": "boolean",
    "needs_database": "boolean",
    "needs_actions": "boolean",
    "operation": "create|update|extend",
    "priority": "agent-first|database-first|actions-first",
    "scope": {"database_work": "string", "actions_work": "string"},
    "confidence": "integer 0-100",
    "risk_factors": ["string"],
    "success_criteria": ["string"],
    "estimated_complexity": "low|medium|high|very-high",
    "recommended_phases": ["string"],
    "dependencies": ["string"],
    "fallback_strategies": ["string"],
}


DEFINITION: StageDefinition[StrategyOutput] = StageDefinition(
    stage=StageId.STRATEGY,
    parse=StrategyOutput.from_dict,
    output_shape=OUTPUT_SHAPE,
    build_context=build_context,
    validate=validate,
    extract_insights=extract_insights,
    neutral_insights=StrategyInsights,
)
