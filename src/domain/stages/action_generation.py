"""Stage 4: action generation.

Actions are generated against the models produced by stage 3 (or the
existing specification when that stage is skipped). ``analyze`` scores the
reply locally: database compatibility, coverage of the workflow needs found
during understanding, per-action completeness, coordination and
implementation complexity.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from src.core.models import ID_FIELD_NAME, Action, Model, OperationKind, Role
from src.core.parsing import as_choice, as_dict, as_int, as_str, as_str_list
from src.core.stages import StageId

from .base import (
    CheckResult,
    InsightsMixin,
    StageDefinition,
    StageInputs,
    ValidationResult,
    require_mapping,
    require_section,
)
from .context import existing_actions, existing_models, specification_overview

if TYPE_CHECKING:
    from .understanding import UnderstandingOutput, WorkflowNeed

logger = logging.getLogger(__name__)

COMPLEXITIES = ("low", "medium", "high")

DB_COMPAT_PASS_SCORE = 80
COVERAGE_PASS_SCORE = 70
COMPLETENESS_PASS_SCORE = 80
MIN_OVERALL_SCORE = 70

# Points lost per uncovered workflow need, by where the need came from.
UNCOVERED_REQUIRED_PENALTY = 20
UNCOVERED_ONE_TIME_PENALTY = 15
UNCOVERED_RECURRING_PENALTY = 5


@dataclass
class ActionValidation:
    database_compatibility: CheckResult = field(default_factory=CheckResult)
    workflow_coverage: CheckResult = field(default_factory=CheckResult)
    action_completeness: CheckResult = field(default_factory=CheckResult)
    overall_score: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "database_compatibility": self.database_compatibility.to_dict(),
            "workflow_coverage": self.workflow_coverage.to_dict(),
            "action_completeness": self.action_completeness.to_dict(),
            "overall_score": self.overall_score,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActionValidation:
        return cls(
            database_compatibility=CheckResult.from_dict(
                data.get("database_compatibility")
            ),
            workflow_coverage=CheckResult.from_dict(data.get("workflow_coverage")),
            action_completeness=CheckResult.from_dict(data.get("action_completeness")),
            overall_score=as_int(data.get("overall_score")),
        )


@dataclass
class ActionCoordination:
    sequential: list[str] = field(default_factory=list)
    parallel: list[str] = field(default_factory=list)
    conditional: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, list[str]]:
        return {
            "sequential": list(self.sequential),
            "parallel": list(self.parallel),
            "conditional": list(self.conditional),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActionCoordination:
        return cls(
            sequential=as_str_list(data.get("sequential")),
            parallel=as_str_list(data.get("parallel")),
            conditional=as_str_list(data.get("conditional")),
        )


@dataclass
class ResourceRequirements:
    compute_intensive: list[str] = field(default_factory=list)
    external_apis: list[str] = field(default_factory=list)
    background_processing: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, list[str]]:
        return {
            "compute_intensive": list(self.compute_intensive),
            "external_apis": list(self.external_apis),
            "background_processing": list(self.background_processing),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ResourceRequirements:
        return cls(
            compute_intensive=as_str_list(data.get("compute_intensive")),
            external_apis=as_str_list(data.get("external_apis")),
            background_processing=as_str_list(data.get("background_processing")),
        )


@dataclass
class ActionQualityMetrics:
    action_coverage: int = 0
    database_integration: int = 0
    user_experience: int = 0
    maintainability: int = 0

    @property
    def average(self) -> int:
        return round(
            (
                self.action_coverage
                + self.database_integration
                + self.user_experience
                + self.maintainability
            )
            / 4
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "action_coverage": self.action_coverage,
            "database_integration": self.database_integration,
            "user_experience": self.user_experience,
            "maintainability": self.maintainability,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActionQualityMetrics:
        return cls(
            action_coverage=as_int(data.get("action_coverage")),
            database_integration=as_int(data.get("database_integration")),
            user_experience=as_int(data.get("user_experience")),
            maintainability=as_int(data.get("maintainability")),
        )


@dataclass
class ActionsOutput:
    actions: list[Action] = field(default_factory=list)
    implementation_notes: list[str] = field(default_factory=list)
    validation: ActionValidation = field(default_factory=ActionValidation)
    implementation_complexity: str = "low"
    coordination: ActionCoordination = field(default_factory=ActionCoordination)
    resources: ResourceRequirements = field(default_factory=ResourceRequirements)
    quality: ActionQualityMetrics = field(default_factory=ActionQualityMetrics)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActionsOutput:
        stage = StageId.ACTIONS.value
        data = require_mapping(data, stage)
        raw_actions = require_section(data, stage, "actions", list)
        return cls(
            actions=[Action.from_dict(a) for a in raw_actions if isinstance(a, dict)],
            implementation_notes=as_str_list(data.get("implementation_notes")),
            validation=ActionValidation.from_dict(as_dict(data.get("validation_results"))),
            implementation_complexity=as_choice(
                data.get("implementation_complexity"), COMPLEXITIES, "low"
            ),
            coordination=ActionCoordination.from_dict(
                as_dict(data.get("action_coordination"))
            ),
            resources=ResourceRequirements.from_dict(
                as_dict(data.get("resource_requirements"))
            ),
            quality=ActionQualityMetrics.from_dict(as_dict(data.get("quality_metrics"))),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "actions": [a.to_dict() for a in self.actions],
            "implementation_notes": list(self.implementation_notes),
            "validation_results": self.validation.to_dict(),
            "implementation_complexity": self.implementation_complexity,
            "action_coordination": self.coordination.to_dict(),
            "resource_requirements": self.resources.to_dict(),
            "quality_metrics": self.quality.to_dict(),
        }


@dataclass(frozen=True)
class ActionsInsights(InsightsMixin):
    action_count: int = 0
    implementation_complexity: str = "low"
    database_compatibility: int = 0
    workflow_coverage: int = 0
    quality_score: int = 0
    has_custom_code: bool = False
    has_prompt_execution: bool = False
    requires_background_processing: bool = False
    sequential_actions: int = 0
    parallel_actions: int = 0
    conditional_actions: int = 0
    primary_action_types: tuple[str, ...] = ()
    requires_careful_handling: bool = False

    def summary(self) -> str:
        return (
            f"{self.action_count} actions, {self.implementation_complexity} complexity, "
            f"workflow coverage {self.workflow_coverage}/100, "
            f"quality {self.quality_score}/100"
        )


# ---------------------------------------------------------------------------
# Local analysis
# ---------------------------------------------------------------------------


def required_mapping_fields(model: Model) -> list[str]:
    """Required non-id fields a Create/Update mapping must provide."""
    return [f.name for f in model.fields if f.required and f.name != ID_FIELD_NAME]


def check_database_compatibility(actions: list[Action], models: list[Model]) -> CheckResult:
    issues: list[str] = []
    score = 100
    models_by_name = {m.name: m for m in models}
    for action in actions:
        target = action.results.model
        if target and target not in models_by_name:
            issues.append(
                f'Action "{action.name}" references non-existent model "{target}"'
            )
            score -= 15
        if action.type is None:
            issues.append(f'Action "{action.name}" missing operation type')
            score -= 10
        model = models_by_name.get(target)
        if model is None:
            continue
        mapped = set(action.results.fields) | set(action.results.fields_to_update)
        missing = [name for name in required_mapping_fields(model) if name not in mapped]
        if missing:
            issues.append(
                f'Action "{action.name}" missing required fields: {", ".join(missing)}'
            )
            score -= 8
    return CheckResult.scored(score, issues, DB_COMPAT_PASS_SCORE)


def need_is_covered(need: WorkflowNeed, items: list[Action]) -> bool:
    """A need is covered when an item's name or description refers to it."""
    name = need.name.lower()
    purpose = need.purpose.lower()
    for item in items:
        if name and name in item.name.lower():
            return True
        if purpose and purpose in item.description.lower():
            return True
    return False


def check_workflow_coverage(
    actions: list[Action], understanding: UnderstandingOutput | None
) -> CheckResult:
    issues: list[str] = []
    score = 100
    if understanding is None:
        return CheckResult.scored(score, issues, COVERAGE_PASS_SCORE)
    workflow = understanding.workflow
    groups = (
        ("Required action", workflow.required_actions, UNCOVERED_REQUIRED_PENALTY),
        ("One-time action", workflow.one_time_actions, UNCOVERED_ONE_TIME_PENALTY),
        ("Recurring action", workflow.recurring_schedules, UNCOVERED_RECURRING_PENALTY),
    )
    for label, needs, penalty in groups:
        for need in needs:
            if not need_is_covered(need, actions):
                issues.append(f'{label} "{need.name}" not implemented')
                score -= penalty
    return CheckResult.scored(score, issues, COVERAGE_PASS_SCORE)


def check_completeness(actions: list[Action]) -> CheckResult:
    issues: list[str] = []
    score = 100
    for action in actions:
        label = action.name or "<unnamed>"
        if not action.name:
            issues.append("Action missing name")
            score -= 10
        if not action.description:
            issues.append(f'Action "{label}" missing description')
            score -= 8
        if action.type is None:
            issues.append(f'Action "{label}" missing type')
            score -= 8
        elif not action.results.model:
            issues.append(f'{action.type.value} action "{label}" missing target model')
            score -= 10
        if not action.execute.is_configured:
            issues.append(f'Action "{label}" missing execution logic')
            score -= 10
        if action.data_source is None:
            issues.append(f'Action "{label}" missing data source')
            score -= 8
        if action.role is None:
            issues.append(f'Action "{label}" missing role')
            score -= 5
    return CheckResult.scored(score, issues, COMPLETENESS_PASS_SCORE)


def _script(action: Action) -> str:
    return action.execute.code.script if action.execute.code else ""


def _template(action: Action) -> str:
    return action.execute.prompt.template if action.execute.prompt else ""


def _has_custom_source(action: Action) -> bool:
    return action.data_source is not None and action.data_source.custom_function is not None


def coordination(actions: list[Action]) -> ActionCoordination:
    result = ActionCoordination()
    for action in actions:
        if action.type is OperationKind.UPDATE:
            result.sequential.append(action.name)
        elif action.type is OperationKind.CREATE:
            result.parallel.append(action.name)
        if (
            "if" in _script(action)
            or "condition" in _template(action)
            or "condition" in action.description.lower()
        ):
            result.conditional.append(action.name)
    return result


def implementation_complexity(actions: list[Action], relationship_complexity: str) -> str:
    score = 0
    if relationship_complexity == "complex":
        score += 30
    elif relationship_complexity == "moderate":
        score += 15
    if len(actions) > 10:
        score += 25
    elif len(actions) > 5:
        score += 15
    if any(_script(a) for a in actions):
        score += 20
    if any(_template(a) for a in actions):
        score += 15
    if any(_has_custom_source(a) for a in actions):
        score += 25
    admins = sum(1 for a in actions if a.role is Role.ADMIN)
    if admins > len(actions) / 2:
        score += 10
    if score >= 60:
        return "high"
    if score >= 30:
        return "medium"
    return "low"


def resource_requirements(actions: list[Action]) -> ResourceRequirements:
    result = ResourceRequirements()
    for action in actions:
        script = _script(action)
        description = action.description.lower()
        if (
            "complex" in script
            or any(word in description for word in ("analyze", "process", "calculate"))
            or _has_custom_source(action)
        ):
            result.compute_intensive.append(action.name)
        if "fetch" in script or "api" in script.lower():
            result.external_apis.append(f"{action.name} API")
        if any(word in description for word in ("batch", "background", "queue")) or any(
            call in script for call in ("setTimeout", "setInterval")
        ):
            result.background_processing.append(action.name)
    return result


def quality_metrics(
    actions: list[Action], needed: int, relationship_complexity: str
) -> ActionQualityMetrics:
    count = len(actions)
    coverage = 100 if needed == 0 else min(100, round(count / needed * 100))
    if count:
        integration = round(sum(1 for a in actions if a.results.model) / count * 100)
        described = sum(1 for a in actions if len(a.description) > 10)
        with_emoji = sum(1 for a in actions if a.emoji)
        experience = round((described + with_emoji) / (count * 2) * 100)
    else:
        integration = 0
        experience = 0
    maintainability = 100 - 10 * sum(1 for a in actions if len(_script(a)) > 200)
    if relationship_complexity == "complex":
        maintainability -= 20
    elif relationship_complexity == "moderate":
        maintainability -= 10
    return ActionQualityMetrics(
        action_coverage=coverage,
        database_integration=integration,
        user_experience=experience,
        maintainability=max(0, maintainability),
    )


def available_models(inputs: StageInputs) -> tuple[list[Model], str]:
    """Models produced this run, falling back to the existing specification."""
    models_output = inputs.output(StageId.MODELS)
    if models_output is not None:
        return models_output.models, models_output.relationship_complexity
    if inputs.existing is not None:
        return inputs.existing.models, "simple"
    return [], "simple"


def analyze(output: ActionsOutput, inputs: StageInputs) -> ActionsOutput:
    understanding = inputs.output(StageId.UNDERSTANDING)
    models, complexity = available_models(inputs)
    actions = output.actions
    db_check = check_database_compatibility(actions, models)
    coverage_check = check_workflow_coverage(actions, understanding)
    completeness_check = check_completeness(actions)
    output.validation = ActionValidation(
        database_compatibility=db_check,
        workflow_coverage=coverage_check,
        action_completeness=completeness_check,
        overall_score=round(
            (db_check.score + coverage_check.score + completeness_check.score) / 3
        ),
    )
    needed = (
        len(understanding.workflow.required_actions)
        + len(understanding.workflow.one_time_actions)
        if understanding
        else 0
    )
    output.implementation_complexity = implementation_complexity(actions, complexity)
    output.coordination = coordination(actions)
    output.resources = resource_requirements(actions)
    output.quality = quality_metrics(actions, needed, complexity)
    logger.debug(
        "Action analysis: overall=%d complexity=%s",
        output.validation.overall_score,
        output.implementation_complexity,
    )
    return output


# ---------------------------------------------------------------------------
# Validation and insights
# ---------------------------------------------------------------------------


def validate(output: ActionsOutput) -> ValidationResult:
    reasons: list[str] = []
    validation = output.validation
    if not output.actions:
        reasons.append("No actions generated")
    if validation.overall_score < MIN_OVERALL_SCORE:
        reasons.append(f"Low validation score: {validation.overall_score}/100")
    if not validation.database_compatibility.passed:
        reasons.append(
            "Database compatibility issues: "
            + ", ".join(validation.database_compatibility.issues)
        )
    if not validation.workflow_coverage.passed:
        reasons.append(
            "Workflow coverage issues: " + ", ".join(validation.workflow_coverage.issues)
        )
    incomplete = [
        a.name or "<unnamed>"
        for a in output.actions
        if not (a.name and a.description and a.type)
    ]
    if incomplete:
        reasons.append(f"Incomplete actions: {', '.join(incomplete)}")
    return ValidationResult.from_reasons(reasons)


def extract_insights(output: ActionsOutput) -> ActionsInsights:
    type_counts = Counter(a.type.value for a in output.actions if a.type)
    quality_score = output.quality.average
    return ActionsInsights(
        action_count=len(output.actions),
        implementation_complexity=output.implementation_complexity,
        database_compatibility=output.validation.database_compatibility.score,
        workflow_coverage=output.validation.workflow_coverage.score,
        quality_score=quality_score,
        has_custom_code=any(_script(a) for a in output.actions),
        has_prompt_execution=any(_template(a) for a in output.actions),
        requires_background_processing=bool(output.resources.background_processing),
        sequential_actions=len(output.coordination.sequential),
        parallel_actions=len(output.coordination.parallel),
        conditional_actions=len(output.coordination.conditional),
        primary_action_types=tuple(t for t, _ in type_counts.most_common()),
        requires_careful_handling=(
            output.implementation_complexity == "high" or quality_score < 80
        ),
    )


def build_context(inputs: StageInputs) -> dict[str, Any]:
    models, _ = available_models(inputs)
    return {
        "command": inputs.command,
        "existing_specification": specification_overview(inputs.existing),
        "available_models": [m.to_dict() | {"records": []} for m in models],
        "existing_models": existing_models(inputs.existing),
        "existing_actions": existing_actions(inputs.existing),
        **inputs.prior_context(
            StageId.UNDERSTANDING, StageId.STRATEGY, StageId.DESIGN, StageId.MODELS
        ),
    }


OUTPUT_SHAPE: dict[str, Any] = {
    "actions": [
        {
            "id": "string (keep the existing id when updating an action)",
            "name": "string",
            "emoji": "string",
            "description": "string",
            "type": "Create|Update",
            "role": "admin|member",
            "data_source": {
                "type": "database|custom",
                "custom_function": {"code": "string", "env_vars": [{"name": "string"}]},
                "models": [{"id": "string", "name": "string", "fields": ["string"]}],
            },
            "execute": {
                "type": "code|prompt",
                "code": {"script": "string", "env_vars": [{"name": "string"}]},
                "prompt": {"template": "string", "model": "string"},
            },
            "results": {
                "action_type": "Create|Update",
                "model": "string (model name)",
                "identifier_ids": ["string"],
                "fields": {"<fieldName>": "expression"},
                "fields_to_update": {"<fieldName>": "expression"},
            },
        }
    ],
    "implementation_notes": ["string"],
}


DEFINITION: StageDefinition[ActionsOutput] = StageDefinition(
    stage=StageId.ACTIONS,
    parse=ActionsOutput.from_dict,
    output_shape=OUTPUT_SHAPE,
    build_context=build_context,
    validate=validate,
    extract_insights=extract_insights,
    neutral_insights=ActionsInsights,
    analyze=analyze,
)
