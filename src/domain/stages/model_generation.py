"""Stage 3: model generation.

The oracle produces models (with model-scoped enums) and example records.
Everything else in ``ModelsOutput`` is computed locally by ``analyze``:
field, relationship and action-compatibility checks, the action awareness
score and the relationship complexity.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from src.core.models import ID_FIELD_NAME, Model, ModelEnum, normalize_name
from src.core.parsing import as_choice, as_dict, as_dict_list, as_int, as_list, as_str, as_str_list
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
from .context import existing_models, specification_overview
from .design import implementation_guidance

if TYPE_CHECKING:
    from .understanding import UnderstandingOutput

logger = logging.getLogger(__name__)

COMPLEXITIES = ("simple", "moderate", "complex")
AUDIT_FIELDS = frozenset({"createdAt", "updatedAt", "createdBy", "updatedBy"})

FIELD_PASS_SCORE = 80
RELATIONSHIP_PASS_SCORE = 80
ACTION_COMPAT_PASS_SCORE = 70
MIN_OVERALL_SCORE = 70
MIN_ACTION_AWARENESS = 50


@dataclass
class ModelValidation:
    field_validation: CheckResult = field(default_factory=CheckResult)
    relationship_validation: CheckResult = field(default_factory=CheckResult)
    action_compatibility: CheckResult = field(default_factory=CheckResult)
    overall_score: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "field_validation": self.field_validation.to_dict(),
            "relationship_validation": self.relationship_validation.to_dict(),
            "action_compatibility": self.action_compatibility.to_dict(),
            "overall_score": self.overall_score,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ModelValidation:
        return cls(
            field_validation=CheckResult.from_dict(data.get("field_validation")),
            relationship_validation=CheckResult.from_dict(
                data.get("relationship_validation")
            ),
            action_compatibility=CheckResult.from_dict(data.get("action_compatibility")),
            overall_score=as_int(data.get("overall_score")),
        )


@dataclass
class ModelsOutput:
    models: list[Model] = field(default_factory=list)
    example_records: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    design_rationale: str = ""
    action_awareness_score: int = 0
    relationship_complexity: str = "simple"
    scalability_considerations: list[str] = field(default_factory=list)
    validation: ModelValidation = field(default_factory=ModelValidation)

    @property
    def enums(self) -> list[ModelEnum]:
        return [enum for model in self.models for enum in model.enums]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ModelsOutput:
        stage = StageId.MODELS.value
        data = require_mapping(data, stage)
        raw_models = require_section(data, stage, "models", list)
        models = [Model.from_dict(m) for m in raw_models if isinstance(m, dict)]
        _attach_loose_enums(models, as_dict_list(data.get("enums")))
        return cls(
            models=models,
            example_records={
                name: as_dict_list(rows)
                for name, rows in as_dict(data.get("example_records")).items()
            },
            design_rationale=as_str(data.get("design_rationale")),
            action_awareness_score=as_int(data.get("action_awareness_score")),
            relationship_complexity=as_choice(
                data.get("relationship_complexity"), COMPLEXITIES, "simple"
            ),
            scalability_considerations=as_str_list(
                data.get("scalability_considerations")
            ),
            validation=ModelValidation.from_dict(
                as_dict(data.get("validation_results"))
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "models": [m.to_dict() for m in self.models],
            "example_records": {k: list(v) for k, v in self.example_records.items()},
            "design_rationale": self.design_rationale,
            "action_awareness_score": self.action_awareness_score,
            "relationship_complexity": self.relationship_complexity,
            "scalability_considerations": list(self.scalability_considerations),
            "validation_results": self.validation.to_dict(),
        }


def _attach_loose_enums(models: list[Model], loose: list[dict[str, Any]]) -> None:
    """Attach top-level enums that name their owning model."""
    by_name = {normalize_name(m.name): m for m in models}
    for raw in loose:
        owner = by_name.get(normalize_name(as_str(raw.get("model"))))
        if owner is None:
            logger.debug("Dropping enum %r without a known owning model", raw.get("name"))
            continue
        owner.enums.append(ModelEnum.from_dict(raw))


@dataclass(frozen=True)
class ModelsInsights(InsightsMixin):
    model_count: int = 0
    enum_count: int = 0
    relationship_complexity: str = "simple"
    action_awareness_score: int = 0
    validation_score: int = 0
    scalability_considerations: tuple[str, ...] = ()
    has_example_data: bool = False
    primary_models: tuple[str, ...] = ()
    requires_careful_handling: bool = False

    def summary(self) -> str:
        return (
            f"{self.model_count} models, {self.enum_count} enums, "
            f"validation {self.validation_score}/100, "
            f"action awareness {self.action_awareness_score}/100"
        )


# ---------------------------------------------------------------------------
# Local analysis
# ---------------------------------------------------------------------------


def check_fields(models: list[Model]) -> CheckResult:
    issues: list[str] = []
    score = 100
    for model in models:
        id_field = next((f for f in model.fields if f.name == ID_FIELD_NAME), None)
        if id_field is None or not id_field.is_id:
            issues.append(f"Model {model.name} missing proper ID field")
            score -= 10
        if not any(f.required for f in model.fields):
            issues.append(f"Model {model.name} has no required fields")
            score -= 5
        if not model.display_fields:
            issues.append(f"Model {model.name} has no display fields")
            score -= 5
        for model_field in model.fields:
            if not model_field.type:
                issues.append(f"Field {model_field.name} in {model.name} missing type")
                score -= 3
    return CheckResult.scored(score, issues, FIELD_PASS_SCORE)


def check_relationships(models: list[Model]) -> CheckResult:
    issues: list[str] = []
    score = 100
    model_names = {m.name for m in models}
    for model in models:
        for model_field in model.fields:
            if not model_field.relation_field:
                continue
            if model_field.type not in model_names:
                issues.append(
                    f"Relation field {model_field.name} in {model.name} references "
                    f"non-existent model {model_field.type}"
                )
                score -= 15
            if model_field.kind.value != "object":
                issues.append(
                    f"Relation field {model_field.name} in {model.name} should have "
                    "kind 'object'"
                )
                score -= 5
    return CheckResult.scored(score, issues, RELATIONSHIP_PASS_SCORE)


def check_action_compatibility(
    models: list[Model], understanding: UnderstandingOutput | None
) -> CheckResult:
    """Do the models carry the status and audit fields the workflows imply?"""
    issues: list[str] = []
    score = 100
    needs = understanding.workflow.all_needs if understanding else []
    all_fields = [f.name for m in models for f in m.fields]
    has_status = any("status" in n.lower() or "state" in n.lower() for n in all_fields)
    has_audit = any(n in AUDIT_FIELDS for n in all_fields)
    for need in needs:
        purpose = need.purpose.lower()
        if any(word in purpose for word in ("track", "status", "workflow")) and not has_status:
            issues.append(
                f'Action "{need.name}" requires status tracking but no status fields found'
            )
            score -= 10
        if any(word in purpose for word in ("audit", "track", "history")) and not has_audit:
            issues.append(
                f'Action "{need.name}" requires audit trail but no audit fields found'
            )
            score -= 8
    return CheckResult.scored(score, issues, ACTION_COMPAT_PASS_SCORE)


def action_awareness_score(
    models: list[Model], understanding: UnderstandingOutput | None
) -> int:
    field_names = [f.name for m in models for f in m.fields]
    total_needs = len(understanding.workflow.all_needs) if understanding else 0
    score = 0
    if any("status" in n for n in field_names):
        score += 30
    if any("createdAt" in n for n in field_names):
        score += 25
    if any("userId" in n or "assignedTo" in n for n in field_names):
        score += 20
    if any(m.enums for m in models):
        score += 15
    if total_needs > 0 and len(models) >= total_needs:
        score += 10
    return score


def relationship_count(models: list[Model]) -> int:
    return sum(1 for m in models for f in m.fields if f.relation_field)


def relationship_complexity(models: list[Model]) -> str:
    count = relationship_count(models)
    if count <= 2:
        return "simple"
    if count <= 5:
        return "moderate"
    return "complex"


def scalability_considerations(models: list[Model], total_needs: int) -> list[str]:
    notes: list[str] = []
    if len(models) > 5:
        notes.append("Consider database indexing for performance")
    if relationship_count(models) > 3:
        notes.append("Monitor query performance with complex joins")
    if total_needs > 3:
        notes.append("Plan for concurrent action execution")
    if any(
        "description" in f.name or "content" in f.name for m in models for f in m.fields
    ):
        notes.append("Consider text search optimization for large content fields")
    return notes


def analyze(output: ModelsOutput, inputs: StageInputs) -> ModelsOutput:
    understanding = inputs.output(StageId.UNDERSTANDING)
    models = output.models
    fields_check = check_fields(models)
    relations_check = check_relationships(models)
    compat_check = check_action_compatibility(models, understanding)
    output.validation = ModelValidation(
        field_validation=fields_check,
        relationship_validation=relations_check,
        action_compatibility=compat_check,
        overall_score=round(
            (fields_check.score + relations_check.score + compat_check.score) / 3
        ),
    )
    total_needs = len(understanding.workflow.all_needs) if understanding else 0
    output.action_awareness_score = action_awareness_score(models, understanding)
    output.relationship_complexity = relationship_complexity(models)
    output.scalability_considerations = scalability_considerations(models, total_needs)
    domain = understanding.request.business_context if understanding else "general"
    output.design_rationale = (
        f"Database design supports {len(models)} models and {len(output.enums)} enums "
        f"with {output.relationship_complexity} relationship structure. "
        f"Action-aware design score: {output.action_awareness_score}/100. "
        f"The schema is optimized for {domain or 'general'} domain with support for "
        f"{total_needs} planned actions."
    )
    return output


# ---------------------------------------------------------------------------
# Validation and insights
# ---------------------------------------------------------------------------


def validate(output: ModelsOutput) -> ValidationResult:
    reasons: list[str] = []
    if not output.models:
        reasons.append("No models generated")
    if output.validation.overall_score < MIN_OVERALL_SCORE:
        reasons.append(f"Low validation score: {output.validation.overall_score}/100")
    if output.action_awareness_score < MIN_ACTION_AWARENESS:
        reasons.append(
            f"Low action awareness score: {output.action_awareness_score}/100"
        )
    without_id = [
        m.name
        for m in output.models
        if not any(f.name == ID_FIELD_NAME and f.is_id for f in m.fields)
    ]
    if without_id:
        reasons.append(f"Models without proper ID fields: {', '.join(without_id)}")
    return ValidationResult.from_reasons(reasons)


def extract_insights(output: ModelsOutput) -> ModelsInsights:
    return ModelsInsights(
        model_count=len(output.models),
        enum_count=len(output.enums),
        relationship_complexity=output.relationship_complexity,
        action_awareness_score=output.action_awareness_score,
        validation_score=output.validation.overall_score,
        scalability_considerations=tuple(output.scalability_considerations),
        has_example_data=any(as_list(rows) for rows in output.example_records.values()),
        primary_models=tuple(m.name for m in output.models[:3]),
        requires_careful_handling=(
            output.relationship_complexity == "complex"
            or output.validation.overall_score < 80
        ),
    )


def build_context(inputs: StageInputs) -> dict[str, Any]:
    context: dict[str, Any] = {
        "command": inputs.command,
        "existing_specification": specification_overview(inputs.existing),
        "existing_models": existing_models(inputs.existing),
        **inputs.prior_context(StageId.UNDERSTANDING, StageId.STRATEGY, StageId.DESIGN),
    }
    design = inputs.output(StageId.DESIGN)
    if design is not None:
        context["implementation_guidance"] = implementation_guidance(design)
    return context


OUTPUT_SHAPE: dict[str, Any] = {
    "models": [
        {
            "id": "string (keep the existing id when updating a model)",
            "name": "string",
            "emoji": "string",
            "description": "string",
            "id_field": "id",
            "display_fields": ["string"],
            "fields": [
                {
                    "id": "string",
                    "name": "string",
                    "type": "String|Int|Float|Boolean|DateTime|Json|<ModelName>|<EnumName>",
                    "kind": "scalar|object|enum",
                    "is_id": "boolean",
                    "unique": "boolean",
                    "is_list": "boolean",
                    "required": "boolean",
                    "relation_field": "boolean",
                    "title": "string",
                    "sort": "boolean",
                    "order": "integer",
                    "default_value": "any",
                }
            ],
            "enums": [
                {
                    "id": "string",
                    "name": "string",
                    "entries": [{"id": "string", "name": "string", "type": "String"}],
                }
            ],
        }
    ],
    "example_records": {"<ModelName>": [{"<fieldName>": "value"}]},
}


DEFINITION: StageDefinition[ModelsOutput] = StageDefinition(
    stage=StageId.MODELS,
    parse=ModelsOutput.from_dict,
    output_shape=OUTPUT_SHAPE,
    build_context=build_context,
    validate=validate,
    extract_insights=extract_insights,
    neutral_insights=ModelsInsights,
    analyze=analyze,
)
