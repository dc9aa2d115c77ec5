"""Stage 0: understanding the request.

Turns the free-text command into a structured analysis: the main goal, the
business context, the models, actions and schedules the request implies,
and an implementation strategy. Every later stage receives this output.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from src.core.parsing import (
    as_bool,
    as_choice,
    as_dict,
    as_dict_list,
    as_str,
    as_str_list,
)
from src.core.stages import StageId

from .base import (
    InsightsMixin,
    StageDefinition,
    StageInputs,
    ValidationResult,
    require_mapping,
    require_section,
)
from .context import specification_overview

COMPLEXITIES = ("simple", "moderate", "complex", "enterprise")


@dataclass
class RequestAnalysis:
    main_goal: str = ""
    business_context: str = ""
    complexity: str = "simple"
    urgency: str = "medium"
    clarity: str = "clear"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RequestAnalysis:
        return cls(
            main_goal=as_str(data.get("main_goal")),
            business_context=as_str(data.get("business_context")),
            complexity=as_choice(data.get("complexity"), COMPLEXITIES, "simple"),
            urgency=as_choice(
                data.get("urgency"), ("low", "medium", "high", "critical"), "medium"
            ),
            clarity=as_choice(
                data.get("clarity"),
                ("very_clear", "clear", "somewhat_unclear", "unclear"),
                "clear",
            ),
        )


@dataclass
class RequiredModel:
    name: str
    purpose: str = ""
    priority: str = "medium"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RequiredModel:
        return cls(
            name=as_str(data.get("name")),
            purpose=as_str(data.get("purpose")),
            priority=as_str(data.get("priority"), "medium") or "medium",
        )


@dataclass
class WorkflowNeed:
    """An action or schedule the request calls for."""

    name: str
    purpose: str = ""
    type: str = ""
    role: str = ""
    priority: str = "medium"
    frequency: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkflowNeed:
        return cls(
            name=as_str(data.get("name")),
            purpose=as_str(data.get("purpose")),
            type=as_str(data.get("type")),
            role=as_str(data.get("role")),
            priority=as_str(data.get("priority"), "medium") or "medium",
            frequency=as_str(data.get("frequency")),
        )


@dataclass
class BusinessProcess:
    name: str
    description: str = ""
    involved_models: list[str] = field(default_factory=list)
    requires_actions: bool = False
    requires_schedules: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BusinessProcess:
        return cls(
            name=as_str(data.get("name")),
            description=as_str(data.get("description")),
            involved_models=as_str_list(data.get("involved_models")),
            requires_actions=as_bool(data.get("requires_actions")),
            requires_schedules=as_bool(data.get("requires_schedules")),
        )


@dataclass
class ChangePlanItem:
    """One planned change to an existing specification."""

    change_id: str
    description: str = ""
    type: str = "update"
    target_type: str = "models"
    specific_targets: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChangePlanItem:
        return cls(
            change_id=as_str(data.get("change_id")),
            description=as_str(data.get("description")),
            type=as_choice(data.get("type"), ("create", "update", "delete"), "update"),
            target_type=as_str(data.get("target_type"), "models") or "models",
            specific_targets=as_str_list(data.get("specific_targets")),
        )


@dataclass
class DataModelingNeeds:
    required_models: list[RequiredModel] = field(default_factory=list)
    relationships: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class WorkflowAutomationNeeds:
    required_actions: list[WorkflowNeed] = field(default_factory=list)
    business_rules: list[dict[str, Any]] = field(default_factory=list)
    one_time_actions: list[WorkflowNeed] = field(default_factory=list)
    recurring_schedules: list[WorkflowNeed] = field(default_factory=list)
    business_processes: list[BusinessProcess] = field(default_factory=list)

    @property
    def all_needs(self) -> list[WorkflowNeed]:
        return [*self.required_actions, *self.one_time_actions, *self.recurring_schedules]


@dataclass
class ImplementationStrategy:
    recommended_approach: str = ""
    execution_order: list[str] = field(default_factory=list)
    risk_assessment: list[str] = field(default_factory=list)
    success_criteria: list[str] = field(default_factory=list)


@dataclass
class UnderstandingOutput:
    """Structured analysis of the user's request."""

    request: RequestAnalysis = field(default_factory=RequestAnalysis)
    feature_imagination: dict[str, list[str]] = field(default_factory=dict)
    data_needs: DataModelingNeeds = field(default_factory=DataModelingNeeds)
    workflow: WorkflowAutomationNeeds = field(default_factory=WorkflowAutomationNeeds)
    change_plan: list[ChangePlanItem] = field(default_factory=list)
    strategy: ImplementationStrategy = field(default_factory=ImplementationStrategy)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UnderstandingOutput:
        stage = StageId.UNDERSTANDING.value
        data = require_mapping(data, stage)
        request = require_section(data, stage, "user_request_analysis", dict)
        data_needs = as_dict(data.get("data_modeling_needs"))
        workflow = as_dict(data.get("workflow_automation_needs"))
        strategy = as_dict(data.get("implementation_strategy"))

        def needs(key: str) -> list[WorkflowNeed]:
            return [WorkflowNeed.from_dict(n) for n in as_dict_list(workflow.get(key))]

        return cls(
            request=RequestAnalysis.from_dict(request),
            feature_imagination={
                key: as_str_list(value)
                for key, value in as_dict(data.get("feature_imagination")).items()
            },
            data_needs=DataModelingNeeds(
                required_models=[
                    RequiredModel.from_dict(m)
                    for m in as_dict_list(data_needs.get("required_models"))
                ],
                relationships=as_dict_list(data_needs.get("relationships")),
            ),
            workflow=WorkflowAutomationNeeds(
                required_actions=needs("required_actions"),
                business_rules=as_dict_list(workflow.get("business_rules")),
                one_time_actions=needs("one_time_actions"),
                recurring_schedules=needs("recurring_schedules"),
                business_processes=[
                    BusinessProcess.from_dict(p)
                    for p in as_dict_list(workflow.get("business_processes"))
                ],
            ),
            change_plan=[
                ChangePlanItem.from_dict(c)
                for c in as_dict_list(data.get("change_analysis_plan"))
            ],
            strategy=ImplementationStrategy(
                recommended_approach=as_str(strategy.get("recommended_approach")),
                execution_order=as_str_list(strategy.get("execution_order")),
                risk_assessment=as_str_list(strategy.get("risk_assessment")),
                success_criteria=as_str_list(strategy.get("success_criteria")),
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        def need(n: WorkflowNeed) -> dict[str, Any]:
            return {
                "name": n.name,
                "purpose": n.purpose,
                "type": n.type,
                "role": n.role,
                "priority": n.priority,
                "frequency": n.frequency,
            }

        return {
            "user_request_analysis": {
                "main_goal": self.request.main_goal,
                "business_context": self.request.business_context,
                "complexity": self.request.complexity,
                "urgency": self.request.urgency,
                "clarity": self.request.clarity,
            },
            "feature_imagination": {
                k: list(v) for k, v in self.feature_imagination.items()
            },
            "data_modeling_needs": {
                "required_models": [
                    {"name": m.name, "purpose": m.purpose, "priority": m.priority}
                    for m in self.data_needs.required_models
                ],
                "relationships": list(self.data_needs.relationships),
            },
            "workflow_automation_needs": {
                "required_actions": [need(n) for n in self.workflow.required_actions],
                "business_rules": list(self.workflow.business_rules),
                "one_time_actions": [need(n) for n in self.workflow.one_time_actions],
                "recurring_schedules": [
                    need(n) for n in self.workflow.recurring_schedules
                ],
                "business_processes": [
                    {
                        "name": p.name,
                        "description": p.description,
                        "involved_models": list(p.involved_models),
                        "requires_actions": p.requires_actions,
                        "requires_schedules": p.requires_schedules,
                    }
                    for p in self.workflow.business_processes
                ],
            },
            "change_analysis_plan": [
                {
                    "change_id": c.change_id,
                    "description": c.description,
                    "type": c.type,
                    "target_type": c.target_type,
                    "specific_targets": list(c.specific_targets),
                }
                for c in self.change_plan
            ],
            "implementation_strategy": {
                "recommended_approach": self.strategy.recommended_approach,
                "execution_order": list(self.strategy.execution_order),
                "risk_assessment": list(self.strategy.risk_assessment),
                "success_criteria": list(self.strategy.success_criteria),
            },
        }


@dataclass(frozen=True)
class UnderstandingInsights(InsightsMixin):
    business_domain: str = ""
    complexity: str = "simple"
    is_update: bool = False
    model_count: int = 0
    action_count: int = 0
    schedule_count: int = 0
    approach: str = ""
    execution_order: tuple[str, ...] = ()
    risk_level: str = "medium"

    def summary(self) -> str:
        domain = self.business_domain or "unspecified domain"
        kind = "update" if self.is_update else "new system"
        return (
            f"{domain} ({kind}, {self.complexity}): {self.model_count} models, "
            f"{self.action_count} actions, {self.schedule_count} schedules planned"
        )


def validate(output: UnderstandingOutput) -> ValidationResult:
    reasons: list[str] = []
    if not output.request.main_goal:
        reasons.append("Missing main goal in user request analysis")
    if not output.data_needs.required_models:
        reasons.append("No required models identified")
    if not output.workflow.required_actions:
        reasons.append("No required actions identified")
    if not output.strategy.recommended_approach:
        reasons.append("No implementation strategy identified")
    return ValidationResult.from_reasons(reasons)


def extract_insights(output: UnderstandingOutput) -> UnderstandingInsights:
    return UnderstandingInsights(
        business_domain=output.request.business_context,
        complexity=output.request.complexity,
        is_update=len(output.change_plan) > 0,
        model_count=len(output.data_needs.required_models),
        action_count=len(output.workflow.required_actions),
        schedule_count=len(output.workflow.recurring_schedules),
        approach=output.strategy.recommended_approach,
        execution_order=tuple(output.strategy.execution_order),
        risk_level="high" if len(output.strategy.risk_assessment) > 3 else "medium",
    )


def build_context(inputs: StageInputs) -> dict[str, Any]:
    return {
        "command": inputs.command,
        "is_update": inputs.existing is not None,
        "existing_specification": specification_overview(inputs.existing),
    }


OUTPUT_SHAPE: dict[str, Any] = {
    "user_request_analysis": {
        "main_goal": "string",
        "business_context": "string",
        "complexity": "simple|moderate|complex|enterprise",
        "urgency": "low|medium|high|critical",
        "clarity": "very_clear|clear|somewhat_unclear|unclear",
    },
    "feature_imagination": {
        "core_features": ["string"],
        "additional_features": ["string"],
        "business_rules": ["string"],
        "integrations": ["string"],
    },
    "data_modeling_needs": {
        "required_models": [{"name": "string", "purpose": "string", "priority": "string"}],
        "relationships": [{"from": "string", "to": "string", "type": "string"}],
    },
    "workflow_automation_needs": {
        "required_actions": [{"name": "string", "purpose": "string", "type": "Create|Update"}],
        "business_rules": [{"condition": "string", "action": "string"}],
        "one_time_actions": [{"name": "string", "purpose": "string", "role": "admin|member"}],
        "recurring_schedules": [
            {"name": "string", "purpose": "string", "frequency": "hourly|daily|weekly|monthly"}
        ],
        "business_processes": [
            {
                "name": "string",
                "description": "string",
                "involved_models": ["string"],
                "requires_actions": "boolean",
                "requires_schedules": "boolean",
            }
        ],
    },
    "change_analysis_plan": [
        {
            "change_id": "string",
            "description": "string",
            "type": "create|update|delete",
            "target_type": "models|actions|fields|system",
            "specific_targets": ["string"],
        }
    ],
    "implementation_strategy": {
        "recommended_approach": "incremental|comprehensive|modular|minimal-viable",
        "execution_order": ["string"],
        "risk_assessment": ["string"],
        "success_criteria": ["string"],
    },
}


DEFINITION: StageDefinition[UnderstandingOutput] = StageDefinition(
    stage=StageId.UNDERSTANDING,
    parse=UnderstandingOutput.from_dict,
    output_shape=OUTPUT_SHAPE,
    build_context=build_context,
    validate=validate,
    extract_insights=extract_insights,
    neutral_insights=UnderstandingInsights,
)
