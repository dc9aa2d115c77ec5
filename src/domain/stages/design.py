"""Stage 2: technical design.

Bridges understanding and generation: which components the system needs,
how data flows between them, which design decisions were taken and how the
risky parts will be handled.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from src.core.parsing import as_choice, as_dict, as_dict_list, as_int, as_str, as_str_list
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

COMPONENT_TYPES = ("model", "action", "schedule", "integration")
APPROACHES = ("unified", "phased", "incremental")
COMPLEXITIES = ("simple", "moderate", "complex", "enterprise")
EFFORTS = ("low", "medium", "high", "very-high")

MIN_CONFIDENCE = 60
ENTERPRISE_MIN_MITIGATIONS = 2


@dataclass
class Component:
    name: str
    purpose: str = ""
    dependencies: list[str] = field(default_factory=list)
    type: str = "model"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Component:
        return cls(
            name=as_str(data.get("name")),
            purpose=as_str(data.get("purpose")),
            dependencies=as_str_list(data.get("dependencies")),
            type=as_choice(data.get("type"), COMPONENT_TYPES, "model"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "purpose": self.purpose,
            "dependencies": list(self.dependencies),
            "type": self.type,
        }


@dataclass
class DesignDecision:
    decision: str
    rationale: str = ""
    alternatives: list[str] = field(default_factory=list)
    tradeoffs: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DesignDecision:
        return cls(
            decision=as_str(data.get("decision")),
            rationale=as_str(data.get("rationale")),
            alternatives=as_str_list(data.get("alternatives")),
            tradeoffs=as_str(data.get("tradeoffs")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "decision": self.decision,
            "rationale": self.rationale,
            "alternatives": list(self.alternatives),
            "tradeoffs": self.tradeoffs,
        }


@dataclass
class DesignOutput:
    technical_requirements: dict[str, list[str]] = field(default_factory=dict)
    components: list[Component] = field(default_factory=list)
    data_flow: list[dict[str, Any]] = field(default_factory=list)
    integration_points: list[str] = field(default_factory=list)
    design_decisions: list[DesignDecision] = field(default_factory=list)
    approach: str = "unified"
    phases: list[str] = field(default_factory=list)
    dependencies: list[str] = field(default_factory=list)
    risk_mitigation: list[dict[str, Any]] = field(default_factory=list)
    quality_plan: dict[str, Any] = field(default_factory=dict)
    complexity: str = "simple"
    confidence: int = 0
    estimated_effort: str = "medium"
    technical_risks: list[str] = field(default_factory=list)

    @property
    def data_models(self) -> list[str]:
        return self.technical_requirements.get("data_models", [])

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DesignOutput:
        stage = StageId.DESIGN.value
        data = require_mapping(data, stage)
        requirements = require_section(data, stage, "technical_requirements", dict)
        architecture = as_dict(data.get("system_architecture"))
        strategy = as_dict(data.get("implementation_strategy"))
        return cls(
            technical_requirements={
                key: as_str_list(value) for key, value in requirements.items()
            },
            components=[
                Component.from_dict(c)
                for c in as_dict_list(architecture.get("components"))
            ],
            data_flow=as_dict_list(architecture.get("data_flow")),
            integration_points=as_str_list(architecture.get("integration_points")),
            design_decisions=[
                DesignDecision.from_dict(d)
                for d in as_dict_list(data.get("design_decisions"))
            ],
            approach=as_choice(strategy.get("approach"), APPROACHES, "unified"),
            phases=as_str_list(strategy.get("phases")),
            dependencies=as_str_list(strategy.get("dependencies")),
            risk_mitigation=as_dict_list(strategy.get("risk_mitigation")),
            quality_plan=as_dict(data.get("quality_plan")),
            complexity=as_choice(data.get("complexity"), COMPLEXITIES, "simple"),
            confidence=as_int(data.get("confidence")),
            estimated_effort=as_choice(data.get("estimated_effort"), EFFORTS, "medium"),
            technical_risks=as_str_list(data.get("technical_risks")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "technical_requirements": {
                k: list(v) for k, v in self.technical_requirements.items()
            },
            "system_architecture": {
                "components": [c.to_dict() for c in self.components],
                "data_flow": list(self.data_flow),
                "integration_points": list(self.integration_points),
            },
            "design_decisions": [d.to_dict() for d in self.design_decisions],
            "implementation_strategy": {
                "approach": self.approach,
                "phases": list(self.phases),
                "dependencies": list(self.dependencies),
                "risk_mitigation": list(self.risk_mitigation),
            },
            "quality_plan": dict(self.quality_plan),
            "complexity": self.complexity,
            "confidence": self.confidence,
            "estimated_effort": self.estimated_effort,
            "technical_risks": list(self.technical_risks),
        }


@dataclass(frozen=True)
class DesignInsights(InsightsMixin):
    complexity: str = "simple"
    confidence: int = 0
    estimated_effort: str = "medium"
    component_count: int = 0
    model_components: tuple[str, ...] = ()
    action_components: tuple[str, ...] = ()
    schedule_components: tuple[str, ...] = ()
    integration_components: tuple[str, ...] = ()
    data_flow_complexity: str = "simple"
    risk_level: str = "low"
    implementation_approach: str = "unified"
    requires_phasing: bool = False
    requires_careful_handling: bool = False
    primary_data_models: tuple[str, ...] = ()
    critical_integrations: tuple[str, ...] = ()
    key_design_decisions: tuple[str, ...] = ()

    def summary(self) -> str:
        return (
            f"{self.component_count} components, {self.complexity} complexity, "
            f"{self.implementation_approach} approach, {self.risk_level} risk"
        )


def validate(output: DesignOutput) -> ValidationResult:
    reasons: list[str] = []
    if not output.data_models:
        reasons.append("No data models identified")
    if not output.components:
        reasons.append("No system components defined")
    if output.confidence < MIN_CONFIDENCE:
        reasons.append(f"Low confidence level: {output.confidence}%")
    if not output.design_decisions:
        reasons.append("No design decisions documented")
    if (
        output.complexity == "enterprise"
        and len(output.risk_mitigation) < ENTERPRISE_MIN_MITIGATIONS
    ):
        reasons.append("Enterprise complexity requires more risk mitigation strategies")
    return ValidationResult.from_reasons(reasons)


def _components_of(output: DesignOutput, kind: str) -> tuple[str, ...]:
    return tuple(c.name for c in output.components if c.type == kind)


def extract_insights(output: DesignOutput) -> DesignInsights:
    flow_count = len(output.data_flow)
    if flow_count > 5:
        flow_complexity = "complex"
    elif flow_count > 2:
        flow_complexity = "moderate"
    else:
        flow_complexity = "simple"
    return DesignInsights(
        complexity=output.complexity,
        confidence=output.confidence,
        estimated_effort=output.estimated_effort,
        component_count=len(output.components),
        model_components=_components_of(output, "model"),
        action_components=_components_of(output, "action"),
        schedule_components=_components_of(output, "schedule"),
        integration_components=_components_of(output, "integration"),
        data_flow_complexity=flow_complexity,
        risk_level=risk_level(len(output.technical_risks)),
        implementation_approach=output.approach,
        requires_phasing=output.approach != "unified",
        requires_careful_handling=(
            output.complexity in ("complex", "enterprise")
            or output.confidence < 70
            or len(output.technical_risks) > 2
        ),
        primary_data_models=tuple(output.data_models[:5]),
        critical_integrations=tuple(
            output.technical_requirements.get("integrations", [])
        ),
        key_design_decisions=tuple(d.decision for d in output.design_decisions),
    )


def implementation_guidance(output: DesignOutput) -> str:
    """Markdown guidance handed to the generation stages."""
    insights = extract_insights(output)
    lines = [
        "## Implementation Guidance",
        "",
        f"**Complexity Level**: {output.complexity}",
        f"**Recommended Approach**: {output.approach}",
        f"**Estimated Effort**: {output.estimated_effort}",
        "",
    ]
    if insights.requires_phasing and output.phases:
        lines.append("### Phased Implementation")
        lines.extend(f"{i}. {phase}" for i, phase in enumerate(output.phases, 1))
        lines.append("")
    if output.technical_risks:
        lines.append("### Key Risks")
        lines.extend(f"- {risk}" for risk in output.technical_risks)
        lines.append("")
    if output.design_decisions:
        lines.append("### Critical Design Decisions")
        lines.extend(
            f"- **{d.decision}**: {d.rationale}" for d in output.design_decisions[:3]
        )
    return "\n".join(lines).rstrip() + "\n"


def build_context(inputs: StageInputs) -> dict[str, Any]:
    return {
        "command": inputs.command,
        "existing_specification": specification_overview(inputs.existing),
        **inputs.prior_context(StageId.UNDERSTANDING, StageId.STRATEGY),
    }


OUTPUT_SHAPE: dict[str, Any] = {
    "technical_requirements": {
        "data_models": ["string"],
        "integrations": ["string"],
        "scalability_needs": ["string"],
        "security_requirements": ["string"],
        "performance_requirements": ["string"],
    },
    "system_architecture": {
        "components": [
            {
                "name": "string",
                "purpose": "string",
                "dependencies": ["string"],
                "type": "model|action|schedule|integration",
            }
        ],
        "data_flow": [{"from": "string", "to": "string", "data": "string", "trigger": "string"}],
        "integration_points": ["string"],
    },
    "design_decisions": [
        {"decision": "string", "rationale": "string", "alternatives": ["string"], "tradeoffs": "string"}
    ],
    "implementation_strategy": {
        "approach": "unified|phased|incremental",
        "phases": ["string"],
        "dependencies": ["string"],
        "risk_mitigation": [{"risk": "string", "mitigation": "string", "contingency": "string"}],
    },
    "quality_plan": {"testing_strategy": "string", "validation_points": ["string"]},
    "complexity": "simple|moderate|complex|enterprise",
    "confidence": "integer 0-100",
    "estimated_effort": "low|medium|high|very-high",
    "technical_risks": ["string"],
}


DEFINITION: StageDefinition[DesignOutput] = StageDefinition(
    stage=StageId.DESIGN,
    parse=DesignOutput.from_dict,
    output_shape=OUTPUT_SHAPE,
    build_context=build_context,
    validate=validate,
    extract_insights=extract_insights,
    neutral_insights=DesignInsights,
)
