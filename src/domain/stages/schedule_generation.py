"""Stage 5: schedule generation.

Schedules are recurring actions. ``analyze`` checks them against the
available models and actions, validates their timing, detects frequency
conflicts and measures how well they cover the recurring needs and
business processes found during understanding.
"""

from __future__ import annotations

import math
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from src.core.models import Action, Model, Role, Schedule
from src.core.parsing import as_dict, as_int, as_str_list
from src.core.stages import StageId

from .action_generation import available_models, need_is_covered, required_mapping_fields
from .base import (
    CheckResult,
    InsightsMixin,
    StageDefinition,
    StageInputs,
    ValidationResult,
    require_mapping,
    require_section,
)
from .context import existing_schedules, specification_overview

if TYPE_CHECKING:
    from .understanding import UnderstandingOutput

DB_COMPAT_PASS_SCORE = 80
ACTION_COMPAT_PASS_SCORE = 70
TIMING_PASS_SCORE = 80
MIN_OVERALL_SCORE = 70
MIN_COVERAGE = 50

MAX_HOURLY_SCHEDULES = 5
MAX_HOURLY_BEFORE_CONFLICT = 3
MAX_DAILY_BEFORE_CONFLICT = 10

NAMED_FREQUENCIES = ("hourly", "daily", "weekly", "monthly", "quarterly", "cron")
INTERVAL_RE = re.compile(r"^\d+\s+(minute|hour|day|week|month)s?$", re.IGNORECASE)
TIMEZONE_RE = re.compile(r"^[A-Z][a-z]+/[A-Z][a-z_]+$")
ACTION_REF_RE = re.compile(r"\b\w+Action\b")
MAINTENANCE_WORDS = ("maintenance", "cleanup", "backup", "sync")
BUSINESS_VALUE_WORDS = ("critical", "important", "essential")

# Substring -> frequency bucket, checked in order.
FREQUENCY_KEYWORDS = (
    ("hour", "hourly"),
    ("day", "daily"),
    ("daily", "daily"),
    ("week", "weekly"),
    ("month", "monthly"),
    ("quarter", "quarterly"),
    ("year", "yearly"),
    ("annual", "yearly"),
    ("minute", "minutely"),
)


@dataclass
class ScheduleValidation:
    database_compatibility: CheckResult = field(default_factory=CheckResult)
    action_compatibility: CheckResult = field(default_factory=CheckResult)
    timing_validation: CheckResult = field(default_factory=CheckResult)
    overall_score: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "database_compatibility": self.database_compatibility.to_dict(),
            "action_compatibility": self.action_compatibility.to_dict(),
            "timing_validation": self.timing_validation.to_dict(),
            "overall_score": self.overall_score,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScheduleValidation:
        return cls(
            database_compatibility=CheckResult.from_dict(
                data.get("database_compatibility")
            ),
            action_compatibility=CheckResult.from_dict(data.get("action_compatibility")),
            timing_validation=CheckResult.from_dict(data.get("timing_validation")),
            overall_score=as_int(data.get("overall_score")),
        )


@dataclass
class ScheduleCoordination:
    frequency_distribution: dict[str, int] = field(default_factory=dict)
    timing_conflicts: list[str] = field(default_factory=list)
    conflicting_schedules: list[str] = field(default_factory=list)
    peak_hours: list[str] = field(default_factory=list)
    light_hours: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "frequency_distribution": dict(self.frequency_distribution),
            "timing_conflicts": list(self.timing_conflicts),
            "conflicting_schedules": list(self.conflicting_schedules),
            "peak_hours": list(self.peak_hours),
            "light_hours": list(self.light_hours),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScheduleCoordination:
        return cls(
            frequency_distribution={
                k: as_int(v) for k, v in as_dict(data.get("frequency_distribution")).items()
            },
            timing_conflicts=as_str_list(data.get("timing_conflicts")),
            conflicting_schedules=as_str_list(data.get("conflicting_schedules")),
            peak_hours=as_str_list(data.get("peak_hours")),
            light_hours=as_str_list(data.get("light_hours")),
        )


@dataclass
class ScheduleCoverage:
    recurring_needs_covered: int = 0
    business_processes_covered: int = 0
    maintenance_schedules: int = 0
    coverage_percentage: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "recurring_needs_covered": self.recurring_needs_covered,
            "business_processes_covered": self.business_processes_covered,
            "maintenance_schedules": self.maintenance_schedules,
            "coverage_percentage": self.coverage_percentage,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScheduleCoverage:
        return cls(
            recurring_needs_covered=as_int(data.get("recurring_needs_covered")),
            business_processes_covered=as_int(data.get("business_processes_covered")),
            maintenance_schedules=as_int(data.get("maintenance_schedules")),
            coverage_percentage=as_int(data.get("coverage_percentage")),
        )


@dataclass
class ScheduleQualityMetrics:
    reliability: int = 0
    business_value: int = 0
    maintainability: int = 0
    resource_efficiency: int = 0

    @property
    def average(self) -> int:
        return round(
            (
                self.reliability
                + self.business_value
                + self.maintainability
                + self.resource_efficiency
            )
            / 4
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "reliability": self.reliability,
            "business_value": self.business_value,
            "maintainability": self.maintainability,
            "resource_efficiency": self.resource_efficiency,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScheduleQualityMetrics:
        return cls(
            reliability=as_int(data.get("reliability")),
            business_value=as_int(data.get("business_value")),
            maintainability=as_int(data.get("maintainability")),
            resource_efficiency=as_int(data.get("resource_efficiency")),
        )


@dataclass
class SchedulesOutput:
    schedules: list[Schedule] = field(default_factory=list)
    implementation_notes: list[str] = field(default_factory=list)
    validation: ScheduleValidation = field(default_factory=ScheduleValidation)
    coordination: ScheduleCoordination = field(default_factory=ScheduleCoordination)
    coverage: ScheduleCoverage = field(default_factory=ScheduleCoverage)
    quality: ScheduleQualityMetrics = field(default_factory=ScheduleQualityMetrics)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SchedulesOutput:
        stage = StageId.SCHEDULES.value
        data = require_mapping(data, stage)
        raw = require_section(data, stage, "schedules", list)
        return cls(
            schedules=[Schedule.from_dict(s) for s in raw if isinstance(s, dict)],
            implementation_notes=as_str_list(data.get("implementation_notes")),
            validation=ScheduleValidation.from_dict(
                as_dict(data.get("validation_results"))
            ),
            coordination=ScheduleCoordination.from_dict(
                as_dict(data.get("schedule_coordination"))
            ),
            coverage=ScheduleCoverage.from_dict(as_dict(data.get("business_coverage"))),
            quality=ScheduleQualityMetrics.from_dict(as_dict(data.get("quality_metrics"))),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "schedules": [s.to_dict() for s in self.schedules],
            "implementation_notes": list(self.implementation_notes),
            "validation_results": self.validation.to_dict(),
            "schedule_coordination": self.coordination.to_dict(),
            "business_coverage": self.coverage.to_dict(),
            "quality_metrics": self.quality.to_dict(),
        }


@dataclass(frozen=True)
class SchedulesInsights(InsightsMixin):
    schedule_count: int = 0
    coverage_percentage: int = 0
    database_compatibility: int = 0
    action_compatibility: int = 0
    quality_score: int = 0
    has_timing_conflicts: bool = False
    frequency_distribution: dict[str, int] = field(default_factory=dict)
    resource_efficiency: int = 0
    business_value: int = 0
    primary_frequencies: tuple[str, ...] = ()
    requires_careful_handling: bool = False

    def summary(self) -> str:
        return (
            f"{self.schedule_count} schedules, coverage {self.coverage_percentage}%, "
            f"quality {self.quality_score}/100"
            + (", timing conflicts" if self.has_timing_conflicts else "")
        )


# ---------------------------------------------------------------------------
# Local analysis
# ---------------------------------------------------------------------------


def extract_frequency(pattern: str) -> str:
    """Bucket an interval pattern (``2 hours``, ``daily``) by frequency."""
    lowered = pattern.lower()
    for keyword, bucket in FREQUENCY_KEYWORDS:
        if keyword in lowered:
            return bucket
    return "custom"


def is_valid_pattern(pattern: str) -> bool:
    lowered = pattern.strip().lower()
    return any(word in lowered for word in NAMED_FREQUENCIES) or bool(
        INTERVAL_RE.match(lowered)
    )


def _is_hourly(schedule: Schedule) -> bool:
    pattern = schedule.interval.pattern.lower()
    return "hourly" in pattern or "hour" in pattern


def _script(schedule: Schedule) -> str:
    return schedule.execute.code.script if schedule.execute.code else ""


def check_database_compatibility(
    schedules: list[Schedule], models: list[Model]
) -> CheckResult:
    issues: list[str] = []
    score = 100
    models_by_name = {m.name: m for m in models}
    for schedule in schedules:
        target = schedule.results.model
        if target and target not in models_by_name:
            issues.append(
                f'Schedule "{schedule.name}" references non-existent model "{target}"'
            )
            score -= 15
        if schedule.data_source is not None:
            for ref in schedule.data_source.models:
                if ref.name and ref.name not in models_by_name:
                    issues.append(
                        f'Schedule "{schedule.name}" data source references '
                        f'non-existent model "{ref.name}"'
                    )
                    score -= 10
        model = models_by_name.get(target)
        if model is None:
            continue
        mapped = set(schedule.results.fields) | set(schedule.results.fields_to_update)
        missing = [n for n in required_mapping_fields(model) if n not in mapped]
        if missing:
            issues.append(
                f'Schedule "{schedule.name}" missing required fields: {", ".join(missing)}'
            )
            score -= 8
    return CheckResult.scored(score, issues, DB_COMPAT_PASS_SCORE)


def check_action_compatibility(
    schedules: list[Schedule], actions: list[Action]
) -> CheckResult:
    issues: list[str] = []
    score = 100
    action_names = [a.name for a in actions]
    for schedule in schedules:
        for reference in ACTION_REF_RE.findall(_script(schedule)):
            stem = reference[: -len("Action")].lower()
            if not any(stem and stem in name.lower() for name in action_names):
                issues.append(
                    f'Schedule "{schedule.name}" references non-existent action '
                    f'"{reference}"'
                )
                score -= 5
        target = schedule.results.model
        if target and not any(a.results.model == target for a in actions):
            issues.append(
                f'Schedule "{schedule.name}" targets model "{target}" which no action '
                "writes to"
            )
            score -= 10
    return CheckResult.scored(score, issues, ACTION_COMPAT_PASS_SCORE)


def check_timing(schedules: list[Schedule]) -> CheckResult:
    issues: list[str] = []
    score = 100
    for schedule in schedules:
        interval = schedule.interval
        if not interval.pattern:
            issues.append(f'Schedule "{schedule.name}" missing interval pattern')
            score -= 15
            continue
        if not is_valid_pattern(interval.pattern):
            issues.append(
                f'Schedule "{schedule.name}" has invalid interval pattern: '
                f'"{interval.pattern}"'
            )
            score -= 10
        if interval.timezone and not TIMEZONE_RE.match(interval.timezone):
            issues.append(
                f'Schedule "{schedule.name}" has invalid timezone: "{interval.timezone}"'
            )
            score -= 5
        if not interval.active:
            issues.append(f'Schedule "{schedule.name}" is inactive')
            score -= 3
    hourly = sum(1 for s in schedules if _is_hourly(s))
    if hourly > MAX_HOURLY_SCHEDULES:
        issues.append(f"Too many hourly schedules ({hourly}) may impact performance")
        score -= 10
    return CheckResult.scored(score, issues, TIMING_PASS_SCORE)


def coordination(schedules: list[Schedule]) -> ScheduleCoordination:
    distribution = Counter(extract_frequency(s.interval.pattern) for s in schedules)
    result = ScheduleCoordination(frequency_distribution=dict(distribution))
    if distribution["hourly"] > MAX_HOURLY_BEFORE_CONFLICT:
        result.timing_conflicts.append(
            f"{distribution['hourly']} hourly schedules may cause resource contention"
        )
        result.conflicting_schedules.extend(
            s.name for s in schedules if extract_frequency(s.interval.pattern) == "hourly"
        )
    if distribution["daily"] > MAX_DAILY_BEFORE_CONFLICT:
        result.timing_conflicts.append(
            f"{distribution['daily']} daily schedules should be spread across the day"
        )
    if distribution["hourly"] or distribution["minutely"]:
        result.peak_hours = ["09:00-12:00", "13:00-17:00"]
    result.light_hours = ["00:00-06:00", "22:00-24:00"]
    return result


def business_coverage(
    schedules: list[Schedule], understanding: UnderstandingOutput | None
) -> ScheduleCoverage:
    recurring = understanding.workflow.recurring_schedules if understanding else []
    processes = (
        [p for p in understanding.workflow.business_processes if p.requires_schedules]
        if understanding
        else []
    )
    recurring_covered = sum(1 for need in recurring if need_is_covered(need, schedules))
    processes_covered = sum(
        1
        for process in processes
        if any(
            process.name.lower() in s.description.lower()
            or s.results.model in process.involved_models
            for s in schedules
        )
    )
    maintenance = sum(
        1
        for s in schedules
        if any(word in s.description.lower() for word in MAINTENANCE_WORDS)
    )
    total = len(recurring) + len(processes) + max(1, math.floor(len(schedules) * 0.2))
    covered = recurring_covered + processes_covered + maintenance
    return ScheduleCoverage(
        recurring_needs_covered=recurring_covered,
        business_processes_covered=processes_covered,
        maintenance_schedules=maintenance,
        coverage_percentage=min(100, round(covered / total * 100)),
    )


def quality_metrics(schedules: list[Schedule]) -> ScheduleQualityMetrics:
    count = len(schedules)
    if count:
        configured = sum(1 for s in schedules if s.interval.pattern) + sum(
            1 for s in schedules if s.interval.timezone
        )
        reliability = round(configured / (count * 2) * 100)
        valuable = sum(
            1
            for s in schedules
            if any(word in s.description.lower() for word in BUSINESS_VALUE_WORDS)
            or s.role is Role.ADMIN
        )
        business_value = round(valuable / count * 100)
    else:
        reliability = 0
        business_value = 0
    heavy = sum(1 for s in schedules if len(_script(s)) > 300) + sum(
        1
        for s in schedules
        if s.data_source is not None and s.data_source.custom_function is not None
    )
    frequencies = [extract_frequency(s.interval.pattern) for s in schedules]
    efficiency = 100 - 5 * frequencies.count("hourly") - 15 * frequencies.count("minutely")
    return ScheduleQualityMetrics(
        reliability=reliability,
        business_value=business_value,
        maintainability=max(0, 100 - 10 * heavy),
        resource_efficiency=max(0, efficiency),
    )


def available_actions(inputs: StageInputs) -> list[Action]:
    actions_output = inputs.output(StageId.ACTIONS)
    if actions_output is not None:
        return actions_output.actions
    return inputs.existing.actions if inputs.existing is not None else []


def analyze(output: SchedulesOutput, inputs: StageInputs) -> SchedulesOutput:
    models, _ = available_models(inputs)
    actions = available_actions(inputs)
    schedules = output.schedules
    db_check = check_database_compatibility(schedules, models)
    action_check = check_action_compatibility(schedules, actions)
    timing_check = check_timing(schedules)
    output.validation = ScheduleValidation(
        database_compatibility=db_check,
        action_compatibility=action_check,
        timing_validation=timing_check,
        overall_score=round(
            (db_check.score + action_check.score + timing_check.score) / 3
        ),
    )
    output.coordination = coordination(schedules)
    output.coverage = business_coverage(schedules, inputs.output(StageId.UNDERSTANDING))
    output.quality = quality_metrics(schedules)
    return output


# ---------------------------------------------------------------------------
# Validation and insights
# ---------------------------------------------------------------------------


def validate(output: SchedulesOutput) -> ValidationResult:
    reasons: list[str] = []
    validation = output.validation
    if not output.schedules:
        reasons.append("No schedules generated")
    if validation.overall_score < MIN_OVERALL_SCORE:
        reasons.append(f"Low validation score: {validation.overall_score}/100")
    if not validation.database_compatibility.passed:
        reasons.append(
            "Database compatibility issues: "
            + ", ".join(validation.database_compatibility.issues)
        )
    if not validation.timing_validation.passed:
        reasons.append(
            "Timing validation issues: " + ", ".join(validation.timing_validation.issues)
        )
    incomplete = [
        s.name or "<unnamed>"
        for s in output.schedules
        if not (s.name and s.description and s.interval.pattern)
    ]
    if incomplete:
        reasons.append(f"Incomplete schedules: {', '.join(incomplete)}")
    if output.coverage.coverage_percentage < MIN_COVERAGE:
        reasons.append(
            f"Low business coverage: {output.coverage.coverage_percentage}%"
        )
    return ValidationResult.from_reasons(reasons)


def extract_insights(output: SchedulesOutput) -> SchedulesInsights:
    distribution = output.coordination.frequency_distribution
    quality_score = output.quality.average
    conflicts = output.coordination.timing_conflicts
    primary = sorted(distribution, key=lambda k: distribution[k], reverse=True)[:3]
    return SchedulesInsights(
        schedule_count=len(output.schedules),
        coverage_percentage=output.coverage.coverage_percentage,
        database_compatibility=output.validation.database_compatibility.score,
        action_compatibility=output.validation.action_compatibility.score,
        quality_score=quality_score,
        has_timing_conflicts=bool(conflicts),
        frequency_distribution=dict(distribution),
        resource_efficiency=output.quality.resource_efficiency,
        business_value=output.quality.business_value,
        primary_frequencies=tuple(primary),
        requires_careful_handling=(
            quality_score < 80
            or len(conflicts) > 2
            or output.quality.resource_efficiency < 70
        ),
    )


def build_context(inputs: StageInputs) -> dict[str, Any]:
    models, _ = available_models(inputs)
    return {
        "command": inputs.command,
        "existing_specification": specification_overview(inputs.existing),
        "available_models": [m.to_dict() | {"records": []} for m in models],
        "available_actions": [a.to_dict() for a in available_actions(inputs)],
        "existing_schedules": existing_schedules(inputs.existing),
        **inputs.prior_context(
            StageId.UNDERSTANDING, StageId.DESIGN, StageId.MODELS, StageId.ACTIONS
        ),
    }


OUTPUT_SHAPE: dict[str, Any] = {
    "schedules": [
        {
            "id": "string (keep the existing id when updating a schedule)",
            "name": "string",
            "emoji": "string",
            "description": "string",
            "type": "Create|Update",
            "role": "admin|member",
            "interval": {
                "pattern": "hourly|daily|weekly|monthly|<n> <unit>s|cron expression",
                "timezone": "Area/City",
                "active": "boolean",
            },
            "data_source": {
                "type": "database|custom",
                "models": [{"id": "string", "name": "string", "fields": ["string"]}],
            },
            "execute": {
                "type": "code|prompt",
                "code": {"script": "string"},
                "prompt": {"template": "string"},
            },
            "results": {
                "action_type": "Create|Update",
                "model": "string (model name)",
                "fields": {"<fieldName>": "expression"},
                "fields_to_update": {"<fieldName>": "expression"},
            },
        }
    ],
    "implementation_notes": ["string"],
}


DEFINITION: StageDefinition[SchedulesOutput] = StageDefinition(
    stage=StageId.SCHEDULES,
    parse=SchedulesOutput.from_dict,
    output_shape=OUTPUT_SHAPE,
    build_context=build_context,
    validate=validate,
    extract_insights=extract_insights,
    neutral_insights=SchedulesInsights,
    analyze=analyze,
)
