"""Assemble the incoming specification from stage outputs."""

from __future__ import annotations

import copy
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from src.core.models import ModelRecord, Specification, normalize_name
from src.core.stages import StageId

from .normalize import (
    assign_missing_ids,
    dedupe_by_name,
    next_sequential_id,
    normalize_model,
)

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from src.core.models import Model

    from .stages import Insights, ModelsOutput

logger = logging.getLogger(__name__)

SPECIFICATION_VERSION = "2.0.0-model-scoped-enums"


def utc_now() -> str:
    return datetime.now(UTC).isoformat()


def adopt_identities(
    items: Sequence[Any], existing: Sequence[Any], prefix: str
) -> None:
    """Identify generated items against the stored ones.

    A generated identity that belongs to an existing item of another name is
    discarded. Items without an identity take the identity of the existing
    item with the same case-insensitive name. The rest get a fresh sequential
    identity no existing item uses, so the merge never pairs unrelated items.
    """
    by_name: dict[str, str] = {}
    owners: dict[str, str] = {}
    for item in existing:
        key = normalize_name(item.name)
        if item.id:
            owners.setdefault(item.id, key)
        if item.id and key and key not in by_name:
            by_name[key] = item.id
    for item in items:
        owner = owners.get(item.id) if item.id else None
        if owner is not None and owner != normalize_name(item.name):
            logger.debug(
                "Generated %s %r reuses identity %s of another item", prefix, item.name, item.id
            )
            item.id = ""
    used = {item.id for item in items if item.id}
    for item in items:
        if item.id:
            continue
        candidate = by_name.get(normalize_name(item.name))
        if candidate and candidate not in used:
            item.id = candidate
            used.add(candidate)
    assign_missing_ids(items, prefix, reserved=(item.id for item in existing if item.id))


def _adopt_model_identities(models: list[Model], existing: list[Model]) -> dict[str, Model]:
    """Identify models, then their fields, enums and entries. Returns counterparts by id."""
    adopt_identities(models, existing, "model")
    counterparts = {m.id: m for m in existing}
    for model in models:
        counterpart = counterparts.get(model.id)
        if counterpart is None:
            continue
        adopt_identities(model.fields, counterpart.fields, "field")
        adopt_identities(model.enums, counterpart.enums, "enum")
        enums_by_id = {e.id: e for e in counterpart.enums}
        for enum in model.enums:
            stored = enums_by_id.get(enum.id)
            adopt_identities(enum.entries, stored.entries if stored else [], "entry")
    return counterparts


def _attach_records(
    models: list[Model],
    output: ModelsOutput,
    timestamp: str,
    counterparts: Mapping[str, Model],
) -> None:
    by_name = {normalize_name(m.name): m for m in models}
    for model_name, rows in output.example_records.items():
        model = by_name.get(normalize_name(model_name))
        if model is None:
            logger.debug("Example records for unknown model %r ignored", model_name)
            continue
        counterpart = counterparts.get(model.id)
        taken = {r.id for r in model.records}
        if counterpart is not None:
            taken.update(r.id for r in counterpart.records)
        for row in rows:
            record_id = next_sequential_id(f"{model.id}-record", taken)
            taken.add(record_id)
            model.records.append(
                ModelRecord(
                    id=record_id,
                    model_id=model.id,
                    data=dict(row),
                    created_at=timestamp,
                    updated_at=timestamp,
                )
            )


def _tags(understanding: Any) -> list[str]:  # noqa: ANN401
    if understanding is None:
        return []
    tags = [understanding.request.business_context, understanding.request.complexity]
    tags.extend(understanding.feature_imagination.get("core_features", [])[:3])
    return [tag.strip().lower() for tag in tags if tag and tag.strip()]


def assemble_specification(
    outputs: Mapping[StageId, Any],
    existing: Specification | None,
    command: str,
    *,
    document_id: str,
    insights: Mapping[StageId, Insights] | None = None,
    timestamp: str | None = None,
) -> Specification:
    """Build the incoming Specification for the merge engine.

    Stages that did not produce output contribute nothing: the merge engine
    keeps the existing items for those collections.
    """
    timestamp = timestamp or utc_now()
    understanding = outputs.get(StageId.UNDERSTANDING)
    models_output = outputs.get(StageId.MODELS)
    actions_output = outputs.get(StageId.ACTIONS)
    schedules_output = outputs.get(StageId.SCHEDULES)

    models = copy.deepcopy(models_output.models) if models_output else []
    models, dropped = dedupe_by_name(models)
    for model in dropped:
        logger.warning("Dropping duplicate generated model %r", model.name)
    counterparts = _adopt_model_identities(models, existing.models if existing else [])
    if models_output is not None:
        _attach_records(models, models_output, timestamp, counterparts)
    models = [normalize_model(model) for model in models]

    actions = copy.deepcopy(actions_output.actions) if actions_output else []
    adopt_identities(actions, existing.actions if existing else [], "action")
    schedules = copy.deepcopy(schedules_output.schedules) if schedules_output else []
    adopt_identities(schedules, existing.schedules if existing else [], "schedule")

    metadata: dict[str, Any] = {
        "version": SPECIFICATION_VERSION,
        "tags": _tags(understanding),
        "last_command": command,
    }
    if insights:
        metadata["analysis"] = {
            stage.value: insight.summary() for stage, insight in insights.items()
        }

    return Specification(
        id=existing.id if existing is not None else document_id,
        name=understanding.request.business_context if understanding else "",
        description=understanding.request.main_goal if understanding else "",
        domain=understanding.request.business_context if understanding else "",
        created_at=timestamp,
        updated_at=timestamp,
        metadata=metadata,
        models=models,
        actions=actions,
        schedules=schedules,
    )
