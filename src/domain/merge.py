"""Merge engine: reconcile an existing specification with a new one.

Precedence rules, applied by the per-entity merge functions below:

- Identity: the existing item's ``id`` is always kept.
- Strings: the incoming value wins only when non-empty.
- Booleans and numbers: the incoming value always wins.
- Optional enums and nested objects: the incoming value wins when present.
- Items and nested collections (fields, enums, enum entries, data-source
  model references) are matched by identity, then case-insensitive name. An
  identity match needs agreeing names; an identity reused under another name
  is a different item and gets a fresh identity. Unmatched existing entries
  are kept, unmatched incoming entries appended.

Every incoming name survives the item merge because matches never cross
names. A recovery pass then reinserts every existing name missing from the
result (omission is never deletion), under a fresh identity when its own is
taken. A dedup pass drops case-insensitive name duplicates, and merged models
are re-normalized.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeVar

from src.core.models import (
    Action,
    CodeExecution,
    CustomFunction,
    DataSource,
    DeletionInstruction,
    EnumEntry,
    EnvVar,
    Execution,
    Field,
    Interval,
    Model,
    ModelEnum,
    ModelRecord,
    ModelReference,
    PromptExecution,
    ResultsMapping,
    Schedule,
    Specification,
    normalize_name,
)

from .deletion import apply_deletions
from .normalize import (
    dedupe_by_name,
    find_match,
    index_by_identity,
    next_sequential_id,
    normalize_model,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

COLLECTIONS = ("models", "actions", "schedules")
ID_PREFIXES = {"models": "model", "actions": "action", "schedules": "schedule"}


@dataclass(frozen=True)
class MergePolicy:
    """Policy knobs of the merge engine.

    Attributes:
        recover_omissions: Reinsert existing items the incoming specification
            left out. When False, omitted items are dropped and reported as
            deleted.
    """

    recover_omissions: bool = True


DEFAULT_MERGE_POLICY = MergePolicy()


@dataclass
class ChangeSummary:
    """Names touched by a merge, per collection."""

    added: dict[str, list[str]] = field(default_factory=dict)
    updated: dict[str, list[str]] = field(default_factory=dict)
    recovered: dict[str, list[str]] = field(default_factory=dict)
    deduplicated: dict[str, list[str]] = field(default_factory=dict)
    deleted: dict[str, list[str]] = field(default_factory=dict)

    def record(self, kind: str, collection: str, name: str) -> None:
        bucket = getattr(self, kind).setdefault(collection, [])
        if name not in bucket:
            bucket.append(name)

    @property
    def is_empty(self) -> bool:
        return not any(
            any(names.values())
            for names in (
                self.added,
                self.updated,
                self.recovered,
                self.deduplicated,
                self.deleted,
            )
        )

    def describe(self) -> str:
        parts = []
        for kind in ("added", "updated", "recovered", "deduplicated", "deleted"):
            for collection, names in getattr(self, kind).items():
                if names:
                    parts.append(f"{kind} {len(names)} {collection}")
        return ", ".join(parts) if parts else "no changes"

    def to_dict(self) -> dict[str, dict[str, list[str]]]:
        return {
            "added": copy.deepcopy(self.added),
            "updated": copy.deepcopy(self.updated),
            "recovered": copy.deepcopy(self.recovered),
            "deduplicated": copy.deepcopy(self.deduplicated),
            "deleted": copy.deepcopy(self.deleted),
        }


@dataclass
class MergeResult:
    specification: Specification
    warnings: list[str] = field(default_factory=list)
    changes: ChangeSummary = field(default_factory=ChangeSummary)


# ---------------------------------------------------------------------------
# Scalar precedence
# ---------------------------------------------------------------------------


def pick_str(existing: str, incoming: str) -> str:
    return incoming if incoming else existing


def pick_optional(existing: T | None, incoming: T | None) -> T | None:
    return incoming if incoming is not None else existing


def pick_list(existing: list[str], incoming: list[str]) -> list[str]:
    return list(incoming) if incoming else list(existing)


def union_names(existing: list[str], incoming: list[str]) -> list[str]:
    merged = list(existing)
    merged.extend(name for name in incoming if name not in merged)
    return merged


def merge_nested(
    existing: Sequence[T],
    incoming: Sequence[T],
    merge_item: Callable[[T, T], T],
    prefix: str,
) -> list[T]:
    """Merge a nested collection by identity-then-name.

    Existing order is kept; unmatched incoming entries are appended with a
    fresh identity when theirs is missing or already taken.
    """
    result: list[Any] = list(existing)
    by_id, by_name = index_by_identity(result)
    taken = {item.id for item in result if item.id}  # type: ignore[attr-defined]
    for item in incoming:
        position = find_match(item, result, by_id, by_name)
        if position is not None:
            result[position] = merge_item(result[position], item)
            continue
        entry: Any = item
        if not entry.id or entry.id in taken:
            entry.id = next_sequential_id(prefix, taken)
        taken.add(entry.id)
        result.append(entry)
        position = len(result) - 1
        by_id.setdefault(entry.id, position)
        key = normalize_name(entry.name)
        if key:
            by_name.setdefault(key, position)
    return result


# ---------------------------------------------------------------------------
# Per-entity merges. Each returns a new object and keeps ``existing.id``.
# ---------------------------------------------------------------------------


def merge_field(existing: Field, incoming: Field) -> Field:
    return Field(
        id=existing.id,
        name=pick_str(existing.name, incoming.name),
        type=pick_str(existing.type, incoming.type),
        kind=incoming.kind,
        is_id=incoming.is_id,
        unique=incoming.unique,
        is_list=incoming.is_list,
        required=incoming.required,
        relation_field=incoming.relation_field,
        title=pick_str(existing.title, incoming.title),
        sort=incoming.sort,
        order=incoming.order,
        default_value=pick_optional(existing.default_value, incoming.default_value),
    )


def merge_enum_entry(existing: EnumEntry, incoming: EnumEntry) -> EnumEntry:
    return EnumEntry(
        id=existing.id,
        name=pick_str(existing.name, incoming.name),
        type=pick_str(existing.type, incoming.type),
        default_value=pick_optional(existing.default_value, incoming.default_value),
    )


def merge_enum(existing: ModelEnum, incoming: ModelEnum) -> ModelEnum:
    return ModelEnum(
        id=existing.id,
        name=pick_str(existing.name, incoming.name),
        entries=merge_nested(existing.entries, incoming.entries, merge_enum_entry, "entry"),
    )


def merge_records(
    existing: list[ModelRecord], incoming: list[ModelRecord]
) -> list[ModelRecord]:
    """Existing records, then incoming records with an identity not seen yet."""
    merged = list(existing)
    seen = {record.id for record in existing}
    for record in incoming:
        if record.id and record.id not in seen:
            merged.append(record)
            seen.add(record.id)
    return merged


def merge_model(existing: Model, incoming: Model) -> Model:
    return Model(
        id=existing.id,
        name=pick_str(existing.name, incoming.name),
        emoji=pick_str(existing.emoji, incoming.emoji),
        description=pick_str(existing.description, incoming.description),
        id_field=existing.id_field,
        display_fields=pick_list(existing.display_fields, incoming.display_fields),
        fields=merge_nested(existing.fields, incoming.fields, merge_field, "field"),
        enums=merge_nested(existing.enums, incoming.enums, merge_enum, "enum"),
        records=merge_records(existing.records, incoming.records),
    )


def merge_env_vars(existing: list[EnvVar], incoming: list[EnvVar]) -> list[EnvVar]:
    merged = list(existing)
    positions = {normalize_name(v.name): i for i, v in enumerate(merged)}
    for var in incoming:
        position = positions.get(normalize_name(var.name))
        if position is None:
            positions[normalize_name(var.name)] = len(merged)
            merged.append(var)
        else:
            current = merged[position]
            merged[position] = EnvVar(
                name=current.name,
                description=pick_str(current.description, var.description),
                required=var.required,
                sensitive=var.sensitive,
            )
    return merged


def merge_model_reference(existing: ModelReference, incoming: ModelReference) -> ModelReference:
    return ModelReference(
        id=existing.id,
        name=pick_str(existing.name, incoming.name),
        fields=union_names(existing.fields, incoming.fields),
        where={**existing.where, **incoming.where},
        limit=pick_optional(existing.limit, incoming.limit),
    )


def merge_data_source(
    existing: DataSource | None, incoming: DataSource | None
) -> DataSource | None:
    if existing is None or incoming is None:
        return pick_optional(existing, incoming)
    custom = existing.custom_function
    if incoming.custom_function is not None:
        custom = (
            CustomFunction(
                code=pick_str(custom.code, incoming.custom_function.code),
                env_vars=merge_env_vars(custom.env_vars, incoming.custom_function.env_vars),
            )
            if custom is not None
            else incoming.custom_function
        )
    return DataSource(
        type=pick_str(existing.type, incoming.type),
        custom_function=custom,
        models=merge_nested(
            existing.models, incoming.models, merge_model_reference, "ref"
        ),
    )


def merge_execution(existing: Execution, incoming: Execution) -> Execution:
    code = existing.code
    if incoming.code is not None:
        code = (
            CodeExecution(
                script=pick_str(code.script, incoming.code.script),
                env_vars=merge_env_vars(code.env_vars, incoming.code.env_vars),
            )
            if code is not None
            else incoming.code
        )
    prompt = existing.prompt
    if incoming.prompt is not None:
        prompt = (
            PromptExecution(
                template=pick_str(prompt.template, incoming.prompt.template),
                model=pick_str(prompt.model, incoming.prompt.model),
                temperature=pick_optional(prompt.temperature, incoming.prompt.temperature),
                max_tokens=pick_optional(prompt.max_tokens, incoming.prompt.max_tokens),
            )
            if prompt is not None
            else incoming.prompt
        )
    return Execution(type=pick_str(existing.type, incoming.type), code=code, prompt=prompt)


def merge_results(existing: ResultsMapping, incoming: ResultsMapping) -> ResultsMapping:
    return ResultsMapping(
        action_type=incoming.action_type,
        model=pick_str(existing.model, incoming.model),
        identifier_ids=pick_list(existing.identifier_ids, incoming.identifier_ids),
        fields={**existing.fields, **incoming.fields},
        fields_to_update={**existing.fields_to_update, **incoming.fields_to_update},
    )


def merge_interval(existing: Interval, incoming: Interval) -> Interval:
    return Interval(
        pattern=pick_str(existing.pattern, incoming.pattern),
        timezone=pick_str(existing.timezone, incoming.timezone),
        active=incoming.active,
    )


def _merged_action_kwargs(existing: Action, incoming: Action) -> dict[str, Any]:
    return {
        "id": existing.id,
        "name": pick_str(existing.name, incoming.name),
        "emoji": pick_str(existing.emoji, incoming.emoji),
        "description": pick_str(existing.description, incoming.description),
        "type": pick_optional(existing.type, incoming.type),
        "role": pick_optional(existing.role, incoming.role),
        "data_source": merge_data_source(existing.data_source, incoming.data_source),
        "execute": merge_execution(existing.execute, incoming.execute),
        "results": merge_results(existing.results, incoming.results),
    }


def merge_action(existing: Action, incoming: Action) -> Action:
    return Action(**_merged_action_kwargs(existing, incoming))


def merge_schedule(existing: Schedule, incoming: Schedule) -> Schedule:
    return Schedule(
        **_merged_action_kwargs(existing, incoming),
        interval=merge_interval(existing.interval, incoming.interval),
    )


MERGERS: dict[str, Callable[[Any, Any], Any]] = {
    "models": merge_model,
    "actions": merge_action,
    "schedules": merge_schedule,
}


# ---------------------------------------------------------------------------
# Collection merge: match, recover, dedup
# ---------------------------------------------------------------------------


def _merge_collection(
    collection: str,
    existing: list[Any],
    incoming: list[Any],
    policy: MergePolicy,
    result: MergeResult,
) -> list[Any]:
    label = ID_PREFIXES[collection]
    merge_item = MERGERS[collection]
    slots: list[Any | None] = [None] * len(existing)
    by_id, by_name = index_by_identity(existing)
    taken = {item.id for item in existing if item.id}
    appended: list[Any] = []

    for item in incoming:
        position = find_match(item, existing, by_id, by_name)
        if position is not None:
            base = slots[position] if slots[position] is not None else existing[position]
            slots[position] = merge_item(base, item)
            result.changes.record("updated", collection, slots[position].name)
            continue
        if not item.id or item.id in taken:
            item.id = next_sequential_id(label, taken)
        taken.add(item.id)
        appended.append(item)
        result.changes.record("added", collection, item.name)

    # Recovery: existing names the incoming specification left out.
    present_ids = {i.id for i in [*slots, *appended] if i is not None}
    present_names = {normalize_name(i.name) for i in [*slots, *appended] if i is not None}
    for position, original in enumerate(existing):
        if slots[position] is not None:
            continue
        key = normalize_name(original.name)
        if (key and key in present_names) or (not key and original.id in present_ids):
            continue
        if policy.recover_omissions:
            if not original.id or original.id in present_ids:
                original.id = next_sequential_id(label, taken)
                taken.add(original.id)
            present_ids.add(original.id)
            present_names.add(key)
            slots[position] = original
            result.changes.record("recovered", collection, original.name)
            result.warnings.append(
                f"Recovered {label} '{original.name}' omitted by the new specification"
            )
        else:
            result.changes.record("deleted", collection, original.name)
            result.warnings.append(
                f"Dropped {label} '{original.name}' omitted by the new specification"
            )

    merged = [item for item in slots if item is not None] + appended

    kept, dropped = dedupe_by_name(merged)
    for item in dropped:
        result.changes.record("deduplicated", collection, item.name)
        result.warnings.append(
            f"Dropped duplicate {label} '{item.name}' (id {item.id or '<none>'})"
        )
    return kept


def _merge_top_level(existing: Specification, incoming: Specification) -> Specification:
    def changed(old: str, new: str) -> str:
        return new if new and new != old else old

    return Specification(
        id=existing.id or incoming.id,
        name=changed(existing.name, incoming.name),
        description=changed(existing.description, incoming.description),
        domain=changed(existing.domain, incoming.domain),
        created_at=existing.created_at or incoming.created_at,
        updated_at=incoming.updated_at or existing.updated_at,
        metadata={**existing.metadata, **incoming.metadata},
    )


def _apply_deletions(
    existing: Specification | None,
    incoming: Specification,
    deletions: DeletionInstruction,
    result: MergeResult,
) -> tuple[Specification | None, Specification]:
    incoming_report = apply_deletions(incoming, deletions)
    unmatched = set(incoming_report.unmatched)
    refused = set(incoming_report.refused)
    reports = [incoming_report]
    if existing is not None:
        existing_report = apply_deletions(existing, deletions)
        unmatched &= existing_report.unmatched
        refused |= existing_report.refused
        reports.insert(0, existing_report)
        existing = existing_report.specification
    for report in reports:
        for collection, names in report.removed.items():
            for name in names:
                result.changes.record("deleted", collection, name)
    for label in sorted(unmatched):
        result.warnings.append(f"Deletion target not found: {label}")
    for label in sorted(refused):
        result.warnings.append(f"Refused to delete {label}")
    return existing, incoming_report.specification


def merge_specifications(
    existing: Specification | None,
    incoming: Specification,
    deletions: DeletionInstruction | None = None,
    policy: MergePolicy = DEFAULT_MERGE_POLICY,
) -> MergeResult:
    """Reconcile ``existing`` with ``incoming``.

    Neither input is mutated. With no existing specification the result is
    ``incoming`` (after deletions). Otherwise deletions are applied to both
    inputs, then models, actions and schedules are merged, recovered and
    deduplicated, and the merged models are re-normalized.

    Args:
        existing: Previously stored specification, if any.
        incoming: Specification assembled from this run's stage outputs.
        deletions: Explicit removals; never inferred.
        policy: Merge policy knobs.

    Returns:
        MergeResult with the reconciled specification, warnings for every
        repair, and a summary of touched names.
    """
    result = MergeResult(specification=incoming)
    existing = copy.deepcopy(existing)
    incoming = copy.deepcopy(incoming)
    if deletions is not None and not deletions.is_empty:
        existing, incoming = _apply_deletions(existing, incoming, deletions, result)

    if existing is None:
        result.specification = incoming
        for collection in COLLECTIONS:
            for item in getattr(incoming, collection):
                result.changes.record("added", collection, item.name)
        _log_changes(incoming, result)
        return result

    merged = _merge_top_level(existing, incoming)
    for collection in COLLECTIONS:
        setattr(
            merged,
            collection,
            _merge_collection(
                collection,
                getattr(existing, collection),
                getattr(incoming, collection),
                policy,
                result,
            ),
        )
    merged.models = [normalize_model(model) for model in merged.models]
    result.specification = merged
    _log_changes(merged, result)
    return result


def _log_changes(spec: Specification, result: MergeResult) -> None:
    logger.info("Merged specification %s: %s", spec.id, result.changes.describe())
    for warning in result.warnings:
        logger.warning("Merge: %s", warning)
