"""Explicit deletion instructions.

Deletions are never inferred from absence: only targets named in a
``DeletionInstruction`` are removed, matched by identity or
case-insensitive name. The ``id`` field of a model can never be deleted.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any

from src.core.models import (
    ID_FIELD_NAME,
    DeletionInstruction,
    Model,
    Specification,
    normalize_name,
)

logger = logging.getLogger(__name__)


@dataclass
class DeletionReport:
    """Result of applying a deletion instruction to one specification.

    Attributes:
        specification: Copy of the input with the targets removed.
        removed: Collection name -> names of removed items. Field and enum
            removals are reported as ``Model.name``.
        unmatched: Human-readable labels of targets that matched nothing.
        refused: Labels of targets that may not be deleted.
    """

    specification: Specification
    removed: dict[str, list[str]] = field(default_factory=dict)
    unmatched: set[str] = field(default_factory=set)
    refused: set[str] = field(default_factory=set)


def _matches(item: Any, target: str) -> bool:  # noqa: ANN401
    return item.id == target or normalize_name(item.name) == normalize_name(target)


def _remove(items: list[Any], targets: list[str]) -> tuple[list[Any], list[str], list[str]]:
    """Return (kept, removed names, unmatched targets)."""
    kept: list[Any] = []
    removed: list[str] = []
    hit: set[str] = set()
    for item in items:
        matching = [t for t in targets if _matches(item, t)]
        if matching:
            hit.update(matching)
            removed.append(item.name)
        else:
            kept.append(item)
    return kept, removed, [t for t in targets if t not in hit]


def _find_model(models: list[Model], target: str) -> Model | None:
    return next((m for m in models if _matches(m, target)), None)


def apply_deletions(
    specification: Specification, instruction: DeletionInstruction
) -> DeletionReport:
    """Apply ``instruction`` to a copy of ``specification``."""
    spec = copy.deepcopy(specification)
    report = DeletionReport(specification=spec)
    if instruction.is_empty:
        return report

    # Field and enum removals first, so targets may still name a model that
    # the same instruction deletes.
    for model_target, field_targets in instruction.fields.items():
        model = _find_model(spec.models, model_target)
        if model is None:
            report.unmatched.update(
                f"field '{t}' of model '{model_target}'" for t in field_targets
            )
            continue
        allowed = []
        for target in field_targets:
            if normalize_name(target) == ID_FIELD_NAME or any(
                f.name == ID_FIELD_NAME and f.id == target for f in model.fields
            ):
                report.refused.add(f"id field of model '{model.name}'")
            else:
                allowed.append(target)
        model.fields, removed, unmatched = _remove(model.fields, allowed)
        model.display_fields = [
            name for name in model.display_fields if name not in removed
        ]
        report.removed.setdefault("fields", []).extend(
            f"{model.name}.{name}" for name in removed
        )
        report.unmatched.update(
            f"field '{t}' of model '{model_target}'" for t in unmatched
        )

    for model_target, enum_targets in instruction.enums.items():
        model = _find_model(spec.models, model_target)
        if model is None:
            report.unmatched.update(
                f"enum '{t}' of model '{model_target}'" for t in enum_targets
            )
            continue
        model.enums, removed, unmatched = _remove(model.enums, enum_targets)
        report.removed.setdefault("enums", []).extend(
            f"{model.name}.{name}" for name in removed
        )
        report.unmatched.update(f"enum '{t}' of model '{model_target}'" for t in unmatched)

    collections = (
        ("models", "model", instruction.models),
        ("actions", "action", instruction.actions),
        ("schedules", "schedule", instruction.schedules),
    )
    for attr, label, targets in collections:
        if not targets:
            continue
        kept, removed, unmatched = _remove(getattr(spec, attr), targets)
        setattr(spec, attr, kept)
        report.removed.setdefault(attr, []).extend(removed)
        report.unmatched.update(f"{label} '{t}'" for t in unmatched)

    if report.removed:
        logger.debug("Deleted %s from specification %s", report.removed, spec.id)
    return report
