"""Excerpts of the existing specification included in stage context bundles."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from src.core.models import Specification


def specification_overview(spec: Specification | None) -> dict[str, Any] | None:
    """Names-only view of a specification, small enough for every stage."""
    if spec is None:
        return None
    return {
        "name": spec.name,
        "domain": spec.domain,
        "description": spec.description,
        "models": [
            {"name": m.name, "fields": [f.name for f in m.fields]} for m in spec.models
        ],
        "actions": [a.name for a in spec.actions],
        "schedules": [s.name for s in spec.schedules],
    }


def existing_models(spec: Specification | None) -> list[dict[str, Any]]:
    if spec is None:
        return []
    return [model.to_dict() | {"records": []} for model in spec.models]


def existing_actions(spec: Specification | None) -> list[dict[str, Any]]:
    return [action.to_dict() for action in spec.actions] if spec else []


def existing_schedules(spec: Specification | None) -> list[dict[str, Any]]:
    return [schedule.to_dict() for schedule in spec.schedules] if spec else []
