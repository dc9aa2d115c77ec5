"""Model normalization and identity helpers.

``normalize_model`` restores the structural invariants every stored model
must satisfy, whatever the generator produced:

- exactly one field literally named ``id`` (String, is_id, unique, required,
  scalar), placed first when it has to be created
- no other field flagged ``is_id``
- field, enum and enum entry identities unique within the model
- relation fields are kind ``object``; list relations default to ``[]``
- fields typed by one of the model's enums are kind ``enum``
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any, Protocol, TypeVar

from src.core.models import ID_FIELD_NAME, Field, FieldKind, Model, normalize_name


class Identified(Protocol):
    id: str
    name: str


T = TypeVar("T", bound=Identified)


def next_sequential_id(prefix: str, taken: set[str]) -> str:
    """First ``<prefix>-<n>`` (n >= 1) not already in ``taken``."""
    n = 1
    while f"{prefix}-{n}" in taken:
        n += 1
    return f"{prefix}-{n}"


def assign_missing_ids(
    items: Iterable[T], prefix: str, reserved: Iterable[str] = ()
) -> None:
    """Give items without (or with a repeated) identity a fresh sequential one.

    Fresh identities also avoid everything in ``reserved``.
    """
    items = list(items)
    taken = {item.id for item in items if item.id} | set(reserved)
    seen: set[str] = set()
    for item in items:
        if item.id and item.id not in seen:
            seen.add(item.id)
            continue
        item.id = next_sequential_id(prefix, taken)
        taken.add(item.id)
        seen.add(item.id)


def dedupe_by_name(items: Iterable[T]) -> tuple[list[T], list[T]]:
    """Split items into (kept, dropped); the first item with a name wins.

    Items without a name are always kept.
    """
    kept: list[T] = []
    dropped: list[T] = []
    seen: set[str] = set()
    for item in items:
        key = normalize_name(item.name)
        if key and key in seen:
            dropped.append(item)
            continue
        if key:
            seen.add(key)
        kept.append(item)
    return kept, dropped


def make_id_field(model_id: str = "") -> Field:
    return Field(
        id=f"{model_id}-id" if model_id else ID_FIELD_NAME,
        name=ID_FIELD_NAME,
        type="String",
        kind=FieldKind.SCALAR,
        is_id=True,
        unique=True,
        required=True,
        title="ID",
    )


def _normalize_id_field(model: Model) -> None:
    id_field = next((f for f in model.fields if f.name == ID_FIELD_NAME), None)
    if id_field is None:
        model.fields.insert(0, make_id_field(model.id))
        id_field = model.fields[0]
    id_field.type = "String"
    id_field.kind = FieldKind.SCALAR
    id_field.is_id = True
    id_field.unique = True
    id_field.required = True
    id_field.relation_field = False
    id_field.is_list = False
    for other in model.fields:
        if other is not id_field:
            other.is_id = False
    model.id_field = ID_FIELD_NAME


def _normalize_relations(model: Model) -> None:
    enum_names = {e.name for e in model.enums}
    for model_field in model.fields:
        if model_field.name == ID_FIELD_NAME:
            continue
        if model_field.relation_field or model_field.kind is FieldKind.OBJECT:
            model_field.kind = FieldKind.OBJECT
            model_field.relation_field = True
            if model_field.is_list and model_field.default_value is None:
                model_field.default_value = []
        elif model_field.type in enum_names:
            model_field.kind = FieldKind.ENUM
        else:
            model_field.relation_field = False


def _normalize_display_fields(model: Model) -> None:
    names = {f.name for f in model.fields}
    display = [name for name in model.display_fields if name in names]
    if not display:
        first = next((f.name for f in model.fields if f.name != ID_FIELD_NAME), None)
        display = [first] if first else []
    model.display_fields = display


def normalize_model(model: Model) -> Model:
    """Restore model invariants in place and return the model."""
    _normalize_id_field(model)
    assign_missing_ids(model.fields, "field")
    _normalize_relations(model)
    _normalize_display_fields(model)
    assign_missing_ids(model.enums, "enum")
    for enum in model.enums:
        assign_missing_ids(enum.entries, "entry")
    return model


def model_invariant_violations(model: Model) -> list[str]:
    """Describe every broken model invariant (empty when the model is sound)."""
    problems: list[str] = []
    id_fields = [f for f in model.fields if f.name == ID_FIELD_NAME]
    if len(id_fields) != 1:
        problems.append(f"{model.name}: expected one 'id' field, found {len(id_fields)}")
    else:
        id_field = id_fields[0]
        if not (id_field.is_id and id_field.unique and id_field.required):
            problems.append(f"{model.name}: 'id' field must be is_id, unique, required")
        if id_field.type != "String" or id_field.kind is not FieldKind.SCALAR:
            problems.append(f"{model.name}: 'id' field must be a String scalar")
    if sum(1 for f in model.fields if f.is_id) > 1:
        problems.append(f"{model.name}: more than one is_id field")
    ids = [f.id for f in model.fields]
    if len(ids) != len(set(ids)) or not all(ids):
        problems.append(f"{model.name}: field identities are not unique")
    for model_field in model.fields:
        if model_field.relation_field != (model_field.kind is FieldKind.OBJECT):
            problems.append(
                f"{model.name}.{model_field.name}: relation_field must match kind object"
            )
    return problems


def index_by_identity(items: Iterable[Any]) -> tuple[dict[str, int], dict[str, int]]:
    """Positions of items by identity and by case-insensitive name.

    The first occurrence wins for both keys.
    """
    by_id: dict[str, int] = {}
    by_name: dict[str, int] = {}
    for position, item in enumerate(items):
        if item.id and item.id not in by_id:
            by_id[item.id] = position
        key = normalize_name(item.name)
        if key and key not in by_name:
            by_name[key] = position
    return by_id, by_name


def find_match(
    item: Any,  # noqa: ANN401
    items: Sequence[Any],
    by_id: dict[str, int],
    by_name: dict[str, int],
) -> int | None:
    """Identity first, then case-insensitive name.

    An identity match only counts when the names agree or ``item`` has no
    name: an identity reused under another name belongs to a different item.
    """
    key = normalize_name(item.name)
    position = by_id.get(item.id) if item.id else None
    if position is not None and (not key or normalize_name(items[position].name) == key):
        return position
    if key:
        return by_name.get(key)
    return None
