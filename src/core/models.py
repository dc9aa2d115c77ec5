"""Specification document dataclasses for agentspec.

This module provides the document types shared by the stages, the merge
engine, the store, and the CLI, kept here to avoid circular dependencies.

Types:
- FieldKind / OperationKind / Role: closed vocabularies of the document
- Field, EnumEntry, ModelEnum, ModelRecord, Model: the data layer
- EnvVar, CustomFunction, ModelReference, DataSource: where actions read from
- CodeExecution, PromptExecution, Execution: how actions run
- ResultsMapping: what actions write back
- Interval, Action, Schedule: the automation layer
- Specification: the root document
- DeletionInstruction: explicit removals applied by the merge engine

All types serialize with ``to_dict()`` (snake_case keys) and parse with a
tolerant ``from_dict()`` that fills neutral defaults for missing keys.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from src.core.parsing import (
    as_bool,
    as_dict,
    as_dict_list,
    as_enum,
    as_float,
    as_int,
    as_str,
    as_str_list,
)

ID_FIELD_NAME = "id"


class FieldKind(Enum):
    """How a field stores its value."""

    SCALAR = "scalar"
    OBJECT = "object"
    ENUM = "enum"


class OperationKind(Enum):
    """Whether an action creates new records or updates existing ones."""

    CREATE = "Create"
    UPDATE = "Update"


class Role(Enum):
    """Role required to run an action or own a schedule."""

    ADMIN = "admin"
    MEMBER = "member"


def normalize_name(name: str) -> str:
    """Key used for case-insensitive name matching."""
    return name.strip().lower()


def names_of(items: Iterable[Any]) -> list[str]:
    return [item.name for item in items]


@dataclass
class Field:
    """A single column of a model.

    Attributes:
        id: Identity of the field, unique within its model.
        name: Field name as shown to users and referenced by actions.
        type: Underlying type (``String``, ``Int``, a model name for
            relations, an enum name for enum fields).
        kind: Scalar, object (relation) or enum.
        is_id: Whether this field is the model identifier.
        relation_field: True only when kind is ``object``.
    """

    id: str
    name: str
    type: str = "String"
    kind: FieldKind = FieldKind.SCALAR
    is_id: bool = False
    unique: bool = False
    is_list: bool = False
    required: bool = False
    relation_field: bool = False
    title: str = ""
    sort: bool = False
    order: int = 0
    default_value: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "kind": self.kind.value,
            "is_id": self.is_id,
            "unique": self.unique,
            "is_list": self.is_list,
            "required": self.required,
            "relation_field": self.relation_field,
            "title": self.title,
            "sort": self.sort,
            "order": self.order,
            "default_value": self.default_value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Field:
        return cls(
            id=as_str(data.get("id")),
            name=as_str(data.get("name")),
            type=as_str(data.get("type")),
            kind=as_enum(FieldKind, data.get("kind"), FieldKind.SCALAR),
            is_id=as_bool(data.get("is_id")),
            unique=as_bool(data.get("unique")),
            is_list=as_bool(data.get("is_list", data.get("list"))),
            required=as_bool(data.get("required")),
            relation_field=as_bool(data.get("relation_field")),
            title=as_str(data.get("title")),
            sort=as_bool(data.get("sort")),
            order=as_int(data.get("order")),
            default_value=data.get("default_value"),
        )


@dataclass
class EnumEntry:
    """One allowed value of a model-scoped enum."""

    id: str
    name: str
    type: str = "String"
    default_value: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "default_value": self.default_value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EnumEntry:
        return cls(
            id=as_str(data.get("id")),
            name=as_str(data.get("name")),
            type=as_str(data.get("type"), "String") or "String",
            default_value=data.get("default_value"),
        )


@dataclass
class ModelEnum:
    """An enum owned by a single model."""

    id: str
    name: str
    entries: list[EnumEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "entries": [entry.to_dict() for entry in self.entries],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ModelEnum:
        raw_entries = data.get("entries", data.get("fields"))
        return cls(
            id=as_str(data.get("id")),
            name=as_str(data.get("name")),
            entries=[EnumEntry.from_dict(e) for e in as_dict_list(raw_entries)],
        )


@dataclass
class ModelRecord:
    """Example data row attached to a model."""

    id: str
    model_id: str
    data: dict[str, Any] = field(default_factory=dict)
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "model_id": self.model_id,
            "data": dict(self.data),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ModelRecord:
        return cls(
            id=as_str(data.get("id")),
            model_id=as_str(data.get("model_id")),
            data=as_dict(data.get("data")),
            created_at=as_str(data.get("created_at")),
            updated_at=as_str(data.get("updated_at")),
        )


@dataclass
class Model:
    """A data model: ordered fields plus model-scoped enums.

    The identifier field is always the field literally named ``id``;
    ``src.domain.normalize.normalize_model`` restores that invariant.
    """

    id: str
    name: str
    emoji: str = ""
    description: str = ""
    id_field: str = ID_FIELD_NAME
    display_fields: list[str] = field(default_factory=list)
    fields: list[Field] = field(default_factory=list)
    enums: list[ModelEnum] = field(default_factory=list)
    records: list[ModelRecord] = field(default_factory=list)

    def field_named(self, name: str) -> Field | None:
        key = normalize_name(name)
        for candidate in self.fields:
            if normalize_name(candidate.name) == key:
                return candidate
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "emoji": self.emoji,
            "description": self.description,
            "id_field": self.id_field,
            "display_fields": list(self.display_fields),
            "fields": [f.to_dict() for f in self.fields],
            "enums": [e.to_dict() for e in self.enums],
            "records": [r.to_dict() for r in self.records],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Model:
        return cls(
            id=as_str(data.get("id")),
            name=as_str(data.get("name")),
            emoji=as_str(data.get("emoji")),
            description=as_str(data.get("description")),
            id_field=as_str(data.get("id_field"), ID_FIELD_NAME) or ID_FIELD_NAME,
            display_fields=as_str_list(data.get("display_fields")),
            fields=[Field.from_dict(f) for f in as_dict_list(data.get("fields"))],
            enums=[ModelEnum.from_dict(e) for e in as_dict_list(data.get("enums"))],
            records=[
                ModelRecord.from_dict(r) for r in as_dict_list(data.get("records"))
            ],
        )


@dataclass
class EnvVar:
    """Environment variable required by custom code."""

    name: str
    description: str = ""
    required: bool = False
    sensitive: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "required": self.required,
            "sensitive": self.sensitive,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EnvVar:
        return cls(
            name=as_str(data.get("name")),
            description=as_str(data.get("description")),
            required=as_bool(data.get("required")),
            sensitive=as_bool(data.get("sensitive")),
        )


def _env_vars(value: object) -> list[EnvVar]:
    return [EnvVar.from_dict(v) for v in as_dict_list(value)]


@dataclass
class CustomFunction:
    code: str = ""
    env_vars: list[EnvVar] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "env_vars": [v.to_dict() for v in self.env_vars]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CustomFunction:
        return cls(code=as_str(data.get("code")), env_vars=_env_vars(data.get("env_vars")))


@dataclass
class ModelReference:
    """A model read by an action's database data source."""

    id: str = ""
    name: str = ""
    fields: list[str] = field(default_factory=list)
    where: dict[str, Any] = field(default_factory=dict)
    limit: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "fields": list(self.fields),
            "where": dict(self.where),
            "limit": self.limit,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ModelReference:
        raw_fields = data.get("fields")
        field_names = [
            as_str(item.get("name")) if isinstance(item, dict) else as_str(item)
            for item in (raw_fields if isinstance(raw_fields, list) else [])
        ]
        limit = data.get("limit")
        return cls(
            id=as_str(data.get("id")),
            name=as_str(data.get("name")),
            fields=[name for name in field_names if name],
            where=as_dict(data.get("where")),
            limit=as_int(limit) if limit is not None else None,
        )


@dataclass
class DataSource:
    """Either a custom function or a set of model references."""

    type: str = "database"
    custom_function: CustomFunction | None = None
    models: list[ModelReference] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "custom_function": (
                self.custom_function.to_dict() if self.custom_function else None
            ),
            "models": [m.to_dict() for m in self.models],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DataSource:
        custom = data.get("custom_function")
        models = data.get("models")
        if models is None:
            models = as_dict(data.get("database")).get("models")
        source_type = as_str(data.get("type"))
        if source_type not in ("custom", "database"):
            source_type = "custom" if isinstance(custom, dict) else "database"
        return cls(
            type=source_type,
            custom_function=(
                CustomFunction.from_dict(custom) if isinstance(custom, dict) else None
            ),
            models=[ModelReference.from_dict(m) for m in as_dict_list(models)],
        )


@dataclass
class CodeExecution:
    script: str = ""
    env_vars: list[EnvVar] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"script": self.script, "env_vars": [v.to_dict() for v in self.env_vars]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CodeExecution:
        return cls(
            script=as_str(data.get("script")), env_vars=_env_vars(data.get("env_vars"))
        )


@dataclass
class PromptExecution:
    template: str = ""
    model: str = ""
    temperature: float | None = None
    max_tokens: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "template": self.template,
            "model": self.model,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PromptExecution:
        max_tokens = data.get("max_tokens")
        return cls(
            template=as_str(data.get("template")),
            model=as_str(data.get("model")),
            temperature=as_float(data.get("temperature")),
            max_tokens=as_int(max_tokens) if max_tokens is not None else None,
        )


@dataclass
class Execution:
    """How an action runs: a code script or a prompt template."""

    type: str = "code"
    code: CodeExecution | None = None
    prompt: PromptExecution | None = None

    @property
    def is_configured(self) -> bool:
        return bool(
            (self.code and self.code.script) or (self.prompt and self.prompt.template)
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "code": self.code.to_dict() if self.code else None,
            "prompt": self.prompt.to_dict() if self.prompt else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Execution:
        code = data.get("code")
        prompt = data.get("prompt")
        exec_type = as_str(data.get("type"))
        if exec_type not in ("code", "prompt"):
            exec_type = "prompt" if isinstance(prompt, dict) else "code"
        return cls(
            type=exec_type,
            code=CodeExecution.from_dict(code) if isinstance(code, dict) else None,
            prompt=(
                PromptExecution.from_dict(prompt) if isinstance(prompt, dict) else None
            ),
        )


@dataclass
class ResultsMapping:
    """Where an action writes its output.

    ``fields`` maps target field names to expressions for Create;
    ``identifier_ids`` and ``fields_to_update`` drive Update.
    """

    action_type: OperationKind = OperationKind.CREATE
    model: str = ""
    identifier_ids: list[str] = field(default_factory=list)
    fields: dict[str, str] = field(default_factory=dict)
    fields_to_update: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "action_type": self.action_type.value,
            "model": self.model,
            "identifier_ids": list(self.identifier_ids),
            "fields": dict(self.fields),
            "fields_to_update": dict(self.fields_to_update),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ResultsMapping:
        return cls(
            action_type=as_enum(
                OperationKind, data.get("action_type"), OperationKind.CREATE
            ),
            model=as_str(data.get("model")),
            identifier_ids=as_str_list(data.get("identifier_ids")),
            fields={k: as_str(v) for k, v in as_dict(data.get("fields")).items()},
            fields_to_update={
                k: as_str(v) for k, v in as_dict(data.get("fields_to_update")).items()
            },
        )


@dataclass
class Interval:
    """Recurrence of a schedule (``daily``, ``2 hours``, a cron string)."""

    pattern: str = ""
    timezone: str = ""
    active: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {"pattern": self.pattern, "timezone": self.timezone, "active": self.active}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Interval:
        return cls(
            pattern=as_str(data.get("pattern")),
            timezone=as_str(data.get("timezone")),
            active=as_bool(data.get("active"), True),
        )


@dataclass
class Action:
    """An on-demand automation that reads data and creates or updates records."""

    id: str
    name: str
    emoji: str = ""
    description: str = ""
    type: OperationKind | None = OperationKind.CREATE
    role: Role | None = Role.MEMBER
    data_source: DataSource | None = field(default_factory=DataSource)
    execute: Execution = field(default_factory=Execution)
    results: ResultsMapping = field(default_factory=ResultsMapping)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "emoji": self.emoji,
            "description": self.description,
            "type": self.type.value if self.type else None,
            "role": self.role.value if self.role else None,
            "data_source": self.data_source.to_dict() if self.data_source else None,
            "execute": self.execute.to_dict(),
            "results": self.results.to_dict(),
        }

    @classmethod
    def _common_kwargs(cls, data: dict[str, Any]) -> dict[str, Any]:
        raw_type = data.get("type")
        raw_role = data.get("role")
        raw_source = data.get("data_source")
        return {
            "id": as_str(data.get("id")),
            "name": as_str(data.get("name")),
            "emoji": as_str(data.get("emoji")),
            "description": as_str(data.get("description")),
            "type": (
                as_enum(OperationKind, raw_type, OperationKind.CREATE)
                if raw_type
                else None
            ),
            "role": as_enum(Role, raw_role, Role.MEMBER) if raw_role else None,
            "data_source": (
                DataSource.from_dict(raw_source) if isinstance(raw_source, dict) else None
            ),
            "execute": Execution.from_dict(as_dict(data.get("execute"))),
            "results": ResultsMapping.from_dict(as_dict(data.get("results"))),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Action:
        return cls(**cls._common_kwargs(data))


@dataclass
class Schedule(Action):
    """An action that runs on a recurring interval."""

    interval: Interval = field(default_factory=Interval)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["interval"] = self.interval.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Schedule:
        return cls(
            **cls._common_kwargs(data),
            interval=Interval.from_dict(as_dict(data.get("interval"))),
        )


@dataclass
class Specification:
    """Root document: models, actions and schedules for one target system."""

    id: str
    name: str = ""
    description: str = ""
    domain: str = ""
    created_at: str = ""
    updated_at: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    models: list[Model] = field(default_factory=list)
    actions: list[Action] = field(default_factory=list)
    schedules: list[Schedule] = field(default_factory=list)

    def model_named(self, name: str) -> Model | None:
        key = normalize_name(name)
        for model in self.models:
            if normalize_name(model.name) == key:
                return model
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "domain": self.domain,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "metadata": dict(self.metadata),
            "models": [m.to_dict() for m in self.models],
            "actions": [a.to_dict() for a in self.actions],
            "schedules": [s.to_dict() for s in self.schedules],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Specification:
        return cls(
            id=as_str(data.get("id")),
            name=as_str(data.get("name")),
            description=as_str(data.get("description")),
            domain=as_str(data.get("domain")),
            created_at=as_str(data.get("created_at")),
            updated_at=as_str(data.get("updated_at")),
            metadata=as_dict(data.get("metadata")),
            models=[Model.from_dict(m) for m in as_dict_list(data.get("models"))],
            actions=[Action.from_dict(a) for a in as_dict_list(data.get("actions"))],
            schedules=[
                Schedule.from_dict(s) for s in as_dict_list(data.get("schedules"))
            ],
        )


def _name_map(value: object) -> dict[str, list[str]]:
    return {key: as_str_list(names) for key, names in as_dict(value).items()}


@dataclass
class DeletionInstruction:
    """Explicit removals, by identity or case-insensitive name.

    Attributes:
        models: Models to remove.
        actions: Actions to remove.
        schedules: Schedules to remove.
        fields: Model (name or id) -> fields to remove from that model.
        enums: Model (name or id) -> enums to remove from that model.
    """

    models: list[str] = field(default_factory=list)
    actions: list[str] = field(default_factory=list)
    schedules: list[str] = field(default_factory=list)
    fields: dict[str, list[str]] = field(default_factory=dict)
    enums: dict[str, list[str]] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not (
            self.models
            or self.actions
            or self.schedules
            or any(self.fields.values())
            or any(self.enums.values())
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "models": list(self.models),
            "actions": list(self.actions),
            "schedules": list(self.schedules),
            "fields": {k: list(v) for k, v in self.fields.items()},
            "enums": {k: list(v) for k, v in self.enums.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DeletionInstruction:
        return cls(
            models=as_str_list(data.get("models")),
            actions=as_str_list(data.get("actions")),
            schedules=as_str_list(data.get("schedules")),
            fields=_name_map(data.get("fields")),
            enums=_name_map(data.get("enums")),
        )
