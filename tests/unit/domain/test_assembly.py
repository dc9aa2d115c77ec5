"""Unit tests for assembling the incoming specification."""

from __future__ import annotations

import pytest

from src.core.models import Action, Field, Model, ModelRecord, Specification
from src.core.stages import StageId
from src.domain.assembly import (
    SPECIFICATION_VERSION,
    adopt_identities,
    assemble_specification,
)
from src.domain.normalize import make_id_field
from src.domain.stages import STAGE_DEFINITIONS, UnderstandingInsights
from tests.fakes import replies
from tests.fakes.replies import COMMAND

TIMESTAMP = "2025-03-01T12:00:00+00:00"


def _outputs(*stages: StageId) -> dict[StageId, object]:
    canned = replies.default_replies()
    return {stage: STAGE_DEFINITIONS[stage].parse(canned[stage]) for stage in stages}


def _all_outputs() -> dict[StageId, object]:
    return _outputs(*StageId)


def _existing() -> Specification:
    return Specification(
        id="gym",
        models=[
            Model(
                id="model-member",
                name="Member",
                fields=[make_id_field("model-member"), Field(id="f-name", name="name")],
                records=[ModelRecord(id="model-member-record-1", model_id="model-member")],
            ),
            Model(id="model-1", name="Legacy", fields=[make_id_field("model-1")]),
        ],
        actions=[Action(id="action-register", name="register member")],
    )


@pytest.mark.unit
class TestAssembleNewSpecification:
    def test_models_get_sequential_ids_and_records(self) -> None:
        spec = assemble_specification(
            _all_outputs(), None, COMMAND, document_id="doc-1", timestamp=TIMESTAMP
        )

        assert spec.id == "doc-1"
        assert [m.id for m in spec.models] == ["model-1", "model-2"]
        member = spec.models[0]
        assert member.fields[0].name == "id"
        (record,) = member.records
        assert record.id == "model-1-record-1"
        assert record.model_id == "model-1"
        assert record.data == {"name": "Ada", "status": "active"}
        assert record.created_at == TIMESTAMP
        assert [a.id for a in spec.actions] == ["action-1"]
        assert [s.id for s in spec.schedules] == ["schedule-1"]

    def test_descriptive_fields_and_metadata(self) -> None:
        spec = assemble_specification(
            _all_outputs(), None, COMMAND, document_id="doc-1", timestamp=TIMESTAMP
        )

        assert spec.name == "Fitness"
        assert spec.domain == "Fitness"
        assert spec.description == "Track gym memberships and class bookings"
        assert spec.created_at == spec.updated_at == TIMESTAMP
        assert spec.metadata == {
            "version": SPECIFICATION_VERSION,
            "tags": ["fitness", "moderate", "memberships", "class booking"],
            "last_command": COMMAND,
        }

    def test_insight_summaries_become_analysis(self) -> None:
        insights = {StageId.UNDERSTANDING: UnderstandingInsights(business_domain="Fitness")}

        spec = assemble_specification(
            _all_outputs(),
            None,
            COMMAND,
            document_id="doc-1",
            insights=insights,
            timestamp=TIMESTAMP,
        )

        assert spec.metadata["analysis"] == {
            "understanding": insights[StageId.UNDERSTANDING].summary()
        }

    def test_missing_stages_contribute_nothing(self) -> None:
        spec = assemble_specification(
            _outputs(StageId.UNDERSTANDING), None, COMMAND, document_id="doc-1"
        )

        assert spec.models == []
        assert spec.actions == []
        assert spec.schedules == []
        assert spec.updated_at

    def test_duplicate_generated_models_are_dropped(self) -> None:
        canned = replies.reply(StageId.MODELS)
        canned["models"].append(dict(canned["models"][0], name="MEMBER"))
        outputs = {StageId.MODELS: STAGE_DEFINITIONS[StageId.MODELS].parse(canned)}

        spec = assemble_specification(outputs, None, COMMAND, document_id="doc-1")

        assert [m.name for m in spec.models] == ["Member", "Booking"]


@pytest.mark.unit
class TestAssembleAgainstExisting:
    def test_existing_identities_are_adopted(self) -> None:
        spec = assemble_specification(
            _all_outputs(), _existing(), COMMAND, document_id="ignored"
        )

        assert spec.id == "gym"
        member, booking = spec.models
        assert member.id == "model-member"
        assert booking.id == "model-2"
        assert [f.id for f in member.fields[:2]] == ["model-member-id", "f-name"]
        assert [r.id for r in member.records] == ["model-member-record-2"]
        assert [a.id for a in spec.actions] == ["action-register"]

    def test_generated_models_are_copied(self) -> None:
        outputs = _all_outputs()

        assemble_specification(outputs, _existing(), COMMAND, document_id="gym")

        assert outputs[StageId.MODELS].models[0].id == ""


@pytest.mark.unit
class TestAdoptIdentities:
    def test_name_match_and_fresh_ids(self) -> None:
        existing = [Action(id="action-1", name="Notify"), Action(id="action-2", name="Sync")]
        items = [
            Action(id="", name="notify"),
            Action(id="", name="Report"),
            Action(id="custom", name="Sync"),
        ]

        adopt_identities(items, existing, "action")

        assert [a.id for a in items] == ["action-1", "action-3", "custom"]

    def test_identity_of_another_stored_item_is_discarded(self) -> None:
        existing = [Action(id="action-1", name="Notify")]
        items = [Action(id="action-1", name="Other"), Action(id="", name="Notify")]

        adopt_identities(items, existing, "action")

        assert [a.id for a in items] == ["action-2", "action-1"]

    def test_matching_identity_is_kept(self) -> None:
        existing = [Action(id="action-1", name="Notify")]
        items = [Action(id="action-1", name="NOTIFY")]

        adopt_identities(items, existing, "action")

        assert items[0].id == "action-1"

    def test_generated_field_reusing_stored_identity(self) -> None:
        stored = Field(id="field-1", name="email")
        fields = [Field(id="field-1", name="phone"), Field(id="", name="Email")]

        adopt_identities(fields, [stored], "field")

        assert [(f.id, f.name) for f in fields] == [
            ("field-2", "phone"),
            ("field-1", "Email"),
        ]
