"""Tests for SpecPipelineOrchestrator.

The orchestrator is exercised end to end against fakes: a scripted oracle
replaying canned stage replies, an in-memory store and an event-capturing
sink. No test touches the network; run metadata goes to tmp_path.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Self

import pytest

from src.core.models import Action, DeletionInstruction, Field, Model, Specification
from src.core.protocols import FINAL_KIND, SNAPSHOT_KIND
from src.core.stages import STAGE_ORDER, ProgressStatus, StageId, StageStatus
from src.domain.normalize import make_id_field
from src.domain.stages import UnderstandingInsights
from src.infra.io.config import AgentSpecConfig
from src.infra.io.log_output.run_metadata import PipelineRunMetadata
from src.infra.telemetry import NullTelemetryProvider
from src.orchestration.factory import (
    PipelineConfig,
    PipelineDependencies,
    PipelineRequest,
    create_orchestrator,
)
from src.orchestration.orchestrator import SpecPipelineOrchestrator
from tests.fakes import (
    FakeEventSink,
    InMemorySpecificationStore,
    RaisingEventSink,
    ScriptedOracle,
)
from tests.fakes import replies
from tests.fakes.replies import COMMAND

DOC_ID = "gym"


class SleepRecorder:
    """Backoff sleep that returns immediately and remembers the delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@dataclass
class RecordedSpan:
    name: str
    metadata: dict[str, Any] | None
    success: bool | None = None
    errors: list[str] = field(default_factory=list)

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc_info: object) -> None:
        pass

    def log_input(self, value: object) -> None:
        pass

    def log_output(self, value: object) -> None:
        pass

    def set_success(self, success: bool) -> None:
        self.success = success

    def set_error(self, error: str) -> None:
        self.errors.append(error)


@dataclass
class RecordingTelemetryProvider:
    spans: list[RecordedSpan] = field(default_factory=list)
    flushes: int = 0

    def is_enabled(self) -> bool:
        return True

    def create_span(
        self, name: str, metadata: dict[str, Any] | None = None
    ) -> RecordedSpan:
        span = RecordedSpan(name, metadata)
        self.spans.append(span)
        return span

    def flush(self) -> None:
        self.flushes += 1


@dataclass
class Harness:
    orchestrator: SpecPipelineOrchestrator
    oracle: ScriptedOracle
    store: InMemorySpecificationStore
    sink: FakeEventSink
    sleep: SleepRecorder
    runs_dir: Path


def _harness(
    tmp_path: Path,
    *,
    oracle: ScriptedOracle | None = None,
    store: InMemorySpecificationStore | None = None,
    sink: Any = None,  # noqa: ANN401
    config: PipelineConfig | None = None,
    telemetry: Any = None,  # noqa: ANN401
) -> Harness:
    oracle = oracle if oracle is not None else ScriptedOracle()
    store = store if store is not None else InMemorySpecificationStore()
    sink = sink if sink is not None else FakeEventSink()
    sleep = SleepRecorder()
    runs_dir = tmp_path / "runs"
    orchestrator = create_orchestrator(
        config or PipelineConfig(debug_logging=False),
        app_config=AgentSpecConfig(store_dir=tmp_path / "specs", runs_dir=runs_dir),
        deps=PipelineDependencies(
            oracle=oracle,
            store=store,
            event_sink=sink,
            telemetry_provider=telemetry or NullTelemetryProvider(),
            sleep=sleep,
            runs_dir=runs_dir,
        ),
    )
    return Harness(orchestrator, oracle, store, sink, sleep, runs_dir)


def _request(**kwargs: Any) -> PipelineRequest:  # noqa: ANN401
    return PipelineRequest(command=COMMAND, document_id=DOC_ID, **kwargs)


def _existing_spec() -> Specification:
    return Specification(
        id=DOC_ID,
        name="Fitness",
        domain="Fitness",
        created_at="2024-01-01T00:00:00+00:00",
        models=[
            Model(
                id="model-member",
                name="Member",
                display_fields=["name"],
                fields=[
                    make_id_field("model-member"),
                    Field(id="member-name", name="name", required=True),
                    Field(id="member-phone", name="phone"),
                ],
            )
        ],
        actions=[
            Action(id="action-export", name="Export Members", description="CSV export")
        ],
    )


@pytest.mark.unit
class TestSuccessfulRun:
    """A run fed only valid replies completes, merges and saves."""

    @pytest.mark.asyncio
    async def test_all_stages_complete_and_specification_is_saved(
        self, tmp_path: Path
    ) -> None:
        h = _harness(tmp_path)

        result = await h.orchestrator.run(_request())

        assert result.success is True
        assert result.errors == []
        assert all(r.status is StageStatus.COMPLETE for r in result.stages.values())
        assert h.oracle.stages_called == list(STAGE_ORDER)
        spec = result.specification
        assert spec is not None
        assert spec.id == DOC_ID
        assert [m.name for m in spec.models] == ["Member", "Booking"]
        assert [a.name for a in spec.actions] == ["Register Member"]
        assert [s.name for s in spec.schedules] == ["Expire Memberships"]
        finals = h.store.saves_of_kind(FINAL_KIND)
        assert len(finals) == 1
        assert finals[0].metadata["run_id"] == result.run_id
        assert h.store.documents[DOC_ID].models[0].name == "Member"

    @pytest.mark.asyncio
    async def test_clean_run_scores_full_quality(self, tmp_path: Path) -> None:
        h = _harness(tmp_path)

        result = await h.orchestrator.run(_request())

        assert result.overall_validation is not None
        assert result.overall_validation.passed is True
        assert result.quality_score == 100
        assert result.metrics.retry_count == 0
        assert result.metrics.total_attempts == 6

    @pytest.mark.asyncio
    async def test_new_document_reports_everything_as_added(self, tmp_path: Path) -> None:
        h = _harness(tmp_path)

        result = await h.orchestrator.run(_request())

        assert result.changes is not None
        assert result.changes.added["models"] == ["Member", "Booking"]
        assert result.changes.added["actions"] == ["Register Member"]
        assert result.changes.added["schedules"] == ["Expire Memberships"]

    @pytest.mark.asyncio
    async def test_saved_models_satisfy_id_invariants(self, tmp_path: Path) -> None:
        h = _harness(tmp_path)

        result = await h.orchestrator.run(_request())

        assert result.specification is not None
        for model in result.specification.models:
            assert model.fields[0].name == "id"
            assert sum(1 for f in model.fields if f.is_id) == 1
            assert len({f.id for f in model.fields}) == len(model.fields)

    @pytest.mark.asyncio
    async def test_example_records_are_attached(self, tmp_path: Path) -> None:
        h = _harness(tmp_path)

        result = await h.orchestrator.run(_request())

        assert result.specification is not None
        member = result.specification.models[0]
        assert [r.data for r in member.records] == [{"name": "Ada", "status": "active"}]
        assert member.records[0].id == f"{member.id}-record-1"

    @pytest.mark.asyncio
    async def test_later_stages_receive_prior_outputs(self, tmp_path: Path) -> None:
        h = _harness(tmp_path)

        await h.orchestrator.run(_request())

        models_call = next(c for c in h.oracle.calls if c.stage is StageId.MODELS)
        assert models_call.context["command"] == COMMAND
        assert "understanding_output" in models_call.context
        assert "design_insights" in models_call.context
        assert "implementation_guidance" in models_call.context
        actions_call = next(c for c in h.oracle.calls if c.stage is StageId.ACTIONS)
        assert [m["name"] for m in actions_call.context["available_models"]] == [
            "Member",
            "Booking",
        ]

    @pytest.mark.asyncio
    async def test_snapshot_saved_after_every_stage(self, tmp_path: Path) -> None:
        h = _harness(tmp_path)

        result = await h.orchestrator.run(_request())

        assert len(h.store.saves_of_kind(SNAPSHOT_KIND)) == len(STAGE_ORDER)
        snapshot = h.store.snapshots[DOC_ID]
        assert snapshot["run_id"] == result.run_id
        assert snapshot["command"] == COMMAND
        assert snapshot["completed_stages"] == [s.value for s in STAGE_ORDER]

    @pytest.mark.asyncio
    async def test_snapshots_disabled(self, tmp_path: Path) -> None:
        h = _harness(
            tmp_path, config=PipelineConfig(debug_logging=False, save_snapshots=False)
        )

        await h.orchestrator.run(_request())

        assert h.store.saves_of_kind(SNAPSHOT_KIND) == []

    @pytest.mark.asyncio
    async def test_run_metadata_written_to_runs_dir(self, tmp_path: Path) -> None:
        h = _harness(tmp_path)

        result = await h.orchestrator.run(_request())

        files = list(h.runs_dir.glob("*.json"))
        assert len(files) == 1
        metadata = PipelineRunMetadata.load(files[0])
        assert metadata.run_id == result.run_id
        assert metadata.config.document_id == DOC_ID
        assert metadata.result is not None
        assert metadata.result["success"] is True
        assert metadata.result["quality_score"] == 100
        assert metadata.stages["models"].status == "complete"
        assert metadata.stages["models"].validation_passed is True


@pytest.mark.unit
class TestEvents:
    """Progress events reach the sink in lifecycle order."""

    @pytest.mark.asyncio
    async def test_lifecycle_order(self, tmp_path: Path) -> None:
        h = _harness(tmp_path)

        await h.orchestrator.run(_request())

        assert h.sink.events[0] == "on_run_started"
        assert h.sink.events[-1] == "on_run_completed"
        assert h.sink.completed_stages() == list(STAGE_ORDER)
        assert h.sink.run_configs[0].document_id == DOC_ID
        success, quality, _duration, errors = h.sink.completions[0]
        assert success is True
        assert quality == 100
        assert errors == []

    @pytest.mark.asyncio
    async def test_each_stage_processes_before_completing(self, tmp_path: Path) -> None:
        h = _harness(tmp_path)

        await h.orchestrator.run(_request())

        for stage in STAGE_ORDER:
            statuses = h.sink.statuses_for(stage)
            assert statuses[0] is ProgressStatus.PROCESSING
            assert statuses[-1] is ProgressStatus.COMPLETE

    @pytest.mark.asyncio
    async def test_validation_results_are_reported(self, tmp_path: Path) -> None:
        h = _harness(tmp_path)

        await h.orchestrator.run(_request())

        assert [v[0] for v in h.sink.validations] == list(STAGE_ORDER)
        assert all(passed for _, passed, _ in h.sink.validations)

    @pytest.mark.asyncio
    async def test_raising_sink_does_not_stall_the_run(self, tmp_path: Path) -> None:
        h = _harness(tmp_path, sink=RaisingEventSink())

        result = await h.orchestrator.run(_request())

        assert result.success is True

    @pytest.mark.asyncio
    async def test_telemetry_spans_per_run_and_stage(self, tmp_path: Path) -> None:
        telemetry = RecordingTelemetryProvider()
        h = _harness(tmp_path, telemetry=telemetry)

        await h.orchestrator.run(_request())

        names = [span.name for span in telemetry.spans]
        assert names[0] == f"run:{DOC_ID}"
        assert names[1:] == [f"stage:{s.value}" for s in STAGE_ORDER]
        assert all(span.success for span in telemetry.spans)
        assert telemetry.flushes == 1


@pytest.mark.unit
class TestRetries:
    """Stage failures are retried under the configured policy."""

    @pytest.mark.asyncio
    async def test_model_generation_recovers_after_two_failures(
        self, tmp_path: Path
    ) -> None:
        h = _harness(tmp_path)
        h.oracle.fail(StageId.MODELS, times=2)

        result = await h.orchestrator.run(_request())

        record = result.stage(StageId.MODELS)
        assert result.success is True
        assert record.status is StageStatus.COMPLETE
        assert record.attempts == 3
        assert record.retry_count == 2
        assert result.metrics.retry_count == 2
        assert "Model Generation succeeded after 2 failed attempt(s)" in result.warnings

    @pytest.mark.asyncio
    async def test_retries_back_off_exponentially(self, tmp_path: Path) -> None:
        h = _harness(tmp_path)
        h.oracle.fail(StageId.MODELS, times=2)

        await h.orchestrator.run(_request())

        assert h.sleep.delays == [1.0, 2.0]
        assert [(r.attempt, r.max_attempts) for r in h.sink.retries] == [(1, 3), (2, 3)]
        assert all(r.stage is StageId.MODELS for r in h.sink.retries)

    @pytest.mark.asyncio
    async def test_retries_cost_performance_points(self, tmp_path: Path) -> None:
        h = _harness(tmp_path)
        h.oracle.fail(StageId.MODELS, times=2)

        result = await h.orchestrator.run(_request())

        assert result.quality_score == 90

    @pytest.mark.asyncio
    async def test_malformed_reply_is_retried(self, tmp_path: Path) -> None:
        h = _harness(tmp_path)
        h.oracle.queue(StageId.DESIGN, {"not_a_design": True})

        result = await h.orchestrator.run(_request())

        assert result.success is True
        assert result.stage(StageId.DESIGN).retry_count == 1
        assert "technical_requirements" in h.sink.retries[0].error

    @pytest.mark.asyncio
    async def test_exhausted_stage_halts_the_run(self, tmp_path: Path) -> None:
        h = _harness(tmp_path)
        h.oracle.fail_always(StageId.MODELS)

        result = await h.orchestrator.run(_request())

        record = result.stage(StageId.MODELS)
        assert result.success is False
        assert record.status is StageStatus.FAILED
        assert record.attempts == 3
        assert h.oracle.call_count(StageId.MODELS) == 3
        assert h.oracle.call_count(StageId.ACTIONS) == 0
        assert result.stage(StageId.ACTIONS).status is StageStatus.PENDING
        assert result.errors[0].startswith("Stage 'models' failed after 3 attempt(s)")

    @pytest.mark.asyncio
    async def test_failed_run_reports_partial_specification_unsaved(
        self, tmp_path: Path
    ) -> None:
        h = _harness(tmp_path)
        h.oracle.fail_always(StageId.MODELS)

        result = await h.orchestrator.run(_request())

        assert result.specification is not None
        assert result.specification.models == []
        assert result.specification.description == replies.UNDERSTANDING[
            "user_request_analysis"
        ]["main_goal"]
        assert h.store.saves_of_kind(FINAL_KIND) == []
        assert DOC_ID not in h.store.documents

    @pytest.mark.asyncio
    async def test_without_halting_dependent_stages_are_skipped(
        self, tmp_path: Path
    ) -> None:
        config = PipelineConfig(debug_logging=False, halt_on_stage_failure=False)
        h = _harness(tmp_path, config=config)
        h.oracle.fail_always(StageId.MODELS)

        result = await h.orchestrator.run(_request())

        assert result.stage(StageId.ACTIONS).status is StageStatus.SKIPPED
        assert result.stage(StageId.SCHEDULES).status is StageStatus.SKIPPED
        assert result.stage(StageId.ACTIONS).error == "requires Model Generation"
        assert "Action Generation skipped: requires Model Generation" in result.warnings
        assert result.success is False

    @pytest.mark.asyncio
    async def test_no_usable_output_when_understanding_fails(
        self, tmp_path: Path
    ) -> None:
        config = PipelineConfig(debug_logging=False, halt_on_stage_failure=False)
        h = _harness(tmp_path, config=config)
        h.oracle.fail_always(StageId.UNDERSTANDING)

        result = await h.orchestrator.run(_request())

        assert result.specification is None
        assert all(
            result.stage(s).status is StageStatus.SKIPPED for s in STAGE_ORDER[1:]
        )
        assert h.oracle.stages_called == [StageId.UNDERSTANDING] * 3

    @pytest.mark.asyncio
    async def test_fast_preset_does_not_retry(self, tmp_path: Path) -> None:
        config = PipelineConfig.from_preset("fast", debug_logging=False)
        h = _harness(tmp_path, config=config)
        h.oracle.fail(StageId.MODELS, times=1)

        result = await h.orchestrator.run(_request())

        assert result.success is False
        assert result.stage(StageId.MODELS).attempts == 1
        assert h.sleep.delays == []


@pytest.mark.unit
class TestValidation:
    """Stage validation either stops the run or downgrades to warnings."""

    @pytest.mark.asyncio
    async def test_failed_validation_stops_the_run_by_default(
        self, tmp_path: Path
    ) -> None:
        h = _harness(tmp_path)
        h.oracle.queue(StageId.STRATEGY, replies.reply(StageId.STRATEGY, confidence=10))

        result = await h.orchestrator.run(_request())

        record = result.stage(StageId.STRATEGY)
        assert result.success is False
        assert record.status is StageStatus.FAILED
        assert record.error == "Strategy Decision validation failed: Low confidence level: 10%"
        assert h.oracle.call_count(StageId.DESIGN) == 0
        assert ProgressStatus.ERROR in h.sink.statuses_for(StageId.STRATEGY)
        assert (StageId.STRATEGY, False, ["Low confidence level: 10%"]) in h.sink.validations

    @pytest.mark.asyncio
    async def test_failed_validation_is_a_warning_when_not_stopping(
        self, tmp_path: Path
    ) -> None:
        config = PipelineConfig(debug_logging=False, stop_on_validation_failure=False)
        h = _harness(tmp_path, config=config)
        h.oracle.queue(StageId.STRATEGY, replies.reply(StageId.STRATEGY, confidence=10))

        result = await h.orchestrator.run(_request())

        assert result.success is True
        assert result.stage(StageId.STRATEGY).status is StageStatus.COMPLETE
        assert (
            "Strategy Decision validation failed: Low confidence level: 10%"
            in result.warnings
        )
        # 6 of 7 checks pass (5 stages plus the lenient overall rule)
        assert result.quality_score == 94

    @pytest.mark.asyncio
    async def test_disabled_validation_and_insights(self, tmp_path: Path) -> None:
        config = PipelineConfig.from_preset("fast", debug_logging=False)
        h = _harness(tmp_path, config=config)
        h.oracle.queue(StageId.STRATEGY, replies.reply(StageId.STRATEGY, confidence=10))

        result = await h.orchestrator.run(_request())

        assert result.success is True
        assert result.validation_results == {}
        assert h.sink.validations == []
        assert result.stage(StageId.UNDERSTANDING).insights == UnderstandingInsights()


@pytest.mark.unit
class TestCancellation:
    """Cancellation is cooperative and reported, never raised."""

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, tmp_path: Path) -> None:
        h = _harness(tmp_path)
        cancel = asyncio.Event()
        cancel.set()

        result = await h.orchestrator.run(_request(cancel_event=cancel))

        assert result.cancelled is True
        assert result.success is False
        assert h.oracle.calls == []
        assert result.errors[0] == "Run cancelled before Understanding"

    @pytest.mark.asyncio
    async def test_cancelled_during_a_stage_discards_its_output(
        self, tmp_path: Path
    ) -> None:
        h = _harness(tmp_path)
        cancel = asyncio.Event()
        h.oracle.hooks[StageId.STRATEGY] = cancel.set

        result = await h.orchestrator.run(_request(cancel_event=cancel))

        record = result.stage(StageId.STRATEGY)
        assert result.cancelled is True
        assert record.status is StageStatus.FAILED
        assert record.output is None
        assert h.oracle.call_count(StageId.DESIGN) == 0
        assert h.store.saves_of_kind(FINAL_KIND) == []
        assert h.sink.completions[0][0] is False


@pytest.mark.unit
class TestResume:
    """Resuming restores the completed prefix of a previous run."""

    @pytest.mark.asyncio
    async def test_resume_skips_completed_stages(self, tmp_path: Path) -> None:
        h = _harness(tmp_path)
        h.store.snapshots[DOC_ID] = {
            "kind": SNAPSHOT_KIND,
            "command": COMMAND,
            "outputs": {
                "understanding": replies.UNDERSTANDING,
                "strategy": replies.STRATEGY,
                "design": replies.DESIGN,
            },
        }

        result = await h.orchestrator.run(_request(resume=True))

        assert result.success is True
        assert h.oracle.stages_called == [StageId.MODELS, StageId.ACTIONS, StageId.SCHEDULES]
        restored = result.stage(StageId.DESIGN)
        assert restored.restored is True
        assert restored.attempts == 0
        assert restored.validation is not None and restored.validation.passed
        assert result.quality_score == 100

    @pytest.mark.asyncio
    async def test_resume_restores_only_a_contiguous_prefix(self, tmp_path: Path) -> None:
        h = _harness(tmp_path)
        h.store.snapshots[DOC_ID] = {
            "command": COMMAND,
            "outputs": {
                "understanding": replies.UNDERSTANDING,
                "design": replies.DESIGN,
            },
        }

        await h.orchestrator.run(_request(resume=True))

        assert h.oracle.stages_called == list(STAGE_ORDER[1:])

    @pytest.mark.asyncio
    async def test_resume_ignores_snapshot_of_another_command(
        self, tmp_path: Path
    ) -> None:
        h = _harness(tmp_path)
        h.store.snapshots[DOC_ID] = {
            "command": "Something else entirely",
            "outputs": {"understanding": replies.UNDERSTANDING},
        }

        result = await h.orchestrator.run(_request(resume=True))

        assert h.oracle.stages_called == list(STAGE_ORDER)
        assert any("different command" in w for w in result.warnings)

    @pytest.mark.asyncio
    async def test_resume_without_snapshot_starts_over(self, tmp_path: Path) -> None:
        h = _harness(tmp_path)

        result = await h.orchestrator.run(_request(resume=True))

        assert result.success is True
        assert h.oracle.stages_called == list(STAGE_ORDER)
        assert any("No snapshot to resume from" in w for w in result.warnings)

    @pytest.mark.asyncio
    async def test_unparseable_snapshot_output_is_rerun(self, tmp_path: Path) -> None:
        h = _harness(tmp_path)
        h.store.snapshots[DOC_ID] = {
            "command": COMMAND,
            "outputs": {
                "understanding": replies.UNDERSTANDING,
                "strategy": {"confidence": 90},
            },
        }

        result = await h.orchestrator.run(_request(resume=True))

        assert h.oracle.stages_called == list(STAGE_ORDER[1:])
        assert any("Snapshot output unusable" in w for w in result.warnings)


@pytest.mark.unit
class TestExistingSpecification:
    """Runs against a stored document merge instead of replacing it."""

    @pytest.mark.asyncio
    async def test_update_keeps_identities_and_recovers_omissions(
        self, tmp_path: Path
    ) -> None:
        store = InMemorySpecificationStore()
        store.put(_existing_spec())
        h = _harness(tmp_path, store=store)

        result = await h.orchestrator.run(_request())

        spec = result.specification
        assert result.success is True
        assert spec is not None
        member = spec.model_named("Member")
        assert member is not None
        assert member.id == "model-member"
        assert [f.name for f in member.fields] == [
            "id",
            "name",
            "phone",
            "status",
            "createdAt",
        ]
        phone = member.field_named("Phone")
        assert phone is not None
        assert phone.id == "member-phone"
        assert [a.name for a in spec.actions] == ["Export Members", "Register Member"]
        assert spec.created_at == "2024-01-01T00:00:00+00:00"
        assert (
            "Recovered action 'Export Members' omitted by the new specification"
            in result.warnings
        )
        assert result.changes is not None
        assert result.changes.updated["models"] == ["Member"]
        assert result.changes.recovered["actions"] == ["Export Members"]

    @pytest.mark.asyncio
    async def test_update_context_includes_existing_specification(
        self, tmp_path: Path
    ) -> None:
        store = InMemorySpecificationStore()
        store.put(_existing_spec())
        h = _harness(tmp_path, store=store)

        await h.orchestrator.run(_request())

        understanding_call = h.oracle.calls[0]
        assert understanding_call.context["is_update"] is True
        assert understanding_call.context["existing_specification"]["actions"] == [
            "Export Members"
        ]

    @pytest.mark.asyncio
    async def test_explicit_deletion_removes_existing_action(
        self, tmp_path: Path
    ) -> None:
        store = InMemorySpecificationStore()
        store.put(_existing_spec())
        h = _harness(tmp_path, store=store)

        result = await h.orchestrator.run(
            _request(deletions=DeletionInstruction(actions=["export members"]))
        )

        assert result.specification is not None
        assert [a.name for a in result.specification.actions] == ["Register Member"]
        assert result.changes is not None
        assert result.changes.deleted["actions"] == ["Export Members"]
        assert not any("Recovered action" in w for w in result.warnings)


@pytest.mark.unit
class TestStoreFailures:
    """Store failures become errors or warnings, never exceptions."""

    @pytest.mark.asyncio
    async def test_unreadable_document_aborts_before_any_stage(
        self, tmp_path: Path
    ) -> None:
        h = _harness(tmp_path, store=InMemorySpecificationStore(fail_get=True))

        result = await h.orchestrator.run(_request())

        assert result.success is False
        assert h.oracle.calls == []
        assert result.errors[0].startswith(f"Failed to load specification '{DOC_ID}'")

    @pytest.mark.asyncio
    async def test_final_save_failure_fails_the_run(self, tmp_path: Path) -> None:
        h = _harness(tmp_path, store=InMemorySpecificationStore(fail_final_save=True))

        result = await h.orchestrator.run(_request())

        assert result.success is False
        assert all(r.status is StageStatus.COMPLETE for r in result.stages.values())
        assert f"Failed to save specification '{DOC_ID}': disk full" in result.errors

    @pytest.mark.asyncio
    async def test_snapshot_failure_is_only_a_warning(self, tmp_path: Path) -> None:
        h = _harness(
            tmp_path, store=InMemorySpecificationStore(fail_snapshot_save=True)
        )

        result = await h.orchestrator.run(_request())

        assert result.success is True
        assert (
            "Snapshot after Understanding not saved: snapshot disk full"
            in result.warnings
        )

    @pytest.mark.asyncio
    async def test_unexpected_error_is_reported(self, tmp_path: Path) -> None:
        class BrokenStore(InMemorySpecificationStore):
            async def get(self, document_id: str) -> Specification | None:
                raise RuntimeError("connection reset")

        h = _harness(tmp_path, store=BrokenStore())

        result = await h.orchestrator.run(_request())

        assert result.success is False
        assert result.errors == ["Unexpected pipeline error: connection reset"]
        assert h.sink.events[-1] == "on_run_completed"
        assert list(h.runs_dir.glob("*.json"))
