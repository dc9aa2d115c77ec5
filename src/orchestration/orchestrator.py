"""SpecPipelineOrchestrator: runs the six generation stages and the merge.

Stages run strictly in order on the caller's task. Each stage goes through
the retry controller, then its validator and insight extractor; completed
stages are snapshotted through the store so an interrupted run can resume.
After the last stage the incoming specification is assembled, merged with
the stored one, scored, and saved.

``run()`` always returns a PipelineResult. Only ``asyncio.CancelledError``
raised into the caller's own task propagates.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import TYPE_CHECKING, Any

from src import __version__
from src.core.errors import StageOutputError, StoreError
from src.core.protocols import (
    FINAL_KIND,
    SNAPSHOT_KIND,
    EventRunConfig,
    ProgressEvent,
)
from src.core.stages import (
    STAGE_ORDER,
    STAGE_REQUIREMENTS,
    ProgressStatus,
    StageId,
    StageStatus,
)
from src.domain.assembly import assemble_specification, utc_now
from src.domain.merge import merge_specifications
from src.domain.quality import compute_quality_score
from src.domain.stages import StageInputs
from src.infra.io.base_sink import GuardedEventSink
from src.infra.io.log_output.run_metadata import (
    PipelineRunMetadata,
    RunConfig,
    StageRun,
)
from src.pipeline.retry_policy import RetryController
from src.pipeline.stage_executor import StageExecutor

from .result import PipelineResult

if TYPE_CHECKING:
    from pathlib import Path

    from src.core.models import Specification
    from src.core.protocols import (
        GenerationOracle,
        ProgressSink,
        SpecificationStore,
        TelemetryProvider,
    )
    from src.pipeline.retry_policy import SleepFn

    from .result import StageRecord
    from .types import PipelineConfig, PipelineRequest

logger = logging.getLogger(__name__)


class SpecPipelineOrchestrator:
    """Coordinates one or more pipeline runs against shared collaborators.

    Use create_orchestrator() to build one with default implementations.
    """

    def __init__(
        self,
        *,
        config: PipelineConfig,
        oracle: GenerationOracle,
        store: SpecificationStore,
        event_sink: ProgressSink,
        telemetry_provider: TelemetryProvider,
        sleep: SleepFn = asyncio.sleep,
        runs_dir: Path | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self.event_sink = GuardedEventSink(event_sink)
        self.telemetry_provider = telemetry_provider
        self.executor = StageExecutor(
            oracle, timeout_seconds=config.oracle_timeout_seconds
        )
        self._sleep = sleep
        self._runs_dir = runs_dir

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(self, request: PipelineRequest) -> PipelineResult:
        """Run the pipeline for ``request`` and return its report."""
        run_id = str(uuid.uuid4())
        started = time.monotonic()
        result = PipelineResult(
            success=False, run_id=run_id, document_id=request.document_id
        )
        run_config = self._build_event_run_config(run_id, request)
        self.event_sink.on_run_started(run_config)
        metadata = PipelineRunMetadata(
            self._build_run_config(run_config),
            __version__,
            self._runs_dir,
            run_id=run_id,
            debug_logging=self.config.debug_logging,
        )
        logger.info(
            "Run %s started for %s (preset=%s)",
            run_id[:8],
            request.document_id,
            self.config.preset,
        )

        try:
            span_metadata = {"run_id": run_id, "document_id": request.document_id}
            with self.telemetry_provider.create_span(
                f"run:{request.document_id}", span_metadata
            ) as span:
                span.log_input(request.command)
                await self._run_pipeline(request, result, started)
                span.log_output(
                    {"success": result.success, "quality_score": result.quality_score}
                )
                span.set_success(result.success)
                if result.errors:
                    span.set_error("; ".join(result.errors))
        except Exception as e:
            logger.exception("Run %s failed unexpectedly", run_id[:8])
            result.success = False
            result.errors.append(f"Unexpected pipeline error: {e}")
        finally:
            self._record_metrics(result, started)
            self._save_run_metadata(metadata, result)

        self.telemetry_provider.flush()
        self.event_sink.on_run_completed(
            result.success,
            result.quality_score,
            result.metrics.total_duration_ms,
            list(result.errors),
        )
        logger.info(
            "Run %s finished: success=%s quality=%s",
            run_id[:8],
            result.success,
            result.quality_score,
        )
        return result

    # ------------------------------------------------------------------
    # Run phases
    # ------------------------------------------------------------------

    async def _run_pipeline(
        self, request: PipelineRequest, result: PipelineResult, started: float
    ) -> None:
        try:
            existing = await self.store.get(request.document_id)
        except StoreError as e:
            result.errors.append(
                f"Failed to load specification '{request.document_id}': {e}"
            )
            return

        restored = await self._load_snapshot(request, result)
        inputs = StageInputs(command=request.command, existing=existing)
        controller = RetryController(
            self.config.retry_policy,
            sink=self.event_sink,
            cancel_event=request.cancel_event,
            sleep=self._sleep,
        )

        for stage in STAGE_ORDER:
            record = result.stages[stage]
            if request.cancel_event is not None and request.cancel_event.is_set():
                result.cancelled = True
                result.errors.append(f"Run cancelled before {stage.title}")
                break
            if stage in restored:
                self._restore_stage(record, restored[stage], inputs)
                continue
            unmet = [
                required.title
                for required in STAGE_REQUIREMENTS[stage]
                if result.stages[required].status is not StageStatus.COMPLETE
            ]
            if unmet:
                record.status = StageStatus.SKIPPED
                record.error = f"requires {', '.join(unmet)}"
                self._warn(result, f"{stage.title} skipped: {record.error}", stage)
                continue
            if await self._execute_stage(stage, record, inputs, controller, result):
                break
            if self.config.save_snapshots:
                await self._save_snapshot(request, result, inputs, stage)

        completed = all(
            record.status is StageStatus.COMPLETE for record in result.stages.values()
        )
        if StageId.UNDERSTANDING in inputs.outputs:
            incoming = assemble_specification(
                inputs.outputs,
                existing,
                request.command,
                document_id=request.document_id,
                insights=inputs.insights,
            )
        else:
            incoming = None
            if not result.errors:
                result.errors.append("No usable output: request analysis did not complete")

        if completed and incoming is not None:
            merge = merge_specifications(
                existing,
                incoming,
                request.deletions,
                policy=self.config.merge_policy,
            )
            for warning in merge.warnings:
                self._warn(result, warning)
            result.specification = merge.specification
            result.changes = merge.changes
        else:
            # Partial output of a failed run is reported but never saved
            result.specification = incoming

        overall = self.config.validation_policy.evaluate(result.validation_results)
        result.overall_validation = overall
        if not overall.passed:
            self._warn(result, "Overall validation failed: " + "; ".join(overall.reasons))

        self._record_metrics(result, started)
        result.quality = compute_quality_score(
            stage_results=result.validation_results.values(),
            overall=overall,
            specification=result.specification,
            actions=inputs.outputs.get(StageId.ACTIONS),
            schedules=inputs.outputs.get(StageId.SCHEDULES),
            duration_seconds=(time.monotonic() - started),
            retry_count=result.metrics.retry_count,
        )

        if completed and result.specification is not None:
            result.success = await self._save_final(request, result, result.specification)

    async def _execute_stage(
        self,
        stage: StageId,
        record: StageRecord,
        inputs: StageInputs,
        controller: RetryController,
        result: PipelineResult,
    ) -> bool:
        """Run one stage to a terminal state. Returns True when the run must halt."""
        definition = self.executor.definition(stage)
        record.status = StageStatus.PROCESSING
        span_metadata = {"run_id": result.run_id, "stage": stage.value}
        with self.telemetry_provider.create_span(
            f"stage:{stage.value}", span_metadata
        ) as span:
            span.log_input({"stage": stage.value, "command": inputs.command})
            outcome = await controller.run(
                stage, lambda _attempt: self.executor.execute(stage, inputs)
            )
            record.attempts = outcome.attempts
            record.retry_count = outcome.retry_count
            record.duration_ms = outcome.duration_ms

            if outcome.error is not None:
                record.status = StageStatus.FAILED
                record.error = str(outcome.error)
                span.set_error(record.error)
                result.errors.append(record.error)
                if outcome.cancelled:
                    result.cancelled = True
                    return True
                return self.config.halt_on_stage_failure

            output = outcome.value
            record.output = output
            if outcome.retry_count:
                self._warn(
                    result,
                    f"{stage.title} succeeded after {outcome.retry_count} "
                    "failed attempt(s)",
                    stage,
                )

            if self.config.validation_enabled:
                validation = definition.validate(output)
                record.validation = validation
                self.event_sink.on_validation_result(
                    stage, validation.passed, list(validation.reasons)
                )
                if not validation.passed:
                    message = (
                        f"{stage.title} validation failed: "
                        + "; ".join(validation.reasons)
                    )
                    if self.config.stop_on_validation_failure:
                        record.status = StageStatus.FAILED
                        record.error = message
                        result.errors.append(message)
                        span.set_error(message)
                        self._emit(stage, ProgressStatus.ERROR, message)
                        return True
                    self._warn(result, message, stage)

            insights = (
                definition.extract_insights(output)
                if self.config.insights_enabled
                else definition.neutral_insights()
            )
            self._complete_stage(record, output, insights, inputs)
            self._emit(
                stage, ProgressStatus.COMPLETE, f"{stage.title}: {insights.summary()}"
            )
            span.log_output(output.to_dict())
            span.set_success(True)
        return False

    def _complete_stage(
        self, record: StageRecord, output: Any, insights: Any, inputs: StageInputs  # noqa: ANN401
    ) -> None:
        record.output = output
        record.insights = insights
        record.status = StageStatus.COMPLETE
        inputs.outputs[record.stage] = output
        inputs.insights[record.stage] = insights

    def _restore_stage(self, record: StageRecord, output: Any, inputs: StageInputs) -> None:  # noqa: ANN401
        definition = self.executor.definition(record.stage)
        if self.config.validation_enabled:
            record.validation = definition.validate(output)
        insights = (
            definition.extract_insights(output)
            if self.config.insights_enabled
            else definition.neutral_insights()
        )
        record.restored = True
        self._complete_stage(record, output, insights, inputs)
        self._emit(
            record.stage,
            ProgressStatus.COMPLETE,
            f"{record.stage.title}: restored from snapshot",
        )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def _load_snapshot(
        self, request: PipelineRequest, result: PipelineResult
    ) -> dict[StageId, Any]:
        """Parse the completed stage outputs of a previous run, in order."""
        if not request.resume:
            return {}
        try:
            snapshot = await self.store.load_snapshot(request.document_id)
        except StoreError as e:
            self._warn(result, f"Cannot resume, snapshot unreadable: {e}")
            return {}
        if snapshot is None:
            self._warn(result, "No snapshot to resume from; starting from the first stage")
            return {}
        if snapshot.get("command") != request.command:
            self._warn(
                result,
                "Snapshot belongs to a different command; starting from the first stage",
            )
            return {}

        outputs = snapshot.get("outputs")
        restored: dict[StageId, Any] = {}
        if not isinstance(outputs, dict):
            return restored
        for stage in STAGE_ORDER:
            raw = outputs.get(stage.value)
            if not isinstance(raw, dict):
                break
            try:
                restored[stage] = self.executor.definition(stage).parse(raw)
            except StageOutputError as e:
                self._warn(result, f"Snapshot output unusable, re-running: {e}", stage)
                break
        logger.info(
            "Resuming %s with %d restored stage(s)", request.document_id, len(restored)
        )
        return restored

    async def _save_snapshot(
        self,
        request: PipelineRequest,
        result: PipelineResult,
        inputs: StageInputs,
        stage: StageId,
    ) -> None:
        partial = assemble_specification(
            inputs.outputs,
            inputs.existing,
            request.command,
            document_id=request.document_id,
            insights=inputs.insights,
        )
        metadata = {
            "kind": SNAPSHOT_KIND,
            "run_id": result.run_id,
            "command": request.command,
            "completed_stages": [s.value for s in inputs.outputs],
            "outputs": {s.value: output.to_dict() for s, output in inputs.outputs.items()},
            "saved_at": utc_now(),
        }
        try:
            await self.store.save(request.document_id, partial, metadata)
        except StoreError as e:
            self._warn(result, f"Snapshot after {stage.title} not saved: {e}", stage)

    async def _save_final(
        self,
        request: PipelineRequest,
        result: PipelineResult,
        specification: Specification,
    ) -> bool:
        metadata = {
            "kind": FINAL_KIND,
            "run_id": result.run_id,
            "command": request.command,
            "quality_score": result.quality_score,
            "changes": result.changes.to_dict() if result.changes else None,
            "saved_at": utc_now(),
        }
        try:
            await self.store.save(request.document_id, specification, metadata)
        except StoreError as e:
            result.errors.append(
                f"Failed to save specification '{request.document_id}': {e}"
            )
            return False
        return True

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def _emit(self, stage: StageId, status: ProgressStatus, message: str) -> None:
        self.event_sink.on_progress(
            ProgressEvent(stage=stage, status=status, message=message)
        )

    def _warn(
        self, result: PipelineResult, message: str, stage: StageId | None = None
    ) -> None:
        result.warnings.append(message)
        self.event_sink.on_warning(message, stage)

    def _record_metrics(self, result: PipelineResult, started: float) -> None:
        metrics = result.metrics
        metrics.total_duration_ms = int((time.monotonic() - started) * 1000)
        metrics.stage_durations_ms = {
            stage.value: record.duration_ms
            for stage, record in result.stages.items()
            if record.attempts
        }
        metrics.total_attempts = sum(r.attempts for r in result.stages.values())
        metrics.retry_count = sum(r.retry_count for r in result.stages.values())

    def _build_event_run_config(
        self, run_id: str, request: PipelineRequest
    ) -> EventRunConfig:
        return EventRunConfig(
            run_id=run_id,
            document_id=request.document_id,
            command=request.command,
            preset=self.config.preset,
            max_attempts=self.config.retry_policy.max_attempts,
            validation_enabled=self.config.validation_enabled,
            insights_enabled=self.config.insights_enabled,
            stop_on_validation_failure=self.config.stop_on_validation_failure,
            resume=request.resume,
            braintrust_enabled=self.config.braintrust_enabled,
            cli_args=self.config.cli_args,
        )

    @staticmethod
    def _build_run_config(config: EventRunConfig) -> RunConfig:
        return RunConfig(
            document_id=config.document_id,
            command=config.command,
            preset=config.preset,
            max_attempts=config.max_attempts,
            validation_enabled=config.validation_enabled,
            insights_enabled=config.insights_enabled,
            stop_on_validation_failure=config.stop_on_validation_failure,
            resume=config.resume,
            braintrust_enabled=config.braintrust_enabled,
            cli_args=config.cli_args,
        )

    def _save_run_metadata(
        self, metadata: PipelineRunMetadata, result: PipelineResult
    ) -> None:
        for record in result.stages.values():
            metadata.record_stage(
                StageRun(
                    stage=record.stage.value,
                    status=record.status.value,
                    attempts=record.attempts,
                    duration_ms=record.duration_ms,
                    validation_passed=record.validation.passed
                    if record.validation
                    else None,
                    validation_reasons=list(record.validation.reasons)
                    if record.validation
                    else [],
                    insight_summary=record.insights.summary()
                    if record.insights
                    else None,
                    error=record.error,
                )
            )
        metadata.record_result(
            success=result.success,
            quality_score=result.quality_score,
            errors=result.errors,
            warnings=result.warnings,
            changes=result.changes.to_dict() if result.changes else None,
        )
        try:
            path = metadata.save()
        except OSError as e:
            metadata.cleanup()
            logger.warning("Could not save run metadata: %s", e)
            return
        logger.debug("Run metadata saved to %s", path)
