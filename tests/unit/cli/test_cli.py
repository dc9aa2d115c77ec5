"""Unit tests for the agentspec CLI commands."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import pytest
import typer
from typer.testing import CliRunner

from src.cli.cli import app, load_deletions
from src.core.models import Model, Specification
from src.infra.io.store import FileSpecificationStore
from src.orchestration.result import PipelineResult

if TYPE_CHECKING:
    from pathlib import Path

    from src.orchestration.types import PipelineConfig, PipelineRequest

runner = CliRunner()


def _gym() -> Specification:
    return Specification(
        id="gym",
        name="Gym",
        description="Memberships and classes",
        models=[Model(id="model-1", name="Member"), Model(id="model-2", name="Booking")],
    )


@dataclass
class StubOrchestrator:
    result: PipelineResult
    requests: list[PipelineRequest] = field(default_factory=list)

    async def run(self, request: PipelineRequest) -> PipelineResult:
        self.requests.append(request)
        return self.result


@pytest.fixture
def dirs(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("AGENTSPEC_STORE_DIR", str(tmp_path / "specs"))
    monkeypatch.setenv("AGENTSPEC_RUNS_DIR", str(tmp_path / "runs"))
    monkeypatch.delenv("AGENTSPEC_PRESET", raising=False)
    monkeypatch.delenv("AGENTSPEC_MAX_ATTEMPTS", raising=False)
    return tmp_path


def _stub(
    monkeypatch: pytest.MonkeyPatch, result: PipelineResult
) -> tuple[StubOrchestrator, list[PipelineConfig]]:
    orchestrator = StubOrchestrator(result)
    configs: list[PipelineConfig] = []

    def factory(config: PipelineConfig, **kwargs: Any) -> StubOrchestrator:  # noqa: ANN401
        configs.append(config)
        return orchestrator

    monkeypatch.setattr("src.cli.cli.create_orchestrator", factory)
    return orchestrator, configs


@pytest.mark.unit
class TestGenerate:
    def test_success_prints_summary(
        self, dirs: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        orchestrator, configs = _stub(
            monkeypatch,
            PipelineResult(
                success=True, run_id="r", document_id="gym", specification=_gym()
            ),
        )

        result = runner.invoke(
            app, ["Track gym memberships", "--doc-id", "gym", "--preset", "robust"]
        )

        assert result.exit_code == 0, result.output
        assert "Gym (gym)" in result.output
        assert "Models (2): Member, Booking" in result.output
        assert "Actions (0): none" in result.output
        (request,) = orchestrator.requests
        assert request.command == "Track gym memberships"
        assert request.document_id == "gym"
        assert request.deletions is None
        assert request.cancel_event is not None
        assert configs[0].preset == "robust"
        assert configs[0].cli_args is not None
        assert configs[0].cli_args["preset"] == "robust"

    def test_failure_exit_code(
        self, dirs: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        _stub(monkeypatch, PipelineResult(success=False, run_id="r", document_id="gym"))

        result = runner.invoke(app, ["x", "--doc-id", "gym"])

        assert result.exit_code == 1

    def test_cancelled_exit_code(
        self, dirs: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        _stub(
            monkeypatch,
            PipelineResult(success=False, run_id="r", document_id="gym", cancelled=True),
        )

        result = runner.invoke(app, ["x", "--doc-id", "gym"])

        assert result.exit_code == 130

    def test_json_report(self, dirs: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        _stub(
            monkeypatch,
            PipelineResult(
                success=True, run_id="r", document_id="gym", specification=_gym()
            ),
        )

        result = runner.invoke(app, ["x", "--doc-id", "gym", "--json"])

        report = json.loads(result.output)
        assert report["success"] is True
        assert report["specification"]["models"][0]["name"] == "Member"
        assert set(report["stages"]) == {
            "understanding",
            "strategy",
            "design",
            "models",
            "actions",
            "schedules",
        }

    def test_deletions_file_and_resume(
        self, dirs: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        orchestrator, _ = _stub(
            monkeypatch, PipelineResult(success=True, run_id="r", document_id="gym")
        )
        deletions = dirs / "deletions.yaml"
        deletions.write_text("models: [Legacy]\nfields:\n  Member: [nickname]\n")

        result = runner.invoke(
            app,
            ["x", "--doc-id", "gym", "--deletions", str(deletions), "--resume"],
        )

        assert result.exit_code == 0, result.output
        (request,) = orchestrator.requests
        assert request.resume is True
        assert request.deletions is not None
        assert request.deletions.models == ["Legacy"]
        assert request.deletions.fields == {"Member": ["nickname"]}

    def test_invalid_max_attempts(
        self, dirs: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        orchestrator, _ = _stub(
            monkeypatch, PipelineResult(success=True, run_id="r", document_id="gym")
        )

        result = runner.invoke(app, ["x", "--doc-id", "gym", "--max-attempts", "0"])

        assert result.exit_code == 1
        assert "max_attempts must be >= 1" in result.output
        assert orchestrator.requests == []


@pytest.mark.unit
class TestLoadDeletions:
    def test_json_file(self, tmp_path: Path) -> None:
        path = tmp_path / "deletions.json"
        path.write_text(json.dumps({"actions": ["Export"], "enums": {"Member": ["tier"]}}))

        deletions = load_deletions(path)

        assert deletions.actions == ["Export"]
        assert deletions.enums == {"Member": ["tier"]}

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "deletions.yaml"
        path.write_text("")

        assert load_deletions(path).is_empty

    def test_non_mapping_is_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "deletions.yaml"
        path.write_text("- Legacy\n")

        with pytest.raises(typer.BadParameter, match="must contain a mapping"):
            load_deletions(path)


@pytest.mark.unit
class TestShowPresetsRuns:
    def test_show_stored_spec(self, dirs: Path) -> None:
        store = FileSpecificationStore(dirs / "specs")
        asyncio.run(store.save("gym", _gym(), {"kind": "final"}))

        result = runner.invoke(app, ["show", "gym"])

        assert result.exit_code == 0, result.output
        assert "Gym (gym)" in result.output
        assert "Memberships and classes" in result.output

    def test_show_json(self, dirs: Path) -> None:
        store = FileSpecificationStore(dirs / "specs")
        asyncio.run(store.save("gym", _gym(), {"kind": "final"}))

        result = runner.invoke(app, ["show", "gym", "--json"])

        assert json.loads(result.output)["id"] == "gym"

    def test_show_missing(self, dirs: Path) -> None:
        result = runner.invoke(app, ["show", "nope"])

        assert result.exit_code == 1
        assert "No specification named 'nope'" in result.output

    def test_presets(self) -> None:
        result = runner.invoke(app, ["presets"])

        assert result.exit_code == 0
        assert "fast: attempts=1 validation=off" in result.output
        assert "robust: attempts=3" in result.output
        assert "Understanding → Strategy Decision" in result.output

    def test_runs_empty(self, dirs: Path) -> None:
        result = runner.invoke(app, ["runs"])

        assert result.exit_code == 0
        assert "No runs in" in result.output
