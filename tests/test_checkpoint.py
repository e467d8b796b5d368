from __future__ import annotations

import json
from pathlib import Path

import allure
import pytest

from refactor_pilot.backlog import summarize_backlog
from refactor_pilot.checkpoint import Checkpoint, CheckpointStore
from refactor_pilot.context import ExecutionSettings
from refactor_pilot.scan import scan_repository

pytestmark = [
    allure.epic("Pass Controller"),
    allure.feature("Resume Checkpoint"),
]


def _save(store: CheckpointStore, repo: Path, **overrides) -> Checkpoint:
    scan = scan_repository(repo, 100)
    values = {
        "planned_passes": 3,
        "next_pass": 2,
        "max_files": 100,
        "scan": scan,
        "backlog": summarize_backlog(scan),
        "execution": ExecutionSettings(provider="codex", max_workers=4, notes="keep API"),
    }
    values.update(overrides)
    return store.save(**values)


def test_checkpoint_round_trip(debt_repo: Path) -> None:
    store = CheckpointStore(debt_repo)
    saved = _save(store, debt_repo)

    loaded = store.load()

    assert store.path == debt_repo.resolve() / ".refactor-pilot" / "refactor-resume.json"
    assert loaded is not None
    assert loaded.next_pass == 2
    assert loaded.planned_passes == 3
    assert loaded.scan == saved.scan
    assert loaded.backlog == saved.backlog
    assert loaded.execution == ExecutionSettings(provider="codex", max_workers=4, notes="keep API")
    payload = json.loads(store.path.read_text("utf-8"))
    assert payload["executionSettings"]["maxWorkers"] == 4


def test_next_pass_beyond_budget_is_rejected(debt_repo: Path) -> None:
    store = CheckpointStore(debt_repo)
    _save(store, debt_repo)
    payload = json.loads(store.path.read_text("utf-8"))
    payload.update({"nextPass": 4, "plannedPasses": 2})
    store.path.write_text(json.dumps(payload), "utf-8")

    assert store.load() is None
    with pytest.raises(ValueError, match="nextPass 4"):
        Checkpoint.from_dict(payload)


@pytest.mark.parametrize(
    "mutation",
    [
        {"version": 2},
        {"plannedPasses": 0},
        {"maxFiles": 0},
        {"nextPass": True},
        {"targetDir": ""},
        {"scan": {"targetDir": "x"}},
    ],
)
def test_invalid_checkpoint_documents_load_as_none(debt_repo: Path, mutation: dict) -> None:
    store = CheckpointStore(debt_repo)
    _save(store, debt_repo)
    payload = json.loads(store.path.read_text("utf-8"))
    payload.update(mutation)
    store.path.write_text(json.dumps(payload), "utf-8")

    assert store.load() is None


def test_unreadable_json_loads_as_none(debt_repo: Path) -> None:
    store = CheckpointStore(debt_repo)
    store.path.parent.mkdir(parents=True, exist_ok=True)
    store.path.write_text("{not json", "utf-8")

    assert store.load() is None


def test_checkpoint_for_another_directory_is_ignored(debt_repo: Path, tmp_path: Path) -> None:
    store = CheckpointStore(debt_repo)
    _save(store, debt_repo)
    payload = json.loads(store.path.read_text("utf-8"))
    payload["targetDir"] = str(tmp_path / "elsewhere")
    store.path.write_text(json.dumps(payload), "utf-8")

    assert store.load() is None


def test_clear_reports_whether_a_file_was_removed(debt_repo: Path) -> None:
    store = CheckpointStore(debt_repo)
    _save(store, debt_repo)

    assert store.clear() is True
    assert not store.path.exists()
    assert store.clear() is False
