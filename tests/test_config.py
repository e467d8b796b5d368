from __future__ import annotations

from os import environ

import allure
import pytest

from refactor_pilot.config import (
    DEFAULT_AI_TIMEOUT_SECONDS,
    DEFAULT_PLANNER_MODEL,
    AgentSettings,
    Settings,
    clamp_ai_timeout,
    normalize_max_workers,
    normalize_provider,
)

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Environment Settings"),
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch) -> None:
    for name in list(environ):
        if name.startswith("REFACTOR_PILOT_"):
            monkeypatch.delenv(name)


def test_from_env_defaults() -> None:
    settings = Settings.from_env()

    assert settings.agent.provider == "auto"
    assert settings.agent.timeout_seconds == DEFAULT_AI_TIMEOUT_SECONDS
    assert settings.execution.planner_model == DEFAULT_PLANNER_MODEL
    assert settings.execution.orchestration is True
    assert settings.verification.enabled is False
    assert settings.state_dir_name == ".refactor-pilot"


def test_from_env_reads_overrides(monkeypatch) -> None:
    monkeypatch.setenv("REFACTOR_PILOT_PROVIDER", " Claude ")
    monkeypatch.setenv("REFACTOR_PILOT_MODEL", "  ")
    monkeypatch.setenv("REFACTOR_PILOT_WORKER_MODEL", "small-model")
    monkeypatch.setenv("REFACTOR_PILOT_MAX_WORKERS", "99")
    monkeypatch.setenv("REFACTOR_PILOT_ORCHESTRATION", "off")
    monkeypatch.setenv("REFACTOR_PILOT_AI_TIMEOUT_SECONDS", "5")
    monkeypatch.setenv("REFACTOR_PILOT_VERIFY", "yes")
    monkeypatch.setenv("REFACTOR_PILOT_MAX_FILES", "250")

    settings = Settings.from_env()

    assert settings.agent.provider == "claude"
    assert settings.execution.model is None
    assert settings.execution.worker_model == "small-model"
    assert settings.execution.max_workers == 24
    assert settings.execution.orchestration is False
    assert settings.agent.timeout_seconds == 60
    assert settings.verification.enabled is True
    assert settings.max_files == 250


@pytest.mark.parametrize(
    ("name", "value", "message"),
    [
        ("REFACTOR_PILOT_PROVIDER", "gemini", "Invalid provider"),
        ("REFACTOR_PILOT_MAX_WORKERS", "many", "Invalid integer value"),
        ("REFACTOR_PILOT_VERIFY", "maybe", "Invalid boolean value"),
        ("REFACTOR_PILOT_VERIFY_TIMEOUT_SECONDS", "0", "must be > 0"),
        ("REFACTOR_PILOT_CODEX_COMMAND_TEMPLATE", "codex exec", "must include"),
    ],
)
def test_from_env_rejects_invalid_values(monkeypatch, name: str, value: str, message: str) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValueError, match=message):
        Settings.from_env()


def test_command_template_lookup() -> None:
    agent = AgentSettings(claude_command_template="claude -p {prompt}")

    assert agent.command_template_for("claude") == "claude -p {prompt}"
    with pytest.raises(ValueError, match="No command template"):
        agent.command_template_for("auto")


def test_normalizers_clamp_and_validate() -> None:
    assert normalize_provider(None) == "auto"
    assert normalize_provider("CODEX") == "codex"
    assert normalize_max_workers(0) == 1
    assert clamp_ai_timeout(10**9) == 4 * 60 * 60
