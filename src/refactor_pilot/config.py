"""Runtime configuration for scans, agent calls and the pass loop."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from refactor_pilot.scan.constants import DEFAULT_MAX_FILES, STATE_DIR_NAME

SUPPORTED_PROVIDERS: tuple[str, ...] = ("auto", "codex", "claude")
ORCHESTRATION_PROVIDER = "codex"

DEFAULT_AI_TIMEOUT_SECONDS = 1_800
MIN_AI_TIMEOUT_SECONDS = 60
MAX_AI_TIMEOUT_SECONDS = 4 * 60 * 60
DEFAULT_MAX_WORKERS = 12
MIN_MAX_WORKERS = 1
MAX_MAX_WORKERS = 24
DEFAULT_VERIFY_TIMEOUT_SECONDS = 360

DEFAULT_PLANNER_MODEL = "gpt-5.3-codex"
DEFAULT_ORCHESTRATOR_MODEL = "gpt-5.3-codex"
DEFAULT_WORKER_MODEL = "gpt-5.3-codex-spark"

DEFAULT_COMMAND_TEMPLATES: dict[str, str] = {
    "codex": (
        "codex exec --sandbox {sandbox} --skip-git-repo-check "
        "-c 'model_reasoning_effort=\"xhigh\"' {extra_args} {model_args} {prompt}"
    ),
    "claude": (
        "claude -p {prompt} --permission-mode {sandbox} --no-session-persistence {model_args}"
    ),
}


@dataclass(slots=True)
class AgentSettings:
    """External agent CLI settings."""

    provider: str = "auto"
    codex_command_template: str = DEFAULT_COMMAND_TEMPLATES["codex"]
    claude_command_template: str = DEFAULT_COMMAND_TEMPLATES["claude"]
    timeout_seconds: int = DEFAULT_AI_TIMEOUT_SECONDS
    stop_grace_seconds: float = 10.0

    def command_template_for(self, provider: str) -> str:
        if provider == "codex":
            return self.codex_command_template
        if provider == "claude":
            return self.claude_command_template
        raise ValueError(f"No command template for provider {provider!r}")


@dataclass(slots=True)
class ExecutionDefaults:
    """Model and orchestration defaults for new runs."""

    model: str | None = None
    planner_model: str = DEFAULT_PLANNER_MODEL
    orchestrator_model: str = DEFAULT_ORCHESTRATOR_MODEL
    worker_model: str = DEFAULT_WORKER_MODEL
    orchestration: bool = True
    max_workers: int = DEFAULT_MAX_WORKERS


@dataclass(slots=True)
class VerificationSettings:
    """Post-pass verification command settings."""

    enabled: bool = False
    timeout_seconds: int = DEFAULT_VERIFY_TIMEOUT_SECONDS


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    state_dir_name: str = STATE_DIR_NAME
    max_files: int = DEFAULT_MAX_FILES
    agent: AgentSettings = field(default_factory=AgentSettings)
    execution: ExecutionDefaults = field(default_factory=ExecutionDefaults)
    verification: VerificationSettings = field(default_factory=VerificationSettings)

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from ``REFACTOR_PILOT_*`` environment variables."""

        settings = cls(
            max_files=_env_int("REFACTOR_PILOT_MAX_FILES", DEFAULT_MAX_FILES),
            agent=AgentSettings(
                provider=normalize_provider(os.getenv("REFACTOR_PILOT_PROVIDER", "auto")),
                codex_command_template=os.getenv(
                    "REFACTOR_PILOT_CODEX_COMMAND_TEMPLATE",
                    DEFAULT_COMMAND_TEMPLATES["codex"],
                ),
                claude_command_template=os.getenv(
                    "REFACTOR_PILOT_CLAUDE_COMMAND_TEMPLATE",
                    DEFAULT_COMMAND_TEMPLATES["claude"],
                ),
                timeout_seconds=clamp_ai_timeout(
                    _env_int("REFACTOR_PILOT_AI_TIMEOUT_SECONDS", DEFAULT_AI_TIMEOUT_SECONDS),
                ),
                stop_grace_seconds=float(
                    os.getenv("REFACTOR_PILOT_STOP_GRACE_SECONDS", "10"),
                ),
            ),
            execution=ExecutionDefaults(
                model=normalize_model(os.getenv("REFACTOR_PILOT_MODEL")),
                planner_model=normalize_model(os.getenv("REFACTOR_PILOT_PLANNER_MODEL"))
                or DEFAULT_PLANNER_MODEL,
                orchestrator_model=normalize_model(
                    os.getenv("REFACTOR_PILOT_ORCHESTRATOR_MODEL"),
                )
                or DEFAULT_ORCHESTRATOR_MODEL,
                worker_model=normalize_model(os.getenv("REFACTOR_PILOT_WORKER_MODEL"))
                or DEFAULT_WORKER_MODEL,
                orchestration=_env_bool("REFACTOR_PILOT_ORCHESTRATION", default=True),
                max_workers=normalize_max_workers(
                    _env_int("REFACTOR_PILOT_MAX_WORKERS", DEFAULT_MAX_WORKERS),
                ),
            ),
            verification=VerificationSettings(
                enabled=_env_bool("REFACTOR_PILOT_VERIFY", default=False),
                timeout_seconds=_env_int(
                    "REFACTOR_PILOT_VERIFY_TIMEOUT_SECONDS",
                    DEFAULT_VERIFY_TIMEOUT_SECONDS,
                ),
            ),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        """Raise configuration error for values no run can use."""

        if self.verification.timeout_seconds <= 0:
            raise ValueError("REFACTOR_PILOT_VERIFY_TIMEOUT_SECONDS must be > 0.")
        if self.agent.stop_grace_seconds < 0:
            raise ValueError("REFACTOR_PILOT_STOP_GRACE_SECONDS must be >= 0.")
        for provider in ("codex", "claude"):
            template = self.agent.command_template_for(provider)
            if "{prompt}" not in template and "{prompt_file}" not in template:
                raise ValueError(
                    f"The {provider} command template must include {{prompt}} or {{prompt_file}}.",
                )


def normalize_provider(value: str | None) -> str:
    if value is None or not value.strip():
        return "auto"
    normalized = value.strip().lower()
    if normalized not in SUPPORTED_PROVIDERS:
        raise ValueError(f"Invalid provider {value!r}. Expected: auto | codex | claude.")
    return normalized


def normalize_model(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def normalize_max_workers(value: int) -> int:
    return min(MAX_MAX_WORKERS, max(MIN_MAX_WORKERS, int(value)))


def clamp_ai_timeout(value: int) -> int:
    return min(MAX_AI_TIMEOUT_SECONDS, max(MIN_AI_TIMEOUT_SECONDS, int(value)))


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
