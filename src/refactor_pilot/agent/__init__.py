"""External agent adapters: contract types, CLI runner and status parsing."""

from refactor_pilot.agent.base import AgentExecutor, AgentRunRequest, AgentRunResult, SandboxMode
from refactor_pilot.agent.cli_backend import AgentExecutionError
from refactor_pilot.agent.executor import CliAgentExecutor
from refactor_pilot.agent.status import PassStatus

__all__ = [
    "AgentExecutionError",
    "AgentExecutor",
    "AgentRunRequest",
    "AgentRunResult",
    "CliAgentExecutor",
    "PassStatus",
    "SandboxMode",
]
