"""External agent backends, the invocation channel and telemetry."""

from bookmark_hoard.agent.base import (
    AgentBackend,
    AgentInvocation,
    AgentResult,
    AgentWork,
    FailureKind,
)
from bookmark_hoard.agent.channel import AgentChannel
from bookmark_hoard.agent.claude import ClaudeBackend
from bookmark_hoard.agent.opencode import OpenCodeBackend

__all__ = [
    "AgentBackend",
    "AgentChannel",
    "AgentInvocation",
    "AgentResult",
    "AgentWork",
    "ClaudeBackend",
    "FailureKind",
    "OpenCodeBackend",
]
