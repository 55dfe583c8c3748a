"""Public testing utilities for agent-fleet.

Provides a scripted invoker and a mock chat model for writing
self-contained examples and tests without real agents or API keys.
"""

from agent_fleet.testing.mock_llm import MockStructuredChatModel
from agent_fleet.testing.scripted import (
    ScriptedInvoker,
    ScriptedReply,
    ScriptedSteps,
    fail,
    hang,
    reply,
    steps,
)

__all__ = [
    "MockStructuredChatModel",
    "ScriptedInvoker",
    "ScriptedReply",
    "ScriptedSteps",
    "fail",
    "hang",
    "reply",
    "steps",
]
