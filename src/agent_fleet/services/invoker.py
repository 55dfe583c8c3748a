"""Agent invokers: the boundary between the engine and the worker units.

An invoker runs one member against one input and returns its output.  The
engine never looks inside a member; everything it knows arrives through
``BaseAgentInvoker.invoke``.

Classes
-------
BaseAgentInvoker
    Abstract async interface.
CallableInvoker
    Maps member ids to plain (sync or async) callables.
ChatModelInvoker
    Drives LangChain chat models with structured output so each reply
    carries a self-reported confidence.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from typing import Any

from langchain_core.language_models import BaseChatModel
from langchain_core.prompts import ChatPromptTemplate
from pydantic import BaseModel, Field

from agent_fleet.domain.exceptions import MemberError, MemberTimeoutError
from agent_fleet.domain.values import AgentOutput, FleetMember

logger = logging.getLogger(__name__)

MemberCallable = Callable[[FleetMember, Any], Any]


def as_agent_output(value: Any) -> AgentOutput:
    """Normalise an invoker return value into an ``AgentOutput``.

    ``AgentOutput`` instances pass through, pydantic models exposing
    ``output``/``confidence`` are unpacked, anything else is a bare output
    without confidence.
    """
    if isinstance(value, AgentOutput):
        return value
    if isinstance(value, AgentReply):
        return AgentOutput(output=value.output, confidence=value.confidence)
    return AgentOutput(output=value)


def seconds_until(deadline: float | None) -> float | None:
    """Relative seconds until an absolute ``time.monotonic()`` deadline."""
    if deadline is None:
        return None
    return max(0.0, deadline - time.monotonic())


# ===================================================================== #
#  Abstract interface                                                    #
# ===================================================================== #

class BaseAgentInvoker(ABC):
    """Invoke a single fleet member.

    Implementations must honour *deadline* (an absolute ``time.monotonic()``
    value, or ``None``) and be safe for concurrent use with distinct
    members.  Raising signals failure; returning an ``AgentOutput`` or a bare
    value signals success.
    """

    @abstractmethod
    async def invoke(
        self,
        member: FleetMember,
        task_input: Any,
        deadline: float | None = None,
    ) -> AgentOutput | Any:
        """Run *member* on *task_input* and return its output."""


# ===================================================================== #
#  Callable adapter                                                      #
# ===================================================================== #

class CallableInvoker(BaseAgentInvoker):
    """Invoke members through plain Python callables.

    Parameters
    ----------
    handlers:
        Mapping of member id to ``fn(member, task_input)``.  The callable may
        be a coroutine function; synchronous callables run in a worker thread.
    default:
        Fallback callable for members without a dedicated handler.
    """

    def __init__(
        self,
        handlers: Mapping[str, MemberCallable] | None = None,
        default: MemberCallable | None = None,
    ) -> None:
        self._handlers = dict(handlers or {})
        self._default = default

    def register(self, member_id: str, handler: MemberCallable) -> None:
        self._handlers[member_id] = handler

    def _handler_for(self, member: FleetMember) -> MemberCallable:
        handler = self._handlers.get(member.member_id, self._default)
        if handler is None:
            raise MemberError(
                f"No handler registered for member '{member.member_id}'",
                member_id=member.member_id,
            )
        return handler

    async def invoke(
        self,
        member: FleetMember,
        task_input: Any,
        deadline: float | None = None,
    ) -> AgentOutput | Any:
        handler = self._handler_for(member)
        if inspect.iscoroutinefunction(handler):
            call = handler(member, task_input)
        else:
            call = asyncio.to_thread(handler, member, task_input)
        timeout = seconds_until(deadline)
        try:
            return await asyncio.wait_for(call, timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise MemberTimeoutError(
                f"Member '{member.member_id}' exceeded its deadline",
                member_id=member.member_id,
                timeout=timeout,
            ) from exc


# ===================================================================== #
#  LangChain chat-model adapter                                          #
# ===================================================================== #

class AgentReply(BaseModel):
    """Structured reply every chat-model member must produce."""

    output: Any = Field(description="The member's answer to the task")
    confidence: float | None = Field(
        default=None, ge=0, le=1, description="Self-assessed confidence in [0, 1]"
    )
    reasoning: str = Field(default="", description="Short justification")


_MEMBER_PROMPT = ChatPromptTemplate.from_messages(
    [
        (
            "system",
            "You are '{member_id}', a {role} in a team of independent agents "
            "working on the same problem. Your answers will be compared with "
            "the other members' answers, so be precise and report an honest "
            "confidence between 0 and 1.\n\n"
            "{capabilities}"
            "{instructions}",
        ),
        (
            "human",
            "## Task input\n{task_input}\n\n"
            "Answer with your output, your confidence and a short reasoning.",
        ),
    ]
)


class ChatModelInvoker(BaseAgentInvoker):
    """Invoke members backed by LangChain chat models.

    Parameters
    ----------
    models:
        Either a single chat model shared by every member or a mapping of
        member id to chat model.
    instructions:
        Optional per-member system instructions (role prompts).
    prompt:
        Optional custom ``ChatPromptTemplate``.  It receives ``member_id``,
        ``role``, ``capabilities``, ``instructions`` and ``task_input``.
    """

    def __init__(
        self,
        models: BaseChatModel | Mapping[str, BaseChatModel],
        instructions: Mapping[str, str] | None = None,
        prompt: ChatPromptTemplate | None = None,
    ) -> None:
        self._models = models
        self._instructions = dict(instructions or {})
        self._prompt = prompt or _MEMBER_PROMPT
        self._chains: dict[str, Any] = {}

    def _chain_for(self, member: FleetMember) -> Any:
        chain = self._chains.get(member.member_id)
        if chain is not None:
            return chain
        if isinstance(self._models, Mapping):
            model = self._models.get(member.member_id)
            if model is None:
                raise MemberError(
                    f"No chat model configured for member '{member.member_id}'",
                    member_id=member.member_id,
                )
        else:
            model = self._models
        chain = self._prompt | model.with_structured_output(AgentReply)
        self._chains[member.member_id] = chain
        return chain

    @staticmethod
    def _render_input(task_input: Any) -> str:
        if isinstance(task_input, str):
            return task_input
        try:
            return json.dumps(task_input, indent=2, default=str)
        except (TypeError, ValueError):
            return str(task_input)

    async def invoke(
        self,
        member: FleetMember,
        task_input: Any,
        deadline: float | None = None,
    ) -> AgentOutput:
        chain = self._chain_for(member)
        capabilities = (
            "Available tools: " + ", ".join(member.capabilities) + "\n\n"
            if member.capabilities
            else ""
        )
        inputs = {
            "member_id": member.member_id,
            "role": member.role.value,
            "capabilities": capabilities,
            "instructions": self._instructions.get(member.member_id, ""),
            "task_input": self._render_input(task_input),
        }
        timeout = seconds_until(deadline)
        try:
            reply = await asyncio.wait_for(chain.ainvoke(inputs), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise MemberTimeoutError(
                f"Chat model for '{member.member_id}' exceeded its deadline",
                member_id=member.member_id,
                timeout=timeout,
            ) from exc
        if isinstance(reply, Mapping):
            reply = AgentReply.model_validate(reply)
        if not isinstance(reply, AgentReply):
            raise MemberError(
                f"Chat model for '{member.member_id}' returned {type(reply).__name__}, "
                "expected a structured reply",
                member_id=member.member_id,
            )
        logger.debug(
            "Chat member %s replied (confidence=%s)", member.member_id, reply.confidence
        )
        return as_agent_output(reply)
