"""
toolchat Orchestration Loop - Drives model calls and tool dispatches.

One user turn is fully resolved before the next is read:

1. Append the user's text to the conversation
2. Ask the model for its next step, sending the full history and tool specs
3. Tool call -> record the intent, call the tool, record the result, go to 2
4. Final answer -> record it and hand it back to the caller

Tool failures become tool-result turns so the model can react to them.
A cap on tool dispatches per user turn stops runaway chains.
"""

import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from toolchat.core.conversation import (
    ArgumentParseError,
    ConversationState,
    ToolCallIntent,
    ToolResponse,
    Turn,
)
from toolchat.mcp.registry import ModelToolSpec
from toolchat.mcp.session import ToolInvocationError, TransportError
from toolchat.providers.base import FinalAnswer, Provider, ToolCall

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOOL_ITERATIONS = 10

UNABLE_TO_COMPLETE = (
    "I was unable to complete this request: it needed more than {limit} tool calls. "
    "Please try a more specific question."
)


class LoopState(enum.Enum):
    AWAITING_USER_INPUT = "awaiting_user_input"
    AWAITING_MODEL_RESPONSE = "awaiting_model_response"
    DISPATCHING_TOOL = "dispatching_tool"
    EMITTING_FINAL_ANSWER = "emitting_final_answer"


@dataclass
class ToolCallRecord:
    """One tool dispatch made while resolving a user turn."""

    call_id: str
    tool_name: str
    arguments: Any
    output: str
    success: bool
    duration_ms: int = 0


@dataclass
class TurnResult:
    """Outcome of one user turn."""

    output: str
    tool_calls: List[ToolCallRecord] = field(default_factory=list)
    completed: bool = True

    @property
    def iterations(self) -> int:
        return len(self.tool_calls)


class Orchestrator:
    """
    The tool-calling state machine.

    The session only needs ``call_tool(name, arguments) -> str``; the
    provider only needs ``invoke(history, tools)``. Both are used
    strictly sequentially from this object.
    """

    def __init__(
        self,
        session: Any,
        provider: Provider,
        tools: Sequence[ModelToolSpec],
        conversation: Optional[ConversationState] = None,
        max_tool_iterations: int = DEFAULT_MAX_TOOL_ITERATIONS,
        on_tool_call: Optional[Callable[[ToolCallIntent], None]] = None,
    ):
        if max_tool_iterations < 1:
            raise ValueError("max_tool_iterations must be at least 1")
        self.session = session
        self.provider = provider
        self.tools = list(tools)
        self.conversation = conversation if conversation is not None else ConversationState()
        self.max_tool_iterations = max_tool_iterations
        self.on_tool_call = on_tool_call
        self._state = LoopState.AWAITING_USER_INPUT

    @property
    def state(self) -> LoopState:
        return self._state

    def handle(self, user_input: str) -> TurnResult:
        """
        Resolve one user turn, including every nested tool call.

        Raises:
            ModelError: the model call failed; the turn ends, history stays valid.
            TransportError: the tool process is gone; the session must end.
        """
        if self._state is not LoopState.AWAITING_USER_INPUT:
            raise RuntimeError(f"Cannot accept input while {self._state.value}")

        self.conversation.append(Turn.user(user_input))
        records: List[ToolCallRecord] = []

        try:
            while True:
                self._state = LoopState.AWAITING_MODEL_RESPONSE
                choice = self.provider.invoke(self.conversation.snapshot(), self.tools)

                if isinstance(choice, FinalAnswer):
                    return self._emit(choice.text, records, completed=True)

                if not isinstance(choice, ToolCall):
                    raise TypeError(f"Unexpected model choice: {choice!r}")

                if len(records) >= self.max_tool_iterations:
                    logger.warning(
                        "Tool call limit (%d) reached; dropping call to %s",
                        self.max_tool_iterations, choice.intent.tool_name,
                    )
                    message = UNABLE_TO_COMPLETE.format(limit=self.max_tool_iterations)
                    return self._emit(message, records, completed=False)

                self._state = LoopState.DISPATCHING_TOOL
                records.append(self._dispatch(choice))
        finally:
            self._state = LoopState.AWAITING_USER_INPUT

    def _dispatch(self, choice: ToolCall) -> ToolCallRecord:
        intent = choice.intent
        self.conversation.append(Turn.intent(intent, choice.content))
        if self.on_tool_call:
            self.on_tool_call(intent)

        logger.info("Calling tool %s (%s)", intent.tool_name, intent.id)
        t0 = time.perf_counter()
        try:
            arguments: Dict[str, Any] = intent.parsed_arguments()
            output = self.session.call_tool(intent.tool_name, arguments)
            success = True
        except (ArgumentParseError, ToolInvocationError) as e:
            logger.info("Tool %s failed: %s", intent.tool_name, e)
            output = f"Error: {e}"
            success = False
        except TransportError as e:
            self._record_result(intent, f"Error: {e}", success=False)
            raise
        elapsed_ms = int((time.perf_counter() - t0) * 1000)

        self._record_result(intent, output, success)
        return ToolCallRecord(
            call_id=intent.id,
            tool_name=intent.tool_name,
            arguments=intent.arguments,
            output=output,
            success=success,
            duration_ms=elapsed_ms,
        )

    def _record_result(self, intent: ToolCallIntent, output: str, success: bool) -> None:
        self.conversation.append(Turn.tool_result(ToolResponse(
            tool_call_id=intent.id,
            content=output,
            name=intent.tool_name,
            is_error=not success,
        )))

    def _emit(self, text: str, records: List[ToolCallRecord], completed: bool) -> TurnResult:
        self.conversation.append(Turn.assistant(text))
        self._state = LoopState.EMITTING_FINAL_ANSWER
        return TurnResult(output=text, tool_calls=records, completed=completed)
