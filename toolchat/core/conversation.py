"""
toolchat Conversation State - Append-only, ordered log of turns.

Each turn is immutable once appended. The orchestration loop only ever
appends and reads full snapshots; nothing is reordered or removed. The
full history is sent to the model on every invocation (no truncation).
"""

import enum
import json
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union


class ConversationError(Exception):
    """Raised when a turn would break tool-call correlation."""


class ArgumentParseError(Exception):
    """Raised when a model's tool-call arguments are not a JSON object."""


class Role(enum.Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL_RESULT = "tool"


def generate_call_id() -> str:
    """Correlation id for providers that don't supply one."""
    return "call_" + uuid.uuid4().hex[:12]


@dataclass(frozen=True)
class ToolCallIntent:
    """A model-proposed request to invoke one tool."""

    id: str
    tool_name: str
    arguments: Union[str, Dict[str, Any]]

    def __post_init__(self):
        if not self.id:
            object.__setattr__(self, "id", generate_call_id())

    def parsed_arguments(self) -> Dict[str, Any]:
        """Arguments as a dict; raw JSON strings are decoded here."""
        if isinstance(self.arguments, dict):
            return self.arguments
        raw = self.arguments.strip() if self.arguments else ""
        if not raw:
            return {}
        try:
            value = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ArgumentParseError(f"Invalid arguments for {self.tool_name}: {e}") from e
        if not isinstance(value, dict):
            raise ArgumentParseError(
                f"Invalid arguments for {self.tool_name}: expected a JSON object, got {type(value).__name__}"
            )
        return value

    def arguments_json(self) -> str:
        """Arguments as a JSON string (the form OpenAI-style APIs echo back)."""
        if isinstance(self.arguments, dict):
            return json.dumps(self.arguments)
        return self.arguments or "{}"


@dataclass(frozen=True)
class ToolResponse:
    """The outcome of one tool call, correlated by ``tool_call_id``."""

    tool_call_id: str
    content: str
    name: str = ""
    is_error: bool = False


@dataclass(frozen=True)
class Turn:
    """One entry in the conversation history."""

    role: Role
    content: str = ""
    tool_call: Optional[ToolCallIntent] = None
    tool_response: Optional[ToolResponse] = None

    @classmethod
    def system(cls, text: str) -> "Turn":
        return cls(Role.SYSTEM, text)

    @classmethod
    def user(cls, text: str) -> "Turn":
        return cls(Role.USER, text)

    @classmethod
    def assistant(cls, text: str) -> "Turn":
        return cls(Role.ASSISTANT, text)

    @classmethod
    def intent(cls, call: ToolCallIntent, text: str = "") -> "Turn":
        return cls(Role.ASSISTANT, text, tool_call=call)

    @classmethod
    def tool_result(cls, response: ToolResponse) -> "Turn":
        return cls(Role.TOOL_RESULT, response.content, tool_response=response)


class ConversationState:
    """
    Ordered, append-only conversation history.

    Example:
        >>> conversation = ConversationState()
        >>> conversation.append(Turn.user("What's the weather in Bengaluru?"))
        >>> len(conversation.snapshot())
        1
    """

    def __init__(self, system_prompt: Optional[str] = None):
        self._turns: List[Turn] = []
        self._unanswered: Dict[str, ToolCallIntent] = {}
        if system_prompt:
            self.append(Turn.system(system_prompt))

    def append(self, turn: Turn) -> None:
        """
        Append a turn.

        Raises ConversationError if a tool result does not answer an earlier,
        still unanswered tool-call intent, or if a turn's payload does not
        match its role. Ids are opaque: a vendor may reuse one once the
        earlier call with that id has been answered.
        """
        if turn.role is Role.TOOL_RESULT:
            if turn.tool_response is None:
                raise ConversationError("Tool result turn without a tool response")
            call_id = turn.tool_response.tool_call_id
            if call_id not in self._unanswered:
                raise ConversationError(f"Tool result for unknown or answered call id: {call_id}")
            del self._unanswered[call_id]
        elif turn.tool_response is not None:
            raise ConversationError(f"{turn.role.value} turn cannot carry a tool response")

        if turn.tool_call is not None:
            if turn.role is not Role.ASSISTANT:
                raise ConversationError(f"{turn.role.value} turn cannot carry a tool call")
            if turn.tool_call.id in self._unanswered:
                raise ConversationError(f"Duplicate unanswered tool call id: {turn.tool_call.id}")
            self._unanswered[turn.tool_call.id] = turn.tool_call

        self._turns.append(turn)

    def snapshot(self) -> Tuple[Turn, ...]:
        """The full ordered history, as an immutable tuple."""
        return tuple(self._turns)

    def pending_tool_calls(self) -> List[ToolCallIntent]:
        """Intents that have no tool result yet."""
        return list(self._unanswered.values())

    def last(self) -> Optional[Turn]:
        return self._turns[-1] if self._turns else None

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[Turn]:
        return iter(self.snapshot())
