"""
toolchat Provider Base - Model client adapters with function calling.

This module defines the interface that all LLM providers implement: a
single ``invoke(history, tools)`` call that turns the conversation and
the tool specs into a ``ModelChoice`` (either a tool call or a final
answer). It also provides a factory for creating provider instances.

Only the first tool call of a response is acted upon. Models that propose
several calls in one response get the rest discarded un-executed; callers
expecting parallel tool calls should not rely on them being run.
"""

import enum
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type, Union

import httpx

from toolchat.core.conversation import ArgumentParseError, Role, ToolCallIntent, Turn
from toolchat.mcp.registry import ModelToolSpec
from toolchat.validation.config import Config, ConfigError

logger = logging.getLogger(__name__)


class ModelError(Exception):
    """A model invocation failed. Ends the current user turn, not the session."""

    class Kind(enum.Enum):
        RATE_LIMITED = "rate_limited"
        SAFETY_BLOCKED = "safety_blocked"
        TRANSPORT = "transport"

    def __init__(self, kind: "ModelError.Kind", message: str):
        super().__init__(message)
        self.kind = kind


@dataclass(frozen=True)
class ToolCall:
    """The model wants a tool invoked."""

    intent: ToolCallIntent
    content: str = ""
    discarded: int = 0


@dataclass(frozen=True)
class FinalAnswer:
    """The model produced its natural-language answer."""

    text: str


ModelChoice = Union[ToolCall, FinalAnswer]

SAFETY_FINISH_REASONS = {"content_filter", "safety", "refusal"}


# ---------------------------------------------------------------------------
# History encoding
# ---------------------------------------------------------------------------

def _arguments_dict(call: ToolCallIntent) -> Dict[str, Any]:
    try:
        return call.parsed_arguments()
    except ArgumentParseError:
        return {}


def to_openai_messages(history: Sequence[Turn]) -> List[Dict[str, Any]]:
    """Encode history in the OpenAI chat-completions message format."""
    messages: List[Dict[str, Any]] = []
    for turn in history:
        if turn.role is Role.TOOL_RESULT:
            messages.append({
                "role": "tool",
                "tool_call_id": turn.tool_response.tool_call_id,
                "content": turn.content,
            })
        elif turn.tool_call is not None:
            messages.append({
                "role": "assistant",
                "content": turn.content or None,
                "tool_calls": [{
                    "id": turn.tool_call.id,
                    "type": "function",
                    "function": {
                        "name": turn.tool_call.tool_name,
                        "arguments": turn.tool_call.arguments_json(),
                    },
                }],
            })
        else:
            messages.append({"role": turn.role.value, "content": turn.content})
    return messages


def to_anthropic_messages(history: Sequence[Turn]) -> Tuple[str, List[Dict[str, Any]]]:
    """Encode history for the Anthropic Messages API as ``(system, messages)``."""
    system_parts: List[str] = []
    messages: List[Dict[str, Any]] = []
    for turn in history:
        if turn.role is Role.SYSTEM:
            system_parts.append(turn.content)
        elif turn.role is Role.TOOL_RESULT:
            messages.append({
                "role": "user",
                "content": [{
                    "type": "tool_result",
                    "tool_use_id": turn.tool_response.tool_call_id,
                    "content": turn.content,
                    "is_error": turn.tool_response.is_error,
                }],
            })
        elif turn.tool_call is not None:
            blocks: List[Dict[str, Any]] = []
            if turn.content:
                blocks.append({"type": "text", "text": turn.content})
            blocks.append({
                "type": "tool_use",
                "id": turn.tool_call.id,
                "name": turn.tool_call.tool_name,
                "input": _arguments_dict(turn.tool_call),
            })
            messages.append({"role": "assistant", "content": blocks})
        else:
            messages.append({"role": turn.role.value, "content": turn.content})
    return "\n\n".join(system_parts), messages


def to_ollama_messages(history: Sequence[Turn]) -> List[Dict[str, Any]]:
    """Encode history for Ollama's /api/chat (arguments as objects, no call ids)."""
    messages: List[Dict[str, Any]] = []
    for turn in history:
        if turn.role is Role.TOOL_RESULT:
            messages.append({
                "role": "tool",
                "content": turn.content,
                "tool_name": turn.tool_response.name,
            })
        elif turn.tool_call is not None:
            messages.append({
                "role": "assistant",
                "content": turn.content,
                "tool_calls": [{
                    "function": {
                        "name": turn.tool_call.tool_name,
                        "arguments": _arguments_dict(turn.tool_call),
                    },
                }],
            })
        else:
            messages.append({"role": turn.role.value, "content": turn.content})
    return messages


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------

class Provider(ABC):
    """
    A model vendor behind one call: ``invoke(history, tools)``.

    Subclasses translate the conversation into the vendor's request format
    and decode the reply into a ``ToolCall`` or a ``FinalAnswer``.

    Example:
        >>> class EchoProvider(Provider):
        ...     provider_name = "echo"
        ...     def invoke(self, history, tools):
        ...         return FinalAnswer(history[-1].content)
    """

    def __init__(self, model: str, config: Config):
        """
        Args:
            model: Vendor model name, without the ``provider/`` prefix.
            config: Settings for keys, endpoints and sampling.
        """
        self.model = model
        self.config = config

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Short vendor name, also the key under ``providers:`` in config."""
        pass

    @abstractmethod
    def invoke(self, history: Sequence[Turn], tools: Sequence[ModelToolSpec]) -> ModelChoice:
        """
        Ask the model for its next step.

        Args:
            history: The full ordered conversation.
            tools: Tool specs the model may call.

        Returns:
            ToolCall for the first proposed call, otherwise FinalAnswer.

        Raises:
            ModelError: On rate limiting, a safety block, or transport failure.
        """
        pass

    def validate_connection(self) -> bool:
        """Whether the provider looks usable (credentials present)."""
        return self.get_api_key() is not None

    def get_api_key(self) -> Optional[str]:
        """Key from config or environment; None if unset."""
        return self.config.get_api_key(self.provider_name)

    def require_api_key(self) -> str:
        api_key = self.get_api_key()
        if not api_key:
            raise ConfigError(
                f"{self.provider_name} API key not configured. "
                f"Set it in config.yaml under providers.{self.provider_name}.api_key "
                f"or via the environment."
            )
        return api_key

    @property
    def max_tokens(self) -> int:
        return self.config.merged.agent.max_tokens

    @property
    def temperature(self) -> float:
        return self.config.merged.agent.temperature

    @property
    def timeout(self) -> int:
        return self.config.merged.agent.timeout

    def _choose(self, calls: List[ToolCallIntent], content: str, finish_reason: Optional[str]) -> ModelChoice:
        """Pick the first tool call, or the final answer if there are none."""
        if calls:
            if len(calls) > 1:
                logger.warning(
                    "%s proposed %d tool calls; only %s is executed",
                    self.provider_name, len(calls), calls[0].tool_name,
                )
            return ToolCall(intent=calls[0], content=content or "", discarded=len(calls) - 1)

        if finish_reason in SAFETY_FINISH_REASONS:
            raise ModelError(ModelError.Kind.SAFETY_BLOCKED, f"Response blocked by {self.provider_name} ({finish_reason})")
        return FinalAnswer(text=content or "")


class OpenAIProvider(Provider):
    """OpenAI chat completions through the official SDK."""

    @property
    def provider_name(self) -> str:
        return "openai"

    def invoke(self, history: Sequence[Turn], tools: Sequence[ModelToolSpec]) -> ModelChoice:
        """Generate the next step using the OpenAI API."""
        try:
            import openai
        except ImportError:
            raise ImportError("openai package required. Install with: pip install toolchat[openai]")

        client = openai.OpenAI(api_key=self.require_api_key(), timeout=self.timeout)

        kwargs: Dict[str, Any] = {}
        if tools:
            kwargs["tools"] = [t.to_openai() for t in tools]

        try:
            response = client.chat.completions.create(
                model=self.model,
                messages=to_openai_messages(history),
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                **kwargs,
            )
        except openai.RateLimitError as e:
            raise ModelError(ModelError.Kind.RATE_LIMITED, str(e)) from e
        except openai.APIError as e:
            raise ModelError(ModelError.Kind.TRANSPORT, str(e)) from e

        if not response.choices:
            raise ModelError(ModelError.Kind.TRANSPORT, "openai returned no choices")

        choice = response.choices[0]
        calls = [
            ToolCallIntent(id=tc.id, tool_name=tc.function.name, arguments=tc.function.arguments)
            for tc in (choice.message.tool_calls or [])
        ]
        return self._choose(calls, choice.message.content, choice.finish_reason)


class AnthropicProvider(Provider):
    """Anthropic Messages API through the official SDK."""

    @property
    def provider_name(self) -> str:
        return "anthropic"

    def invoke(self, history: Sequence[Turn], tools: Sequence[ModelToolSpec]) -> ModelChoice:
        """Generate the next step using the Anthropic Messages API."""
        try:
            import anthropic
        except ImportError:
            raise ImportError(
                "anthropic package required. Install with: pip install toolchat[anthropic]"
            )

        client = anthropic.Anthropic(api_key=self.require_api_key(), timeout=self.timeout)

        system, messages = to_anthropic_messages(history)
        kwargs: Dict[str, Any] = {}
        if system:
            kwargs["system"] = system
        if tools:
            kwargs["tools"] = [t.to_anthropic() for t in tools]

        try:
            response = client.messages.create(
                model=self.model,
                messages=messages,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                **kwargs,
            )
        except anthropic.RateLimitError as e:
            raise ModelError(ModelError.Kind.RATE_LIMITED, str(e)) from e
        except anthropic.APIError as e:
            raise ModelError(ModelError.Kind.TRANSPORT, str(e)) from e

        texts: List[str] = []
        calls: List[ToolCallIntent] = []
        for block in response.content:
            if block.type == "text":
                texts.append(block.text)
            elif block.type == "tool_use":
                calls.append(ToolCallIntent(id=block.id, tool_name=block.name, arguments=dict(block.input or {})))
        return self._choose(calls, "".join(texts), response.stop_reason)


class OllamaProvider(Provider):
    """A local Ollama server (no API key)."""

    DEFAULT_BASE_URL = "http://localhost:11434"

    @property
    def provider_name(self) -> str:
        return "ollama"

    @property
    def base_url(self) -> str:
        provider_config = self.config.get_provider_config("ollama")
        if provider_config and provider_config.api_base:
            return provider_config.api_base
        return self.DEFAULT_BASE_URL

    def invoke(self, history: Sequence[Turn], tools: Sequence[ModelToolSpec]) -> ModelChoice:
        """Generate the next step using Ollama's chat endpoint."""
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": to_ollama_messages(history),
            "stream": False,
            "options": {"num_predict": self.max_tokens, "temperature": self.temperature},
        }
        if tools:
            payload["tools"] = [t.to_openai() for t in tools]

        data = _post_json(f"{self.base_url}/api/chat", payload, {}, self.timeout, self.provider_name)

        message = data.get("message") or {}
        calls = _decode_tool_calls(message.get("tool_calls"), self.provider_name, empty_arguments={})
        return self._choose(calls, message.get("content", ""), data.get("done_reason"))

    def validate_connection(self) -> bool:
        """Ollama needs no key; check the server answers instead."""
        try:
            response = httpx.get(f"{self.base_url}/api/tags", timeout=5)
            return response.status_code == 200
        except httpx.HTTPError:
            return False


class OpenAICompatibleProvider(Provider):
    """
    Vendors reachable through an OpenAI-style ``/chat/completions`` endpoint.

    Requests go out with httpx; a subclass sets ``_base_url`` and
    ``provider_name``. ``providers.<name>.api_base`` overrides the URL.
    """

    _base_url: str = ""

    @property
    def provider_name(self) -> str:
        raise NotImplementedError

    @property
    def base_url(self) -> str:
        provider_config = self.config.get_provider_config(self.provider_name)
        if provider_config and provider_config.api_base:
            return provider_config.api_base
        return self._base_url

    def invoke(self, history: Sequence[Turn], tools: Sequence[ModelToolSpec]) -> ModelChoice:
        api_key = self.require_api_key()

        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": to_openai_messages(history),
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }
        if tools:
            payload["tools"] = [t.to_openai() for t in tools]

        data = _post_json(
            f"{self.base_url}/chat/completions",
            payload,
            {"Authorization": f"Bearer {api_key}"},
            self.timeout,
            self.provider_name,
        )

        choices = data.get("choices") or []
        if not choices:
            raise ModelError(ModelError.Kind.TRANSPORT, f"{self.provider_name} returned no choices")

        choice = choices[0]
        message = choice.get("message") or {}
        calls = _decode_tool_calls(message.get("tool_calls"), self.provider_name, empty_arguments="")
        return self._choose(calls, message.get("content") or "", choice.get("finish_reason"))


class GeminiProvider(OpenAICompatibleProvider):
    """Google Gemini through its OpenAI-compatible endpoint."""

    _base_url = "https://generativelanguage.googleapis.com/v1beta/openai"

    @property
    def provider_name(self) -> str:
        return "gemini"


class OpenRouterProvider(OpenAICompatibleProvider):
    """OpenRouter, a gateway to many hosted models."""

    _base_url = "https://openrouter.ai/api/v1"

    @property
    def provider_name(self) -> str:
        return "openrouter"


class TogetherProvider(OpenAICompatibleProvider):
    """Together AI hosted open models."""

    _base_url = "https://api.together.xyz/v1"

    @property
    def provider_name(self) -> str:
        return "together"


class GroqProvider(OpenAICompatibleProvider):
    """Groq hosted open models."""

    _base_url = "https://api.groq.com/openai/v1"

    @property
    def provider_name(self) -> str:
        return "groq"


def _post_json(url: str, payload: Dict[str, Any], headers: Dict[str, str],
               timeout: int, provider: str) -> Dict[str, Any]:
    """POST a JSON body and map HTTP failures onto ModelError."""
    try:
        response = httpx.post(url, json=payload, headers=headers, timeout=timeout)
    except httpx.HTTPError as e:
        raise ModelError(ModelError.Kind.TRANSPORT, f"{provider} request failed: {e}") from e

    if response.status_code == 429:
        raise ModelError(ModelError.Kind.RATE_LIMITED, f"{provider} rate limit exceeded: {response.text[:200]}")
    if response.is_error:
        raise ModelError(
            ModelError.Kind.TRANSPORT,
            f"{provider} returned HTTP {response.status_code}: {response.text[:200]}",
        )

    try:
        data = response.json()
    except ValueError as e:
        raise ModelError(ModelError.Kind.TRANSPORT, f"{provider} returned invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ModelError(ModelError.Kind.TRANSPORT, f"{provider} returned a {type(data).__name__}, expected an object")
    return data


def _decode_tool_calls(raw_calls: Any, provider: str, empty_arguments: Union[str, Dict]) -> List[ToolCallIntent]:
    """
    Decode OpenAI-style ``tool_calls`` entries (``{id, function: {name, arguments}}``).

    Ollama omits ids and sends arguments as an object; both shapes are
    accepted. An entry without a function name raises ModelError.
    """
    if not raw_calls:
        return []
    if not isinstance(raw_calls, list):
        raise ModelError(ModelError.Kind.TRANSPORT, f"{provider} returned malformed tool calls: {raw_calls!r}")

    calls: List[ToolCallIntent] = []
    for entry in raw_calls:
        function = entry.get("function") if isinstance(entry, dict) else None
        name = function.get("name") if isinstance(function, dict) else None
        if not name or not isinstance(name, str):
            raise ModelError(ModelError.Kind.TRANSPORT, f"{provider} returned a malformed tool call: {entry!r}")
        calls.append(ToolCallIntent(
            id=entry.get("id") or "",
            tool_name=name,
            arguments=function.get("arguments") or empty_arguments,
        ))
    return calls


# Model-name prefixes used when no known ``provider/`` prefix is given
MODEL_PREFIXES: List[Tuple[Tuple[str, ...], str]] = [
    (("gpt", "o1", "o3"), "openai"),
    (("claude",), "anthropic"),
    (("gemini",), "gemini"),
    (("llama", "deepseek"), "groq"),
    (("mixtral", "qwen"), "together"),
]


class ProviderFactory:
    """Maps ``provider/model`` strings to Provider instances."""

    _providers: Dict[str, Type[Provider]] = {
        "openai": OpenAIProvider,
        "anthropic": AnthropicProvider,
        "gemini": GeminiProvider,
        "ollama": OllamaProvider,
        "openrouter": OpenRouterProvider,
        "together": TogetherProvider,
        "groq": GroqProvider,
    }

    @classmethod
    def register(cls, name: str, provider_class: Type[Provider]) -> None:
        cls._providers[name] = provider_class

    @classmethod
    def create(cls, model: str, config: Config) -> Provider:
        """
        Build the provider for a model string.

        ``"ollama/llama3.1"`` selects the ``ollama`` provider with model
        ``llama3.1``. Without a registered prefix the whole string is the
        model name and the provider is guessed from it, so
        ``"meta-llama/llama-3.1-8b"`` goes to OpenRouter unchanged.

        Raises:
            ValueError: If the resolved provider is not registered.
        """
        prefix, _, name = model.partition("/")
        if name and prefix in cls._providers:
            provider_name, model_name = prefix, name
        else:
            provider_name, model_name = cls._infer_provider(model), model

        provider_class = cls._providers.get(provider_name)
        if provider_class is None:
            raise ValueError(f"Unknown provider: {provider_name}")
        return provider_class(model=model_name, config=config)

    @classmethod
    def _infer_provider(cls, model: str) -> str:
        lowered = model.lower()
        for prefixes, provider_name in MODEL_PREFIXES:
            if lowered.startswith(prefixes):
                return provider_name
        # OpenRouter carries the widest catalogue
        return "openrouter"

    @classmethod
    def available_providers(cls) -> List[str]:
        return sorted(cls._providers)
