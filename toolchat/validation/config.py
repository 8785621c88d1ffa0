"""
toolchat Configuration - Layered YAML settings validated with pydantic.

Settings come from three layers, lowest precedence first:

1. ``~/.toolchat/config.yaml`` (per user)
2. ``.toolchat/config.yaml`` in the working directory or any parent
3. Command-line overrides

Example ``.toolchat/config.yaml``::

    agent:
      model: gemini/gemini-2.5-flash-lite
      max_tool_iterations: 10
    server:
      command: python
      args: [weather_server.py]
    providers:
      gemini:
        api_key: ...
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError


class ConfigError(Exception):
    """Configuration is missing, unreadable, or invalid."""


DEFAULT_MODEL = "gemini/gemini-2.5-flash-lite"

CONFIG_FILENAME = "config.yaml"

API_KEY_ENV_VARS = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "groq": "GROQ_API_KEY",
    "together": "TOGETHER_API_KEY",
}


class ProviderConfig(BaseModel):
    """Credentials and endpoint for one model vendor."""

    api_key: Optional[str] = None
    api_base: Optional[str] = None
    enabled: bool = True


class AgentConfig(BaseModel):
    """How the agent talks to the model."""

    model: Optional[str] = None
    max_tokens: int = Field(default=1000, gt=0)
    temperature: float = 0.7
    timeout: int = 120
    max_tool_iterations: int = Field(default=10, ge=1)
    system_prompt: Optional[str] = None


class ServerConfig(BaseModel):
    """How to start the MCP tool server."""

    command: Optional[str] = None
    args: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)
    stderr_log: Optional[str] = None


class ToolChatConfig(BaseModel):
    """Complete toolchat configuration schema."""

    providers: Dict[str, ProviderConfig] = Field(default_factory=dict)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``. Nested dicts merge; anything else is replaced."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def read_yaml(path: Optional[Path]) -> Dict[str, Any]:
    """Parse a YAML mapping; a missing or empty file is an empty mapping."""
    if path is None or not path.is_file():
        return {}

    try:
        data = yaml.safe_load(path.read_text())
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to load config from {path}: {e}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping, got {type(data).__name__}")
    return data


class Config:
    """
    toolchat configuration manager.

    Holds the raw layers and validates their merge lazily, on first access
    to ``merged``.

    Example:
        >>> config = Config.load(overrides={"agent": {"model": "openai/gpt-4o"}})
        >>> config.get_default_model()
        'openai/gpt-4o'
    """

    GLOBAL_CONFIG_DIR = Path.home() / ".toolchat"
    LOCAL_CONFIG_DIR = ".toolchat"

    def __init__(
        self,
        global_config: Optional[Dict[str, Any]] = None,
        local_config: Optional[Dict[str, Any]] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ):
        self._layers = [global_config or {}, local_config or {}, overrides or {}]
        self._merged: Optional[ToolChatConfig] = None

    @classmethod
    def load(
        cls,
        path: Optional[Union[str, Path]] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> "Config":
        """
        Read the user and project config files.

        Args:
            path: Project config file to use instead of searching for one.
                It must exist.
            overrides: Values that win over both files.

        Raises:
            ConfigError: If a file can't be read or isn't a mapping.
        """
        if path is not None:
            local_path: Optional[Path] = Path(path)
            if not local_path.is_file():
                raise ConfigError(f"Config file not found: {path}")
        else:
            local_path = cls.find_local_config()

        return cls(
            global_config=read_yaml(cls.GLOBAL_CONFIG_DIR / CONFIG_FILENAME),
            local_config=read_yaml(local_path),
            overrides=overrides,
        )

    @classmethod
    def find_local_config(cls, start: Optional[Path] = None) -> Optional[Path]:
        """Nearest ``.toolchat/config.yaml`` at or above ``start`` (default: cwd)."""
        directory = (start or Path.cwd()).resolve()
        for candidate_dir in [directory, *directory.parents]:
            candidate = candidate_dir / cls.LOCAL_CONFIG_DIR / CONFIG_FILENAME
            if candidate.is_file():
                return candidate
        return None

    def get_merged_config(self) -> Dict[str, Any]:
        """All layers merged into one plain dict (not validated)."""
        merged: Dict[str, Any] = {}
        for layer in self._layers:
            merged = deep_merge(merged, layer)
        return merged

    @property
    def merged(self) -> ToolChatConfig:
        """The validated settings."""
        if self._merged is None:
            try:
                self._merged = ToolChatConfig.model_validate(self.get_merged_config())
            except ValidationError as e:
                raise ConfigError(f"Invalid configuration: {e}")
        return self._merged

    def get_default_model(self) -> str:
        return self.merged.agent.model or DEFAULT_MODEL

    def get_provider_config(self, provider_name: str) -> Optional[ProviderConfig]:
        return self.merged.providers.get(provider_name)

    def get_api_key(self, provider_name: str) -> Optional[str]:
        """API key from ``providers.<name>.api_key``, else the vendor's environment variable."""
        provider_config = self.get_provider_config(provider_name)
        if provider_config is not None and provider_config.api_key:
            return provider_config.api_key

        env_var = API_KEY_ENV_VARS.get(provider_name)
        return os.environ.get(env_var) if env_var else None
