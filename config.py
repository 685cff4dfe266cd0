#!/usr/bin/env python3
"""
Configuration management for the Irene assistant.
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_MODEL_ORDER = (
    "gemini-2.5-flash",
    "gemini-2.5-flash-lite",
    "gemini-2.5-flash-live",
    "gemini-2.0-flash-live",
    "gemini-2.0-flash-lite",
    "gemini-2.0-flash",
    "gemini-2.5-pro",
    "gemma-3-27b",
    "gemma-3-12b",
    "gemini-1.5-flash",
    "gemini-1.5-pro",
)

DEFAULT_MULTIMODAL_MODELS = (
    "gemini-2.5-flash",
    "gemini-2.5-flash-lite",
    "gemini-2.0-flash",
    "gemini-2.0-flash-lite",
    "gemini-2.5-pro",
    "gemini-2.0-flash-exp",
)

DEFAULT_SYSTEM_PROMPT = """You are Irene, a magical system assistant. Your task is to analyze user messages and respond based on intention:

The 2 intention categories are:
1. Chat - General conversation, greetings, casual talk.
2. System Modification - Requests to change system settings, preferences, or configurations or things that require system access.

IMPORTANT: For System Modification intention, respond with this EXACT format in a code block:
{
  INTENTION: System Command
  COMMAND: [the actual command to execute]
  DESCRIPTION: [brief explanation of what the command does]
  LEVEL: danger level of the command from LOW MEDIUM HIGH
}

For all other intentions, respond normally as Irene.

You will receive conversation history when available. Use it to reference previous topics,
build upon earlier conversations and keep continuity.

Always use Windows PowerShell/CMD commands for system operations."""

DEFAULT_CONFIG: Dict[str, Any] = {
    "llm": {
        "model_order": list(DEFAULT_MODEL_ORDER),
        "multimodal_models": list(DEFAULT_MULTIMODAL_MODELS),
        "temperature": 0.7,
        "top_p": 0.8,
        "top_k": 40,
        "max_output_tokens": 2048,
        "max_response_length": 500,
        "api_key": "",
    },
    "prompts": {
        "system_prompt_before": DEFAULT_SYSTEM_PROMPT,
        "context_after": (
            "Analyze the above message and respond according to its intention. For System Commands, "
            "use the exact format with INTENTION, COMMAND, DESCRIPTION and LEVEL."
        ),
        "fallback_response": "Oh my! Something went wrong! Please try asking me again.",
        "command_output_parser_prompt": (
            "You are Irene, a system assistant. A user has executed a system command and you need "
            "to explain the output in a friendly, human-readable way."
        ),
        "conversation_summary_prompt": (
            "Please create a concise summary of the conversation so far. Focus on:\n"
            "1. Main topics discussed\n"
            "2. Important information shared\n"
            "3. User preferences or requirements mentioned\n"
            "4. Any ongoing tasks or requests\n"
            "5. Key decisions or conclusions\n\n"
            "Keep the summary under 300 words."
        ),
    },
    "context": {
        "recent_turn_limit": 15,
        "summarized_turn_limit": 6,
        "history_char_budget": 2000,
        "summary_every": 30,
        "title_after": 4,
        "title_turns": 4,
    },
    "execution": {
        "timeout_seconds": 30.0,
        "max_output_bytes": 1024 * 1024,
        "shell_dialect": "auto",
        "log_commands": True,
    },
    "paths": {
        "config_dir": "~/.config/irene-assistant",
        "history_db": "conversations.db",
    },
    "user": {
        "name": "",
        "preferences": "",
    },
    "plugins": {
        "enabled": [],
    },
    "security": {
        "prefer_keyring": True,
    },
}


@dataclass(frozen=True)
class LLMConfig:
    model_order: Tuple[str, ...] = DEFAULT_MODEL_ORDER
    multimodal_models: Tuple[str, ...] = DEFAULT_MULTIMODAL_MODELS
    temperature: float = 0.7
    top_p: float = 0.8
    top_k: int = 40
    max_output_tokens: int = 2048
    max_response_length: int = 500
    api_key: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "model_order", tuple(self.model_order))
        object.__setattr__(self, "multimodal_models", tuple(self.multimodal_models))
        if not self.model_order:
            raise ValueError("llm.model_order must name at least one model")


@dataclass(frozen=True)
class PromptsConfig:
    system_prompt_before: str = DEFAULT_SYSTEM_PROMPT
    context_after: str = ""
    fallback_response: str = "Something went wrong. Please try again."
    command_output_parser_prompt: str = ""
    conversation_summary_prompt: str = "Please summarize the conversation so far concisely."

    def format_message(self, message: str) -> str:
        """Wrap *message* with the static system prompt and trailing context."""
        full = ""
        if self.system_prompt_before:
            full += self.system_prompt_before + "\n\n"
        full += f"User: {message}"
        if self.context_after:
            full += "\n\n" + self.context_after
        return full


@dataclass(frozen=True)
class ContextConfig:
    recent_turn_limit: int = 15
    summarized_turn_limit: int = 6
    history_char_budget: int = 2000
    summary_every: int = 30
    title_after: int = 4
    title_turns: int = 4

    def __post_init__(self) -> None:
        # Triggers are checked before each exchange, and an exchange stores two turns
        for name in ("summary_every", "title_after"):
            value = getattr(self, name)
            if value < 0 or value % 2:
                raise ValueError(f"context.{name} must be an even, non-negative turn count, got {value}")


@dataclass(frozen=True)
class ExecutionConfig:
    timeout_seconds: float = 30.0
    max_output_bytes: int = 1024 * 1024
    shell_dialect: str = "auto"  # auto | windows | posix
    log_commands: bool = True

    def __post_init__(self) -> None:
        if self.shell_dialect not in ("auto", "windows", "posix"):
            raise ValueError(f"Unknown execution.shell_dialect: {self.shell_dialect!r}")


@dataclass(frozen=True)
class PathsConfig:
    config_dir: str = "~/.config/irene-assistant"
    history_db: str = "conversations.db"

    def resolve(self, name: str) -> Path:
        """Resolve *name* relative to the config directory unless absolute."""
        if name == ":memory:":
            return Path(name)
        p = Path(os.path.expanduser(name))
        if p.is_absolute():
            return p
        return Path(os.path.expanduser(self.config_dir)) / p


@dataclass(frozen=True)
class UserConfig:
    name: str = ""
    preferences: str = ""


@dataclass(frozen=True)
class PluginsConfig:
    enabled: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "enabled", tuple(self.enabled))


@dataclass(frozen=True)
class SecurityConfig:
    prefer_keyring: bool = True


@dataclass(frozen=True)
class Config:
    llm: LLMConfig
    prompts: PromptsConfig
    context: ContextConfig
    execution: ExecutionConfig
    paths: PathsConfig
    user: UserConfig
    plugins: PluginsConfig
    security: SecurityConfig

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Config:
        return cls(
            llm=LLMConfig(**data.get("llm", {})),
            prompts=PromptsConfig(**data.get("prompts", {})),
            context=ContextConfig(**data.get("context", {})),
            execution=ExecutionConfig(**data.get("execution", {})),
            paths=PathsConfig(**data.get("paths", {})),
            user=UserConfig(**data.get("user", {})),
            plugins=PluginsConfig(**data.get("plugins", {})),
            security=SecurityConfig(**data.get("security", {})),
        )

    @classmethod
    def default(cls) -> Config:
        return cls.from_dict(DEFAULT_CONFIG)

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "llm": asdict(self.llm),
            "prompts": asdict(self.prompts),
            "context": asdict(self.context),
            "execution": asdict(self.execution),
            "paths": asdict(self.paths),
            "user": asdict(self.user),
            "plugins": asdict(self.plugins),
            "security": asdict(self.security),
        }
        # JSON has no tuples
        out["llm"]["model_order"] = list(self.llm.model_order)
        out["llm"]["multimodal_models"] = list(self.llm.multimodal_models)
        out["plugins"]["enabled"] = list(self.plugins.enabled)
        return out


class ConfigManager:
    def __init__(self, config_file: Optional[Path] = None):
        if config_file is None:
            config_dir = Path(os.path.expanduser(DEFAULT_CONFIG["paths"]["config_dir"]))
            config_file = config_dir / "config.json"
        self.config_file = Path(config_file)
        self._config: Optional[Config] = None

    @property
    def config(self) -> Config:
        if self._config is None:
            self._config = self._load_config()
        return self._config

    def _load_config(self) -> Config:
        if self.config_file.exists():
            try:
                with open(self.config_file, "r", encoding="utf-8") as f:
                    data = json.load(f)
                merged = self._deep_merge(DEFAULT_CONFIG, data)
                return Config.from_dict(merged)
            except Exception as e:
                logger.warning("Failed to load config %s: %s", self.config_file, e)
        return Config.from_dict(DEFAULT_CONFIG)

    def save_config(self) -> None:
        try:
            self.config_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_file, "w", encoding="utf-8") as f:
                json.dump(self.config.to_dict(), f, indent=2)
            try:
                os.chmod(self.config_file, 0o600)
            except OSError:
                pass
        except OSError as e:
            logger.error("Error saving config %s: %s", self.config_file, e)

    def update_config(self, updates: Dict[str, Any]) -> None:
        current = self.config.to_dict()
        merged = self._deep_merge(current, updates)
        self._config = Config.from_dict(merged)
        self.save_config()

    def reload(self) -> Config:
        self._config = None
        return self.config

    def _deep_merge(self, base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        result = base.copy()
        for key, value in update.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value
        return result


# Global singleton
_config_manager: Optional[ConfigManager] = None


def get_config_manager() -> ConfigManager:
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager


def get_config() -> Config:
    return get_config_manager().config
