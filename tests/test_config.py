#!/usr/bin/env python3
"""
Tests for configuration loading and merging.
Run with: python -m pytest tests/ -v
"""
import json
from pathlib import Path

import pytest

from config import Config, ConfigManager, ContextConfig, DEFAULT_MODEL_ORDER, LLMConfig, get_config_manager


class TestConfiguration:
    """Test configuration management."""

    def test_config_loading(self):
        config = get_config_manager().config
        assert isinstance(config, Config)
        assert hasattr(config, "llm")
        assert hasattr(config, "context")
        assert hasattr(config, "execution")
        assert hasattr(config, "security")

    def test_config_defaults(self):
        config = Config.default()
        assert config.llm.model_order == DEFAULT_MODEL_ORDER
        assert config.llm.model_order[0] == "gemini-2.5-flash"
        assert config.llm.temperature == 0.7
        assert config.llm.max_response_length == 500
        assert config.context.recent_turn_limit == 15
        assert config.context.summarized_turn_limit == 6
        assert config.context.history_char_budget == 2000
        assert config.execution.timeout_seconds == 30.0
        assert config.plugins.enabled == ()

    def test_empty_dict_uses_dataclass_defaults(self):
        config = Config.from_dict({})
        assert config.execution.shell_dialect == "auto"
        assert config.context.title_after == 4

    def test_config_file_loading(self, tmp_path):
        cfg = tmp_path / "config.json"
        cfg.write_text(
            '{"llm": {"model_order": ["gemini-2.0-flash"]}, "user": {"name": "Sam"}}',
            encoding="utf-8",
        )
        manager = ConfigManager(config_file=cfg)
        config = manager._load_config()
        assert config.llm.model_order == ("gemini-2.0-flash",)
        assert config.user.name == "Sam"
        assert config.llm.temperature == 0.7
        assert "Irene" in config.prompts.system_prompt_before

    def test_broken_file_falls_back_to_defaults(self, tmp_path):
        cfg = tmp_path / "config.json"
        cfg.write_text("{not json", encoding="utf-8")
        config = ConfigManager(config_file=cfg).config
        assert config.llm.model_order == DEFAULT_MODEL_ORDER

    def test_update_and_save(self, tmp_path):
        cfg = tmp_path / "nested" / "config.json"
        manager = ConfigManager(config_file=cfg)
        manager.update_config({"execution": {"shell_dialect": "windows"}})
        assert manager.config.execution.shell_dialect == "windows"
        saved = json.loads(cfg.read_text(encoding="utf-8"))
        assert saved["execution"]["shell_dialect"] == "windows"
        assert saved["llm"]["model_order"] == list(DEFAULT_MODEL_ORDER)
        assert ConfigManager(config_file=cfg).config.execution.shell_dialect == "windows"

    def test_validation(self):
        with pytest.raises(ValueError):
            LLMConfig(model_order=[])
        with pytest.raises(ValueError):
            Config.from_dict({"execution": {"shell_dialect": "fish"}})

    def test_turn_triggers_must_be_even(self):
        with pytest.raises(ValueError):
            ContextConfig(summary_every=5)
        with pytest.raises(ValueError):
            Config.from_dict({"context": {"title_after": 3}})
        with pytest.raises(ValueError):
            ContextConfig(summary_every=-2)
        assert ContextConfig(summary_every=0, title_after=6).title_after == 6

    def test_paths_resolve(self):
        config = Config.from_dict({"paths": {"config_dir": "/tmp/irene"}})
        assert config.paths.resolve("conversations.db") == Path("/tmp/irene/conversations.db")
        assert config.paths.resolve("/var/db/chat.db") == Path("/var/db/chat.db")
        assert str(config.paths.resolve(":memory:")) == ":memory:"

    def test_format_message(self):
        config = Config.default()
        wrapped = config.prompts.format_message("hi")
        assert wrapped.startswith(config.prompts.system_prompt_before + "\n\n")
        assert "\n\nUser: hi\n\n" in wrapped
        assert wrapped.endswith(config.prompts.context_after)
