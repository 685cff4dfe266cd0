#!/usr/bin/env python3
"""
Tests for the terminal host.
"""
import json

import pytest

import assistant_cli
from plugins import PluginManager


def test_image_to_data_uri(tmp_path):
    img = tmp_path / "shot.png"
    img.write_bytes(b"\x89PNG")
    assert assistant_cli.image_to_data_uri(img) == "data:image/png;base64,iVBORw=="


def test_unsupported_image(tmp_path):
    doc = tmp_path / "notes.txt"
    doc.write_text("hi", encoding="utf-8")
    with pytest.raises(ValueError):
        assistant_cli.image_to_data_uri(doc)


def test_command_loop(tmp_path, monkeypatch, capsys):
    cfg = tmp_path / "config.json"
    cfg.write_text(
        json.dumps({
            "llm": {"model_order": ["m-a", "m-b"]},
            "paths": {"config_dir": str(tmp_path)},
        }),
        encoding="utf-8",
    )
    lines = iter(["/help", "/models", "/new Groceries", "/chats", "/bogus", "/quit"])
    monkeypatch.setattr("builtins.input", lambda prompt="": next(lines))

    assistant_cli.main(["--config", str(cfg)])

    out = capsys.readouterr().out
    assert "/image PATH" in out
    assert "Plugins: none loaded" in out
    assert "Hook events: post_response, pre_execute, post_execute" in out
    assert " * m-a" in out
    assert "Groceries" in out
    assert "Unknown command" in out
    assert (tmp_path / "conversations.db").exists()


def test_help_lists_plugins(capsys):
    manager = PluginManager()
    manager.register_plugin("audit", "Logs every executed command")
    manager.add_hook("on_title", lambda **kw: None)
    assistant_cli.print_help(manager)

    out = capsys.readouterr().out
    assert "Plugins:\n" in out
    assert "audit" in out and "Logs every executed command" in out
    assert out.rstrip().endswith("post_execute, on_title")
