#!/usr/bin/env python3
"""
Interactive terminal host for the Irene assistant.

Supported commands:
- /help                 Show help
- /new [TITLE]          Start a new chat
- /chats                List chats
- /load N               Switch to chat N from the last /chats listing
- /delete N             Delete chat N from the last /chats listing
- /models               Show the model rotation
- /model NAME           Pin a model for the next request
- /image PATH           Attach an image to the next message
- /quit                 Exit

Anything else is sent to the model. Proposed commands are shown with their risk level
and only run after an explicit "y".
"""
from __future__ import annotations

import argparse
import base64
import logging
import mimetypes
import sys
from pathlib import Path
from typing import List, Optional

from assistant import Assistant
from cloud_agent.response_parser import SystemCommandResponse, clean_response_text
from config import ConfigManager, get_config_manager
from local_agent.history_store import ChatInfo
from plugins import PluginManager

RISK_BADGE = {"LOW": "🟢 LOW", "MEDIUM": "🟡 MEDIUM", "HIGH": "🔴 HIGH"}


def image_to_data_uri(path: Path) -> str:
    mime = mimetypes.guess_type(path.name)[0] or ""
    if mime not in ("image/png", "image/jpeg", "image/webp"):
        raise ValueError(f"Unsupported image type for {path.name}: {mime or 'unknown'}")
    data = base64.b64encode(path.read_bytes()).decode("ascii")
    return f"data:{mime};base64,{data}"


def _confirm(prompt: str) -> bool:
    if not sys.stdin.isatty():
        # Non-interactive: deny
        return False
    try:
        ans = input(prompt).strip().lower()
    except EOFError:
        ans = ""
    return ans in {"y", "yes"}


def _print_chats(chats: List[ChatInfo], active: Optional[int]) -> None:
    if not chats:
        print("No chats yet.")
        return
    print("Chats:")
    for i, c in enumerate(chats, 1):
        mark = "*" if c.id == active else " "
        print(f" {mark}{i:2d}. {c.title}  ({c.message_count} messages, updated {c.updated_at})")


def print_help(plugins: Optional[PluginManager] = None) -> None:
    print("Commands:")
    print("  /help            Show this help")
    print("  /new [TITLE]     Start a new chat")
    print("  /chats           List chats")
    print("  /load N          Switch to chat N")
    print("  /delete N        Delete chat N")
    print("  /models          Show the model rotation")
    print("  /model NAME      Pin a model for the next request")
    print("  /image PATH      Attach an image to the next message")
    print("  /quit            Exit")
    if plugins is None:
        return
    loaded = plugins.list_plugins()
    print("\nPlugins:" if loaded else "\nPlugins: none loaded")
    for name, description in loaded:
        print(f"  {name:16s} {description}")
    print(f"Hook events: {', '.join(plugins.get_hook_names())}")


def handle_reply(app: Assistant, reply) -> None:
    parsed = reply.parsed
    if not isinstance(parsed, SystemCommandResponse):
        print(f"\nIrene: {reply.response}\n")
        return

    prose = clean_response_text(parsed.original_response)
    if prose:
        print(f"\nIrene: {prose}")
    directive = parsed.command
    command = app.translate_command_for_platform(directive.command)
    print("\n⚙  Proposed command")
    print(f"   Intention:   {directive.intention}")
    print(f"   Description: {directive.description}")
    print(f"   Risk:        {RISK_BADGE.get(directive.level, directive.level)}")
    print(f"   Command:     {command}")
    if not _confirm("Run this command? [y/N]: "):
        print("Skipped.\n")
        return

    result = app.run_confirmed_command(command)
    if result.success:
        print(f"✅ Done (exit {result.exit_code})")
    else:
        print(f"❌ {result.error}")
    print(f"\nIrene: {app.explain_command_result({'command': command}, result)}\n")


def main(argv: Optional[List[str]] = None) -> None:
    ap = argparse.ArgumentParser(description="Irene desktop assistant (terminal host)")
    ap.add_argument("--config", type=Path, help="Path to config.json")
    ap.add_argument("--verbose", action="store_true", help="Debug logging")
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )
    manager = ConfigManager(args.config) if args.config else get_config_manager()
    config = manager.config

    app = Assistant(config)
    app.plugins.discover(config.plugins.enabled)
    print("Irene: type /help for commands.\n")

    cached: List[ChatInfo] = app.list_chats()
    pending_images: List[str] = []
    pinned: Optional[str] = None
    try:
        while True:
            try:
                line = input("> ").strip()
            except EOFError:
                print()
                break
            if not line:
                continue
            if line in ("/quit", "/exit"):
                break
            if line == "/help":
                print_help(app.plugins)
                continue
            if line.startswith("/new"):
                parts = line.split(None, 1)
                chat_id = app.new_chat(parts[1] if len(parts) > 1 else None)
                print(f"Started chat {chat_id}.")
                continue
            if line == "/chats":
                cached = app.list_chats()
                _print_chats(cached, app.active_chat_id)
                continue
            if line.startswith("/load ") or line.startswith("/delete "):
                try:
                    idx = int(line.split()[1]) - 1
                except (IndexError, ValueError):
                    print("Usage: /load N | /delete N")
                    continue
                if not 0 <= idx < len(cached):
                    print("Invalid index")
                    continue
                chat = cached[idx]
                if line.startswith("/load"):
                    for turn in app.load_chat(chat.id):
                        print(f"  [{turn.role}] {turn.content}")
                    print(f"Loaded '{chat.title}'.")
                else:
                    app.delete_chat(chat.id)
                    cached = app.list_chats()
                    print(f"Deleted '{chat.title}'.")
                continue
            if line == "/models":
                for name in app.model_client.available_models():
                    mark = "*" if name == app.model_client.active_model else " "
                    print(f" {mark} {name}")
                continue
            if line.startswith("/model "):
                pinned = line.split(None, 1)[1].strip()
                print(f"📌 Next request uses {pinned}")
                continue
            if line.startswith("/image "):
                try:
                    pending_images.append(image_to_data_uri(Path(line.split(None, 1)[1]).expanduser()))
                    print(f"📎 {len(pending_images)} image(s) attached to the next message")
                except (OSError, ValueError) as e:
                    print(f"Attach failed: {e}")
                continue
            if line.startswith("/"):
                print("Unknown command. Type /help.")
                continue

            reply = app.send_user_message(line, pending_images, model=pinned)
            pending_images, pinned = [], None
            if reply.is_fallback:
                print(f"\nIrene: {reply.response}\n")
                continue
            handle_reply(app, reply)
    finally:
        app.close()


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\nBye.")
