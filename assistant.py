#!/usr/bin/env python3
# Host-facing API for the Irene assistant:
# - Sends user text (+ optional screenshots) through the context assembler and model client
# - Persists user/assistant/system turns in the history store
# - Classifies replies as chat or a proposed command
# - Translates and runs commands only after the host confirmed them
# - Explains command output through the model
#
# Every model failure is converted to the configured fallback text here.

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from cloud_agent.gemini_client import ModelClient
from cloud_agent.response_parser import (
    CommandDirective,
    ParsedResponse,
    ResponseParser,
    SystemCommandResponse,
)
from config import Config
from local_agent.executor import CommandExecutor, CommandResult
from local_agent.history_store import ChatHistoryStore, ChatInfo, ConversationTurn
from local_agent.translator import convert_to_windows_command
from plugins import PluginManager
from runtime.context_assembler import ContextAssembler

logger = logging.getLogger(__name__)

LOAD_CHAT_LIMIT = 50
FALLBACK_SUFFIX = " (fallback)"


@dataclass
class SendResult:
    response: str
    token_usage: Dict[str, Any] = field(default_factory=dict)
    is_fallback: bool = False
    parsed: Optional[ParsedResponse] = None
    chat_id: Optional[int] = None


class Assistant:
    def __init__(
        self,
        config: Config,
        *,
        store: Optional[ChatHistoryStore] = None,
        model_client: Optional[ModelClient] = None,
        executor: Optional[CommandExecutor] = None,
        parser: Optional[ResponseParser] = None,
        plugins: Optional[PluginManager] = None,
    ):
        self.config = config
        self.store = store or ChatHistoryStore(config.paths.resolve(config.paths.history_db))
        self.model_client = model_client or ModelClient(
            config.llm, config.prompts, prefer_keyring=config.security.prefer_keyring
        )
        if executor is None:
            log_file = config.paths.resolve("command_log.jsonl") if config.execution.log_commands else None
            executor = CommandExecutor(
                timeout=config.execution.timeout_seconds,
                max_output_bytes=config.execution.max_output_bytes,
                log_file=log_file,
            )
        self.executor = executor
        self.parser = parser or ResponseParser()
        self.plugins = plugins or PluginManager()
        self.context = ContextAssembler(
            self.store, self.model_client, config.context, config.prompts, config.user
        )
        self.active_chat_id: Optional[int] = None

    # ---- chat management ---------------------------------------------------
    def new_chat(self, title: Optional[str] = None) -> int:
        chat_id = self.store.create_chat(title)
        self.active_chat_id = chat_id
        return chat_id

    def load_chat(self, chat_id: int) -> List[ConversationTurn]:
        if not self.store.chat_exists(chat_id):
            raise KeyError(f"No chat with id {chat_id}")
        self.active_chat_id = chat_id
        logger.info("Current chat: %s", chat_id)
        return self.store.get_recent_turns(chat_id, LOAD_CHAT_LIMIT)

    def list_chats(self) -> List[ChatInfo]:
        return self.store.list_chats()

    def delete_chat(self, chat_id: int) -> None:
        self.store.delete_chat(chat_id)
        if self.active_chat_id == chat_id:
            self.active_chat_id = None

    # ---- request/response cycle ---------------------------------------------
    def send_user_message(
        self,
        text: str,
        images: Sequence[str] = (),
        model: Optional[str] = None,
    ) -> SendResult:
        if self.active_chat_id is None:
            self.new_chat()
        chat_id = self.active_chat_id

        try:
            if model:
                self.model_client.set_model(model)
            self.context.run_housekeeping(chat_id)
            prompt = self.context.build_prompt(chat_id, text)
            logger.info("Calling model with %d image(s)", len(images or ()))
            result = self.model_client.generate_content(prompt, images)
        except Exception as e:
            logger.error("API call failed: %s", e)
            fallback = self.config.prompts.fallback_response
            self.store.append_turn(chat_id, "user", text)
            self.store.append_turn(chat_id, "assistant", fallback + FALLBACK_SUFFIX)
            return SendResult(fallback, is_fallback=True, chat_id=chat_id)

        parsed = self.parse_assistant_response(result.text)
        self.store.append_turn(chat_id, "user", text)
        if isinstance(parsed, SystemCommandResponse):
            self.store.append_turn(
                chat_id, "assistant", result.text, "command_directive", parsed.command.to_json()
            )
        else:
            self.store.append_turn(chat_id, "assistant", result.text)
        return SendResult(result.text, result.token_usage, False, parsed, chat_id)

    def parse_assistant_response(self, text: str) -> ParsedResponse:
        parsed = self.parser.parse_response(text)
        self.plugins.hook("post_response", parsed=parsed)
        return parsed

    def _windows_dialect(self) -> bool:
        dialect = self.config.execution.shell_dialect
        if dialect == "auto":
            return os.name == "nt"
        return dialect == "windows"

    def translate_command_for_platform(self, command: str) -> str:
        if self._windows_dialect():
            return convert_to_windows_command(command)
        return command

    def run_confirmed_command(self, command: Union[str, CommandDirective]) -> CommandResult:
        """Run a command the user already confirmed. Never raises."""
        if isinstance(command, CommandDirective):
            command = command.command
        replaced = self.plugins.hook("pre_execute", command=command)
        if isinstance(replaced, str):
            command = replaced

        result = self.executor.run(
            command,
            timeout=self.config.execution.timeout_seconds,
            max_output_bytes=self.config.execution.max_output_bytes,
        )
        self._record_command(command.strip(), result)
        self.plugins.hook("post_execute", command=command, result=result)
        return result

    def _record_command(self, command: str, result: CommandResult) -> None:
        if self.active_chat_id is None or not command:
            return
        info = json.dumps({
            "command": command,
            "timestamp": datetime.now().isoformat(),
            "success": result.success,
        })
        if result.success:
            content = f"Command executed: {command}\nOutput: {result.output}"
        else:
            content = f"Command failed: {command}\nError: {result.error}"
        self.store.append_turn(self.active_chat_id, "system", content, "command_result", info)

    def explain_command_result(
        self,
        command_info: Union[Mapping[str, Any], CommandDirective, str],
        result: CommandResult,
    ) -> str:
        if isinstance(command_info, CommandDirective):
            command_info = {"command": command_info.command, "description": command_info.description}
        elif isinstance(command_info, str):
            command_info = {"command": command_info}
        try:
            return self.model_client.parse_command_output(command_info, result)
        except Exception as e:
            logger.error("Command explanation failed: %s", e)
            return self.config.prompts.fallback_response

    def close(self) -> None:
        self.store.close()
