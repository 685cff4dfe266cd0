#!/usr/bin/env python3
"""
Decides what conversation context travels with each user message.

- needs_summarization: every ``summary_every`` stored non-system turns
- needs_title_generation: once, when the count equals ``title_after`` and the title is
  still the ``Chat <timestamp>`` placeholder
- format_history_for_context: role-labelled lines under a hard character budget,
  newest turns chosen first, rendered oldest first
"""
from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

from config import ContextConfig, PromptsConfig, UserConfig
from local_agent.history_store import ChatHistoryStore, ConversationTurn, is_placeholder_title

logger = logging.getLogger(__name__)

HISTORY_HEADER = "Previous conversation context:\n"
SUMMARY_HEADER = "Conversation summary:\n"
CURRENT_MARKER = "Current message:\n"
SUMMARY_ELLIPSIS = "..."

_ROLE_LABELS = {"user": "User", "assistant": "Assistant", "system": "System"}


def identity_preamble(user: Optional[UserConfig]) -> str:
    if user is None or not (user.name or user.preferences):
        return ""
    info = "User Info: "
    if user.name:
        info += f"Name: {user.name}. "
    if user.preferences:
        info += f"Preferences: {user.preferences}"
    return info.rstrip() + "\n\n"


class ContextAssembler:
    def __init__(
        self,
        store: ChatHistoryStore,
        model_client: Any,
        context: Optional[ContextConfig] = None,
        prompts: Optional[PromptsConfig] = None,
        user: Optional[UserConfig] = None,
    ):
        self.store = store
        self.model_client = model_client
        self.context = context or ContextConfig()
        self.prompts = prompts or PromptsConfig()
        self.user = user

    # ---- housekeeping triggers ---------------------------------------------
    def needs_summarization(self, chat_id: int) -> bool:
        every = self.context.summary_every
        if every <= 0:
            return False
        count = self.store.count_turns(chat_id)
        return count > 0 and count % every == 0

    def needs_title_generation(self, chat_id: int) -> bool:
        if not is_placeholder_title(self.store.get_title(chat_id)):
            return False
        return self.store.count_turns(chat_id) == self.context.title_after

    def refresh_summary(self, chat_id: int) -> str:
        """Regenerate the standing summary and overwrite the stored one."""
        history = self.store.get_recent_turns(chat_id, self.context.summary_every)
        summary = self.model_client.generate_summary(history)
        self.store.put_summary(chat_id, summary)
        logger.info("Conversation %s summary refreshed (%d chars)", chat_id, len(summary))
        return summary

    def refresh_title(self, chat_id: int) -> str:
        turns = self.store.get_first_turns(chat_id, self.context.title_turns)
        title = self.model_client.generate_title(turns)
        if title:
            self.store.put_title(chat_id, title)
            logger.info("Conversation %s titled %r", chat_id, title)
        return title

    def run_housekeeping(self, chat_id: int) -> None:
        """Summary then title; failures are logged and never block the user turn."""
        try:
            if self.needs_summarization(chat_id):
                self.refresh_summary(chat_id)
        except Exception as e:
            logger.warning("Summary generation failed for chat %s: %s", chat_id, e)
        try:
            if self.needs_title_generation(chat_id):
                self.refresh_title(chat_id)
        except Exception as e:
            logger.warning("Title generation failed for chat %s: %s", chat_id, e)

    # ---- prompt assembly ----------------------------------------------------
    def history_limit(self, summary: Optional[str]) -> int:
        if summary:
            return self.context.summarized_turn_limit
        return self.context.recent_turn_limit

    def _summary_block(self, summary: str, budget: int) -> str:
        """Render the summary block, clipping the summary so the block fits *budget*."""
        text = summary.strip()
        room = budget - len(SUMMARY_HEADER) - 2
        if room <= len(SUMMARY_ELLIPSIS):
            logger.warning("Summary dropped: history budget of %d chars leaves no room", budget)
            return ""
        if len(text) > room:
            text = text[: room - len(SUMMARY_ELLIPSIS)] + SUMMARY_ELLIPSIS
        return f"{SUMMARY_HEADER}{text}\n\n"

    def format_history_for_context(self, history: Sequence[ConversationTurn], summary: Optional[str] = None) -> str:
        if not history and not summary:
            return ""

        budget = self.context.history_char_budget
        block = self._summary_block(summary, budget) if summary else ""
        # Header and closing blank line are charged up front
        used = len(block) + len(HISTORY_HEADER) + 1

        # Newest first until the budget runs out, then restore chronological order
        ordered = sorted(history, key=lambda t: (t.timestamp, t.id or 0))
        limit = self.history_limit(summary)
        window = ordered[-limit:] if limit > 0 else []
        chosen = []
        for turn in reversed(window):
            line = f"{_ROLE_LABELS.get(turn.role, 'System')}: {turn.content}\n"
            if used + len(line) > budget:
                break
            chosen.append(line)
            used += len(line)

        if chosen:
            block += HISTORY_HEADER + "".join(reversed(chosen)) + "\n"
        return block

    def build_prompt(self, chat_id: Optional[int], message: str) -> str:
        """Identity preamble + history block + ``Current message:`` marker, wrapped."""
        context = ""
        if chat_id is not None:
            summary = self.store.get_summary(chat_id)
            history = self.store.get_recent_turns(chat_id, self.history_limit(summary))
            context = self.format_history_for_context(history, summary)
        context = identity_preamble(self.user) + context
        with_context = context + CURRENT_MARKER + message if context else message
        return self.prompts.format_message(with_context)
