#!/usr/bin/env python3
"""
Classifies model replies as ordinary chat or as a proposed system command.

Two textual layouts are recognised, tried in this order inside every fenced block and,
failing that, against the whole reply:

    {                                   INTENTION: ...
      INTENTION: ...                    COMMAND: ...
      COMMAND: ...                      DESCRIPTION: ...
      DESCRIPTION: ...
      LEVEL: LOW|MEDIUM|HIGH
    }

Detection is keyword based and over-inclusive; nothing proposed here runs
without an explicit confirmation from the user.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import asdict, dataclass
from typing import Callable, List, Optional, Union

from local_agent.translator import convert_to_windows_command

logger = logging.getLogger(__name__)

RISK_LEVELS = ("LOW", "MEDIUM", "HIGH")
DEFAULT_LEVEL = "MEDIUM"

SYSTEM_KEYWORDS = (
    "system command",
    "system modification",
    "system",
    "command",
    "execute",
    "run",
    "list files",
    "directory",
    "file operation",
    "system query",
    "modification",
)

_CODE_BLOCK = re.compile(r"```[\s\S]*?```")
_FENCE_OPEN = re.compile(r"^```[\w-]*\n?")
_FENCE_CLOSE = re.compile(r"\n?```$")

_BRACED_LAYOUT = re.compile(
    r"\{\s*INTENTION:\s*(.+?)\s*COMMAND:\s*(.+?)\s*DESCRIPTION:\s*(.+?)\s*LEVEL:\s*(.+?)\s*\}",
    re.DOTALL | re.IGNORECASE,
)
_LINE_LAYOUT = re.compile(
    r"INTENTION:\s*(.+?)\s*\nCOMMAND:\s*(.+?)\s*\nDESCRIPTION:\s*(.+?)(?:\n|$)",
    re.DOTALL | re.IGNORECASE,
)
_INTENTION_LINE = re.compile(r"INTENTION:\s*(.+)", re.IGNORECASE)
_COMMAND_LINE = re.compile(r"COMMAND:\s*(.+)", re.IGNORECASE)
_DESCRIPTION_LINE = re.compile(r"DESCRIPTION:\s*(.+)", re.IGNORECASE)
_LEVEL_LINE = re.compile(r"LEVEL:\s*(.+)", re.IGNORECASE)
_LEVEL_WORD = re.compile(r"\b(LOW|MEDIUM|HIGH)\b", re.IGNORECASE)


@dataclass(frozen=True)
class CommandDirective:
    intention: str
    command: str
    description: str
    level: str = DEFAULT_LEVEL

    def to_json(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)


@dataclass(frozen=True)
class SystemCommandResponse:
    command: CommandDirective
    original_response: str
    code_block: Optional[str] = None
    type: str = "system_command"


@dataclass(frozen=True)
class ChatResponse:
    message: str
    original_response: str
    type: str = "chat"


ParsedResponse = Union[SystemCommandResponse, ChatResponse]


def is_system_command(intention: str) -> bool:
    lower = intention.lower()
    return any(k in lower for k in SYSTEM_KEYWORDS)


def normalize_level(raw: Optional[str]) -> str:
    """Map free text such as ``low risk`` or ``High!`` onto LOW/MEDIUM/HIGH."""
    if not raw:
        return DEFAULT_LEVEL
    m = _LEVEL_WORD.search(raw)
    return m.group(1).upper() if m else DEFAULT_LEVEL


def clean_command(cmd: str) -> str:
    cmd = re.sub(r"\*\*(.+?)\*\*", r"\1", cmd)
    cmd = re.sub(r"\*(.+?)\*", r"\1", cmd)
    cmd = re.sub(r"`(.+?)`", r"\1", cmd)
    cmd = re.sub(r"^[*\-+\s]*", "", cmd)
    cmd = re.sub(r"[*\-+\s]*$", "", cmd)
    cmd = re.sub(r"^[^\w/\\%]+", "", cmd)
    return cmd.strip()


def clean_response_text(response: str) -> str:
    text = _CODE_BLOCK.sub("", response)
    text = re.sub(r"\n\s*\n", "\n", text)
    return text.strip()


def extract_code_blocks(response: str) -> List[str]:
    blocks = []
    for m in _CODE_BLOCK.finditer(response):
        body = _FENCE_OPEN.sub("", m.group(0))
        body = _FENCE_CLOSE.sub("", body)
        blocks.append(body.strip())
    return blocks


class ResponseParser:
    """Turns raw model text into a :class:`ChatResponse` or :class:`SystemCommandResponse`.

    ``classifier`` decides whether an INTENTION value denotes a system command; swap it
    to tighten or loosen detection without touching extraction.
    """

    def __init__(self, classifier: Callable[[str], bool] = is_system_command):
        self.classifier = classifier

    def parse_response(self, response: str) -> ParsedResponse:
        response = response or ""
        logger.debug("Parsing response: %s...", response[:200])

        for block in extract_code_blocks(response):
            directive = self.parse_code_block(block)
            if directive:
                return SystemCommandResponse(directive, response, block)

        directive = self.parse_structured_format(response)
        if directive:
            return SystemCommandResponse(directive, response, None)

        return ChatResponse(response, response)

    def parse_code_block(self, content: str) -> Optional[CommandDirective]:
        m = _BRACED_LAYOUT.search(content)
        if m and self.classifier(m.group(1)):
            return CommandDirective(
                intention=m.group(1).strip(),
                command=clean_command(m.group(2).strip()),
                description=m.group(3).strip(),
                level=normalize_level(m.group(4)),
            )

        m = _LINE_LAYOUT.search(content)
        if m and self.classifier(m.group(1)):
            return CommandDirective(
                intention=m.group(1).strip(),
                command=clean_command(m.group(2).strip()),
                description=m.group(3).strip(),
            )
        return None

    def parse_structured_format(self, text: str) -> Optional[CommandDirective]:
        """Match the layouts against unfenced text, falling back to loose key lines."""
        directive = self.parse_code_block(text)
        if directive:
            return directive

        intention = _INTENTION_LINE.search(text)
        command = _COMMAND_LINE.search(text)
        description = _DESCRIPTION_LINE.search(text)
        if not (intention and command and description):
            return None
        if not self.classifier(intention.group(1)):
            return None
        level = _LEVEL_LINE.search(text)
        return CommandDirective(
            intention=intention.group(1).strip(),
            command=clean_command(command.group(1).strip()),
            description=description.group(1).strip(),
            level=normalize_level(level.group(1) if level else None),
        )

    def clean_command(self, cmd: str) -> str:
        return clean_command(cmd)

    def clean_response_text(self, response: str) -> str:
        return clean_response_text(response)

    def convert_to_windows_command(self, cmd: str) -> str:
        return convert_to_windows_command(cmd)

    def is_system_command(self, intention: str) -> bool:
        return self.classifier(intention)

