"""Best-effort rewrite of Unix-flavoured command lines into Windows shell syntax.

Translation is advisory: the output is never validated, and path rewriting is purely
syntactic, so flags that start with ``/`` get rewritten as well.
"""
from __future__ import annotations

import re
from typing import Dict

WINDOWS_PROFILE = "%USERPROFILE%"

# Whole-word substitutions, applied in insertion order: "ls -la" before "ls".
UNIX_TO_WINDOWS: Dict[str, str] = {
    "ls -la": "dir /a",
    "ls -l": "dir",
    "ls": "dir",
    "cat": "type",
    "grep": "findstr",
    "pwd": "cd",
    "ps": "tasklist",
    "kill": "taskkill",
    "cp": "copy",
    "mv": "move",
    "rm": "del",
    "mkdir": "mkdir",
    "rmdir": "rmdir",
    "clear": "cls",
    "which": "where",
}

_HOME_DIR = re.compile(r"/home/\w+")
_PATH_SEGMENT = re.compile(r"/([A-Za-z0-9_.-]+)")
_WORD_PATTERNS = [
    (re.compile(rf"\b{re.escape(unix)}\b"), windows)
    for unix, windows in UNIX_TO_WINDOWS.items()
]


def convert_to_windows_command(command: str) -> str:
    win = command.replace("~", WINDOWS_PROFILE)
    win = _HOME_DIR.sub(WINDOWS_PROFILE, win)
    win = _PATH_SEGMENT.sub(r"\\\1", win)
    for pattern, windows in _WORD_PATTERNS:
        win = pattern.sub(windows, win)
    return win
