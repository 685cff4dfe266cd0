from __future__ import annotations

import json
import logging
import os
import subprocess
import threading
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import psutil

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_OUTPUT = 1024 * 1024
NO_OUTPUT = "(Command completed with no output)"
STDERR_DIVIDER = "\n--- Warnings/Info ---\n"
MAX_LOG_CAPTURE = 8192  # chars per stream kept in the JSONL log


@dataclass
class CommandResult:
    success: bool
    output: str = ""
    stdout: str = ""
    stderr: str = ""
    error: str = ""
    exit_code: Optional[int] = None
    timed_out: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _truncate(s: str, limit: int = MAX_LOG_CAPTURE) -> str:
    if len(s) <= limit:
        return s
    return s[:limit] + f"\n… [truncated {len(s) - limit} chars]"


def _kill_tree(pid: int) -> None:
    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return
    procs = parent.children(recursive=True) + [parent]
    for p in procs:
        try:
            p.kill()
        except psutil.NoSuchProcess:
            pass
    psutil.wait_procs(procs, timeout=3)


class _Budget:
    def __init__(self, limit: int):
        self.remaining = limit
        self.overflow = threading.Event()
        self._lock = threading.Lock()

    def take(self, n: int) -> bool:
        with self._lock:
            self.remaining -= n
            if self.remaining < 0:
                self.overflow.set()
                return False
            return True


class _CappedReader(threading.Thread):
    """Drains one pipe, tripping ``overflow`` once the shared byte budget is spent."""

    def __init__(self, stream, budget: _Budget):
        super().__init__(daemon=True)
        self.stream = stream
        self.budget = budget
        self.chunks: List[bytes] = []

    def run(self) -> None:
        for chunk in iter(lambda: self.stream.read1(65536), b""):
            if not self.budget.take(len(chunk)):
                break
            self.chunks.append(chunk)
        self.stream.close()

    def text(self) -> str:
        return b"".join(self.chunks).decode("utf-8", errors="replace")


class CommandExecutor:
    """Runs confirmed shell commands with a wall-clock timeout and an output cap.

    Exceeding either limit kills the whole process tree and reports a failure; no
    partial output is returned as success.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT,
        log_file: Optional[Path] = None,
    ):
        self.timeout = timeout
        self.max_output_bytes = max_output_bytes
        self.log_file = Path(log_file) if log_file else None

    def run(self, command: str, timeout: Optional[float] = None, max_output_bytes: Optional[int] = None) -> CommandResult:
        command = (command or "").strip()
        if not command:
            return CommandResult(success=False, error="Empty command")

        timeout = self.timeout if timeout is None else timeout
        limit = self.max_output_bytes if max_output_bytes is None else max_output_bytes

        logger.info("Executing command: %s", command)
        try:
            proc = subprocess.Popen(
                command,
                shell=True,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            result = CommandResult(success=False, error=str(e), exit_code=127)
            self._write_log(command, result)
            return result

        budget = _Budget(limit)
        readers = [_CappedReader(proc.stdout, budget), _CappedReader(proc.stderr, budget)]
        for r in readers:
            r.start()

        timed_out = False
        try:
            # Poll so an output overflow can interrupt the wait
            waited = 0.0
            while True:
                try:
                    proc.wait(timeout=0.05)
                    break
                except subprocess.TimeoutExpired:
                    waited += 0.05
                    if budget.overflow.is_set():
                        break
                    if waited >= timeout:
                        timed_out = True
                        break
        finally:
            if proc.poll() is None:
                _kill_tree(proc.pid)
                proc.wait()
            for r in readers:
                r.join(timeout=5)

        stdout, stderr = readers[0].text(), readers[1].text()
        if timed_out:
            result = CommandResult(
                success=False,
                stdout=stdout,
                stderr=stderr,
                error=f"Command timed out after {timeout:g}s",
                exit_code=proc.returncode,
                timed_out=True,
            )
        elif budget.overflow.is_set():
            result = CommandResult(
                success=False,
                stdout=stdout,
                stderr=stderr,
                error=f"Command output exceeded {limit} bytes",
                exit_code=proc.returncode,
            )
        elif proc.returncode != 0:
            message = f"Command failed with exit code {proc.returncode}"
            result = CommandResult(
                success=False,
                stdout=stdout,
                stderr=stderr,
                error=f"{message}\n\nError output:\n{stderr}" if stderr else message,
                exit_code=proc.returncode,
            )
        else:
            output = stdout
            if stderr:
                output = output + STDERR_DIVIDER + stderr if output else stderr
            result = CommandResult(
                success=True,
                output=output or NO_OUTPUT,
                stdout=stdout,
                stderr=stderr,
                exit_code=0,
            )

        logger.info("Command finished: exit=%s success=%s", result.exit_code, result.success)
        self._write_log(command, result)
        return result

    def _write_log(self, command: str, result: CommandResult) -> None:
        if not self.log_file:
            return
        entry = {
            "ts": _now_iso(),
            "cmd": command,
            "cwd": os.getcwd(),
            "rc": result.exit_code,
            "success": result.success,
            "timed_out": result.timed_out,
            "stdout": _truncate(result.stdout),
            "stderr": _truncate(result.stderr),
        }
        try:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)
            with self.log_file.open("a", encoding="utf-8") as f:
                f.write(json.dumps(entry, ensure_ascii=False) + "\n")
        except OSError as e:
            # Best-effort logging; never raise
            logger.warning("Could not write command log %s: %s", self.log_file, e)
