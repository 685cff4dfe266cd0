#!/usr/bin/env python3
"""
Tests for reply classification, command cleaning and Windows translation.
Run with: python -m pytest tests/ -v
"""
import json

from cloud_agent.response_parser import (
    ChatResponse,
    CommandDirective,
    ResponseParser,
    SystemCommandResponse,
    clean_command,
    clean_response_text,
    is_system_command,
    normalize_level,
)
from local_agent.translator import convert_to_windows_command

FENCED = """Sure! Here is how to see your desktop:

```
{
  INTENTION: System Command
  COMMAND: ls ~/Desktop
  DESCRIPTION: lists desktop files
  LEVEL: LOW
}
```

Let me know if you need anything else."""


class TestParseResponse:
    """Command detection on model replies."""

    def setup_method(self):
        self.parser = ResponseParser()

    def test_braced_block_in_fence(self):
        parsed = self.parser.parse_response(FENCED)
        assert isinstance(parsed, SystemCommandResponse)
        assert parsed.type == "system_command"
        assert parsed.command == CommandDirective(
            intention="System Command",
            command="ls ~/Desktop",
            description="lists desktop files",
            level="LOW",
        )
        assert parsed.original_response == FENCED
        assert "INTENTION" in parsed.code_block

    def test_single_line_braced_block(self):
        reply = "```{INTENTION: System Command COMMAND: ls ~/Desktop DESCRIPTION: lists desktop files LEVEL: LOW}```"
        parsed = self.parser.parse_response(reply)
        assert parsed.type == "system_command"
        assert parsed.command.intention == "System Command"
        assert parsed.command.command == "ls ~/Desktop"
        assert parsed.command.description == "lists desktop files"
        assert parsed.command.level == "LOW"

    def test_keys_are_case_insensitive(self):
        reply = "```\n{ intention: run a command\ncommand: whoami\ndescription: shows user\nlevel: high }\n```"
        parsed = self.parser.parse_response(reply)
        assert parsed.type == "system_command"
        assert parsed.command.command == "whoami"
        assert parsed.command.level == "HIGH"

    def test_legacy_layout_defaults_to_medium(self):
        reply = "```\nINTENTION: Execute command\nCOMMAND: ipconfig\nDESCRIPTION: Shows network config\n```"
        parsed = self.parser.parse_response(reply)
        assert parsed.type == "system_command"
        assert parsed.command.command == "ipconfig"
        assert parsed.command.level == "MEDIUM"

    def test_first_matching_block_wins(self):
        reply = (
            "```python\nprint('hello')\n```\n"
            "```\n{INTENTION: System Command\nCOMMAND: dir\nDESCRIPTION: first\nLEVEL: LOW}\n```\n"
            "```\n{INTENTION: System Command\nCOMMAND: del x\nDESCRIPTION: second\nLEVEL: HIGH}\n```"
        )
        parsed = self.parser.parse_response(reply)
        assert parsed.command.description == "first"
        assert parsed.command.command == "dir"

    def test_non_system_intention_in_block_is_chat(self):
        reply = "```\n{INTENTION: Chat\nCOMMAND: none\nDESCRIPTION: greeting\nLEVEL: LOW}\n```"
        parsed = self.parser.parse_response(reply)
        assert isinstance(parsed, ChatResponse)

    def test_unfenced_directive(self):
        reply = "INTENTION: System Query\nCOMMAND: tasklist\nDESCRIPTION: shows processes\nLEVEL: Medium"
        parsed = self.parser.parse_response(reply)
        assert parsed.type == "system_command"
        assert parsed.code_block is None
        assert parsed.command.command == "tasklist"
        assert parsed.command.level == "MEDIUM"

    def test_plain_chat_returned_verbatim(self):
        reply = "Hello there, friend! How can I help you today?\n\nI'm all ears."
        parsed = self.parser.parse_response(reply)
        assert parsed == ChatResponse(reply, reply)
        assert parsed.message == reply

    def test_code_without_directive_is_chat(self):
        reply = "Try this:\n```python\nfor i in range(3):\n    print(i)\n```"
        parsed = self.parser.parse_response(reply)
        assert parsed.type == "chat"
        assert parsed.message == reply

    def test_empty_and_none(self):
        assert self.parser.parse_response("").type == "chat"
        assert self.parser.parse_response(None).type == "chat"

    def test_custom_classifier(self):
        strict = ResponseParser(classifier=lambda intention: intention.lower() == "system command")
        reply = "```\n{INTENTION: run something\nCOMMAND: dir\nDESCRIPTION: x\nLEVEL: LOW}\n```"
        assert strict.parse_response(reply).type == "chat"
        assert ResponseParser().parse_response(reply).type == "system_command"

    def test_directive_serialises(self):
        directive = self.parser.parse_response(FENCED).command
        assert json.loads(directive.to_json())["level"] == "LOW"


class TestHelpers:
    def test_keyword_classifier(self):
        assert is_system_command("System Command")
        assert is_system_command("List files in a specific directory")
        assert is_system_command("please EXECUTE this")
        assert not is_system_command("Chat")
        assert not is_system_command("greeting")

    def test_clean_command_strips_markdown(self):
        assert clean_command("**dir /a**") == "dir /a"
        assert clean_command("`ls -la`") == "ls -la"
        assert clean_command("- *whoami*") == "whoami"
        assert clean_command("> ls") == "ls"
        assert clean_command("/usr/bin/env") == "/usr/bin/env"

    def test_normalize_level(self):
        assert normalize_level("low") == "LOW"
        assert normalize_level("High risk!") == "HIGH"
        assert normalize_level("danger") == "MEDIUM"
        assert normalize_level(None) == "MEDIUM"

    def test_clean_response_text_removes_block(self):
        cleaned = clean_response_text(FENCED)
        assert "```" not in cleaned
        assert "INTENTION" not in cleaned
        assert "\n\n\n" not in cleaned
        assert cleaned.startswith("Sure! Here is how to see your desktop:")
        assert cleaned.endswith("Let me know if you need anything else.")


class TestWindowsTranslation:
    def test_home_and_ls(self):
        out = convert_to_windows_command("ls -la ~/docs")
        assert "dir" in out
        assert "%USERPROFILE%" in out
        assert "~" not in out
        assert out == "dir /a %USERPROFILE%\\docs"

    def test_home_path_prefix(self):
        assert convert_to_windows_command("cat /home/alice/notes.txt") == "type %USERPROFILE%\\notes.txt"

    def test_whole_word_only(self):
        assert convert_to_windows_command("echo lsof") == "echo lsof"
        assert convert_to_windows_command("rmdir build") == "rmdir build"

    def test_utility_table(self):
        assert convert_to_windows_command("ps") == "tasklist"
        assert convert_to_windows_command("pwd") == "cd"
        assert convert_to_windows_command("grep foo log.txt") == "findstr foo log.txt"
        assert convert_to_windows_command("mv a b") == "move a b"

    def test_parser_exposes_translation(self):
        assert ResponseParser().convert_to_windows_command("ls ~/Desktop") == "dir %USERPROFILE%\\Desktop"
