#!/usr/bin/env python3
from __future__ import annotations

import base64
import binascii
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from google import genai
from google.genai import types

from config import LLMConfig, PromptsConfig

logger = logging.getLogger(__name__)

KEYRING_SERVICE = "irene_assistant"
KEYRING_USER = "gemini_api_key"
PLACEHOLDER_KEYS = {"", "YOUR_GEMINI_API_KEY", "KEY HERE"}

TITLE_MAX_CHARS = 50
OUTPUT_EXCERPT_CHARS = 2000
ERROR_EXCERPT_CHARS = 1000

_DATA_URI = re.compile(r"^data:image/(png|jpeg|jpg|webp);base64,(.+)$", re.DOTALL)


# ---- Errors ------------------------------------------------------------------
class ModelClientError(RuntimeError):
    pass


class ConfigurationError(ModelClientError):
    """Missing or placeholder API credential."""


class QuotaExhaustedError(ModelClientError):
    def __init__(self, message: str, model: Optional[str] = None):
        super().__init__(message)
        self.model = model


class AllModelsExhaustedError(QuotaExhaustedError):
    pass


class ResponseShapeError(ModelClientError):
    """A successful reply without any candidate text."""


def is_quota_error(exc: BaseException) -> bool:
    """Decide whether *exc* means the active model ran out of quota.

    This is a substring match on the provider's error text; update it here if the
    backend changes its error format.
    """
    text = str(exc).lower()
    return "quota" in text or "resource_exhausted" in text


# ---- API key -----------------------------------------------------------------
def _load_api_key(configured: str = "", prefer_keyring: bool = True) -> str:
    """
    Load the Gemini API key with priority:
    1. ``llm.api_key`` from the config file
    2. Environment variable GEMINI_API_KEY
    3. System keyring (if available and preferred)
    4. Key file (~/.config/irene-assistant/gemini_api_key)

    Raises ConfigurationError if no usable key is found.
    """
    key = (configured or "").strip()
    if key not in PLACEHOLDER_KEYS:
        logger.debug("Using API key from config")
        return key

    key = os.getenv("GEMINI_API_KEY", "").strip()
    if key not in PLACEHOLDER_KEYS:
        logger.debug("Using API key from environment variable")
        return key

    if prefer_keyring:
        try:
            import keyring
            key = (keyring.get_password(KEYRING_SERVICE, KEYRING_USER) or "").strip()
            if key not in PLACEHOLDER_KEYS:
                logger.debug("Using API key from system keyring")
                return key
        except ImportError:
            logger.debug("keyring not available, skipping keyring lookup")
        except Exception as e:
            logger.warning("Failed to access keyring: %s", e)

    key_file = Path(os.path.expanduser("~/.config/irene-assistant/gemini_api_key"))
    if key_file.is_file():
        try:
            key = key_file.read_text(encoding="utf-8").strip()
            if key not in PLACEHOLDER_KEYS:
                logger.debug("Using API key from %s", key_file)
                return key
        except OSError as e:
            logger.warning("Failed to read %s: %s", key_file, e)

    raise ConfigurationError(
        "GEMINI_API_KEY not found. Set it using one of these methods:\n"
        "1. llm.api_key in ~/.config/irene-assistant/config.json\n"
        "2. Environment variable: export GEMINI_API_KEY='your-key-here'\n"
        "3. System keyring: keyring set irene_assistant gemini_api_key\n"
        "4. Key file: echo 'your-key-here' > ~/.config/irene-assistant/gemini_api_key\n"
    )


# ---- Model selection ---------------------------------------------------------
@dataclass(frozen=True)
class Auto:
    """Rotation cursor at ``index`` into the model order."""
    index: int


@dataclass(frozen=True)
class Manual:
    """One-shot pin to ``name``; ``index`` is where rotation resumes."""
    name: str
    index: int


ModelSelection = Union[Auto, Manual]


@dataclass
class GenerationResult:
    text: str
    token_usage: Dict[str, Any] = field(default_factory=dict)
    model: str = ""


def _usage_to_dict(usage: Any) -> Dict[str, Any]:
    if usage is None:
        return {}
    if isinstance(usage, Mapping):
        return dict(usage)
    if hasattr(usage, "model_dump"):
        return usage.model_dump(mode="json", by_alias=True, exclude_none=True)
    return dict(vars(usage))


def _first_text(response: Any) -> Optional[str]:
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return None
    content = getattr(candidates[0], "content", None)
    parts = getattr(content, "parts", None) or []
    if not parts:
        return None
    return getattr(parts[0], "text", None)


def image_parts(images: Sequence[str]) -> List[types.Part]:
    """Build inline-data parts from data URIs, dropping anything malformed."""
    parts: List[types.Part] = []
    for uri in images or ():
        m = _DATA_URI.match(uri or "")
        if not m:
            logger.warning("Dropping image that is not a png/jpeg/webp data URI")
            continue
        subtype = "jpeg" if m.group(1) == "jpg" else m.group(1)
        try:
            data = base64.b64decode(m.group(2), validate=True)
        except (binascii.Error, ValueError):
            logger.warning("Dropping image with undecodable base64 payload")
            continue
        parts.append(types.Part.from_bytes(data=data, mime_type=f"image/{subtype}"))
    return parts


class ModelClient:
    """Gemini ``generateContent`` caller with quota-driven model rotation.

    The selection is either ``Auto(i)`` (cursor into ``llm.model_order``) or
    ``Manual(name, i)``. A manual pin lasts for exactly one attempt: afterwards, success or
    failure, the selection is ``Auto(i)``, and a quota failure then tries every rotation entry.
    """

    def __init__(
        self,
        llm: LLMConfig,
        prompts: Optional[PromptsConfig] = None,
        *,
        api_key: Optional[str] = None,
        prefer_keyring: bool = True,
        client: Any = None,
    ):
        self.llm = llm
        self.prompts = prompts or PromptsConfig()
        self.model_order: List[str] = list(llm.model_order)
        self.selection: ModelSelection = Auto(0)
        self.last_quota_error: Optional[BaseException] = None
        self._api_key = api_key
        self._prefer_keyring = prefer_keyring
        self._client = client

    # -- selection ---------------------------------------------------------
    @property
    def active_model(self) -> str:
        if isinstance(self.selection, Manual):
            return self.selection.name
        return self.model_order[self.selection.index]

    @property
    def current_model(self) -> str:
        return self.model_order[self.selection.index]

    def available_models(self) -> List[str]:
        return list(self.model_order)

    def is_multimodal(self, model: str) -> bool:
        return model in self.llm.multimodal_models

    def set_model(self, name: str) -> None:
        if name in self.model_order:
            self.selection = Auto(self.model_order.index(name))
        else:
            self.selection = Manual(name, self.selection.index)
        logger.info("Model manually set to: %s", name)

    def _advance(self) -> None:
        sel = self.selection
        self.selection = Auto((sel.index + 1) % len(self.model_order))

    # -- transport ---------------------------------------------------------
    def _get_client(self):
        """Lazy-init the Gemini client (avoids failing on import without an API key)."""
        if self._client is None:
            if self._api_key is None:
                key = _load_api_key(self.llm.api_key, self._prefer_keyring)
            elif self._api_key.strip() in PLACEHOLDER_KEYS:
                raise ConfigurationError("Invalid API key. Please configure llm.api_key or GEMINI_API_KEY")
            else:
                key = self._api_key.strip()
            self._client = genai.Client(api_key=key)
        return self._client

    def _generation_config(self) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(
            max_output_tokens=self.llm.max_output_tokens,
            temperature=self.llm.temperature,
            top_p=self.llm.top_p,
            top_k=self.llm.top_k,
        )

    def _trim(self, text: str) -> str:
        limit = self.llm.max_response_length
        if limit and len(text) > limit:
            return text[: max(0, limit - 3)] + "..."
        return text

    def _request(self, model: str, contents: List[types.Content], config: types.GenerateContentConfig) -> GenerationResult:
        logger.info("Using model: %s", model)
        response = self._get_client().models.generate_content(
            model=model,
            contents=contents,
            config=config,
        )
        text = _first_text(response)
        if not text:
            raise ResponseShapeError("No text found in API response")
        usage = _usage_to_dict(getattr(response, "usage_metadata", None))
        if usage:
            logger.info(
                "Token usage - In: %s, Out: %s, Total: %s",
                usage.get("promptTokenCount"),
                usage.get("candidatesTokenCount"),
                usage.get("totalTokenCount"),
            )
        return GenerationResult(self._trim(text), usage, model)

    # -- public API --------------------------------------------------------
    def generate_content(self, message: str, images: Sequence[str] = ()) -> GenerationResult:
        parts = image_parts(images)
        has_images = bool(parts)
        parts.append(types.Part.from_text(text=message))
        contents = [types.Content(role="user", parts=parts)]
        config = self._generation_config()

        if has_images and not self.is_multimodal(self.active_model):
            logger.info("Images attached, switching from %s to %s", self.active_model, self.model_order[0])
            self.selection = Auto(0)

        attempts = 0
        max_attempts = len(self.model_order)
        while attempts < max_attempts:
            model = self.active_model
            pinned = isinstance(self.selection, Manual)
            try:
                result = self._request(model, contents, config)
            except ModelClientError:
                raise
            except Exception as e:
                if not is_quota_error(e):
                    raise
                logger.warning("Model %s quota exceeded, trying next model", model)
                self.last_quota_error = e
                # The pinned model is outside the rotation budget
                if not pinned:
                    self._advance()
                    attempts += 1
                continue
            finally:
                # A pin lasts for exactly one attempt, whatever its outcome
                if pinned:
                    self.selection = Auto(self.selection.index)
            return result

        logger.error("All %d models exceeded quota", max_attempts)
        raise AllModelsExhaustedError("All models exceeded quota. Please try again later.")

    def generate_summary(self, history: Sequence[Any]) -> str:
        conversation = "Conversation to summarize:\n\n"
        for turn in history:
            if turn.role == "system":
                continue
            label = "User" if turn.role == "user" else "Assistant"
            conversation += f"{label}: {turn.content}\n\n"
        prompt = self.prompts.conversation_summary_prompt + "\n\n" + conversation
        return self.generate_content(prompt).text

    def generate_title(self, messages: Sequence[Any]) -> str:
        conversation = "First messages of a conversation:\n\n"
        for turn in messages:
            label = "User" if turn.role == "user" else "Assistant"
            conversation += f"{label}: {turn.content}\n\n"
        prompt = (
            "Generate a short, descriptive title (2-6 words) for this conversation. "
            "Only respond with the title, nothing else.\n\n" + conversation
        )
        title = self.generate_content(prompt).text.strip()
        title = re.sub(r"^[\"']|[\"']$", "", title)
        return title[:TITLE_MAX_CHARS]

    def parse_command_output(self, command_info: Mapping[str, Any], result: Any) -> str:
        command = command_info.get("command", "")
        preamble = self.prompts.command_output_parser_prompt
        preamble = preamble + "\n\n" if preamble else ""
        if result.success and result.output:
            output = result.output
            if len(output) > OUTPUT_EXCERPT_CHARS:
                output = output[:OUTPUT_EXCERPT_CHARS] + "\n... (output truncated)"
            prompt = (
                f'{preamble}I executed this system command: "{command}"\n\n'
                "The command completed successfully with the following output:\n"
                f"```\n{output}\n```\n\n"
                "Please explain what this output means in a friendly, human-readable way. Focus on:\n"
                "1. What the command did\n"
                "2. What the results show\n"
                "3. Any important information or patterns in the output\n"
                "4. Whether everything looks normal or if there are any concerns"
            )
        else:
            error = result.error or result.stderr or "Unknown error occurred"
            if len(error) > ERROR_EXCERPT_CHARS:
                error = error[:ERROR_EXCERPT_CHARS] + "\n... (error truncated)"
            prompt = (
                f'{preamble}I tried to execute this system command: "{command}"\n\n'
                "But it failed with this error:\n"
                f"```\n{error}\n```\n\n"
                "Please explain what went wrong in a friendly, human-readable way. Help me understand:\n"
                "1. What this error means\n"
                "2. Why it might have happened\n"
                "3. Possible solutions or next steps"
            )
        return self.generate_content(prompt).text
