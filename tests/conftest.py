import sys
from pathlib import Path
from types import SimpleNamespace

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from config import Config, DEFAULT_CONFIG  # noqa: E402

QUOTA_ERROR = "429 RESOURCE_EXHAUSTED. Quota exceeded for metric generate_content_free_tier_requests"


def text_response(text, usage=None):
    part = SimpleNamespace(text=text)
    candidate = SimpleNamespace(content=SimpleNamespace(parts=[part]))
    return SimpleNamespace(candidates=[candidate], usage_metadata=usage)


class FakeModels:
    """Stands in for ``genai.Client().models``; ``responder(model, prompt)`` decides each reply."""

    def __init__(self, responder):
        self.responder = responder
        self.calls = []

    def generate_content(self, model, contents, config):
        prompt = contents[0].parts[-1].text
        self.calls.append(SimpleNamespace(model=model, contents=contents, config=config, prompt=prompt))
        reply = self.responder(model, prompt)
        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, str):
            return text_response(reply)
        return reply


class FakeGenai:
    def __init__(self, responder):
        self.models = FakeModels(responder)

    @property
    def calls(self):
        return self.models.calls


def make_config(**sections):
    data = {key: dict(value) for key, value in DEFAULT_CONFIG.items()}
    data["llm"]["model_order"] = ["m-a", "m-b", "m-c"]
    data["llm"]["multimodal_models"] = ["m-a"]
    data["llm"]["max_response_length"] = 5000
    data["paths"]["history_db"] = ":memory:"
    data["execution"]["log_commands"] = False
    for key, value in sections.items():
        data[key].update(value)
    return Config.from_dict(data)


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def fake_genai():
    return FakeGenai
