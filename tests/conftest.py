"""Pytest configuration and fixtures.

Points COLLOQUY_DIR at a scratch directory before colloquy is imported,
and provides scripted providers so no test talks to a real backend.
"""

import os
import tempfile

os.environ["COLLOQUY_DIR"] = tempfile.mkdtemp(prefix="colloquy-tests-")
for _var in ("OPENAI_API_KEY", "ANTHROPIC_API_KEY", "OPENAI_API_KEY_REF", "ANTHROPIC_API_KEY_REF"):
    os.environ.pop(_var, None)

from typing import Dict, List, Optional

import pytest

from colloquy.models import (
    CharacterDefinition,
    CharacterParams,
    ConversationSettings,
    GenerationParams,
    SpeakerDefinition
)
from colloquy.services.llm import LLMProvider, ProviderCredentials, ProviderRegistry


class FakeProvider(LLMProvider):
    """Provider that replays a script of responses and exceptions.

    Once the script runs out it answers ``"<model> reply <n>"``.
    """

    kind = "fake"
    requires_api_key = False
    scripts: Dict[str, list] = {}
    instances: List["FakeProvider"] = []

    def __init__(self, model: str, responses: Optional[list] = None):
        super().__init__(model)
        self.responses = list(responses or [])
        self.calls = []
        self.closed = False

    @classmethod
    def from_credentials(cls, model: str, credentials: ProviderCredentials) -> "FakeProvider":
        provider = cls(model, cls.scripts.get(model))
        cls.instances.append(provider)
        return provider

    def map_character_params(self, character: CharacterDefinition) -> GenerationParams:
        params = character.generation_params
        return GenerationParams(
            temperature=0.7 if params.temperature is None else params.temperature,
            max_tokens=100 if params.max_tokens is None else params.max_tokens,
            top_p=1.0 if params.top_p is None else params.top_p
        )

    async def generate_response(self, prompt, params, system_prompt=None) -> str:
        self.calls.append({"prompt": prompt, "params": params, "system_prompt": system_prompt})
        if self.responses:
            item = self.responses.pop(0)
        else:
            item = f"{self.model} reply {len(self.calls)}"
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True


def scripted_provider(kind: str = "fake", **scripts) -> type:
    """Build a FakeProvider subclass with its own scripts and instance list.

    Keyword names are models; values are the responses that model replays.
    """
    return type(
        f"Scripted{kind.capitalize()}Provider",
        (FakeProvider,),
        {"kind": kind, "scripts": dict(scripts), "instances": []}
    )


def make_speaker(
    speaker_id: str,
    kind: str = "fake",
    model: Optional[str] = None,
    name: Optional[str] = None,
    system_prompt: str = "",
    **params
) -> SpeakerDefinition:
    return SpeakerDefinition(
        id=speaker_id,
        provider_kind=kind,
        model=model or f"{speaker_id}-model",
        character=CharacterDefinition(
            display_name=name,
            system_prompt=system_prompt,
            generation_params=CharacterParams(**params)
        )
    )


@pytest.fixture
def speakers():
    """Alice and Bob on the fake provider."""
    return [
        make_speaker("alice", name="Alice", system_prompt="You are Alice."),
        make_speaker("bob", name="Bob", system_prompt="You are Bob."),
    ]


@pytest.fixture
def conversation_settings():
    return ConversationSettings(topic="Tabs or spaces", num_turns=4, first_speaker="alice")


@pytest.fixture
def fake_registry():
    """Registry whose only kind is an unscripted fake provider."""
    return ProviderRegistry(providers={"fake": scripted_provider()})


class FakeResponse:
    """Stand-in for an aiohttp response used as an async context manager."""

    def __init__(self, status: int = 200, payload=None, text: str = "", json_error: Exception = None):
        self.status = status
        self._payload = payload if payload is not None else {}
        self._text = text
        self._json_error = json_error

    async def json(self):
        if self._json_error is not None:
            raise self._json_error
        return self._payload

    async def text(self):
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """Records POSTs and answers with a prepared response or exception."""

    def __init__(self, response=None):
        self.response = response or FakeResponse()
        self.posts = []
        self.closed = False

    def post(self, url, json=None):
        self.posts.append({"url": url, "json": json})
        if isinstance(self.response, Exception):
            raise self.response
        return self.response

    async def close(self):
        self.closed = True
