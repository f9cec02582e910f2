"""Tests for the built-in providers.

HTTP never leaves the process: the OpenAI SDK client is replaced with
mocks and the aiohttp session with FakeSession.
"""

import asyncio
from types import SimpleNamespace

import json

import aiohttp
import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from openai import APIConnectionError, APIResponseValidationError, APIStatusError

from colloquy.errors import BadStatusError, ConfigurationError, EmptyContentError, NetworkError
from colloquy.models import (
    CharacterDefinition,
    CharacterParams,
    ConversationSettings,
    ErrorPolicyConfig,
    ErrorStrategy,
    GenerationParams
)
from colloquy.services import ERROR_PLACEHOLDER, ConversationOrchestrator, ConversationState, ErrorPolicy
from colloquy.services.llm import AnthropicService, OllamaService, OpenAIService, ProviderCredentials, ProviderRegistry
from colloquy.services.llm.session_manager import SessionManager

from conftest import FakeResponse, FakeSession, make_speaker

PARAMS = GenerationParams(temperature=0.5, max_tokens=64, top_p=0.8, frequency_penalty=0.2, presence_penalty=0.3)

CHARACTER = CharacterDefinition(
    display_name="Ada",
    system_prompt="You are Ada.",
    generation_params=CharacterParams(temperature=0.4, frequency_penalty=0.6)
)


def _completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


@pytest.fixture
def openai_service():
    service = OpenAIService(api_key="sk-test", model="gpt-4o")
    service.client = MagicMock()
    service.client.chat.completions.create = AsyncMock(return_value=_completion("  Hello there.  "))
    service.client.close = AsyncMock()
    return service


class TestOpenAIService:

    def test_requires_api_key(self):
        with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
            OpenAIService(api_key=None)

    def test_from_credentials(self):
        credentials = ProviderCredentials(
            api_keys={"openai": "sk-test"},
            base_urls={"openai": "http://localhost:8000/v1"},
            timeout=12
        )
        service = OpenAIService.from_credentials("gpt-4o-mini", credentials)
        assert service.model == "gpt-4o-mini"
        assert service.timeout == 12
        assert str(service.client.base_url).startswith("http://localhost:8000/v1")

    def test_map_character_params_fills_defaults(self, openai_service):
        params = openai_service.map_character_params(CHARACTER)
        assert params.temperature == 0.4
        assert params.max_tokens == OpenAIService.DEFAULT_MAX_TOKENS
        assert params.top_p == OpenAIService.DEFAULT_TOP_P
        assert params.frequency_penalty == 0.6
        assert params.presence_penalty == 0.0

    def test_map_character_params_keeps_zero(self, openai_service):
        character = CharacterDefinition(generation_params=CharacterParams(temperature=0.0))
        assert openai_service.map_character_params(character).temperature == 0.0

    def test_build_request(self, openai_service):
        request = openai_service.build_request("Hi", PARAMS, "Be kind.")
        assert request == {
            "model": "gpt-4o",
            "messages": [
                {"role": "system", "content": "Be kind."},
                {"role": "user", "content": "Hi"},
            ],
            "temperature": 0.5,
            "max_tokens": 64,
            "top_p": 0.8,
            "frequency_penalty": 0.2,
            "presence_penalty": 0.3,
        }

    def test_build_request_without_system_prompt(self, openai_service):
        request = openai_service.build_request("Hi", PARAMS)
        assert request["messages"] == [{"role": "user", "content": "Hi"}]

    @pytest.mark.asyncio
    async def test_generate_response(self, openai_service):
        result = await openai_service.generate_response("Hi", PARAMS, "Be kind.")

        assert result == "Hello there."
        kwargs = openai_service.client.chat.completions.create.await_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["messages"][0]["role"] == "system"

    @pytest.mark.asyncio
    async def test_bad_status(self, openai_service):
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        response = httpx.Response(429, request=request)
        openai_service.client.chat.completions.create.side_effect = APIStatusError(
            "rate limited", response=response, body={"error": "slow down"}
        )

        with pytest.raises(BadStatusError) as exc_info:
            await openai_service.generate_response("Hi", PARAMS)

        assert exc_info.value.status == 429
        assert exc_info.value.body == {"error": "slow down"}
        assert exc_info.value.provider == "openai"

    @pytest.mark.asyncio
    async def test_connection_error(self, openai_service):
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        openai_service.client.chat.completions.create.side_effect = APIConnectionError(request=request)

        with pytest.raises(NetworkError):
            await openai_service.generate_response("Hi", PARAMS)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("completion", [SimpleNamespace(choices=[]), _completion(None), _completion("   ")])
    async def test_empty_content(self, openai_service, completion):
        openai_service.client.chat.completions.create.return_value = completion

        with pytest.raises(EmptyContentError):
            await openai_service.generate_response("Hi", PARAMS)

    @pytest.mark.asyncio
    async def test_close(self, openai_service):
        client = openai_service.client
        await openai_service.close()
        client.close.assert_awaited_once()

    def test_client_created_on_first_use(self):
        service = OpenAIService(api_key="sk-test")
        assert service._client is None
        assert service.client is service.client

    @pytest.mark.asyncio
    async def test_close_without_client(self):
        service = OpenAIService(api_key="sk-test")
        await service.close()
        assert service._client is None

    @pytest.mark.asyncio
    async def test_response_validation_error(self, openai_service):
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        openai_service.client.chat.completions.create.side_effect = APIResponseValidationError(
            response=httpx.Response(200, request=request), body="not a completion"
        )

        with pytest.raises(EmptyContentError):
            await openai_service.generate_response("Hi", PARAMS)


def _with_session(service, session):
    service.session_manager.get_session = AsyncMock(return_value=session)
    return service


class TestAnthropicService:

    def test_requires_api_key(self):
        with pytest.raises(ConfigurationError, match="ANTHROPIC_API_KEY"):
            AnthropicService(api_key="")

    def test_headers(self):
        service = AnthropicService(api_key="sk-ant", model="claude-x")
        headers = service.session_manager.headers
        assert headers["x-api-key"] == "sk-ant"
        assert headers["anthropic-version"] == AnthropicService.API_VERSION

    def test_base_url_override(self):
        service = AnthropicService(api_key="sk-ant", base_url="http://proxy:9000/")
        assert service.api_url == "http://proxy:9000/v1/messages"

    def test_map_character_params_drops_penalties(self):
        params = AnthropicService(api_key="sk-ant").map_character_params(CHARACTER)
        assert params.temperature == 0.4
        assert params.frequency_penalty is None
        assert params.presence_penalty is None

    def test_build_request(self):
        service = AnthropicService(api_key="sk-ant", model="claude-x")
        request = service.build_request("Hi", PARAMS, "Be kind.")
        assert request == {
            "model": "claude-x",
            "messages": [{"role": "user", "content": "Hi"}],
            "max_tokens": 64,
            "temperature": 0.5,
            "top_p": 0.8,
            "system": "Be kind.",
        }

    @pytest.mark.asyncio
    async def test_generate_response(self):
        session = FakeSession(FakeResponse(payload={"content": [{"type": "text", "text": " Indeed. "}]}))
        service = _with_session(AnthropicService(api_key="sk-ant", model="claude-x"), session)

        assert await service.generate_response("Hi", PARAMS) == "Indeed."
        assert session.posts[0]["url"] == "https://api.anthropic.com/v1/messages"
        assert "system" not in session.posts[0]["json"]

    @pytest.mark.asyncio
    async def test_bad_status(self):
        session = FakeSession(FakeResponse(status=529, text="overloaded"))
        service = _with_session(AnthropicService(api_key="sk-ant"), session)

        with pytest.raises(BadStatusError) as exc_info:
            await service.generate_response("Hi", PARAMS)

        assert exc_info.value.status == 529
        assert "overloaded" in str(exc_info.value)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [aiohttp.ClientConnectionError("refused"), asyncio.TimeoutError()])
    async def test_network_error(self, error):
        service = _with_session(AnthropicService(api_key="sk-ant"), FakeSession(error))

        with pytest.raises(NetworkError):
            await service.generate_response("Hi", PARAMS)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [{"content": []}, {"content": [{"type": "text", "text": ""}]}, {}])
    async def test_empty_content(self, payload):
        service = _with_session(AnthropicService(api_key="sk-ant"), FakeSession(FakeResponse(payload=payload)))

        with pytest.raises(EmptyContentError):
            await service.generate_response("Hi", PARAMS)


class TestOllamaService:

    def test_no_credentials_needed(self):
        service = OllamaService.from_credentials("llama3", ProviderCredentials())
        assert service.model == "llama3"
        assert service.host == OllamaService.DEFAULT_HOST

    def test_build_request(self):
        service = OllamaService("llama3")
        request = service.build_request("Hi", PARAMS, "Be kind.")
        assert request["stream"] is False
        assert request["messages"][0] == {"role": "system", "content": "Be kind."}
        assert request["options"] == {
            "temperature": 0.5,
            "num_predict": 64,
            "top_p": 0.8,
            "frequency_penalty": 0.2,
            "presence_penalty": 0.3,
        }

    @pytest.mark.asyncio
    async def test_generate_response(self):
        session = FakeSession(FakeResponse(payload={"message": {"role": "assistant", "content": "Sure. "}}))
        service = _with_session(OllamaService("llama3", host="http://ollama:11434/"), session)

        assert await service.generate_response("Hi", PARAMS) == "Sure."
        assert session.posts[0]["url"] == "http://ollama:11434/api/chat"

    @pytest.mark.asyncio
    async def test_error_payload(self):
        session = FakeSession(FakeResponse(payload={"error": "model not found"}))
        service = _with_session(OllamaService("llama3"), session)

        with pytest.raises(EmptyContentError, match="model not found"):
            await service.generate_response("Hi", PARAMS)

    @pytest.mark.asyncio
    async def test_bad_status(self):
        service = _with_session(OllamaService("llama3"), FakeSession(FakeResponse(status=404, text="not found")))

        with pytest.raises(BadStatusError):
            await service.generate_response("Hi", PARAMS)

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        service = _with_session(OllamaService("llama3"), FakeSession(aiohttp.ClientConnectionError("refused")))

        with pytest.raises(NetworkError):
            await service.generate_response("Hi", PARAMS)


class TestSessionManager:

    @pytest.mark.asyncio
    async def test_session_reused_until_closed(self):
        manager = SessionManager(headers={"x-test": "1"}, timeout=3)

        session = await manager.get_session()
        assert await manager.get_session() is session
        assert session.headers["x-test"] == "1"
        assert session.timeout.total == 3

        await manager.close()
        assert session.closed
        assert await manager.get_session() is not session
        await manager.close()

    @pytest.mark.asyncio
    async def test_post_json_returns_text_on_error_status(self):
        manager = SessionManager()
        manager.get_session = AsyncMock(return_value=FakeSession(FakeResponse(status=500, text="boom")))

        assert await manager.post_json("http://x/api", {"a": 1}) == (500, "boom")

    @pytest.mark.asyncio
    async def test_post_json_decodes_success(self):
        session = FakeSession(FakeResponse(payload={"ok": True}))
        manager = SessionManager()
        manager.get_session = AsyncMock(return_value=session)

        assert await manager.post_json("http://x/api", {"a": 1}) == (200, {"ok": True})
        assert session.posts == [{"url": "http://x/api", "json": {"a": 1}}]


def _continue_orchestrator(kind, credentials=None):
    registry = ProviderRegistry(credentials=credentials)
    policy = ErrorPolicy(ErrorPolicyConfig(strategy=ErrorStrategy.CONTINUE), registry=registry)
    return ConversationOrchestrator(
        [make_speaker("alice", kind=kind), make_speaker("bob", kind=kind)],
        ConversationSettings(topic="Tides", num_turns=2),
        registry,
        error_policy=policy
    )


async def _run_to_placeholders(orchestrator):
    turns = await orchestrator.run()
    await orchestrator.close()
    assert [turn.response for turn in turns] == [ERROR_PLACEHOLDER, ERROR_PLACEHOLDER]
    assert orchestrator.state == ConversationState.COMPLETED


class TestMalformedSuccessBodies:
    """A 200 whose body cannot be read is a provider failure, not a crash."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", [
        FakeResponse(json_error=json.JSONDecodeError("Expecting value", "", 0)),
        FakeResponse(payload=[1, 2]),
        FakeResponse(payload={"content": ["text"]}),
        FakeResponse(payload={"content": [{"type": "text", "text": None}]}),
    ])
    async def test_anthropic(self, response):
        orchestrator = _continue_orchestrator("anthropic", ProviderCredentials(api_keys={"anthropic": "sk-ant"}))

        with patch.object(SessionManager, "get_session", AsyncMock(return_value=FakeSession(response))):
            await _run_to_placeholders(orchestrator)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", [
        FakeResponse(json_error=json.JSONDecodeError("Expecting value", "", 0)),
        FakeResponse(payload="ok"),
        FakeResponse(payload={"message": "hi"}),
        FakeResponse(payload={"message": {"content": None}}),
    ])
    async def test_ollama(self, response):
        orchestrator = _continue_orchestrator("ollama")

        with patch.object(SessionManager, "get_session", AsyncMock(return_value=FakeSession(response))):
            await _run_to_placeholders(orchestrator)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("outcome", [
        APIResponseValidationError(
            response=httpx.Response(200, request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions")),
            body="<html>"
        ),
        SimpleNamespace(choices=[SimpleNamespace(message=None)]),
    ])
    async def test_openai(self, outcome):
        orchestrator = _continue_orchestrator("openai", ProviderCredentials(api_keys={"openai": "sk-test"}))
        for provider in orchestrator.providers.values():
            provider.client = MagicMock()
            provider.client.close = AsyncMock()
            if isinstance(outcome, Exception):
                provider.client.chat.completions.create = AsyncMock(side_effect=outcome)
            else:
                provider.client.chat.completions.create = AsyncMock(return_value=outcome)

        await _run_to_placeholders(orchestrator)
