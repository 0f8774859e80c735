from __future__ import annotations

import json

import httpx
import pytest

from src.rag.llm import (
    LLMError,
    OllamaChatModel,
    OpenAIChatModel,
    build_chat_model,
    parse_json_object,
    strip_code_fences,
)

pytestmark = pytest.mark.anyio


async def test_openai_chat_model_sends_system_and_json_mode() -> None:
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["auth"] = request.headers["authorization"]
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": '{"ok": true}'}}]})

    model = OpenAIChatModel(
        api_key="sk-test",
        base_url="https://llm.test/v1",
        model="gpt-test",
        transport=httpx.MockTransport(handler),
    )

    content = await model.complete("pregunta", system="sistema", json_mode=True, max_tokens=50)

    assert content == '{"ok": true}'
    assert captured["url"] == "https://llm.test/v1/chat/completions"
    assert captured["auth"] == "Bearer sk-test"
    assert captured["body"]["messages"][0] == {"role": "system", "content": "sistema"}
    assert captured["body"]["response_format"] == {"type": "json_object"}
    assert captured["body"]["max_tokens"] == 50


async def test_openai_chat_model_wraps_http_errors() -> None:
    model = OpenAIChatModel(
        api_key="sk-test",
        base_url="https://llm.test/v1",
        model="gpt-test",
        transport=httpx.MockTransport(lambda request: httpx.Response(500)),
    )
    with pytest.raises(LLMError):
        await model.complete("pregunta")


async def test_ollama_chat_model_rejects_empty_content() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert body["stream"] is False
        assert body["format"] == "json"
        return httpx.Response(200, json={"message": {"content": "  "}})

    model = OllamaChatModel(
        base_url="http://ollama.test",
        model="llama3.1",
        transport=httpx.MockTransport(handler),
    )
    with pytest.raises(LLMError):
        await model.complete("pregunta", json_mode=True)


def test_parse_json_object_tolerates_fences_and_chatter() -> None:
    assert parse_json_object('```json\n{"a": 1}\n```') == {"a": 1}
    assert parse_json_object('Aquí tienes: {"a": {"b": 2}} espero que sirva') == {"a": {"b": 2}}
    assert strip_code_fences("```\nhola\n```") == "hola"
    with pytest.raises(LLMError):
        parse_json_object("[1, 2, 3]")


def test_build_chat_model_validates_provider_configuration() -> None:
    common = dict(
        gemini_api_key=None,
        gemini_model="gemini-1.5-flash",
        openai_api_key=None,
        openai_base_url="https://api.openai.com/v1",
        openai_model=None,
        ollama_base_url="http://localhost:11434/",
        ollama_model="llama3.1",
        timeout=5.0,
    )
    model = build_chat_model("ollama", **common)
    assert isinstance(model, OllamaChatModel)
    assert model.base_url == "http://localhost:11434"

    with pytest.raises(LLMError):
        build_chat_model("gemini", **common)
    with pytest.raises(LLMError):
        build_chat_model("openai", **common)
    with pytest.raises(LLMError):
        build_chat_model("claude-on-a-toaster", **common)
