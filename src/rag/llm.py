from __future__ import annotations

"""Language-model clients shared by the classifier, reranker and generator."""

from dataclasses import dataclass
import asyncio
import json
import re
from typing import Protocol

import httpx


class LLMError(RuntimeError):
    """Raised when LLM requests fail or responses are invalid."""
    pass


_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*|```")
_OBJECT_RE = re.compile(r"\{.*\}", flags=re.DOTALL)


class ChatModel(Protocol):
    """A single-turn text completion endpoint."""
    model: str

    async def complete(
        self,
        prompt: str,
        *,
        system: str | None = None,
        temperature: float = 0.2,
        max_tokens: int = 512,
        json_mode: bool = False,
    ) -> str:
        """Return the raw text of the model's completion."""
        raise NotImplementedError


@dataclass(frozen=True)
class GeminiChatModel:
    """Chat model backed by Gemini generative models."""
    api_key: str
    model: str
    timeout: float = 20.0

    async def complete(
        self,
        prompt: str,
        *,
        system: str | None = None,
        temperature: float = 0.2,
        max_tokens: int = 512,
        json_mode: bool = False,
    ) -> str:
        """Generate text with Gemini in a worker thread."""
        try:
            import google.generativeai as genai
        except ImportError as exc:
            raise LLMError("google-generativeai is required for GeminiChatModel") from exc

        full_prompt = f"{system}\n\n{prompt}" if system else prompt
        generation_config: dict[str, object] = {
            "temperature": temperature,
            "max_output_tokens": max_tokens,
        }
        if json_mode:
            generation_config["response_mime_type"] = "application/json"

        def _run() -> str:
            genai.configure(api_key=self.api_key)
            model = genai.GenerativeModel(self.model)
            response = model.generate_content(full_prompt, generation_config=generation_config)
            return getattr(response, "text", "") or ""

        try:
            content = await asyncio.wait_for(asyncio.to_thread(_run), timeout=self.timeout)
        except Exception as exc:
            raise LLMError(f"Gemini request failed: {type(exc).__name__}") from exc
        return _require_text(content)


@dataclass(frozen=True)
class OpenAIChatModel:
    """Chat model backed by an OpenAI-compatible chat completions API."""
    api_key: str
    base_url: str
    model: str
    timeout: float = 20.0
    transport: httpx.AsyncBaseTransport | None = None

    async def complete(
        self,
        prompt: str,
        *,
        system: str | None = None,
        temperature: float = 0.2,
        max_tokens: int = 512,
        json_mode: bool = False,
    ) -> str:
        """Generate text using OpenAI chat completions."""
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        payload: dict[str, object] = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    json=payload,
                    headers=headers,
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as exc:
            raise LLMError(f"OpenAI request failed: {type(exc).__name__}") from exc
        except ValueError as exc:
            raise LLMError("OpenAI returned invalid JSON") from exc

        choices = data.get("choices") or []
        if not choices:
            raise LLMError("Invalid OpenAI response")
        message = choices[0].get("message") or {}
        return _require_text(message.get("content"))


@dataclass(frozen=True)
class OllamaChatModel:
    """Chat model backed by the Ollama chat API."""
    base_url: str
    model: str
    timeout: float = 20.0
    transport: httpx.AsyncBaseTransport | None = None

    async def complete(
        self,
        prompt: str,
        *,
        system: str | None = None,
        temperature: float = 0.2,
        max_tokens: int = 512,
        json_mode: bool = False,
    ) -> str:
        """Generate text using Ollama."""
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        payload: dict[str, object] = {
            "model": self.model,
            "messages": messages,
            "stream": False,
            "options": {"temperature": temperature, "num_predict": max_tokens},
        }
        if json_mode:
            payload["format"] = "json"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(f"{self.base_url}/api/chat", json=payload)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as exc:
            raise LLMError(f"Ollama request failed: {type(exc).__name__}") from exc
        except ValueError as exc:
            raise LLMError("Ollama returned invalid JSON") from exc
        message = data.get("message") or {}
        return _require_text(message.get("content"))


def _require_text(content: object) -> str:
    if not isinstance(content, str) or not content.strip():
        raise LLMError("LLM returned an empty response")
    return content


def strip_code_fences(content: str) -> str:
    """Remove markdown code-fence markers around model output."""
    return _FENCE_RE.sub("", content).strip()


def parse_json_object(content: str) -> dict[str, object]:
    """Parse a JSON object from model output, tolerating fences and chatter."""
    text = strip_code_fences(content)
    try:
        data = json.loads(text)
        if isinstance(data, dict):
            return data
    except json.JSONDecodeError:
        pass
    match = _OBJECT_RE.search(text)
    if match:
        try:
            data = json.loads(match.group(0))
            if isinstance(data, dict):
                return data
        except json.JSONDecodeError:
            pass
    raise LLMError("LLM response is not valid JSON")


def build_chat_model(
    provider: str,
    *,
    gemini_api_key: str | None,
    gemini_model: str | None,
    openai_api_key: str | None,
    openai_base_url: str,
    openai_model: str | None,
    ollama_base_url: str,
    ollama_model: str,
    timeout: float,
) -> GeminiChatModel | OpenAIChatModel | OllamaChatModel:
    """Factory for chat models based on provider."""
    normalized = provider.strip().lower()
    if normalized in {"gemini", "google"}:
        if not gemini_api_key:
            raise LLMError("GEMINI_API_KEY is required for Gemini provider")
        if not gemini_model:
            raise LLMError("GEMINI_CHAT_MODEL is required for Gemini provider")
        return GeminiChatModel(api_key=gemini_api_key, model=gemini_model, timeout=timeout)
    if normalized == "openai":
        if not openai_api_key:
            raise LLMError("OPENAI_API_KEY is required for OpenAI provider")
        if not openai_model:
            raise LLMError("OPENAI_CHAT_MODEL is required for OpenAI provider")
        return OpenAIChatModel(
            api_key=openai_api_key,
            base_url=openai_base_url.rstrip("/"),
            model=openai_model,
            timeout=timeout,
        )
    if normalized == "ollama":
        return OllamaChatModel(
            base_url=ollama_base_url.rstrip("/"),
            model=ollama_model,
            timeout=timeout,
        )
    raise LLMError(f"Unsupported LLM provider: {provider}")
