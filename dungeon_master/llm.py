"""Chat clients — conversational sessions with a generative model.

The controller creates one session per room visit and the pipeline talks to
it through this protocol:

    class ChatLLM(Protocol):
        async def create_session(self, system_instruction, history) -> ChatSession: ...

    class ChatSession(Protocol):
        async def send(self, text: str) -> str: ...
        def send_stream(self, text: str) -> AsyncIterator[str]: ...

`history` is a list of {"role": "user" | "model", "text": ...} turns that the
new session treats as already said. The concatenation of all fragments from
`send_stream` equals what `send` would have returned.

Three implementations are provided:

    GeminiLLM  — Google Gemini via google-genai chats. The default.
    HttpLLM    — OpenAI-compatible /v1/chat/completions over httpx, with
                 server-sent-event streaming. Keeps the conversation locally.
    EchoLLM    — replies with the utterance itself, streamed word by word.
                 No network; useful for trying the app without a key.

Every provider failure surfaces as LLMError. A missing API key surfaces as
ConfigurationError, raised when a session is first requested rather than at
start-up.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Iterable
from typing import Literal, Protocol, TypedDict

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types

from dungeon_master.models import PLACEHOLDER_TEXT, Message, Role

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash"
DEFAULT_TEMPERATURE = 0.9


class HistoryTurn(TypedDict):
    role: Literal["user", "model"]
    text: str


def history_from_messages(messages: Iterable[Message]) -> list[HistoryTurn]:
    """Transcript → provider history.

    SYSTEM and error messages are not offered, nor MODEL placeholders left
    behind by a turn that was abandoned before any text arrived.
    """
    turns: list[HistoryTurn] = []
    for m in messages:
        if m.role == Role.SYSTEM or m.is_error:
            continue
        if m.role == Role.MODEL and m.text == PLACEHOLDER_TEXT:
            continue
        turns.append({"role": m.role.value, "text": m.text})
    return turns


# ---------------------------------------------------------------------------
# Protocols — every implementation must match these signatures
# ---------------------------------------------------------------------------

class ChatSession(Protocol):
    async def send(self, text: str) -> str: ...

    def send_stream(self, text: str) -> AsyncIterator[str]: ...


class ChatLLM(Protocol):
    async def create_session(
        self, system_instruction: str, history: list[HistoryTurn]
    ) -> ChatSession: ...


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class LLMError(RuntimeError):
    """Raised when the model backend cannot be reached or returns an error."""


class ConfigurationError(LLMError):
    """Raised when the backend is not configured (e.g. no API key)."""


# ---------------------------------------------------------------------------
# GeminiLLM — google-genai chat sessions
# ---------------------------------------------------------------------------

class GeminiSession:
    def __init__(self, chat) -> None:
        self._chat = chat

    async def send(self, text: str) -> str:
        logger.debug("gemini send len=%d", len(text))
        try:
            response = await self._chat.send_message(text)
        except (genai_errors.APIError, httpx.HTTPError) as e:
            raise LLMError(f"Gemini request failed: {e}") from e
        return response.text or ""

    async def send_stream(self, text: str) -> AsyncIterator[str]:
        logger.debug("gemini stream len=%d", len(text))
        try:
            stream = await self._chat.send_message_stream(text)
            async for chunk in stream:
                if chunk.text:
                    yield chunk.text
        except (genai_errors.APIError, httpx.HTTPError) as e:
            raise LLMError(f"Gemini stream failed: {e}") from e


class GeminiLLM:
    """Gemini chat sessions.

    Args:
        api_key:     Gemini API key. May be empty; checked on first use.
        model:       Model identifier. Defaults to gemini-2.5-flash.
        temperature: Sampling temperature. Defaults to 0.9.
    """

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        temperature: float = DEFAULT_TEMPERATURE,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._temperature = temperature
        self._client: genai.Client | None = None

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    def _get_client(self) -> genai.Client:
        if self._client is not None:
            return self._client
        if not self._api_key:
            raise ConfigurationError("API key missing")
        self._client = genai.Client(api_key=self._api_key)
        return self._client

    async def create_session(
        self, system_instruction: str, history: list[HistoryTurn]
    ) -> GeminiSession:
        client = self._get_client()
        contents = [
            genai_types.Content(role=turn["role"], parts=[genai_types.Part(text=turn["text"])])
            for turn in history
        ]
        logger.debug("gemini session model=%s history=%d", self._model, len(contents))
        chat = client.aio.chats.create(
            model=self._model,
            config=genai_types.GenerateContentConfig(
                system_instruction=system_instruction,
                temperature=self._temperature,
            ),
            history=contents,
        )
        return GeminiSession(chat)


# ---------------------------------------------------------------------------
# HttpLLM — OpenAI-compatible chat completions
# ---------------------------------------------------------------------------

_OPENAI_ROLES = {"user": "user", "model": "assistant"}


class HttpSession:
    """One conversation against /v1/chat/completions.

    The server is stateless, so the session resends the whole conversation on
    every turn. A turn is recorded only once its reply has fully arrived.
    """

    def __init__(self, llm: HttpLLM, system_instruction: str, history: list[HistoryTurn]) -> None:
        self._llm = llm
        self._messages: list[dict[str, str]] = [
            {"role": "system", "content": system_instruction}
        ]
        self._messages.extend(
            {"role": _OPENAI_ROLES[t["role"]], "content": t["text"]} for t in history
        )

    def _body(self, text: str, stream: bool) -> dict:
        body: dict = {
            "messages": self._messages + [{"role": "user", "content": text}],
            "temperature": self._llm.temperature,
            "stream": stream,
        }
        if self._llm.model:
            body["model"] = self._llm.model
        return body

    def _record(self, text: str, reply: str) -> None:
        self._messages.append({"role": "user", "content": text})
        self._messages.append({"role": "assistant", "content": reply})

    async def send(self, text: str) -> str:
        data = await self._llm.post(self._body(text, stream=False))
        try:
            reply = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise LLMError("Unexpected response format from chat backend") from e
        self._record(text, reply)
        return reply

    async def send_stream(self, text: str) -> AsyncIterator[str]:
        parts: list[str] = []
        async for fragment in self._llm.stream(self._body(text, stream=True)):
            parts.append(fragment)
            yield fragment
        self._record(text, "".join(parts))


class HttpLLM:
    """Async HTTP client for OpenAI-compatible chat backends.

    Args:
        provider_url: Base URL of the backend, e.g. "http://localhost:8080".
        api_key:      Bearer token, or empty string if not required.
        model:        Model identifier sent with each request, if set.
        temperature:  Sampling temperature. Defaults to 0.9.
        timeout:      HTTP timeout in seconds. Defaults to 120.
    """

    def __init__(
        self,
        provider_url: str,
        api_key: str = "",
        model: str = "",
        temperature: float = DEFAULT_TEMPERATURE,
        timeout: float = 120.0,
    ) -> None:
        self._base_url = provider_url.rstrip("/")
        self._api_key = api_key
        self.model = model
        self.temperature = temperature
        self._timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self._base_url)

    @property
    def url(self) -> str:
        return f"{self._base_url}/v1/chat/completions"

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _translate(self, e: httpx.HTTPError) -> LLMError:
        if isinstance(e, httpx.ConnectError):
            return LLMError(f"Cannot connect to chat backend at {self._base_url}")
        if isinstance(e, httpx.HTTPStatusError):
            return LLMError(f"Chat backend returned HTTP {e.response.status_code}")
        if isinstance(e, httpx.TimeoutException):
            return LLMError(f"Chat backend timed out after {self._timeout}s")
        return LLMError(f"Chat backend request failed: {e}")

    async def post(self, body: dict) -> dict:
        logger.debug("llm post url=%s turns=%d", self.url, len(body["messages"]))
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self.url, json=body, headers=self._headers())
                resp.raise_for_status()
        except httpx.HTTPError as e:
            raise self._translate(e) from e
        return resp.json()

    async def stream(self, body: dict) -> AsyncIterator[str]:
        """Yield content deltas from a server-sent-event response."""
        logger.debug("llm stream url=%s turns=%d", self.url, len(body["messages"]))
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                async with client.stream(
                    "POST", self.url, json=body, headers=self._headers()
                ) as resp:
                    resp.raise_for_status()
                    async for line in resp.aiter_lines():
                        fragment = _parse_sse_line(line)
                        if fragment is _DONE:
                            break
                        if fragment:
                            yield fragment
        except httpx.HTTPError as e:
            raise self._translate(e) from e

    async def create_session(
        self, system_instruction: str, history: list[HistoryTurn]
    ) -> HttpSession:
        if not self._base_url:
            raise ConfigurationError("Chat backend URL missing")
        return HttpSession(self, system_instruction, history)


_DONE = object()


def _parse_sse_line(line: str):
    """Return the content delta of one SSE line, _DONE, or None to skip."""
    if not line.startswith("data:"):
        return None
    data = line[len("data:"):].strip()
    if data == "[DONE]":
        return _DONE
    try:
        event = json.loads(data)
        return event["choices"][0]["delta"].get("content")
    except (json.JSONDecodeError, KeyError, IndexError, TypeError, AttributeError) as e:
        raise LLMError(f"Unexpected stream event from chat backend: {data!r}") from e


# ---------------------------------------------------------------------------
# EchoLLM — no network
# ---------------------------------------------------------------------------

class EchoSession:
    async def send(self, text: str) -> str:
        return text

    async def send_stream(self, text: str) -> AsyncIterator[str]:
        words = text.split(" ")
        for i, word in enumerate(words):
            yield word if i == len(words) - 1 else word + " "


class EchoLLM:
    """Sessions that echo each utterance back. No network calls."""

    configured = True

    async def create_session(
        self, system_instruction: str, history: list[HistoryTurn]
    ) -> EchoSession:
        logger.debug("EchoLLM session instruction_len=%d history=%d",
                     len(system_instruction), len(history))
        return EchoSession()
