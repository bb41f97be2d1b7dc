"""Scripted chat sessions for pipeline, controller and API tests."""

import asyncio

from dungeon_master.llm import LLMError


class StubSession:
    """Replies with `reply` to send() and streams `fragments` from send_stream().

    fail_at:  raise LLMError before yielding the fragment at this index.
    gate:     when set, the stream waits on it before its first fragment.
    """

    def __init__(
        self,
        fragments: list[str] | None = None,
        reply: str = "The adventure begins.",
        fail_at: int | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.fragments = fragments if fragments is not None else ["Hello", ", ", "adventurer."]
        self.reply = reply
        self.fail_at = fail_at
        self.gate = gate
        self.started = asyncio.Event()
        self.sent: list[str] = []
        self.streamed: list[str] = []

    async def send(self, text: str) -> str:
        self.sent.append(text)
        return self.reply

    async def send_stream(self, text: str):
        self.streamed.append(text)
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        for i, fragment in enumerate(self.fragments):
            if i == self.fail_at:
                raise LLMError("stream dropped")
            yield fragment


class StubLLM:
    """Hands out `session` and records every create_session call."""

    configured = True

    def __init__(self, session: StubSession | None = None, error: Exception | None = None) -> None:
        self.session = session or StubSession()
        self.error = error
        self.calls: list[tuple[str, list]] = []

    async def create_session(self, system_instruction: str, history: list):
        self.calls.append((system_instruction, history))
        if self.error is not None:
            raise self.error
        return self.session
