"""Pytest configuration and shared fixtures."""
import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any

import pytest

from tabchat.config import ChatConfig
from tabchat.transport.base import Endpoint, ModelInfo, Transport

DONE = b"data: [DONE]\n\n"


def sse_delta(text: str | None = None, role: str | None = None, index: int = 0) -> bytes:
    """Encode one streamed chunk as an event-stream record."""
    delta: dict[str, Any] = {}
    if role is not None:
        delta["role"] = role
    if text is not None:
        delta["content"] = text
    payload = {"id": "chatcmpl-1", "choices": [{"index": index, "delta": delta}]}
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n".encode()


def sse_body(*texts: str, done: bool = True) -> bytes:
    """A whole response body: role chunk, one chunk per text, sentinel."""
    body = sse_delta(role="assistant") + b"".join(sse_delta(t) for t in texts)
    return body + DONE if done else body


def sse_text(text: str, index: int = 0) -> bytes:
    """Encode one streamed text-completion chunk."""
    payload = {"id": "cmpl-1", "object": "text_completion", "choices": [{"index": index, "text": text}]}
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n".encode()


class ScriptedTransport(Transport):
    """Transport that replays scripted attempts instead of doing I/O.

    Each attempt is either an exception (raised when the stream is opened)
    or a list of steps played by the chunk iterator:
    - bytes: yielded as a chunk
    - exception: raised mid-stream
    - int/float: sleep that many seconds
    - asyncio.Event: wait until it is set

    Attempts are consumed in order, or per prompt (last message content, or
    the prompt of a text completion) when ``by_prompt`` is given.
    """

    def __init__(self, *attempts: Any, by_prompt: dict[str, list[Any]] | None = None):
        self._attempts = list(attempts)
        self._by_prompt = by_prompt or {}
        self.requests: list[dict[str, Any]] = []
        self.endpoints: list[Endpoint] = []
        self.opened = 0
        self.released = 0
        self.closed = False

    @asynccontextmanager
    async def open_stream(self, body: dict[str, Any], endpoint: Endpoint = Endpoint.CHAT):
        self.requests.append(body)
        self.endpoints.append(endpoint)
        if "messages" in body:
            prompt = body["messages"][-1]["content"] if body["messages"] else ""
        else:
            prompt = body.get("prompt", "")
        queue = self._by_prompt.get(prompt, self._attempts)
        if not queue:
            raise AssertionError(f"unexpected extra attempt for {prompt!r}")

        script = queue.pop(0)
        if isinstance(script, BaseException):
            raise script

        self.opened += 1
        try:
            yield self._play(script)
        finally:
            self.released += 1

    async def _play(self, script: list[Any]):
        for step in script:
            if isinstance(step, BaseException):
                raise step
            if isinstance(step, asyncio.Event):
                await step.wait()
            elif isinstance(step, (int, float)):
                await asyncio.sleep(step)
            else:
                yield step

    async def list_models(self) -> list[ModelInfo]:
        return [ModelInfo(id="gpt-4o-mini")]

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def config():
    """Configuration with instant backoff and a short idle timeout."""
    return ChatConfig(
        api_key="test-key",
        backoff_base=0.0,
        backoff_max=0.0,
        idle_timeout=0.5,
    )


@pytest.fixture
def no_platform_proxy(monkeypatch):
    """Make the platform proxy lookup deterministic."""
    monkeypatch.setattr("urllib.request.getproxies", lambda: {})