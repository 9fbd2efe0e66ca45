"""Shared fixtures: a scripted completion provider and a test config."""

from __future__ import annotations

from typing import Any, AsyncIterator

import pytest

from chatline.config import ChatlineConfig


class FakeProvider:
    """Completion provider that replays canned replies and records requests."""

    def __init__(
        self,
        reply: str = "Hello!",
        fragments: list[str] | None = None,
        error: Exception | None = None,
        fail_after: int | None = None,
    ) -> None:
        self.reply = reply
        self.fragments = fragments if fragments is not None else [reply]
        self.error = error
        self.fail_after = fail_after
        self.requests: list[list[dict[str, Any]]] = []

    async def complete(self, messages: list[dict[str, Any]]) -> str:
        self.requests.append(messages)
        if self.error is not None:
            raise self.error
        return self.reply

    async def stream(self, messages: list[dict[str, Any]]) -> AsyncIterator[str]:
        self.requests.append(messages)
        for i, fragment in enumerate(self.fragments):
            if self.error is not None and self.fail_after is not None and i >= self.fail_after:
                raise self.error
            yield fragment
        if self.error is not None and (self.fail_after is None or self.fail_after >= len(self.fragments)):
            raise self.error


@pytest.fixture
def config(tmp_path, monkeypatch):
    monkeypatch.setenv("CHATLINE_HOME", str(tmp_path))
    cfg = ChatlineConfig()
    cfg.sessions.system_prompt = "You are a test assistant."
    return cfg


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def make_provider():
    """Factory for providers with scripted fragments or failures."""
    return FakeProvider
