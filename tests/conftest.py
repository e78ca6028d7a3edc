"""
Shared fixtures for the OneLLM test-suite.

No test talks to a real backend.
"""

from __future__ import annotations

import pytest

from onellm.client import OneLLM
from onellm.llm.llm_config import Provider
from onellm.llm.models import LLMRequest
from tests.fakes import FakeAdapter, build_client


@pytest.fixture
def fake_ollama():
    return FakeAdapter(Provider.OLLAMA, chunks=["Hel", "lo"])


@pytest.fixture
def client_factory():
    """Build clients and close every one of them after the test."""
    clients: list[OneLLM] = []

    def factory(*adapters, **options) -> OneLLM:
        client = build_client(*adapters, **options)
        clients.append(client)
        return client

    yield factory
    for client in clients:
        client.close()


@pytest.fixture
def request_for():
    def make(model: str = "local/mistral", user: str = "hi") -> LLMRequest:
        return LLMRequest(model=model, user=user)
    return make
