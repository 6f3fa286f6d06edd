"""Shared fixtures for lead qualification tests."""

import json
import os
from typing import Any, Callable, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

# Ensure we use test settings
os.environ.setdefault("OPENAI_API_KEY", "test-key")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.pop("DATABASE_URL", None)

from llm.orchestrator import ModelOrchestrator
from llm.providers.openai_provider import CompletionResult, EmbeddingResult, ProviderError
from llm.token_estimator import TokenEstimator
from llm.token_ledger import InMemoryLedgerBackend, TokenLedger


class ScriptedProvider:
    """
    Stand-in for the hosted model.

    Outcomes come from ``script`` (consumed in order) or ``responder``;
    an outcome that is an Exception is raised. Models listed in
    ``failing_models`` always raise ProviderError.
    """

    def __init__(
        self,
        script: Optional[List[Any]] = None,
        responder: Optional[Callable[..., Any]] = None,
        failing_models: Optional[set] = None,
        usage: tuple = (40, 12),
    ):
        self.script = list(script or [])
        self.responder = responder
        self.failing_models = set(failing_models or ())
        self.usage = usage
        self.calls: List[Dict[str, Any]] = []

    async def complete(self, model, messages, parameters, response_format=None):
        self.calls.append({
            "model": model,
            "messages": messages,
            "parameters": parameters,
            "response_format": response_format,
        })
        if model in self.failing_models:
            raise ProviderError(f"{model} unavailable")

        if self.script:
            outcome = self.script.pop(0)
        elif self.responder:
            outcome = self.responder(model, messages, response_format)
        else:
            outcome = "OK"

        if isinstance(outcome, Exception):
            raise outcome
        return CompletionResult(
            text=outcome,
            model=model,
            prompt_tokens=self.usage[0],
            completion_tokens=self.usage[1],
        )

    async def embed(self, model, text):
        if model in self.failing_models:
            raise ProviderError(f"{model} unavailable")
        return EmbeddingResult(vector=[0.0] * 8, model=model, prompt_tokens=5)


def extraction_json(contact: Optional[Dict[str, Optional[str]]] = None, **slots) -> str:
    """Structured extraction answer; slots are (status, value) tuples, the rest not_mentioned."""
    data: Dict[str, Any] = {}
    for name in ("budget", "authority", "need", "timeline"):
        status, value = slots.get(name, ("not_mentioned", None))
        data[name] = {"status": status, "value": value}
    data["contact"] = {"name": None, "phone": None, "email": None, **(contact or {})}
    return json.dumps(data)


def conversation_responder(
    intent: str = "GENERAL",
    extraction: Optional[str] = None,
    reply: str = "Happy to help!",
) -> Callable[..., Any]:
    """Answer classification, extraction and reply calls differently."""
    def respond(model, messages, response_format):
        if response_format is not None:
            return extraction or extraction_json()
        if messages[0]["content"].startswith("You are the intent classifier"):
            return intent
        return reply
    return respond


async def _no_sleep(_seconds):
    return None


@pytest.fixture
def ledger():
    return TokenLedger(backend=InMemoryLedgerBackend())


@pytest.fixture
def make_orchestrator(ledger):
    """Build an orchestrator around a provider, sharing the test ledger."""
    def build(provider, **kwargs):
        kwargs.setdefault("sleep", _no_sleep)
        kwargs.setdefault("estimator", TokenEstimator(provider="heuristic"))
        return ModelOrchestrator(provider=provider, ledger=ledger, **kwargs)
    return build


@pytest.fixture
def scripted_provider():
    return ScriptedProvider


@pytest.fixture
def responder():
    return conversation_responder


@pytest.fixture
def extraction():
    return extraction_json


@pytest.fixture
def client():
    """Create a FastAPI test client with a scripted provider behind the services."""
    from api.main import app
    from api.services import initialize_services

    provider = ScriptedProvider(responder=conversation_responder())
    services = initialize_services(provider=provider, force=True)
    services.orchestrator._sleep = _no_sleep
    test_client = TestClient(app)
    test_client.provider = provider
    return test_client
