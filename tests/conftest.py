import json
from typing import Awaitable, Callable, Optional

import httpx
import pytest

from nebula_hitl.config import HitlConfig
from nebula_hitl.dispatcher import OutboundDispatcher
from nebula_hitl.store import InMemoryCorrelationStore


class DecisionService:
    """Fake decision service recording the calls it receives."""

    def __init__(self, status_code: int = 201) -> None:
        self.status_code = status_code
        self.requests: list[httpx.Request] = []
        self.on_request: Optional[Callable[[httpx.Request], Awaitable[None]]] = None

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.on_request is not None:
            await self.on_request(request)
        return httpx.Response(self.status_code, json={"id": "srv-1"})

    @property
    def payloads(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests if r.method == "POST"]

    def dispatcher(self) -> OutboundDispatcher:
        return OutboundDispatcher(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def decision_service() -> DecisionService:
    return DecisionService()


@pytest.fixture
def store() -> InMemoryCorrelationStore:
    return InMemoryCorrelationStore()


@pytest.fixture
def config() -> HitlConfig:
    return HitlConfig(public_base_url="https://host/")


@pytest.fixture
def step_parameters() -> dict:
    return {
        "title": "Approve?",
        "message": "Go?",
        "responseShape": "ack",
        "options": {"timeoutMinutes": 5},
    }


@pytest.fixture
def credentials() -> dict:
    return {
        "baseUrl": "https://nebula.example.com/",
        "username": "bot",
        "password": "secret",
        "metadata": '{"tenantId": "abc123"}',
    }
