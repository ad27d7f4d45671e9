"""Shared fixtures: a routing httpx mock standing in for a forge host."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from forgereview.backends.models import PullRequestIdentity
from forgereview.utils.errors import MemoryDiagnosticLog

Responder = httpx.Response | Callable[[httpx.Request], httpx.Response]


class ForgeMock:
    """Answers requests from canned responses keyed by (method, raw path) and records them.

    Several responses registered for the same route are served in order; the last
    one keeps being served once the others are used up.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[Responder]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, path: str, *responses: Responder) -> ForgeMock:
        self.routes.setdefault((method, path), []).extend(responses)
        return self

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.raw_path.decode().split("?")[0]
        responses = self.routes.get((request.method, path))
        if not responses:
            return httpx.Response(404, json={"message": "Not Found"})

        responder = responses.pop(0) if len(responses) > 1 else responses[0]
        if callable(responder):
            return responder(request)
        return responder

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self._handle))

    @staticmethod
    def body(request: httpx.Request) -> Any:
        return json.loads(request.content) if request.content else None

    def sent(self, method: str, path: str) -> list[httpx.Request]:
        return [
            r
            for r in self.requests
            if r.method == method and r.url.raw_path.decode().split("?")[0] == path
        ]


@pytest.fixture
def forge() -> ForgeMock:
    return ForgeMock()


@pytest.fixture
def diagnostics() -> MemoryDiagnosticLog:
    return MemoryDiagnosticLog()


@pytest.fixture
def identity() -> PullRequestIdentity:
    return PullRequestIdentity(owner="acme", repo="widgets", number=42)
