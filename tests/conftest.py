from __future__ import annotations

import json

import httpx
import pytest

from chanwatch.substrate.channel_store import ChannelStore


class FakeGateway:
    """Scriptable OpenAI-compatible upstream behind an httpx.MockTransport.

    ``listing`` maps a base host to the discovery response (a status/body
    tuple, or an exception instance to raise); ``probes`` maps model names
    to the probe status code or an exception. Every request is recorded.
    """

    def __init__(self) -> None:
        self.listing: dict[str, tuple[int, object] | Exception] = {}
        self.probes: dict[str, int | Exception] = {}
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host
        if request.method == "GET" and request.url.path.endswith("/models"):
            scripted = self.listing.get(host, (404, {"error": "no listing"}))
            if isinstance(scripted, Exception):
                raise scripted
            status, body = scripted
            if isinstance(body, str):
                return httpx.Response(status, text=body)
            return httpx.Response(status, json=body)

        model = json.loads(request.content)["model"]
        scripted = self.probes.get(model, 500)
        if isinstance(scripted, Exception):
            raise scripted
        if scripted == 200:
            return httpx.Response(
                200,
                json={"choices": [{"message": {"role": "assistant", "content": "Hi"}}]},
            )
        return httpx.Response(scripted, text=f"upstream error for {model}")

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def hosts(self) -> set[str]:
        return {r.url.host for r in self.requests}

    def probed_models(self) -> list[str]:
        return [
            json.loads(r.content)["model"] for r in self.requests if r.method == "POST"
        ]


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
async def store(tmp_path) -> ChannelStore:
    s = ChannelStore(str(tmp_path / "channels.db"))
    await s.initialize()
    return s
