"""Shared pytest fixtures for Comfy Proxy tests.

Outbound HTTP is served by :class:`FakeEngine` through
``httpx.MockTransport`` and the event channel by :class:`FakeWebSocket`, so
no test touches the network.
"""

from __future__ import annotations

import asyncio
import json
import re
import shutil
import tempfile
from pathlib import Path
from typing import Generator

import httpx
import pytest

from comfyproxy.core.client import ComfyClient
from comfyproxy.core.config import ProxyConfig

ENGINE_URL = "http://comfy.test"
ASSET_HOST = "assets.test"


class FakeEngine:
    """In-memory stand-in for the engine HTTP API and remote asset hosts.

    Attributes:
        assets: Remote URL → bytes served to downloads.
        uploads: ``(filename, category, overwrite, content_type)`` per upload.
        submissions: Decoded JSON bodies posted to ``/prompt``.
        history: Body returned by ``/history/{prompt_id}``.
        images: ``(filename, subfolder)`` → bytes served by ``/view``.
        views: ``(filename, subfolder, type)`` per ``/view`` call.
        requests: Every request seen, in order.
    """

    def __init__(self) -> None:
        self.assets: dict[str, bytes] = {}
        self.uploads: list[tuple[str, str, str, str]] = []
        self.submissions: list[dict] = []
        self.history: dict = {}
        self.images: dict[tuple[str, str], bytes] = {}
        self.views: list[tuple[str, str, str]] = []
        self.requests: list[httpx.Request] = []
        self.prompt_id = "prompt-1"
        self.fail_paths: dict[str, int] = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path in self.fail_paths:
            return httpx.Response(self.fail_paths[path], text="engine exploded")

        if request.url.host == ASSET_HOST:
            data = self.assets.get(str(request.url))
            if data is None:
                return httpx.Response(404, text="not found")
            return httpx.Response(200, content=data)

        if path == "/upload/image":
            return self._upload(request)
        if path == "/prompt":
            self.submissions.append(json.loads(request.content))
            return httpx.Response(
                200, json={"prompt_id": self.prompt_id, "number": 0, "node_errors": {}}
            )
        if path.startswith("/history/"):
            return httpx.Response(200, json=self.history)
        if path == "/view":
            params = request.url.params
            key = (params["filename"], params["subfolder"])
            self.views.append((params["filename"], params["subfolder"], params["type"]))
            if key not in self.images:
                return httpx.Response(404, text="no such image")
            return httpx.Response(200, content=self.images[key])
        return httpx.Response(404, text=f"unexpected path {path}")

    def _upload(self, request: httpx.Request) -> httpx.Response:
        body = request.content.decode("latin-1")
        filename = re.search(r'name="image"; filename="([^"]+)"', body).group(1)
        content_type = re.search(r"Content-Type: ([^\r\n]+)", body).group(1)
        category = re.search(r'name="type"\r\n\r\n([^\r\n]*)', body).group(1)
        overwrite = re.search(r'name="overwrite"\r\n\r\n([^\r\n]*)', body).group(1)
        self.uploads.append((filename, category, overwrite, content_type))
        return httpx.Response(
            200, json={"name": f"engine_{filename}", "subfolder": "", "type": category}
        )


class FakeWebSocket:
    """Async-iterable fake of a WebSocket connection.

    Yields the queued messages in order; then either ends (the server
    closed the socket) or, with ``hold_open=True``, blocks forever.
    """

    def __init__(self, messages: list, *, hold_open: bool = False) -> None:
        self.messages = list(messages)
        self.hold_open = hold_open
        self.entered = False
        self.closed = False

    async def __aenter__(self) -> "FakeWebSocket":
        self.entered = True
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.closed = True

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in self.messages:
            await asyncio.sleep(0)
            yield message
        if self.hold_open:
            await asyncio.Event().wait()


def progress_event(prompt_id: str, value: int, maximum: int) -> str:
    return json.dumps(
        {"type": "progress", "data": {"prompt_id": prompt_id, "value": value, "max": maximum}}
    )


def status_event(queue_remaining: int) -> str:
    return json.dumps(
        {"type": "status", "data": {"status": {"exec_info": {"queue_remaining": queue_remaining}}}}
    )


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config() -> ProxyConfig:
    """Create a test configuration pointing at the fake engine.

    Returns:
        ProxyConfig instance isolated from any ``.env`` file
    """
    return ProxyConfig(
        _env_file=None,
        api_url=ENGINE_URL,
        ws_url="ws://comfy.test/ws",
        client_id="test-client",
        output_node_id="9",
        completion_timeout=2.0,
        reconnect_delay=0.01,
    )


@pytest.fixture
def engine() -> FakeEngine:
    """Create an empty fake engine."""
    return FakeEngine()


@pytest.fixture
def comfy_client(test_config: ProxyConfig, engine: FakeEngine) -> ComfyClient:
    """Create a ComfyClient whose HTTP traffic is served by ``engine``."""
    http = httpx.AsyncClient(transport=httpx.MockTransport(engine))
    return ComfyClient(test_config, http)


@pytest.fixture
def test_client():
    """Create a FastAPI TestClient with the application lifespan running.

    Tests replace ``app.state.pipeline`` to control what ``/generate`` does.
    """
    from fastapi.testclient import TestClient

    from comfyproxy.api.main import app

    with TestClient(app) as client:
        yield client
