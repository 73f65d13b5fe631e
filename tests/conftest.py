"""
Shared fixtures: a scripted model server and a Puller pointed at it.
"""

import asyncio
from typing import Optional

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from ollie.config import Settings
from ollie.core import Puller, RecordingSink


class FakeModelServer:
    """Scripted stand-in for the model server API."""

    def __init__(self):
        self.url = ""
        # /api/pull
        self.status = 200
        self.chunks: list[bytes] = []
        self.gate: Optional[asyncio.Event] = None
        self.hold_before = 0
        self.pull_requests: list[dict] = []
        # /api/tags, /api/show, /api/delete
        self.models: list[dict] = []
        self.show_response: dict = {}
        self.allow_delete_method = True
        self.delete_status = 200
        self.delete_methods: list[str] = []

    async def handle_pull(self, request: web.Request) -> web.StreamResponse:
        self.pull_requests.append(await request.json())
        if self.status != 200:
            return web.Response(status=self.status, text="server exploded")

        response = web.StreamResponse()
        response.content_type = "application/x-ndjson"
        await response.prepare(request)
        try:
            for i, chunk in enumerate(self.chunks):
                if self.gate is not None and i == self.hold_before:
                    await self.gate.wait()
                await response.write(chunk)
            await response.write_eof()
        except ConnectionResetError:
            # Client went away (cancelled pull)
            pass
        return response

    async def handle_tags(self, request: web.Request) -> web.Response:
        return web.json_response({"models": self.models})

    async def handle_show(self, request: web.Request) -> web.Response:
        body = await request.json()
        if not any(m["name"] == body.get("name") for m in self.models):
            return web.json_response({"error": "model not found"}, status=404)
        return web.json_response(self.show_response)

    async def handle_delete(self, request: web.Request) -> web.Response:
        self.delete_methods.append(request.method)
        if request.method == "DELETE" and not self.allow_delete_method:
            return web.Response(status=405)
        return web.Response(status=self.delete_status)

    def release(self) -> None:
        if self.gate is not None:
            self.gate.set()


@pytest.fixture
async def model_server():
    state = FakeModelServer()

    app = web.Application()
    app.router.add_post("/api/pull", state.handle_pull)
    app.router.add_get("/api/tags", state.handle_tags)
    app.router.add_post("/api/show", state.handle_show)
    app.router.add_route("DELETE", "/api/delete", state.handle_delete)
    app.router.add_post("/api/delete", state.handle_delete)

    server = TestServer(app)
    await server.start_server()
    state.url = f"http://{server.host}:{server.port}"

    yield state

    state.release()
    await server.close()


@pytest.fixture
def settings(model_server, tmp_path):
    settings = Settings(server_url=model_server.url)
    settings._config_path = tmp_path / "settings.json"
    return settings


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
async def puller(settings, sink):
    async with Puller(settings=settings, sink=sink) as p:
        yield p

