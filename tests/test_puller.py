"""Tests for the pull engine."""

import asyncio

import pytest
from aiohttp.test_utils import unused_port

from ollie.config import Settings
from ollie.core import Puller, PullStatus, RecordingSink
from ollie.core.constants import CANCELLED_MESSAGE, NOT_FOUND_MESSAGE
from ollie.core.events import (
    PULL_CANCELLED,
    PULL_COMPLETE,
    PULL_ERROR,
    PULL_PROGRESS,
    PULL_START,
)
from ollie.exceptions import DuplicatePullError

from tests.helpers import wait_for


class CancellingSink(RecordingSink):
    """Requests cancellation as soon as the first progress record arrives."""

    def __init__(self):
        super().__init__()
        self.puller = None
        self.cancel_results = []

    def emit(self, event, payload):
        super().emit(event, payload)
        if event == PULL_PROGRESS and not self.cancel_results:
            self.cancel_results.append(self.puller.cancel_pull(payload["pull_id"]))


class BrokenSink(RecordingSink):
    def emit(self, event, payload):
        super().emit(event, payload)
        raise RuntimeError("observer crashed")


class TestStartPull:
    """Tests for Puller.start_pull."""

    async def test_streams_progress_then_completes(self, puller, sink, model_server):
        model_server.chunks = [
            b'{"status":"downloading","completed":10,"total":100}\n{"status":"success"}\n',
        ]

        result = await puller.start_pull("llama3")

        assert result.success is True
        assert result.error is None
        assert result.to_dict() == {"success": True, "error": None}
        assert result.status == PullStatus.COMPLETED
        assert sink.names() == [PULL_START, PULL_PROGRESS, PULL_PROGRESS, PULL_COMPLETE]

        pull_id = result.pull_id
        assert sink.of(PULL_START) == [{"pull_id": pull_id, "name": "llama3"}]
        assert [p["progress"] for p in sink.of(PULL_PROGRESS)] == [
            {"status": "downloading", "completed": 10, "total": 100},
            {"status": "success"},
        ]
        assert all(p["pull_id"] == pull_id for p in sink.of(PULL_PROGRESS))
        assert sink.of(PULL_COMPLETE) == [{"pull_id": pull_id}]
        assert model_server.pull_requests == [{"name": "llama3"}]
        assert pull_id not in puller.registry

    async def test_lines_split_across_chunks(self, puller, sink, model_server):
        model_server.chunks = [b'{"status":"pull', b'ing"}\n{"sta', b'tus":"success"}\n']

        result = await puller.start_pull("llama3")

        assert result.success is True
        assert [p["progress"]["status"] for p in sink.of(PULL_PROGRESS)] == ["pulling", "success"]

    async def test_trailing_record_without_newline(self, puller, sink, model_server):
        model_server.chunks = [b'{"status":"downloading"}\n{"status":"success"}']

        result = await puller.start_pull("llama3")

        assert result.success is True
        assert [p["progress"] for p in sink.of(PULL_PROGRESS)] == [
            {"status": "downloading"},
            {"status": "success"},
        ]
        assert sink.names()[-1] == PULL_COMPLETE

    async def test_invalid_line_forwarded_as_parse_error(self, puller, sink, model_server):
        model_server.chunks = [b'not valid json\n{"status":"success"}\n']

        result = await puller.start_pull("llama3")

        assert result.success is True
        assert sink.of(PULL_PROGRESS)[0]["progress"] == {
            "status": "parsing_error",
            "raw": "not valid json",
        }
        assert len(sink.of(PULL_PROGRESS)) == 2

    async def test_deeply_nested_line_does_not_fail_pull(self, puller, sink, model_server):
        model_server.chunks = [b"[" * 100000 + b'\n{"status":"success"}\n']

        result = await puller.start_pull("llama3")

        assert result.success is True
        assert result.status == PullStatus.COMPLETED
        assert [p["progress"] for p in sink.of(PULL_PROGRESS)] == [
            {"status": "parsing_error", "raw": "[" * 100000},
            {"status": "success"},
        ]
        assert sink.names()[-1] == PULL_COMPLETE

    async def test_caller_supplied_id(self, puller, sink, model_server):
        model_server.chunks = [b'{"status":"success"}\n']

        result = await puller.start_pull("llama3", pull_id="my-pull")

        assert result.pull_id == "my-pull"
        assert {p["pull_id"] for _, p in sink.events} == {"my-pull"}

    async def test_id_reusable_after_completion(self, puller, model_server):
        model_server.chunks = [b'{"status":"success"}\n']

        first = await puller.start_pull("llama3", pull_id="again")
        second = await puller.start_pull("llama3", pull_id="again")

        assert first.success and second.success

    async def test_server_url_argument_overrides_settings(self, sink, model_server):
        model_server.chunks = [b'{"status":"success"}\n']
        settings = Settings(server_url=f"http://127.0.0.1:{unused_port()}")

        async with Puller(settings=settings, sink=sink) as puller:
            result = await puller.start_pull("llama3", server_url=model_server.url + "/")

        assert result.success is True


class TestPullFailures:
    """Tests for failed pulls."""

    async def test_http_error_status(self, puller, sink, model_server):
        model_server.status = 500

        result = await puller.start_pull("llama3")

        assert result.success is False
        assert result.status == PullStatus.FAILED
        assert "500" in result.error
        assert result.to_dict() == {"success": False, "error": result.error}
        assert sink.names() == [PULL_START, PULL_ERROR]
        assert sink.of(PULL_ERROR) == [{"pull_id": result.pull_id, "error": result.error}]
        assert result.pull_id not in puller.registry

    async def test_connection_refused(self, puller, sink):
        result = await puller.start_pull(
            "llama3",
            server_url=f"http://127.0.0.1:{unused_port()}",
        )

        assert result.success is False
        assert result.error
        assert sink.names() == [PULL_START, PULL_ERROR]
        assert len(puller.registry) == 0

    async def test_timeout(self, settings, sink, model_server):
        model_server.chunks = [b'{"status":"pulling manifest"}\n', b'{"status":"success"}\n']
        model_server.gate = asyncio.Event()
        model_server.hold_before = 1

        async with Puller(settings=settings, sink=sink, pull_timeout=0.5) as puller:
            result = await puller.start_pull("llama3")

        assert result.success is False
        assert result.status == PullStatus.FAILED
        assert sink.names() == [PULL_START, PULL_PROGRESS, PULL_ERROR]
        assert len(puller.registry) == 0

    async def test_duplicate_active_id_raises(self, puller, sink):
        puller.registry.register("busy")

        with pytest.raises(DuplicatePullError):
            await puller.start_pull("llama3", pull_id="busy")

        # The other pull's entry is untouched and nothing was published
        assert "busy" in puller.registry
        assert sink.events == []

    async def test_broken_sink_does_not_break_pull(self, settings, model_server):
        model_server.chunks = [b'{"status":"success"}\n']
        sink = BrokenSink()

        async with Puller(settings=settings, sink=sink) as puller:
            result = await puller.start_pull("llama3")

        assert result.success is True
        assert sink.names() == [PULL_START, PULL_PROGRESS, PULL_COMPLETE]


class TestCancelPull:
    """Tests for Puller.cancel_pull."""

    async def test_unknown_id(self, puller):
        result = puller.cancel_pull("nope")

        assert result.success is False
        assert result.error == NOT_FOUND_MESSAGE
        assert result.to_dict() == {"success": False, "error": NOT_FOUND_MESSAGE}

    async def test_cancel_after_first_chunk(self, settings, model_server):
        model_server.chunks = [
            b'{"status":"pulling manifest"}\n',
            b'{"status":"downloading","completed":50,"total":100}\n',
            b'{"status":"success"}\n',
        ]
        model_server.gate = asyncio.Event()
        model_server.hold_before = 1
        sink = CancellingSink()

        async with Puller(settings=settings, sink=sink) as puller:
            sink.puller = puller
            result = await puller.start_pull("llama3", pull_id="to-cancel")

            assert sink.cancel_results[0].success is True
            assert result.success is False
            assert result.status == PullStatus.CANCELLED
            assert result.error == CANCELLED_MESSAGE
            assert result.to_dict() == {"success": False, "error": CANCELLED_MESSAGE}
            assert sink.names() == [PULL_START, PULL_PROGRESS, PULL_CANCELLED]
            assert sink.of(PULL_CANCELLED) == [{"pull_id": "to-cancel"}]
            assert "to-cancel" not in puller.registry

            # The pull is gone, so a second request finds nothing
            assert puller.cancel_pull("to-cancel").error == NOT_FOUND_MESSAGE

    async def test_cancel_while_waiting_for_chunk(self, puller, sink, model_server):
        """Cancellation is observed once the pending chunk arrives."""
        model_server.chunks = [b'{"status":"pulling manifest"}\n', b'{"status":"downloading"}\n']
        model_server.gate = asyncio.Event()
        model_server.hold_before = 1

        task = asyncio.create_task(puller.start_pull("llama3", pull_id="slow"))
        await wait_for(lambda: len(sink.of(PULL_PROGRESS)) == 1)

        assert puller.cancel_pull("slow").success is True
        assert not task.done()

        model_server.release()
        result = await asyncio.wait_for(task, timeout=5)

        assert result.status == PullStatus.CANCELLED
        assert sink.names().count(PULL_CANCELLED) == 1
        assert sink.names()[-1] == PULL_CANCELLED
        assert "slow" not in puller.registry

    async def test_task_cancellation_cleans_up(self, puller, sink, model_server):
        model_server.chunks = [b'{"status":"success"}\n']
        model_server.gate = asyncio.Event()

        task = asyncio.create_task(puller.start_pull("llama3", pull_id="abandoned"))
        await wait_for(lambda: "abandoned" in puller.registry)
        await wait_for(lambda: len(model_server.pull_requests) == 1)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert "abandoned" not in puller.registry
        assert sink.names() == [PULL_START, PULL_CANCELLED]


class TestConcurrentPulls:
    """Tests for several pulls sharing one Puller."""

    async def test_generated_ids_distinct(self, puller, sink, model_server):
        model_server.chunks = [b'{"status":"success"}\n']
        model_server.gate = asyncio.Event()

        tasks = [asyncio.create_task(puller.start_pull(f"model-{n}")) for n in range(5)]
        await wait_for(lambda: len(puller.registry) == 5)

        started = [p["pull_id"] for p in sink.of(PULL_START)]
        assert len(set(started)) == 5
        assert set(puller.registry.active_ids()) == set(started)

        model_server.release()
        results = await asyncio.gather(*tasks)

        assert all(r.success for r in results)
        assert len(puller.registry) == 0
        assert len(sink.of(PULL_COMPLETE)) == 5

    async def test_cancel_one_of_two(self, puller, sink, model_server):
        model_server.chunks = [b'{"status":"pulling manifest"}\n', b'{"status":"success"}\n']
        model_server.gate = asyncio.Event()
        model_server.hold_before = 1

        keep = asyncio.create_task(puller.start_pull("a", pull_id="keep"))
        drop = asyncio.create_task(puller.start_pull("b", pull_id="drop"))
        await wait_for(lambda: len(sink.of(PULL_PROGRESS)) == 2)

        puller.cancel_pull("drop")
        model_server.release()

        keep_result, drop_result = await asyncio.gather(keep, drop)

        assert keep_result.success is True
        assert drop_result.status == PullStatus.CANCELLED
        assert sink.of(PULL_CANCELLED) == [{"pull_id": "drop"}]
        assert sink.of(PULL_COMPLETE) == [{"pull_id": "keep"}]
