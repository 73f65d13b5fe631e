"""
Async pull engine: streams NDJSON progress from /api/pull
"""

import asyncio
import logging
from typing import Any, Optional

import aiohttp

from ollie.config import Settings
from ollie.core.cancellation import CancellationRegistry, CancellationToken
from ollie.core.constants import (
    CANCELLED_MESSAGE,
    NOT_FOUND_MESSAGE,
    PULL_TIMEOUT,
    USER_AGENT,
)
from ollie.core.events import (
    EventBus,
    NotificationSink,
    PULL_CANCELLED,
    PULL_COMPLETE,
    PULL_ERROR,
    PULL_PROGRESS,
    PULL_START,
)
from ollie.core.framing import LineFramer, parse_progress_line
from ollie.core.models import PullJob, PullResult, PullStatus, new_pull_id
from ollie.exceptions import ServerError

logger = logging.getLogger(__name__)


class Puller:
    """
    Pulls models from an Ollama-compatible server and reports progress.

    Each call to start_pull() drives one pull from request to terminal
    state and publishes lifecycle events to the notification sink:

        pull-start     {pull_id, name}
        pull-progress  {pull_id, progress}   one per NDJSON line, in order
        pull-cancelled {pull_id}
        pull-error     {pull_id, error}
        pull-complete  {pull_id}

    Several pulls may run concurrently on one Puller, each in its own task.
    cancel_pull() only flips a flag in the registry; the pull notices it
    before reading its next chunk.

    Usage:
        async with Puller(sink=bus) as puller:
            result = await puller.start_pull("llama3")
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        sink: Optional[NotificationSink] = None,
        registry: Optional[CancellationRegistry] = None,
        session: Optional[aiohttp.ClientSession] = None,
        pull_timeout: float = PULL_TIMEOUT,
    ):
        self.settings = settings or Settings.load()
        self.sink = sink if sink is not None else EventBus()
        self.registry = registry if registry is not None else CancellationRegistry()
        self.pull_timeout = pull_timeout
        self._session = session
        self._owns_session = False

    async def __aenter__(self):
        await self._create_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _create_session(self) -> None:
        """Create aiohttp session if we don't have one"""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers={"User-Agent": USER_AGENT})
            self._owns_session = True

    async def close(self) -> None:
        """Close the session if we own it"""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    def resolve_server_url(self, server_url: Optional[str] = None) -> str:
        return (server_url or self.settings.base_url).rstrip("/")

    async def start_pull(
        self,
        name: str,
        pull_id: Optional[str] = None,
        server_url: Optional[str] = None,
    ) -> PullResult:
        """
        Pull a model and stream its progress to the sink.

        Args:
            name: Model name, e.g. "llama3"
            pull_id: Identifier used for cancellation (generated if None)
            server_url: Server base URL (default from settings)

        Returns:
            PullResult; on failure error holds a readable message,
            "Cancelled by user" when the pull was cancelled

        Raises:
            DuplicatePullError: If pull_id belongs to a pull still running
        """
        job = PullJob(
            name=name,
            server_url=self.resolve_server_url(server_url),
            id=pull_id or new_pull_id(),
        )
        token = self.registry.register(job.id)
        logger.info("Pulling %s from %s (pull %s)", job.name, job.server_url, job.id)

        try:
            self._emit(PULL_START, {"pull_id": job.id, "name": job.name})
            await self._run(job, token)
        except asyncio.CancelledError:
            job.finish(PullStatus.CANCELLED, CANCELLED_MESSAGE)
            raise
        finally:
            self.registry.unregister(job.id)
            self._publish_outcome(job)

        return job.to_result()

    def cancel_pull(self, pull_id: str) -> PullResult:
        """Ask a running pull to stop. Never blocks on network I/O."""
        if self.registry.request_cancel(pull_id):
            logger.info("Cancelling pull %s", pull_id)
            return PullResult.ok(pull_id=pull_id)
        return PullResult.fail(NOT_FOUND_MESSAGE, pull_id=pull_id)

    async def _run(self, job: PullJob, token: CancellationToken) -> None:
        """Issue the request and stream the body; always leaves job terminal"""
        try:
            await self._create_session()
            timeout = aiohttp.ClientTimeout(total=self.pull_timeout)

            async with self._session.post(
                job.endpoint,
                json={"name": job.name},
                timeout=timeout,
            ) as response:
                if not 200 <= response.status < 300:
                    error = ServerError(response.status, response.reason)
                    logger.warning("Pull %s rejected: %s", job.id, error)
                    job.finish(PullStatus.FAILED, str(error))
                    return

                job.status = PullStatus.STREAMING
                await self._stream(job, token, response)

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning("Pull %s failed: %s", job.id, describe_error(e))
            job.finish(PullStatus.FAILED, describe_error(e))
        except Exception as e:
            logger.exception("Unexpected error in pull %s", job.id)
            job.finish(PullStatus.FAILED, describe_error(e))

    async def _stream(
        self,
        job: PullJob,
        token: CancellationToken,
        response: aiohttp.ClientResponse,
    ) -> None:
        """Pump chunks through the framer until EOF or cancellation"""
        framer = LineFramer()

        while True:
            if token.cancelled:
                # Drop the connection instead of draining the rest of the body
                response.close()
                logger.info("Pull %s cancelled", job.id)
                job.finish(PullStatus.CANCELLED, CANCELLED_MESSAGE)
                return

            chunk = await response.content.readany()
            if not chunk:
                break

            framer.feed(chunk)
            for line in framer.drain():
                self._publish_progress(job, line)

        # The last record may not be newline-terminated
        remainder = framer.flush_remainder()
        if remainder is not None:
            self._publish_progress(job, remainder)

        logger.info("Pull %s complete (%d progress records)", job.id, job.records_received)
        job.finish(PullStatus.COMPLETED)

    def _publish_progress(self, job: PullJob, line: str) -> None:
        job.records_received += 1
        self._emit(PULL_PROGRESS, {"pull_id": job.id, "progress": parse_progress_line(line)})

    def _publish_outcome(self, job: PullJob) -> None:
        """Publish the terminal notification for job"""
        if job.status == PullStatus.COMPLETED:
            self._emit(PULL_COMPLETE, {"pull_id": job.id})
        elif job.status == PullStatus.CANCELLED:
            self._emit(PULL_CANCELLED, {"pull_id": job.id})
        elif job.status == PullStatus.FAILED:
            self._emit(PULL_ERROR, {"pull_id": job.id, "error": job.error_message})

    def _emit(self, event: str, payload: dict[str, Any]) -> None:
        try:
            self.sink.emit(event, payload)
        except Exception:
            logger.exception("Notification sink failed on %s", event)


def describe_error(error: BaseException) -> str:
    """Readable message for a transport error"""
    if isinstance(error, asyncio.TimeoutError):
        return "Request timed out"
    return str(error) or error.__class__.__name__


async def pull_model(
    name: str,
    pull_id: Optional[str] = None,
    server_url: Optional[str] = None,
    sink: Optional[NotificationSink] = None,
) -> PullResult:
    """
    Convenience function to pull a single model.

    Args:
        name: Model name
        pull_id: Optional pull identifier
        server_url: Optional server base URL
        sink: Optional notification sink for progress events

    Returns:
        PullResult with the outcome
    """
    settings = Settings.load()

    async with Puller(settings=settings, sink=sink) as puller:
        return await puller.start_pull(name, pull_id=pull_id, server_url=server_url)
