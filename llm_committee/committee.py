"""
Committee fan-out: stream one prompt to several backends at once.

Each backend runs in its own task and forwards its events into a shared
queue as they arrive, so events interleave in arrival order while each
backend's own events keep their emission order. The consumer finishes once
every backend has delivered its terminal event; that is tracked with an
explicit per-backend ``done`` set rather than by closing a shared channel.
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import AsyncIterator, Callable, Mapping, Optional, Sequence

from loguru import logger

from .catalog import LabelLookup, display_name
from .config import BackendRow
from .errors import PreconditionError
from .schemas import AssembledResponse, TokenDelta

MIN_BACKENDS = 2


def check_committee_request(prompt: str, backend_ids: Sequence[str]) -> list[str]:
    """Validate a fan-out request; returns the backend ids in request order."""
    if not prompt or not prompt.strip():
        raise PreconditionError("Prompt is required")
    ids = list(backend_ids or [])
    if any(not b or not b.strip() for b in ids):
        raise PreconditionError("Model ids must be non-empty strings")
    if len(set(ids)) != len(ids):
        raise PreconditionError("Model ids must be unique")
    if len(ids) < MIN_BACKENDS:
        raise PreconditionError(f"Prompt and at least {MIN_BACKENDS} models required")
    return ids


async def _pump(client, backend_id: str, messages: list[dict], queue: asyncio.Queue, options: dict) -> bool:
    """Forward one backend's events; True once its terminal event went out."""
    async for event in client.stream(backend_id, messages, **options):
        await queue.put(event)
        if event.done:
            return True
    return False


async def _run_branch(
    client,
    backend_id: str,
    messages: list[dict],
    queue: asyncio.Queue,
    timeout_s: Optional[float],
    options: dict,
) -> None:
    logger.debug("Dispatching {}", backend_id)
    try:
        if timeout_s:
            finished = await asyncio.wait_for(_pump(client, backend_id, messages, queue, options), timeout_s)
        else:
            finished = await _pump(client, backend_id, messages, queue, options)
        if not finished:
            await queue.put(TokenDelta.failed(backend_id, "Stream ended without a terminal event"))
    except asyncio.TimeoutError:
        logger.warning("{} timed out after {}s", backend_id, timeout_s)
        await queue.put(TokenDelta.failed(backend_id, f"Request timed out after {timeout_s}s"))
    except Exception as e:
        # One backend's failure is reported on its own slot and never reaches its siblings
        logger.opt(exception=e).warning("{} dispatch failed", backend_id)
        await queue.put(TokenDelta.failed(backend_id, str(e) or type(e).__name__))


class CommitteeStream:
    """Async iterable of ``TokenDelta`` events from every committee member.

    ``started_at`` maps each backend id to the ``time.perf_counter()`` value
    taken when its dispatch started. Closing the stream (``aclose`` or
    cancelling the consuming task) cancels every in-flight dispatch.
    """

    def __init__(
        self,
        client,
        prompt: str,
        backend_ids: Sequence[str],
        timeout_s: Optional[float] = None,
        settings: Optional[Mapping[str, BackendRow]] = None,
    ):
        self.backend_ids = check_committee_request(prompt, backend_ids)
        self.prompt = prompt.strip()
        self.timeout_s = timeout_s
        self.settings = dict(settings or {})
        self.started_at: dict[str, float] = {}
        self._client = client
        self._events: Optional[AsyncIterator[TokenDelta]] = None

    def __aiter__(self) -> AsyncIterator[TokenDelta]:
        if self._events is None:
            self._events = self._run()
        return self._events

    async def aclose(self) -> None:
        if self._events is not None:
            await self._events.aclose()

    def _options(self, backend_id: str) -> tuple[Optional[float], dict]:
        row = self.settings.get(backend_id)
        if row is None:
            return self.timeout_s, {}
        return row.timeout_s, {"temperature": row.temperature, "max_tokens": row.max_tokens, "timeout_s": row.timeout_s}

    async def _run(self) -> AsyncIterator[TokenDelta]:
        queue: asyncio.Queue = asyncio.Queue()
        messages = [{"role": "user", "content": self.prompt}]
        tasks = []
        for backend_id in self.backend_ids:
            timeout_s, options = self._options(backend_id)
            self.started_at[backend_id] = time.perf_counter()
            tasks.append(asyncio.create_task(
                _run_branch(self._client, backend_id, messages, queue, timeout_s, options),
                name=f"committee:{backend_id}",
            ))

        expected = set(self.backend_ids)
        done: set[str] = set()
        try:
            while done != expected:
                event = await queue.get()
                if event.backend_id not in expected or event.backend_id in done:
                    continue
                if event.done:
                    done.add(event.backend_id)
                    logger.debug("{} finished ({}/{})", event.backend_id, len(done), len(expected))
                yield event
        finally:
            pending = [t for t in tasks if not t.done()]
            for t in pending:
                t.cancel()
            if pending:
                logger.info("Cancelled {} in-flight dispatch(es)", len(pending))
            await asyncio.gather(*tasks, return_exceptions=True)


def stream_committee(
    client,
    prompt: str,
    backend_ids: Sequence[str],
    timeout_s: Optional[float] = None,
    settings: Optional[Mapping[str, BackendRow]] = None,
) -> CommitteeStream:
    """Fan ``prompt`` out to every backend. Raises PreconditionError before any dispatch."""
    return CommitteeStream(client, prompt, backend_ids, timeout_s=timeout_s, settings=settings)


class ResponseAssembler:
    """Rebuilds one AssembledResponse per backend from the multiplexed events."""

    def __init__(
        self,
        backend_ids: Sequence[str],
        labels: LabelLookup = None,
        started_at: Optional[Mapping[str, float]] = None,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self._order = list(backend_ids)
        self._clock = clock
        self._created = clock()
        # Shared with the stream, which fills it in as dispatches start
        self._started = started_at if started_at is not None else {}
        self.responses = {
            b: AssembledResponse(backend_id=b, label=display_name(b, labels)) for b in self._order
        }

    def apply(self, event: TokenDelta) -> Optional[AssembledResponse]:
        r = self.responses.get(event.backend_id)
        if r is None:
            logger.warning("Event for unknown backend {}", event.backend_id)
            return None
        if r.done:
            return r

        if event.error is not None:
            r.error = event.error
        elif event.content:
            r.content += event.content

        if event.done:
            r.done = True
            started = self._started.get(event.backend_id, self._created)
            r.latency_ms = round((self._clock() - started) * 1000, 1)
        return r

    def results(self) -> list[AssembledResponse]:
        return [self.responses[b] for b in self._order]

    def usable(self) -> list[AssembledResponse]:
        return [r for r in self.results() if r.usable]


async def collect_responses(
    client,
    prompt: str,
    backend_ids: Sequence[str],
    labels: LabelLookup = None,
    on_event: Optional[Callable[[TokenDelta], None]] = None,
    timeout_s: Optional[float] = None,
    settings: Optional[Mapping[str, BackendRow]] = None,
) -> list[AssembledResponse]:
    """Stream the committee to completion and return the frozen responses in request order."""
    stream = stream_committee(client, prompt, backend_ids, timeout_s=timeout_s, settings=settings)
    assembler = ResponseAssembler(stream.backend_ids, labels=labels, started_at=stream.started_at)
    try:
        async for event in stream:
            assembler.apply(event)
            if on_event:
                on_event(event)
    finally:
        await stream.aclose()

    results = assembler.results()
    failed = [r.backend_id for r in results if r.error]
    logger.info("Committee finished: {} ok, {} failed", len(results) - len(failed), len(failed))
    return results


def encode_sse(event: TokenDelta) -> str:
    """One server-sent event carrying the event's wire JSON."""
    return f"data: {json.dumps(event.to_wire())}\n\n"
