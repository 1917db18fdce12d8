"""Pipeline Coordinator for gif service.

Orchestrates one conversion: upstream fetch -> decode stage -> encode stage ->
response sink, as three concurrent byte-copy links plus one exit-wait task
per stage.

State machine:
    idle -> fetching -> piping -> draining -> done

Failure policy:
- The first failure observed is the terminal result; faults caused by the
  teardown itself are logged at debug and discarded.
- On the first failure both stages are killed and unfinished links are
  cancelled, so no task can stay blocked on a peer that is gone.
- A broken pipe into a stage's stdin is a symptom of that stage exiting; if
  the stage then reports a non-zero exit of its own, the stage failure wins.
- A stage's non-zero exit downgrades an otherwise clean run to stage_failed,
  unless the coordinator killed it.
- EOF on the decoder's output reaches the encoder only after the decoder
  exited 0, so a decoder dying mid-stream never yields a finished image.
"""

from __future__ import annotations

import asyncio
import functools
import time
from collections.abc import Awaitable, Callable
from contextlib import aclosing

import httpx

from gif_service.fetch.source_fetcher import SourceFetcher, SourceStream
from gif_service.logging_config import bind_request_context, get_logger
from gif_service.metrics.prometheus import (
    conversion_finished,
    conversion_started,
    record_relayed_bytes,
)
from gif_service.models.errors import FetchError, IOFailed, SpawnFailed, StageFailed
from gif_service.models.request import ConversionRequest
from gif_service.models.result import (
    PipelineOutcome,
    PipelineResult,
    PipelineState,
    PipeLink,
)
from gif_service.pipeline.relay import (
    ByteSink,
    LinkStats,
    close_writer,
    copy_source_to_stage,
    copy_stage_to_sink,
    copy_stage_to_stage,
)
from gif_service.pipeline.stage_executor import StageExecutor, StageHandle
from gif_service.pipeline.stages import StageSpec

logger = get_logger(__name__)


class PipelineCoordinator:
    """Runs one conversion request end to end.

    A coordinator is single-use: create one per request.

    Attributes:
        state: Current PipelineState
    """

    def __init__(
        self,
        fetcher: SourceFetcher,
        executor: StageExecutor,
        stage_specs: tuple[StageSpec, StageSpec],
        chunk_size: int = 65_536,
        limiter: asyncio.Semaphore | None = None,
    ) -> None:
        """Initialize coordinator.

        Args:
            fetcher: Opens the upstream video
            executor: Launches stage processes
            stage_specs: Decode and encode specs, in pipeline order
            chunk_size: Transfer buffer size per link
            limiter: Optional global conversion limit, held from fetch to done
        """
        if len(stage_specs) != 2:
            raise ValueError(f"expected decode and encode stages, got {len(stage_specs)}")

        self._fetcher = fetcher
        self._executor = executor
        self._specs = stage_specs
        self._chunk_size = chunk_size
        self._limiter = limiter

        self.state = PipelineState.IDLE
        self._started = False
        self._aborting = False
        self._failure: PipelineResult | None = None
        self._blocked_stage: int | None = None

        self._source: SourceStream | None = None
        self._handles: list[StageHandle] = []
        self._link_tasks: dict[PipeLink, asyncio.Task] = {}
        self._wait_tasks: list[asyncio.Task] = []
        self._stats: dict[PipeLink, LinkStats] = {link: LinkStats() for link in PipeLink}
        self._exit_status: dict[str, int] = {}
        self._log = logger

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    @property
    def bytes_sent(self) -> int:
        """Bytes handed to the response sink so far."""
        return self._stats[PipeLink.ENCODE_TO_CLIENT].bytes_copied

    @property
    def handles(self) -> tuple[StageHandle, ...]:
        return tuple(self._handles)

    @property
    def exit_status(self) -> dict[str, int]:
        """Exit status per stage name, for stages that were reaped by wait()."""
        return dict(self._exit_status)

    def link_stats(self, link: PipeLink) -> LinkStats:
        return self._stats[link]

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def run(self, request: ConversionRequest, sink: ByteSink) -> PipelineResult:
        """Convert the request's source video into the sink.

        Args:
            request: Validated conversion request
            sink: Receives encode-stage output, chunk by chunk

        Returns:
            Terminal PipelineResult (never raises for pipeline failures)

        Raises:
            RuntimeError: If the coordinator was already used
        """
        if self._started:
            raise RuntimeError("PipelineCoordinator instances are single-use")
        self._started = True
        self._log = bind_request_context(logger, request.request_id, request.source_url)

        started_at = time.monotonic()
        result: PipelineResult | None = None
        conversion_started()
        try:
            if self._limiter is not None:
                async with self._limiter:
                    result = await self._run(request, sink)
            else:
                result = await self._run(request, sink)
            return result
        finally:
            outcome = result.outcome.value if result is not None else "aborted"
            conversion_finished(outcome, time.monotonic() - started_at)
            for link, stats in self._stats.items():
                record_relayed_bytes(link.value, stats.bytes_copied)

    def abort(self, link: PipeLink, error: BaseException) -> None:
        """Fail the conversion from outside, e.g. on client disconnect or a deadline.

        Records IO_FAILED on the given link if nothing failed before, then
        tears the pipeline down.
        """
        if self.state is PipelineState.DONE:
            return
        self._log.info("pipeline_abort_requested", link=link.value, error=str(error))
        self._fail(PipelineResult.io_failed(IOFailed(link, error)))

    # -------------------------------------------------------------------------
    # State machine
    # -------------------------------------------------------------------------

    def _transition(self, state: PipelineState) -> None:
        self._log.debug("pipeline_state", previous=self.state.value, state=state.value)
        self.state = state

    async def _run(self, request: ConversionRequest, sink: ByteSink) -> PipelineResult:
        self._transition(PipelineState.FETCHING)
        try:
            self._source = await self._fetcher.open(request.source_url)
        except FetchError as e:
            self._log.warning("fetch_failed", error_code=e.code.value, reason=e.message)
            return self._finish(PipelineResult.fetch_failed(e))

        try:
            if self._failure is not None:
                return self._finish(self._failure)
            return await self._pipe(sink)
        finally:
            await self._teardown()

    async def _pipe(self, sink: ByteSink) -> PipelineResult:
        for index, spec in enumerate(self._specs):
            if self._failure is not None:
                return self._finish(self._failure)
            try:
                handle = await self._executor.launch(spec, index=index, log=self._log)
            except SpawnFailed as e:
                self._log.error("stage_spawn_failed", stage=spec.name, reason=e.reason)
                for running in self._handles:
                    running.kill()
                return self._finish(PipelineResult.spawn_failed(index, e))
            self._handles.append(handle)

        decode, encode = self._handles
        self._transition(PipelineState.PIPING)

        self._link_tasks = {
            PipeLink.SOURCE_TO_DECODE: self._start_link(
                PipeLink.SOURCE_TO_DECODE,
                functools.partial(self._copy_source, decode.stdin),
                downstream=decode,
            ),
            PipeLink.DECODE_TO_ENCODE: self._start_link(
                PipeLink.DECODE_TO_ENCODE,
                functools.partial(self._copy_frames, decode, encode),
                downstream=encode,
            ),
            PipeLink.ENCODE_TO_CLIENT: self._start_link(
                PipeLink.ENCODE_TO_CLIENT,
                functools.partial(
                    copy_stage_to_sink,
                    encode.stdout,
                    sink,
                    self._stats[PipeLink.ENCODE_TO_CLIENT],
                    self._chunk_size,
                ),
                downstream=None,
            ),
        }
        self._wait_tasks = [
            asyncio.create_task(
                self._wait_stage(decode, (PipeLink.SOURCE_TO_DECODE, PipeLink.DECODE_TO_ENCODE)),
                name=f"wait-{decode.name}",
            ),
            asyncio.create_task(
                self._wait_stage(encode, (PipeLink.DECODE_TO_ENCODE, PipeLink.ENCODE_TO_CLIENT)),
                name=f"wait-{encode.name}",
            ),
        ]

        await asyncio.wait(self._link_tasks.values())
        if not self._aborting:
            self._transition(PipelineState.DRAINING)
        await asyncio.wait(self._wait_tasks)

        for task in self._wait_tasks:
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()

        if self._failure is not None:
            return self._finish(self._failure)
        return self._finish(PipelineResult.success())

    def _finish(self, result: PipelineResult) -> PipelineResult:
        result = result.with_bytes_sent(self.bytes_sent)
        self._transition(PipelineState.DONE)
        log = self._log.info if result.ok else self._log.warning
        log(
            "pipeline_done",
            outcome=result.outcome.value,
            reason=result.reason or None,
            bytes_in=self._stats[PipeLink.SOURCE_TO_DECODE].bytes_copied,
            bytes_frames=self._stats[PipeLink.DECODE_TO_ENCODE].bytes_copied,
            bytes_out=self.bytes_sent,
            exit_status=self._exit_status or None,
        )
        return result

    # -------------------------------------------------------------------------
    # Links and waits
    # -------------------------------------------------------------------------

    async def _copy_source(self, writer: asyncio.StreamWriter) -> int:
        if self._source is None:
            raise RuntimeError("source stream is not open")
        async with aclosing(self._source.iter_chunks()) as chunks:
            return await copy_source_to_stage(
                chunks, writer, self._stats[PipeLink.SOURCE_TO_DECODE]
            )

    async def _copy_frames(self, decode: StageHandle, encode: StageHandle) -> int:
        copied = await copy_stage_to_stage(
            decode.stdout,
            encode.stdin,
            self._stats[PipeLink.DECODE_TO_ENCODE],
            self._chunk_size,
            close_on_eof=False,
        )
        # EOF on the frames is end of input only if the decoder exited cleanly
        returncode = await decode.wait_exit()
        failure = self._stage_failure(decode, returncode)
        if failure is not None:
            self._fail(failure)
            return copied
        await close_writer(encode.stdin)
        return copied

    def _start_link(
        self,
        link: PipeLink,
        copy: Callable[[], Awaitable[int]],
        downstream: StageHandle | None,
    ) -> asyncio.Task:
        return asyncio.create_task(self._run_link(link, copy, downstream), name=link.value)

    async def _run_link(
        self,
        link: PipeLink,
        copy: Callable[[], Awaitable[int]],
        downstream: StageHandle | None,
    ) -> None:
        stats = self._stats[link]
        try:
            await copy()
        except asyncio.CancelledError:
            self._log.debug("link_cancelled", link=link.value, bytes=stats.bytes_copied)
            raise
        except Exception as e:
            input_closed = downstream is not None and isinstance(
                e, (BrokenPipeError, ConnectionResetError)
            )
            self._fail(
                PipelineResult.io_failed(IOFailed(link, e)),
                blocked_stage=downstream.index if input_closed else None,
            )
            return

        self._log.info(
            "link_finished", link=link.value, bytes=stats.bytes_copied, chunks=stats.chunks
        )

    async def _wait_stage(self, handle: StageHandle, links: tuple[PipeLink, ...]) -> None:
        # Only wait once nobody reads or writes this stage's pipes anymore
        await asyncio.wait([self._link_tasks[link] for link in links])
        returncode = await handle.wait()
        self._exit_status[handle.name] = returncode

        failure = self._stage_failure(handle, returncode)
        if failure is not None:
            self._fail(failure)

    def _stage_failure(self, handle: StageHandle, returncode: int) -> PipelineResult | None:
        if returncode == 0:
            return None
        if handle.killed and returncode < 0:
            self._log.debug("stage_exit_after_kill", stage=handle.name, exit_status=returncode)
            return None
        return PipelineResult.stage_failed(
            handle.index,
            StageFailed(handle.name, returncode, handle.stderr_tail or None),
        )

    # -------------------------------------------------------------------------
    # Failure handling and teardown
    # -------------------------------------------------------------------------

    def _fail(self, result: PipelineResult, blocked_stage: int | None = None) -> None:
        if self._failure is None:
            self._failure = result
            self._blocked_stage = blocked_stage
            self._log.warning(
                "pipeline_failure",
                outcome=result.outcome.value,
                error_code=result.error_code.value if result.error_code else None,
                reason=result.reason,
            )
            self._begin_draining()
            return

        if (
            result.outcome is PipelineOutcome.STAGE_FAILED
            and self._blocked_stage is not None
            and result.stage_index == self._blocked_stage
        ):
            self._log.info(
                "pipeline_failure_superseded",
                previous=self._failure.reason,
                reason=result.reason,
            )
            self._failure = result
            self._blocked_stage = None
            return

        self._log.debug("secondary_failure_discarded", reason=result.reason)

    def _begin_draining(self) -> None:
        if self._aborting:
            return
        self._aborting = True
        if self.state is PipelineState.PIPING:
            self._transition(PipelineState.DRAINING)

        for handle in self._handles:
            handle.kill()

        current = asyncio.current_task()
        for task in self._link_tasks.values():
            if task is not current and not task.done():
                task.cancel()

    async def _teardown(self) -> None:
        """Cancel leftover tasks, reap both stages and release the upstream."""
        pending = [
            task
            for task in (*self._link_tasks.values(), *self._wait_tasks)
            if not task.done()
        ]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.wait(pending)

        if self._handles:
            await asyncio.gather(*(handle.close() for handle in self._handles))

        if self._source is not None:
            try:
                await self._source.aclose()
            except (httpx.HTTPError, OSError) as e:
                self._log.debug("source_close_failed", error=str(e))
