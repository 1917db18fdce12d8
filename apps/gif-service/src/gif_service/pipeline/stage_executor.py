"""
Stage executor: launches external transcoding stages as child processes.

Each stage runs with stdin and stdout connected to pipes owned by the caller.
Stderr is not part of the data path: it is either drained line by line into
the log (keeping a short tail for failure messages) or discarded.

Lifecycle of a StageHandle:
1. launch() spawns the process (SpawnFailed if it cannot start)
2. copy tasks own stdin / stdout exclusively until they finish
3. wait() is called once, after both pipe ends were closed
   (wait_exit() only observes the exit and may run while pipes are in use)
4. close() always runs at the end of a request: kill if alive, reap, close
"""

from __future__ import annotations

import asyncio
from collections import deque

from gif_service.logging_config import get_logger
from gif_service.metrics.prometheus import record_stage_exit
from gif_service.models.errors import SpawnFailed
from gif_service.pipeline.stages import StageSpec

logger = get_logger(__name__)

# Read size when discarding leftover stdout after a teardown
_DISCARD_CHUNK = 65_536


class StageHandle:
    """A running stage process.

    Attributes:
        spec: The stage specification it was launched from
        index: Position in the pipeline (0 decode, 1 encode)
        killed: True if kill() terminated the process while it was running
    """

    def __init__(
        self,
        spec: StageSpec,
        process: asyncio.subprocess.Process,
        index: int = 0,
        stderr_tail_lines: int = 20,
        log=None,
    ) -> None:
        self.spec = spec
        self.index = index
        self.killed = False
        self._process = process
        self._log = (log or logger).bind(stage=spec.name, pid=process.pid)
        self._stderr_tail: deque[str] = deque(maxlen=max(stderr_tail_lines, 1))
        self._stderr_task: asyncio.Task | None = None
        self._waited = False
        self._closed = False

        if process.stderr is not None:
            self._stderr_task = asyncio.create_task(
                self._drain_stderr(), name=f"{spec.name}-stderr"
            )

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def stdin(self) -> asyncio.StreamWriter:
        if self._process.stdin is None:
            raise RuntimeError(f"stage {self.name} was launched without a stdin pipe")
        return self._process.stdin

    @property
    def stdout(self) -> asyncio.StreamReader:
        if self._process.stdout is None:
            raise RuntimeError(f"stage {self.name} was launched without a stdout pipe")
        return self._process.stdout

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    @property
    def running(self) -> bool:
        return self._process.returncode is None

    @property
    def stderr_tail(self) -> str:
        """Last stderr lines, joined; empty if stderr is discarded."""
        return " | ".join(self._stderr_tail)

    async def _drain_stderr(self) -> None:
        """Log stderr lines until EOF."""
        stderr = self._process.stderr
        if stderr is None:
            return
        while True:
            line = await stderr.readline()
            if not line:
                break
            text = line.decode("utf-8", errors="replace").rstrip()
            if text:
                self._stderr_tail.append(text)
                self._log.debug("stage_stderr", line=text)

    def kill(self) -> bool:
        """Forcibly terminate the process.

        Returns:
            True if a running process was killed, False if it had already exited
        """
        if self._process.returncode is not None:
            return False
        try:
            self._process.kill()
        except ProcessLookupError:
            return False
        self.killed = True
        self._log.info("stage_killed")
        return True

    async def wait_exit(self) -> int:
        """Wait for the process to exit without touching stdin or stdout.

        Usable while copy tasks still own the pipes. Stderr is drained first,
        so stderr_tail is complete when this returns.
        """
        returncode = await self._process.wait()
        await self._finish_stderr()
        return returncode

    async def wait(self) -> int:
        """Wait for the process to exit and return its exit status.

        Must be called once, after the copy tasks owning stdin and stdout
        have finished. Leftover stdout (only possible after a teardown) is
        discarded so the child can never block on a full pipe.

        Raises:
            RuntimeError: If called more than once
        """
        if self._waited:
            raise RuntimeError(f"wait() already called for stage {self.name}")
        self._waited = True

        self._close_stdin()
        await self._discard_stdout()
        returncode = await self._process.wait()
        await self._finish_stderr()

        self._log.info(
            "stage_exited",
            exit_status=returncode,
            killed=self.killed,
            stderr_tail=self.stderr_tail or None,
        )
        record_stage_exit(self.name, returncode, killed=self.killed)
        return returncode

    async def close(self) -> None:
        """Kill if still running, reap, and release pipes (idempotent)."""
        if self._closed:
            return
        self._closed = True

        self.kill()
        self._close_stdin()
        await self._discard_stdout()
        await self._process.wait()
        await self._finish_stderr()

    def _close_stdin(self) -> None:
        stdin = self._process.stdin
        if stdin is not None and not stdin.is_closing():
            stdin.close()

    async def _discard_stdout(self) -> None:
        stdout = self._process.stdout
        if stdout is None:
            return
        discarded = 0
        while not stdout.at_eof():
            try:
                chunk = await stdout.read(_DISCARD_CHUNK)
            except (OSError, ValueError):
                break
            if not chunk:
                break
            discarded += len(chunk)
        if discarded:
            self._log.debug("stage_stdout_discarded", bytes=discarded)

    async def _finish_stderr(self) -> None:
        task = self._stderr_task
        if task is None or task.done():
            return
        # stderr hits EOF once the process is gone; do not hang on a grandchild holding it
        done, _ = await asyncio.wait({task}, timeout=1.0)
        if not done:
            task.cancel()
            await asyncio.wait({task})


class StageExecutor:
    """Launches stage processes with piped stdin/stdout.

    Args:
        stderr_mode: "log" to drain stderr into the log, "discard" for DEVNULL
        stderr_tail_lines: Number of stderr lines kept for diagnostics
        stream_limit: Buffer limit of the stdout StreamReader
    """

    def __init__(
        self,
        stderr_mode: str = "log",
        stderr_tail_lines: int = 20,
        stream_limit: int = 65_536,
    ) -> None:
        if stderr_mode not in ("log", "discard"):
            raise ValueError(f"stderr_mode must be 'log' or 'discard', got {stderr_mode!r}")
        self._stderr_mode = stderr_mode
        self._stderr_tail_lines = stderr_tail_lines
        self._stream_limit = stream_limit

    async def launch(self, spec: StageSpec, index: int = 0, log=None) -> StageHandle:
        """Spawn a stage process.

        Args:
            spec: Stage to run
            index: Position of the stage in the pipeline
            log: Bound logger carrying request context (optional)

        Returns:
            StageHandle owning the process and its pipes

        Raises:
            SpawnFailed: Executable missing or the OS refused to create the process
        """
        stderr = (
            asyncio.subprocess.PIPE
            if self._stderr_mode == "log"
            else asyncio.subprocess.DEVNULL
        )
        try:
            process = await asyncio.create_subprocess_exec(
                spec.executable,
                *spec.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=stderr,
                limit=self._stream_limit,
            )
        except FileNotFoundError as e:
            raise SpawnFailed(spec.name, f"executable not found: {spec.executable}") from e
        except PermissionError as e:
            raise SpawnFailed(spec.name, f"permission denied: {spec.executable}") from e
        except OSError as e:
            raise SpawnFailed(spec.name, str(e) or type(e).__name__) from e

        (log or logger).info(
            "stage_launched", stage=spec.name, pid=process.pid, argv=" ".join(spec.argv)
        )
        return StageHandle(
            spec,
            process,
            index=index,
            stderr_tail_lines=self._stderr_tail_lines,
            log=log,
        )
