"""Subprocess channel that runs one agent invocation and streams its telemetry.

``AgentChannel.invoke`` blocks until the child exits or the wall-clock
timeout fires. Two reader threads drain stdout and stderr; stdout lines are
parsed into normalized events and handed to the calling thread over a
queue, so the telemetry fold and the progress callback run on one thread.
"""

from __future__ import annotations

import codecs
import json
import logging
import queue
import subprocess
import sys
import threading
import time
from collections.abc import Callable
from typing import IO, Any

from bookmark_hoard.agent.base import (
    AgentBackend,
    AgentResult,
    AgentWork,
    FailureKind,
)
from bookmark_hoard.agent.events import AgentEvent, TelemetrySnapshot, fold_event

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 900.0
_READ_CHUNK_BYTES = 4096
_READER_JOIN_SECONDS = 5.0
_STDERR_TAIL_CHARS = 500

ProgressCallback = Callable[[TelemetrySnapshot, AgentEvent], None]


class LineBuffer:
    """Carries a partial line across chunk boundaries."""

    def __init__(self) -> None:
        self._pending = ""

    def feed(self, text: str) -> list[str]:
        """Return every line completed by ``text``; keep the unfinished tail."""

        *lines, self._pending = (self._pending + text).split("\n")
        return lines

    def flush(self) -> list[str]:
        rest, self._pending = self._pending, ""
        return [rest] if rest.strip() else []


def parse_stream_line(line: str) -> dict[str, Any] | None:
    """Decode one stream line; non-JSON and malformed lines yield None."""

    stripped = line.strip()
    if not stripped.startswith("{"):
        return None
    try:
        payload = json.loads(stripped)
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


class AgentChannel:
    """Launch an agent backend and resolve its run into one ``AgentResult``."""

    def __init__(
        self,
        backend: AgentBackend,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        on_progress: ProgressCallback | None = None,
        passthrough_stderr: bool = True,
        poll_interval: float = 0.1,
    ) -> None:
        self.backend = backend
        self.timeout_seconds = timeout_seconds
        self.on_progress = on_progress
        self.passthrough_stderr = passthrough_stderr
        self.poll_interval = poll_interval

    def invoke(self, work: AgentWork) -> AgentResult:
        started = time.monotonic()
        invocation = self.backend.build_invocation(work, self.backend.resolve_binary())
        logger.info(
            "Starting %s agent (model %s) for %d item(s): %s",
            self.backend.name,
            self.backend.model,
            work.count,
            invocation.argv[0],
        )
        try:
            process = subprocess.Popen(  # noqa: S603
                invocation.argv,
                cwd=invocation.cwd,
                env=invocation.env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as error:
            logger.error("Failed to start agent %s: %s", invocation.argv[0], error)
            return AgentResult(
                succeeded=False,
                exit_code=None,
                elapsed_seconds=time.monotonic() - started,
                telemetry=TelemetrySnapshot(),
                failure=FailureKind.SPAWN_ERROR,
                error=f"Failed to start {invocation.argv[0]}: {error}",
            )

        events: queue.Queue[AgentEvent] = queue.Queue()
        stdout_chunks: list[str] = []
        stderr_chunks: list[str] = []
        readers = [
            threading.Thread(
                target=self._pump_stdout,
                args=(process.stdout, events, stdout_chunks),
                name="agent-stdout",
                daemon=True,
            ),
            threading.Thread(
                target=self._pump_stderr,
                args=(process.stderr, stderr_chunks),
                name="agent-stderr",
                daemon=True,
            ),
        ]
        for reader in readers:
            reader.start()

        archive_name = work.archive_file.name
        snapshot = TelemetrySnapshot()
        deadline = started + self.timeout_seconds
        timed_out = False
        try:
            while True:
                snapshot = self._drain(events, snapshot, archive_name, wait=self.poll_interval)
                if process.poll() is not None:
                    break
                if time.monotonic() >= deadline:
                    timed_out = True
                    logger.warning(
                        "Agent exceeded %.0fs timeout, terminating pid %d",
                        self.timeout_seconds,
                        process.pid,
                    )
                    _terminate_process(process)
                    break
        finally:
            if process.poll() is None:
                _terminate_process(process)
            for reader in readers:
                reader.join(timeout=_READER_JOIN_SECONDS)

        snapshot = self._drain(events, snapshot, archive_name)
        elapsed = time.monotonic() - started
        stdout = "".join(stdout_chunks)
        stderr = "".join(stderr_chunks)
        exit_code = process.returncode

        if timed_out:
            return AgentResult(
                succeeded=False,
                exit_code=exit_code,
                elapsed_seconds=elapsed,
                telemetry=snapshot,
                failure=FailureKind.TIMEOUT,
                error=f"Agent timed out after {self.timeout_seconds:.0f}s",
                stdout=stdout,
                stderr=stderr,
            )
        if exit_code != 0:
            detail = stderr.strip()[-_STDERR_TAIL_CHARS:] or f"exit code {exit_code}"
            logger.error("Agent exited with code %s", exit_code)
            return AgentResult(
                succeeded=False,
                exit_code=exit_code,
                elapsed_seconds=elapsed,
                telemetry=snapshot,
                failure=FailureKind.NON_ZERO_EXIT,
                error=f"Agent exited with code {exit_code}: {detail}",
                stdout=stdout,
                stderr=stderr,
            )
        logger.info("Agent finished in %.1fs after %d events", elapsed, snapshot.events)
        return AgentResult(
            succeeded=True,
            exit_code=exit_code,
            elapsed_seconds=elapsed,
            telemetry=snapshot,
            stdout=stdout,
            stderr=stderr,
        )

    def _drain(
        self,
        events: queue.Queue[AgentEvent],
        snapshot: TelemetrySnapshot,
        archive_name: str,
        *,
        wait: float = 0.0,
    ) -> TelemetrySnapshot:
        try:
            event = events.get(timeout=wait) if wait > 0 else events.get_nowait()
        except queue.Empty:
            return snapshot
        while True:
            snapshot = fold_event(snapshot, event, archive_name=archive_name)
            if self.on_progress is not None:
                self.on_progress(snapshot, event)
            try:
                event = events.get_nowait()
            except queue.Empty:
                return snapshot

    def _pump_stdout(
        self,
        stream: IO[bytes],
        events: queue.Queue[AgentEvent],
        chunks: list[str],
    ) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        buffer = LineBuffer()
        while True:
            data = stream.read1(_READ_CHUNK_BYTES)  # type: ignore[attr-defined]
            text = decoder.decode(data, final=not data)
            if text:
                chunks.append(text)
                for line in buffer.feed(text):
                    self._emit(line, events)
            if not data:
                break
        for line in buffer.flush():
            self._emit(line, events)
        stream.close()

    def _emit(self, line: str, events: queue.Queue[AgentEvent]) -> None:
        payload = parse_stream_line(line)
        if payload is None:
            return
        for event in self.backend.parse_event(payload):
            events.put(event)

    def _pump_stderr(self, stream: IO[bytes], chunks: list[str]) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            data = stream.read1(_READ_CHUNK_BYTES)  # type: ignore[attr-defined]
            text = decoder.decode(data, final=not data)
            if text:
                chunks.append(text)
                if self.passthrough_stderr:
                    sys.stderr.write(text)
                    sys.stderr.flush()
            if not data:
                break
        stream.close()


def _terminate_process(process: subprocess.Popen[bytes]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)
