"""
Speaker-output capture via an external ffmpeg subprocess.

Core model:
- One CaptureProcess per capture run (run_id). Runs never restart;
  a new speaker.capture.start spawns a new process with a new run_id.
- ffmpeg writes raw s16le mono PCM to stdout; the reader forwards
  16-bit aligned chunks through a bounded channel to the pump, which
  emits them as CaptureChunk events.
- stderr is drained continuously (diagnostics only; a full stderr pipe
  would stall ffmpeg).
- Exactly one CaptureClosed(run_id) is emitted after the process is gone.

Design constraints:
- Adapter must not call reducer directly.
- stop() never waits; shutdown paths use wait_closed(timeout).
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Coroutine, Sequence

from audio.frames import FrameSource
from config import CaptureConfig
from constants import (
    CAPTURE_CHANNEL_MAX_CHUNKS,
    CAPTURE_READ_CHUNK_BYTES,
    CAPTURE_STREAM_LIMIT_BYTES,
    LOG_PAYLOAD_PREVIEW_CHARS,
)
from observability.logger import log_event
from orchestrator.events import CaptureChunk, CaptureClosed, Event, EventType
from protocol.messages import RelayProtocolError, decode_audio_frame


def _now_ms() -> int:
    return int(time.time() * 1000)


def build_capture_command(config: CaptureConfig) -> list[str]:
    """
    ffmpeg argv producing mono s16le PCM at the session rate on stdout.

    dshow device names need the "audio=" selector; other input formats
    (pulse, avfoundation, ...) take the device name as-is.
    """
    device = (
        f"audio={config.device}"
        if config.input_format == "dshow"
        else config.device
    )
    return [
        config.executable,
        "-hide_banner",
        "-loglevel", "error",
        "-f", config.input_format,
        "-i", device,
        "-ac", str(config.channels),
        "-ar", str(config.sample_rate_hz),
        "-f", "s16le",
        "pipe:1",
    ]


class CaptureProcess:
    """
    One capture subprocess run.

    Lifecycle:
        start() -> (CaptureChunk events)* -> CaptureClosed

    stop() sends SIGTERM and returns immediately.
    wait_closed(timeout) waits for the run to finish, killing on timeout.
    """

    def __init__(
        self,
        *,
        run_id: int,
        command: Sequence[str],
        emit_event: Callable[[Event], Coroutine[Any, Any, None]],
        session_id: str | None = None,
        read_chunk_bytes: int = CAPTURE_READ_CHUNK_BYTES,
        channel_max_chunks: int = CAPTURE_CHANNEL_MAX_CHUNKS,
    ) -> None:
        self.run_id = run_id
        self._command = list(command)
        self._emit_event = emit_event
        self._session_id = session_id
        self._read_chunk_bytes = read_chunk_bytes

        # None marks end of stream
        self._channel: asyncio.Queue[bytes | None] = asyncio.Queue(
            maxsize=channel_max_chunks
        )

        self.process: asyncio.subprocess.Process | None = None
        self._task: asyncio.Task[None] | None = None
        self.stopped: bool = False

        # Statistics
        self.chunks_read: int = 0
        self.total_bytes: int = 0

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """
        Spawn the subprocess and start the background run.

        Raises:
            OSError if the executable cannot be spawned.
        """
        self.process = await asyncio.create_subprocess_exec(
            *self._command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            limit=CAPTURE_STREAM_LIMIT_BYTES,
        )
        log_event({
            "ts_ms": _now_ms(),
            "event_type": "CAPTURE_PROCESS_STARTED",
            "session_id": self._session_id,
            "capture_run_id": self.run_id,
            "pid": self.process.pid,
            "command": self._command,
        })
        self._task = asyncio.create_task(self._run(self.process))

    def stop(self) -> None:
        """Request termination. Does not wait for exit."""
        self.stopped = True
        process = self.process
        if process is None or process.returncode is not None:
            return
        try:
            process.terminate()
        except ProcessLookupError:
            pass

    async def wait_closed(self, timeout: float | None = None) -> None:
        """
        Wait for the run to finish (CaptureClosed emitted).

        Escalates to SIGKILL if the process outlives the timeout.
        """
        task = self._task
        if task is None:
            return

        try:
            await asyncio.wait_for(asyncio.shield(task), timeout)
            return
        except asyncio.TimeoutError:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "CAPTURE_KILL",
                "session_id": self._session_id,
                "capture_run_id": self.run_id,
                "timeout_s": timeout,
            })

        process = self.process
        if process is not None and process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
        await task

    # -------------------------------------------------------------------------
    # Background tasks
    # -------------------------------------------------------------------------

    async def _run(self, process: asyncio.subprocess.Process) -> None:
        pump = asyncio.create_task(self._pump())
        drain = asyncio.create_task(self._drain_stderr(process))
        try:
            await self._read_stdout(process)
        except Exception as e:  # pylint: disable=broad-exception-caught
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "CAPTURE_READ_FAILED",
                "session_id": self._session_id,
                "capture_run_id": self.run_id,
                "error": repr(e),
            })
            self.stop()
        finally:
            await self._channel.put(None)

        await pump
        returncode = await process.wait()
        await drain

        log_event({
            "ts_ms": _now_ms(),
            "event_type": "CAPTURE_PROCESS_EXITED",
            "session_id": self._session_id,
            "capture_run_id": self.run_id,
            "returncode": returncode,
            "stopped": self.stopped,
            "chunks_read": self.chunks_read,
            "total_bytes": self.total_bytes,
        })

        await self._emit_event(
            CaptureClosed(
                event_type=EventType.CAPTURE_CLOSED,
                ts_ms=_now_ms(),
                run_id=self.run_id,
                returncode=returncode,
                reason="stopped" if self.stopped else "exited",
            )
        )

    async def _read_stdout(self, process: asyncio.subprocess.Process) -> None:
        """
        Read stdout until EOF, forwarding only whole 16-bit samples.

        Each read (up to read_chunk_bytes) defines one frame. When a read
        splits a sample, its trailing odd byte is carried into the next
        read rather than dropping the chunk.
        """
        assert process.stdout is not None
        carry = b""

        while True:
            chunk = await process.stdout.read(self._read_chunk_bytes)
            if not chunk:
                break

            data = carry + chunk
            cut = len(data) - (len(data) % 2)
            carry = data[cut:]
            if not cut:
                continue

            self.chunks_read += 1
            self.total_bytes += cut
            await self._channel.put(data[:cut])

        if carry:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "CAPTURE_TRAILING_BYTE_DROPPED",
                "session_id": self._session_id,
                "capture_run_id": self.run_id,
            })

    async def _pump(self) -> None:
        while True:
            chunk = await self._channel.get()
            if chunk is None:
                return

            try:
                frame = decode_audio_frame(
                    chunk, ts_ms=_now_ms(), source=FrameSource.CAPTURE
                )
            except RelayProtocolError as e:
                log_event({
                    "ts_ms": _now_ms(),
                    "event_type": "CAPTURE_CHUNK_DROPPED",
                    "session_id": self._session_id,
                    "capture_run_id": self.run_id,
                    "error": str(e),
                })
                continue

            await self._emit_event(
                CaptureChunk(
                    event_type=EventType.CAPTURE_CHUNK,
                    ts_ms=frame.ts_ms,
                    run_id=self.run_id,
                    frame=frame,
                )
            )

    async def _drain_stderr(self, process: asyncio.subprocess.Process) -> None:
        assert process.stderr is not None
        while True:
            data = await process.stderr.read(self._read_chunk_bytes)
            if not data:
                return
            text = data.decode("utf-8", errors="replace").strip()
            if text:
                log_event({
                    "ts_ms": _now_ms(),
                    "event_type": "CAPTURE_STDERR",
                    "session_id": self._session_id,
                    "capture_run_id": self.run_id,
                    "message": text[:LOG_PAYLOAD_PREVIEW_CHARS],
                })


def make_capture_factory(
    config: CaptureConfig, *, session_id: str | None = None
) -> Callable[..., CaptureProcess]:
    """Bind the capture command once per session."""
    command = build_capture_command(config)

    def factory(
        *,
        run_id: int,
        emit_event: Callable[[Event], Coroutine[Any, Any, None]],
    ) -> CaptureProcess:
        return CaptureProcess(
            run_id=run_id,
            command=command,
            emit_event=emit_event,
            session_id=session_id,
        )

    return factory
