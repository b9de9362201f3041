"""
Command-line microphone client for the relay.

Captures the default input device with sounddevice, frames audio with
audio.pcm (float -> 24 kHz PCM16) and streams it to the relay's /ws
endpoint. Transcripts relayed back by the server are printed as they
finalize.

With --speaker, no microphone is opened; the relay is asked to capture
speaker output itself (speaker.capture.start / speaker.capture.stop).

Usage:
    relay-mic --url ws://localhost:3001/ws
    relay-mic --speaker --no-vad
"""

from __future__ import annotations

import argparse
import asyncio
import json
from typing import Any, Callable

import numpy as np
from websockets.asyncio.client import ClientConnection, connect

from audio.pcm import encode_pcm16_frame
from client.transcript import TranscriptView
from constants import (
    AUDIO_INPUT_FORMAT,
    AUDIO_SAMPLE_RATE_HZ,
    DEVICE_CAPTURE_BLOCK_SIZE,
    DEVICE_CAPTURE_SAMPLE_RATE_HZ_DEFAULT,
    MSG_AUDIO_COMMIT,
    MSG_CAPTURE_START,
    MSG_CAPTURE_STOP,
    MSG_SESSION_UPDATE,
    MSG_ERROR,
    MSG_TRANSCRIPTION_COMPLETED,
    SERVER_PORT_DEFAULT,
    VAD_SILENCE_DURATION_MS_DEFAULT,
    VAD_TYPE,
)


def build_session_override(*, vad: bool, silence_ms: int) -> dict[str, Any]:
    """session.update sent right after connecting."""
    return {
        "type": MSG_SESSION_UPDATE,
        "session": {
            "input_audio_format": AUDIO_INPUT_FORMAT,
            "turn_detection": (
                {"type": VAD_TYPE, "silence_duration_ms": silence_ms}
                if vad
                else None
            ),
        },
    }


async def _print_transcripts(
    ws: ClientConnection,
    view: TranscriptView,
    out: Callable[[str], None],
) -> None:
    async for raw in ws:
        changed = view.handle(raw)
        if changed == MSG_TRANSCRIPTION_COMPLETED:
            out(view.lines[-1])
        elif changed == MSG_ERROR:
            out(f"[error] {json.dumps(view.errors[-1])}")


async def _send_microphone(
    ws: ClientConnection,
    *,
    device: int | str | None,
    device_rate: int,
    block_size: int,
) -> None:
    import sounddevice as sd  # pylint: disable=import-outside-toplevel

    loop = asyncio.get_running_loop()
    blocks: asyncio.Queue[np.ndarray] = asyncio.Queue()

    def callback(indata: np.ndarray, frames: int, time_info: Any, status: Any) -> None:  # pylint: disable=unused-argument
        # PortAudio thread; hand the block to the event loop
        loop.call_soon_threadsafe(blocks.put_nowait, indata[:, 0].copy())

    with sd.InputStream(
        device=device,
        channels=1,
        samplerate=device_rate,
        dtype="float32",
        blocksize=block_size,
        callback=callback,
    ):
        while True:
            block = await blocks.get()
            frame = encode_pcm16_frame(
                block, in_rate=device_rate, out_rate=AUDIO_SAMPLE_RATE_HZ
            )
            if frame:
                await ws.send(frame)


async def stream_microphone(
    url: str,
    *,
    device: int | str | None = None,
    device_rate: int = DEVICE_CAPTURE_SAMPLE_RATE_HZ_DEFAULT,
    block_size: int = DEVICE_CAPTURE_BLOCK_SIZE,
    vad: bool = True,
    silence_ms: int = VAD_SILENCE_DURATION_MS_DEFAULT,
    speaker: bool = False,
    duration_s: float | None = None,
    out: Callable[[str], None] = print,
) -> TranscriptView:
    """
    Stream audio to the relay until cancelled, duration_s elapses, or the
    server closes the connection.

    On the way out, backend capture is stopped (--speaker), or the input
    buffer is committed when server VAD is off.
    """
    view = TranscriptView()

    async with connect(url) as ws:
        await ws.send(json.dumps(build_session_override(vad=vad, silence_ms=silence_ms)))

        if speaker:
            await ws.send(json.dumps({"type": MSG_CAPTURE_START}))
            source = asyncio.create_task(asyncio.Event().wait())
        else:
            source = asyncio.create_task(
                _send_microphone(
                    ws, device=device, device_rate=device_rate, block_size=block_size
                )
            )
        reader = asyncio.create_task(_print_transcripts(ws, view, out))

        try:
            await asyncio.wait(
                {source, reader},
                timeout=duration_s,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            source.cancel()
            await asyncio.gather(source, return_exceptions=True)

            if not reader.done():
                if speaker:
                    await ws.send(json.dumps({"type": MSG_CAPTURE_STOP}))
                elif not vad:
                    await ws.send(json.dumps({"type": MSG_AUDIO_COMMIT}))
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)

    return view


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Stream microphone audio to the relay")
    parser.add_argument("--url", default=f"ws://localhost:{SERVER_PORT_DEFAULT}/ws")
    parser.add_argument("--device", default=None, help="sounddevice input device")
    parser.add_argument("--rate", type=int, default=DEVICE_CAPTURE_SAMPLE_RATE_HZ_DEFAULT)
    parser.add_argument("--block-size", type=int, default=DEVICE_CAPTURE_BLOCK_SIZE)
    parser.add_argument("--no-vad", action="store_true", help="disable server VAD")
    parser.add_argument("--silence-ms", type=int, default=VAD_SILENCE_DURATION_MS_DEFAULT)
    parser.add_argument("--speaker", action="store_true", help="use backend speaker capture")
    parser.add_argument("--duration", type=float, default=None, help="seconds to stream")
    args = parser.parse_args(argv)

    device: int | str | None = args.device
    if isinstance(device, str) and device.isdigit():
        device = int(device)

    try:
        asyncio.run(
            stream_microphone(
                args.url,
                device=device,
                device_rate=args.rate,
                block_size=args.block_size,
                vad=not args.no_vad,
                silence_ms=args.silence_ms,
                speaker=args.speaker,
                duration_s=args.duration,
            )
        )
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
