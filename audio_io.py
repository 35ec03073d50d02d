from __future__ import annotations

import logging
import wave
from concurrent.futures import Future
from pathlib import Path
from threading import Event, Lock, Thread
from typing import TYPE_CHECKING, Callable, Optional

import numpy as np

from alarms.errors import PlaybackSourceUnavailable

if TYPE_CHECKING:
    import pyaudio

logger = logging.getLogger(__name__)


def create_pyaudio() -> pyaudio.PyAudio:
    # PortAudio is only needed by processes that actually play sound
    import pyaudio

    pa = pyaudio.PyAudio()
    return pa


class LoopingPlayer:
    """Loops one WAV file on an output stream until stopped.

    ``prepare_async`` loads the file on a worker thread and resolves the
    returned future once the stream is open; errors that happen later,
    while playing, go to the error listener.
    """

    def __init__(
        self,
        pa: pyaudio.PyAudio,
        device_index: Optional[int] = None,
        volume: float = 1.0,
        chunk_frames: int = 1024,
    ):
        self.pa = pa
        self.device_index = device_index
        self.volume = max(0.0, min(1.0, volume))
        self.chunk_frames = chunk_frames
        self.stream: Optional[pyaudio.Stream] = None
        self._frames = b""
        self._frame_bytes = 2
        self._released = False
        self._prepare_token = 0
        self._lock = Lock()
        self._stop_event = Event()
        self._thread: Optional[Thread] = None
        self._on_error: Optional[Callable[[Exception], None]] = None

    def set_error_listener(self, listener: Callable[[Exception], None]) -> None:
        self._on_error = listener

    def prepare_async(self, path: Path) -> "Future[None]":
        future: "Future[None]" = Future()
        with self._lock:
            self._prepare_token += 1
            token = self._prepare_token
        Thread(target=self._prepare, args=(Path(path), token, future), name="alarm-audio-prepare", daemon=True).start()
        return future

    def _prepare(self, path: Path, token: int, future: "Future[None]") -> None:
        try:
            with wave.open(str(path), "rb") as wav:
                channels = wav.getnchannels()
                width = wav.getsampwidth()
                rate = wav.getframerate()
                frames = wav.readframes(wav.getnframes())
            if not frames:
                raise PlaybackSourceUnavailable(f"{path} has no audio frames")
            if width == 2 and self.volume < 1.0:
                samples = np.frombuffer(frames, dtype=np.int16).astype(np.float32) * self.volume
                frames = samples.astype(np.int16).tobytes()
            stream = self.pa.open(
                format=self.pa.get_format_from_width(width),
                channels=channels,
                rate=rate,
                output=True,
                output_device_index=self.device_index,
            )
            with self._lock:
                if self._released:
                    stream.close()
                    raise PlaybackSourceUnavailable("player was released while preparing")
                if token != self._prepare_token:
                    # a reset or a newer prepare owns the player now
                    stream.close()
                    raise PlaybackSourceUnavailable(f"{path} was superseded while preparing")
                self._close_stream()
                self.stream = stream
                self._frames = frames
                self._frame_bytes = width * channels
            logger.info("Audio source ready: %s (rate=%s, channels=%s)", path, rate, channels)
            future.set_result(None)
        except Exception as exc:
            logger.warning("Failed to prepare audio source %s: %s", path, exc)
            if isinstance(exc, PlaybackSourceUnavailable):
                future.set_exception(exc)
            else:
                future.set_exception(PlaybackSourceUnavailable(f"{path}: {exc}"))

    def start(self) -> None:
        with self._lock:
            if self.stream is None:
                raise RuntimeError("Audio source is not prepared")
            if self._thread and self._thread.is_alive():
                return
            self._stop_event.clear()
            self._thread = Thread(target=self._play_loop, name="alarm-audio", daemon=True)
            self._thread.start()

    def _play_loop(self) -> None:
        chunk_bytes = self.chunk_frames * self._frame_bytes
        try:
            while not self._stop_event.is_set():
                for offset in range(0, len(self._frames), chunk_bytes):
                    if self._stop_event.is_set():
                        return
                    self.stream.write(self._frames[offset : offset + chunk_bytes])
        except Exception as exc:
            if self._stop_event.is_set():
                return
            logger.error("Audio playback failed: %s", exc)
            if self._on_error:
                self._on_error(exc)

    @property
    def is_playing(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def stop(self) -> None:
        self._stop_event.set()
        thread, self._thread = self._thread, None
        if thread is not None:
            thread.join(timeout=2)

    def reset(self) -> None:
        self.stop()
        with self._lock:
            self._prepare_token += 1
            self._close_stream()
            self._frames = b""

    def release(self) -> None:
        with self._lock:
            self._released = True
        self.reset()

    def _close_stream(self) -> None:
        if self.stream is not None:
            try:
                self.stream.stop_stream()
            finally:
                self.stream.close()
                self.stream = None
