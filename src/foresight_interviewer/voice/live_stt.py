"""Live (streaming) speech recognition.

``WhisperLiveRecognizer`` keeps a microphone stream open and re-transcribes
the growing current segment every ``interim_interval_s``. Each pass emits an
interim result; once the segment reaches ``segment_s`` it is emitted as final
and a new segment starts.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

import numpy as np

from foresight_interviewer.voice.audio_io import AudioIOConfig, require_sounddevice
from foresight_interviewer.voice.stt import WhisperSTT

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecognitionResult:
    text: str
    is_final: bool


ResultCallback = Callable[[RecognitionResult], None]
ErrorCallback = Callable[[BaseException], None]
EndCallback = Callable[[], None]


class LiveRecognizer(ABC):
    """A continuous recognition session with interim and final results."""

    @abstractmethod
    async def start(
        self,
        language: str,
        *,
        on_result: ResultCallback,
        on_error: ErrorCallback,
        on_end: EndCallback,
    ) -> None:
        """
        Start recognizing.

        Raises immediately if the microphone or recognizer is unavailable.
        Afterwards, failures are reported through ``on_error`` and any end of
        the session (requested or not) through ``on_end``.
        """
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop recognizing, flush a last final result, then call ``on_end``."""
        ...


class WhisperLiveRecognizer(LiveRecognizer):
    def __init__(
        self,
        stt: WhisperSTT,
        audio_config: AudioIOConfig | None = None,
        *,
        interim_interval_s: float = 1.0,
        segment_s: float = 6.0,
    ) -> None:
        self._stt = stt
        self._audio_config = audio_config or AudioIOConfig()
        self._interim_interval_s = interim_interval_s
        self._segment_samples = int(segment_s * self._audio_config.sample_rate)
        self._stream = None
        self._frames: list[np.ndarray] = []
        self._task: asyncio.Task | None = None
        self._stopping = False
        self._language = "en-US"
        self._on_result: ResultCallback | None = None
        self._on_end: EndCallback | None = None

    async def start(
        self,
        language: str,
        *,
        on_result: ResultCallback,
        on_error: ErrorCallback,
        on_end: EndCallback,
    ) -> None:
        sd = require_sounddevice()
        loop = asyncio.get_running_loop()
        self._frames = []
        self._stopping = False
        self._language = language
        self._on_result = on_result
        self._on_end = on_end

        def callback(indata, frames, time, status):  # noqa: ANN001
            if status:
                logger.debug(f"Input status: {status}")
            self._frames.append(indata.copy())

        def finished() -> None:
            # Runs on the PortAudio thread when the stream ends for any reason.
            if not self._stopping:
                loop.call_soon_threadsafe(self._ended_unexpectedly)

        stream = sd.InputStream(
            samplerate=self._audio_config.sample_rate,
            channels=1,
            dtype="int16",
            callback=callback,
            finished_callback=finished,
        )
        try:
            await asyncio.to_thread(stream.start)
        except BaseException:
            await asyncio.to_thread(stream.close)
            raise
        self._stream = stream
        self._task = asyncio.create_task(self._run(on_error))
        logger.info(f"[VOICE][LIVE] recognition started lang={language}")

    def _ended_unexpectedly(self) -> None:
        if self._stopping:
            return
        logger.warning("[VOICE][LIVE] input stream ended unexpectedly")
        self._stopping = True
        if self._task is not None:
            self._task.cancel()
        self._release_stream_nowait()
        if self._on_end is not None:
            self._on_end()

    def _release_stream_nowait(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            with contextlib.suppress(Exception):
                stream.close()

    async def _run(self, on_error: ErrorCallback) -> None:
        try:
            while True:
                await asyncio.sleep(self._interim_interval_s)
                frames = list(self._frames)
                if not frames:
                    continue
                audio = np.concatenate(frames, axis=0)
                is_final = audio.shape[0] >= self._segment_samples
                text = await self._stt.transcribe_array(audio, self._language)
                if is_final:
                    del self._frames[: len(frames)]
                if text and self._on_result is not None:
                    self._on_result(RecognitionResult(text=text, is_final=is_final))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"[VOICE][LIVE] recognition failed: {e}")
            self._stopping = True
            self._release_stream_nowait()
            on_error(e)

    async def stop(self) -> None:
        if self._stopping and self._stream is None:
            return
        self._stopping = True

        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        stream, self._stream = self._stream, None
        if stream is not None:
            try:
                await asyncio.to_thread(stream.stop)
            finally:
                await asyncio.to_thread(stream.close)

        frames, self._frames = self._frames, []
        if frames and self._on_result is not None:
            audio = np.concatenate(frames, axis=0)
            try:
                text = await self._stt.transcribe_array(audio, self._language)
            except Exception as e:
                logger.warning(f"[VOICE][LIVE] final flush failed: {e}")
                text = ""
            if text:
                self._on_result(RecognitionResult(text=text, is_final=True))

        logger.info("[VOICE][LIVE] recognition stopped")
        if self._on_end is not None:
            self._on_end()
