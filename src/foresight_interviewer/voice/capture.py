"""Participant speech capture.

Two strategies share one contract (``start``/``stop``/``abort`` plus a status
reported to the coordinator):

- ``LiveCapture`` streams through a :class:`LiveRecognizer`; interim results
  update the input buffer, final results are appended to it.
- ``RecordedCapture`` buffers microphone audio and, on stop, uploads one
  payload to a :class:`SpeechTranscriber`.

``CaptureCoordinator`` owns the current strategy and switches from live to
recorded capture for the rest of the session when live capture fails.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from functools import partial
from typing import Any, Protocol

from foresight_interviewer.interview.schemas import CaptureStatus, CaptureTier
from foresight_interviewer.voice.live_stt import LiveRecognizer, RecognitionResult
from foresight_interviewer.voice.stt import SpeechTranscriber

logger = logging.getLogger(__name__)


class CaptureError(Exception):
    """A capture failure with a message fit for the participant."""


class AudioRecorderProtocol(Protocol):
    @property
    def is_recording(self) -> bool: ...

    async def start_recording(self) -> None: ...

    async def stop_recording(self) -> Any: ...

    def encode_wav(self, audio: Any) -> bytes: ...


class CaptureStrategy(ABC):
    """One way of turning participant speech into text."""

    tier: CaptureTier

    def __init__(self, language: str) -> None:
        self._language = language
        self._sink: CaptureCoordinator | None = None
        self._token = 0

    def attach(self, sink: CaptureCoordinator) -> None:
        self._sink = sink

    @property
    def sink(self) -> CaptureCoordinator:
        if self._sink is None:
            raise RuntimeError(f"{type(self).__name__} is not attached to a coordinator")
        return self._sink

    def _is_current(self, token: int) -> bool:
        return token == self._token

    @abstractmethod
    async def start(self) -> None:
        """Begin capturing. Failures are reported to the coordinator, not raised."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Finish capturing and produce text. Always releases the input device."""
        ...

    @abstractmethod
    async def abort(self) -> None:
        """Release the input device and discard any pending result."""
        ...


class LiveCapture(CaptureStrategy):
    tier = CaptureTier.LIVE

    def __init__(self, recognizer: LiveRecognizer, language: str, *, max_restarts: int = 20) -> None:
        super().__init__(language)
        self._recognizer = recognizer
        self._max_restarts = max_restarts
        self._final_text = ""
        self._text = ""
        self._user_stopped = False
        self._restarts = 0
        self._pending: set[asyncio.Task] = set()

    async def start(self) -> None:
        self._token += 1
        self._final_text = ""
        self._text = ""
        self._user_stopped = False
        self._restarts = 0
        self.sink.set_text("")
        self.sink.set_status(self, CaptureStatus.RECORDING)
        await self._open(self._token)

    async def _open(self, token: int) -> None:
        try:
            await self._recognizer.start(
                self._language,
                on_result=partial(self._on_result, token),
                on_error=partial(self._on_error, token),
                on_end=partial(self._on_end, token),
            )
        except Exception as e:
            if not self._is_current(token):
                return
            self._token += 1
            logger.warning(f"[CAPTURE] live recognition could not start: {e}")
            await self.sink.fail(self, e)

    def _spawn(self, coro) -> None:  # noqa: ANN001
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _on_result(self, token: int, result: RecognitionResult) -> None:
        if not self._is_current(token):
            return
        text = result.text.strip()
        if result.is_final:
            if text:
                self._final_text += text + " "
            self._text = self._final_text.strip()
        else:
            self._text = (self._final_text + text).strip()
        self.sink.set_text(self._text)

    def _on_error(self, token: int, error: BaseException) -> None:
        if not self._is_current(token):
            return
        self._token += 1
        logger.warning(f"[CAPTURE] live recognition error: {error}")
        self._spawn(self.sink.fail(self, error))

    def _on_end(self, token: int) -> None:
        if not self._is_current(token) or self._user_stopped:
            return
        self._restarts += 1
        if self._restarts > self._max_restarts:
            self._token += 1
            self._spawn(
                self.sink.fail(self, CaptureError("Live recognition keeps stopping unexpectedly."))
            )
            return
        logger.info(f"[CAPTURE] live recognition ended unexpectedly; restarting ({self._restarts})")
        self._spawn(self._open(token))

    async def stop(self) -> None:
        self._user_stopped = True
        token = self._token
        try:
            await self._recognizer.stop()
        except Exception as e:
            logger.warning(f"[CAPTURE] live recognizer did not stop cleanly: {e}")
        if not self._is_current(token):
            return
        self._token += 1
        status = CaptureStatus.READY_TO_SUBMIT if self._text else CaptureStatus.IDLE
        self.sink.set_status(self, status)

    async def abort(self) -> None:
        self._user_stopped = True
        self._token += 1
        current = asyncio.current_task()
        for task in list(self._pending):
            if task is not current:
                task.cancel()
        try:
            await self._recognizer.stop()
        except Exception as e:
            logger.warning(f"[CAPTURE] live recognizer did not stop cleanly: {e}")


class RecordedCapture(CaptureStrategy):
    tier = CaptureTier.RECORDED

    def __init__(
        self,
        recorder: AudioRecorderProtocol,
        transcriber: SpeechTranscriber,
        language: str,
    ) -> None:
        super().__init__(language)
        self._recorder = recorder
        self._transcriber = transcriber

    async def start(self) -> None:
        self._token += 1
        token = self._token
        self.sink.set_text("")
        self.sink.set_status(self, CaptureStatus.RECORDING)
        try:
            await self._recorder.start_recording()
        except Exception as e:
            if self._is_current(token):
                await self.sink.fail(self, CaptureError(f"Microphone error: {e}"))

    async def stop(self) -> None:
        token = self._token
        try:
            audio = await self._recorder.stop_recording()
        except Exception as e:
            if self._is_current(token):
                await self.sink.fail(self, CaptureError(f"Microphone error: {e}"))
            return
        if not self._is_current(token):
            return

        if getattr(audio, "size", 0) == 0:
            await self.sink.fail(self, CaptureError("No audio recorded."))
            return

        payload = self._recorder.encode_wav(audio)
        self.sink.set_status(self, CaptureStatus.TRANSCRIBING)
        try:
            text = await self._transcriber.transcribe(payload, self._language)
        except Exception as e:
            if self._is_current(token):
                self.sink.set_text("")
                await self.sink.fail(self, CaptureError(f"Transcription failed: {e}. Please try again."))
            return

        if not self._is_current(token):
            logger.debug("[CAPTURE] discarding transcription for a superseded recording")
            return
        text = (text or "").strip()
        if not text:
            await self.sink.fail(self, CaptureError("No speech detected. Please try again."))
            return
        self.sink.set_text(text)
        self.sink.set_status(self, CaptureStatus.READY_TO_SUBMIT)

    async def abort(self) -> None:
        self._token += 1
        if self._recorder.is_recording:
            await self._recorder.stop_recording()


class CaptureCoordinator:
    """
    Runs one capture strategy at a time behind a uniform status.

    Args:
        live: Live strategy, tried first when present.
        recorded: Record-and-transcribe strategy, used alone or as the fallback.
        on_text: Receives every change of the captured text.
        on_notice: Receives participant-facing failure messages.
        on_status: Receives every status change.
    """

    def __init__(
        self,
        *,
        live: CaptureStrategy | None = None,
        recorded: CaptureStrategy | None = None,
        on_text: Callable[[str], None] | None = None,
        on_notice: Callable[[str], None] | None = None,
        on_status: Callable[[CaptureStatus], None] | None = None,
    ) -> None:
        self._live = live
        self._recorded = recorded
        self._current = live or recorded
        self._on_text = on_text
        self._on_notice = on_notice
        self._on_status = on_status
        self._status = CaptureStatus.IDLE
        self._text = ""
        self._notice: str | None = None
        self._degraded = False
        for strategy in (live, recorded):
            if strategy is not None:
                strategy.attach(self)

    @property
    def available(self) -> bool:
        return self._current is not None

    @property
    def status(self) -> CaptureStatus:
        return self._status

    @property
    def tier(self) -> CaptureTier | None:
        return self._current.tier if self._current else None

    @property
    def text(self) -> str:
        return self._text

    @property
    def notice(self) -> str | None:
        return self._notice

    @property
    def degraded(self) -> bool:
        """True once live capture failed and recorded capture took over."""
        return self._degraded

    @property
    def is_active(self) -> bool:
        return self._status in (CaptureStatus.RECORDING, CaptureStatus.TRANSCRIBING)

    async def start(self) -> bool:
        if self._current is None:
            logger.info("[CAPTURE] start ignored: no capture backend configured")
            return False
        if self.is_active:
            logger.info(f"[CAPTURE] start ignored: already {self._status.value}")
            return False
        if not self._degraded:
            self._notice = None
        logger.info(f"[CAPTURE] starting tier={self._current.tier.value}")
        await self._current.start()
        return True

    async def stop(self) -> bool:
        if self._current is None or self._status != CaptureStatus.RECORDING:
            logger.info(f"[CAPTURE] stop ignored: status={self._status.value}")
            return False
        await self._current.stop()
        return True

    async def abort(self) -> None:
        """Release the device and drop any pending result."""
        if self._current is not None:
            await self._current.abort()
        self._set_status(CaptureStatus.IDLE)

    def reset(self) -> None:
        """Forget the last result once it has been submitted."""
        self._text = ""
        if not self.is_active:
            self._set_status(CaptureStatus.IDLE)

    def set_text(self, text: str) -> None:
        self._text = text
        if self._on_text is not None:
            self._on_text(text)

    def set_status(self, strategy: CaptureStrategy, status: CaptureStatus) -> None:
        if strategy is not self._current:
            return
        self._set_status(status)

    def _set_status(self, status: CaptureStatus) -> None:
        if status == self._status:
            return
        logger.debug(f"[CAPTURE] status {self._status.value} -> {status.value}")
        self._status = status
        if self._on_status is not None:
            self._on_status(status)

    def _notify(self, message: str) -> None:
        self._notice = message
        if self._on_notice is not None:
            self._on_notice(message)

    async def fail(self, strategy: CaptureStrategy, error: BaseException) -> None:
        """Report a strategy failure; live failures switch to recorded capture."""
        if strategy is not self._current:
            return
        self._set_status(CaptureStatus.ERROR)

        if strategy is self._live and self._recorded is not None:
            self._notify(
                f"Live speech recognition unavailable ({error}). "
                "Switched to recording; your answer will be transcribed when you stop."
            )
            await strategy.abort()
            self._current = self._recorded
            self._degraded = True
            logger.warning("[CAPTURE] falling back to recorded capture")
            await self._recorded.start()
            return

        message = str(error) if isinstance(error, CaptureError) else f"Speech capture error: {error}"
        logger.warning(f"[CAPTURE] {message}")
        self._notify(message)
