import asyncio

import numpy as np
import pytest

from foresight_interviewer.interview.schemas import CaptureStatus, CaptureTier
from foresight_interviewer.voice.capture import CaptureCoordinator, LiveCapture, RecordedCapture
from foresight_interviewer.voice.live_stt import LiveRecognizer, RecognitionResult
from foresight_interviewer.voice.stt import SpeechTranscriber


class FakeRecognizer(LiveRecognizer):
    def __init__(self, start_error: Exception | None = None) -> None:
        self.start_error = start_error
        self.starts = 0
        self.stops = 0
        self.on_result = None
        self.on_error = None
        self.on_end = None

    async def start(self, language, *, on_result, on_error, on_end) -> None:
        self.starts += 1
        if self.start_error is not None:
            raise self.start_error
        self.on_result = on_result
        self.on_error = on_error
        self.on_end = on_end

    async def stop(self) -> None:
        self.stops += 1
        if self.on_end is not None:
            self.on_end()


class FakeRecorder:
    def __init__(self, audio: np.ndarray | None = None, start_error: Exception | None = None) -> None:
        self.audio = audio if audio is not None else np.ones(1600, dtype=np.int16)
        self.start_error = start_error
        self._recording = False

    @property
    def is_recording(self) -> bool:
        return self._recording

    async def start_recording(self) -> None:
        if self.start_error is not None:
            raise self.start_error
        self._recording = True

    async def stop_recording(self) -> np.ndarray:
        self._recording = False
        return self.audio

    def encode_wav(self, audio: np.ndarray) -> bytes:
        return b"RIFF" + audio.tobytes()


class FakeTranscriber(SpeechTranscriber):
    def __init__(self, text: str = "hello there", error: Exception | None = None) -> None:
        self.text = text
        self.error = error
        self.calls: list[tuple[bytes, str]] = []

    async def transcribe(self, payload: bytes, language: str) -> str:
        self.calls.append((payload, language))
        if self.error is not None:
            raise self.error
        return self.text


class Recorder:
    """Collects coordinator callbacks."""

    def __init__(self) -> None:
        self.texts: list[str] = []
        self.notices: list[str] = []
        self.statuses: list[CaptureStatus] = []

    def coordinator(self, **strategies) -> CaptureCoordinator:
        return CaptureCoordinator(
            **strategies,
            on_text=self.texts.append,
            on_notice=self.notices.append,
            on_status=self.statuses.append,
        )


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_live_capture_concatenates_final_results_and_shows_interim() -> None:
    recognizer = FakeRecognizer()
    events = Recorder()
    coordinator = events.coordinator(live=LiveCapture(recognizer, "en-US"))

    assert await coordinator.start()
    assert coordinator.status == CaptureStatus.RECORDING

    recognizer.on_result(RecognitionResult("I liked", is_final=False))
    assert coordinator.text == "I liked"
    recognizer.on_result(RecognitionResult("I liked the setup", is_final=True))
    recognizer.on_result(RecognitionResult("but not", is_final=False))
    assert coordinator.text == "I liked the setup but not"
    recognizer.on_result(RecognitionResult("but not the price", is_final=True))

    assert await coordinator.stop()
    assert coordinator.text == "I liked the setup but not the price"
    assert coordinator.status == CaptureStatus.READY_TO_SUBMIT
    # The end event caused by our own stop must not restart recognition.
    await _settle()
    assert recognizer.starts == 1


@pytest.mark.asyncio
async def test_live_capture_restarts_after_unexpected_end() -> None:
    recognizer = FakeRecognizer()
    coordinator = Recorder().coordinator(live=LiveCapture(recognizer, "en-US", max_restarts=2))

    await coordinator.start()
    recognizer.on_result(RecognitionResult("first part", is_final=True))
    recognizer.on_end()
    await _settle()

    assert recognizer.starts == 2
    assert coordinator.status == CaptureStatus.RECORDING
    recognizer.on_result(RecognitionResult("second part", is_final=True))
    assert coordinator.text == "first part second part"


@pytest.mark.asyncio
async def test_live_permission_error_falls_back_to_recorded_capture() -> None:
    recognizer = FakeRecognizer(start_error=PermissionError("microphone access denied"))
    recorder = FakeRecorder()
    transcriber = FakeTranscriber("spoken answer")
    events = Recorder()
    coordinator = events.coordinator(
        live=LiveCapture(recognizer, "hi-IN"),
        recorded=RecordedCapture(recorder, transcriber, "hi-IN"),
    )

    await coordinator.start()

    assert events.statuses == [CaptureStatus.RECORDING, CaptureStatus.ERROR, CaptureStatus.RECORDING]
    assert coordinator.tier == CaptureTier.RECORDED
    assert coordinator.degraded
    assert recorder.is_recording
    assert "microphone access denied" in events.notices[0]

    assert await coordinator.stop()
    assert coordinator.text == "spoken answer"
    assert coordinator.status == CaptureStatus.READY_TO_SUBMIT
    assert transcriber.calls[0][1] == "hi-IN"

    # Fallback is kept for the rest of the session.
    coordinator.reset()
    await coordinator.start()
    assert recognizer.starts == 1
    assert coordinator.tier == CaptureTier.RECORDED


@pytest.mark.asyncio
async def test_live_capture_gives_up_after_too_many_restarts() -> None:
    recognizer = FakeRecognizer()
    recorder = FakeRecorder()
    coordinator = Recorder().coordinator(
        live=LiveCapture(recognizer, "en-US", max_restarts=1),
        recorded=RecordedCapture(recorder, FakeTranscriber(), "en-US"),
    )

    await coordinator.start()
    recognizer.on_end()
    await _settle()
    recognizer.on_end()
    await _settle()

    assert recognizer.starts == 2
    assert coordinator.tier == CaptureTier.RECORDED
    assert recorder.is_recording


@pytest.mark.asyncio
async def test_recorded_capture_reports_empty_recording() -> None:
    events = Recorder()
    transcriber = FakeTranscriber()
    coordinator = events.coordinator(
        recorded=RecordedCapture(FakeRecorder(audio=np.zeros(0, dtype=np.int16)), transcriber, "en-US")
    )

    await coordinator.start()
    await coordinator.stop()

    assert coordinator.status == CaptureStatus.ERROR
    assert events.notices == ["No audio recorded."]
    assert transcriber.calls == []


@pytest.mark.asyncio
async def test_recorded_capture_reports_transcription_failure() -> None:
    events = Recorder()
    coordinator = events.coordinator(
        recorded=RecordedCapture(FakeRecorder(), FakeTranscriber(error=RuntimeError("HTTP 500")), "en-US")
    )

    await coordinator.start()
    await coordinator.stop()

    assert events.statuses == [CaptureStatus.RECORDING, CaptureStatus.TRANSCRIBING, CaptureStatus.ERROR]
    assert events.notices == ["Transcription failed: HTTP 500. Please try again."]
    assert coordinator.text == ""


@pytest.mark.asyncio
async def test_recorded_capture_reports_silence_and_mic_errors() -> None:
    events = Recorder()
    coordinator = events.coordinator(
        recorded=RecordedCapture(FakeRecorder(), FakeTranscriber(text="   "), "en-US")
    )
    await coordinator.start()
    await coordinator.stop()
    assert events.notices[-1] == "No speech detected. Please try again."

    broken = Recorder()
    coordinator = broken.coordinator(
        recorded=RecordedCapture(FakeRecorder(start_error=OSError("no device")), FakeTranscriber(), "en-US")
    )
    await coordinator.start()
    assert coordinator.status == CaptureStatus.ERROR
    assert broken.notices == ["Microphone error: no device"]


@pytest.mark.asyncio
async def test_abort_discards_pending_transcription() -> None:
    gate = asyncio.Event()

    class SlowTranscriber(SpeechTranscriber):
        async def transcribe(self, payload: bytes, language: str) -> str:
            await gate.wait()
            return "late text"

    events = Recorder()
    coordinator = events.coordinator(recorded=RecordedCapture(FakeRecorder(), SlowTranscriber(), "en-US"))
    await coordinator.start()
    stopping = asyncio.create_task(coordinator.stop())
    await _settle()
    assert coordinator.status == CaptureStatus.TRANSCRIBING

    await coordinator.abort()
    gate.set()
    await stopping

    assert coordinator.status == CaptureStatus.IDLE
    assert "late text" not in events.texts


@pytest.mark.asyncio
async def test_coordinator_without_backends_is_unavailable() -> None:
    coordinator = CaptureCoordinator()
    assert coordinator.available is False
    assert await coordinator.start() is False
    assert await coordinator.stop() is False


class UnpluggedRecorder(FakeRecorder):
    async def stop_recording(self) -> np.ndarray:
        self._recording = False
        raise OSError("device unplugged")


@pytest.mark.asyncio
async def test_recorded_capture_device_failure_on_stop_is_retryable() -> None:
    events = Recorder()
    transcriber = FakeTranscriber()
    coordinator = events.coordinator(recorded=RecordedCapture(UnpluggedRecorder(), transcriber, "en-US"))

    await coordinator.start()
    assert await coordinator.stop() is True

    assert coordinator.status == CaptureStatus.ERROR
    assert coordinator.is_active is False
    assert events.notices == ["Microphone error: device unplugged"]
    assert transcriber.calls == []

    assert await coordinator.start() is True
    assert coordinator.status == CaptureStatus.RECORDING
