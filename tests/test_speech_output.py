import asyncio
from pathlib import Path

import pytest

from foresight_interviewer.voice.speech_output import SpeechOutputCoordinator
from foresight_interviewer.voice.tts import (
    AudioHandle,
    PiperSpeechOutput,
    PiperTTS,
    SpeechOutputService,
    TTSConfig,
)


class FakeHandle(AudioHandle):
    def __init__(self, gate: asyncio.Event | None = None, error: Exception | None = None) -> None:
        self.gate = gate
        self.error = error
        self.stopped = False

    async def play(self) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error

    def stop(self) -> None:
        self.stopped = True


class FakeSpeechService(SpeechOutputService):
    def __init__(self, gate: asyncio.Event | None = None, error: Exception | None = None,
                 play_error: Exception | None = None) -> None:
        self.gate = gate
        self.error = error
        self.play_error = play_error
        self.calls: list[tuple[str, str]] = []
        self.handles: list[FakeHandle] = []

    async def synthesize(self, text: str, language: str) -> AudioHandle:
        self.calls.append((text, language))
        if self.error is not None:
            raise self.error
        handle = FakeHandle(self.gate, self.play_error)
        self.handles.append(handle)
        return handle


async def _until(predicate, timeout: float = 2.0) -> None:
    async def _wait() -> None:
        while not predicate():
            await asyncio.sleep(0.001)

    await asyncio.wait_for(_wait(), timeout)


def _coordinator(service: SpeechOutputService, notices: list[str]) -> SpeechOutputCoordinator:
    return SpeechOutputCoordinator(service, reveal_interval_s=0.0005, on_notice=notices.append)


@pytest.mark.asyncio
async def test_empty_text_finishes_without_synthesis() -> None:
    service = FakeSpeechService()
    finished: list[int] = []
    coordinator = _coordinator(service, [])

    assert coordinator.speak("  ", "en-US", turn_id=0, on_finished=lambda: finished.append(0))

    assert finished == [0]
    assert service.calls == []
    assert coordinator.is_speaking is False


@pytest.mark.asyncio
async def test_utterance_ends_with_audio_not_with_reveal() -> None:
    gate = asyncio.Event()
    service = FakeSpeechService(gate=gate)
    finished: list[int] = []
    coordinator = _coordinator(service, [])

    coordinator.speak("Hi there", "en-IN", turn_id=0, on_finished=lambda: finished.append(0))
    assert coordinator.is_speaking

    # Reveal completes while audio is still playing.
    await _until(lambda: coordinator.displayed_text == "Hi there")
    await asyncio.sleep(0.01)
    assert coordinator.is_speaking
    assert finished == []

    gate.set()
    await _until(lambda: finished == [0])
    assert coordinator.is_speaking is False
    assert service.calls == [("Hi there", "en-IN")]


@pytest.mark.asyncio
async def test_repeat_request_for_same_turn_is_ignored_unless_forced() -> None:
    service = FakeSpeechService()
    finished: list[int] = []
    coordinator = _coordinator(service, [])

    assert coordinator.speak("Question?", "en-US", turn_id=3, on_finished=lambda: finished.append(1))
    await _until(lambda: len(finished) == 1)

    assert coordinator.speak("Question?", "en-US", turn_id=3, on_finished=lambda: finished.append(2)) is False
    assert coordinator.speak(
        "Question?", "en-US", turn_id=3, on_finished=lambda: finished.append(3), force=True
    )
    await _until(lambda: len(finished) == 2)

    assert finished == [1, 3]
    assert len(service.calls) == 2


@pytest.mark.asyncio
async def test_synthesis_failure_notifies_and_finishes_once() -> None:
    service = FakeSpeechService(error=RuntimeError("piper missing"))
    notices: list[str] = []
    finished: list[int] = []
    coordinator = _coordinator(service, notices)

    coordinator.speak("Question?", "en-US", turn_id=0, on_finished=lambda: finished.append(0))
    await _until(lambda: finished)
    await asyncio.sleep(0.01)

    assert finished == [0]
    assert notices == ["Failed to get speech: piper missing."]
    assert coordinator.displayed_text == "Question?"
    assert coordinator.is_speaking is False

    # The failed turn may be retried without forcing.
    assert coordinator.speak("Question?", "en-US", turn_id=0, on_finished=lambda: finished.append(1))
    coordinator.stop()


@pytest.mark.asyncio
async def test_playback_error_notifies_and_finishes() -> None:
    service = FakeSpeechService(play_error=OSError("device busy"))
    notices: list[str] = []
    finished: list[int] = []
    coordinator = _coordinator(service, notices)

    coordinator.speak("Question?", "en-US", turn_id=0, on_finished=lambda: finished.append(0))
    await _until(lambda: finished)

    assert notices == ["Audio playback error."]
    assert coordinator.displayed_text == "Question?"


@pytest.mark.asyncio
async def test_stop_cancels_without_completion_callback() -> None:
    gate = asyncio.Event()
    service = FakeSpeechService(gate=gate)
    finished: list[int] = []
    coordinator = _coordinator(service, [])

    coordinator.speak("A long question", "en-US", turn_id=0, on_finished=lambda: finished.append(0))
    await _until(lambda: service.handles)
    await asyncio.sleep(0.005)

    coordinator.stop()
    gate.set()
    await asyncio.sleep(0.02)

    assert coordinator.is_speaking is False
    assert service.handles[0].stopped
    assert finished == []


class FakePiper(PiperTTS):
    def __init__(self) -> None:
        super().__init__(TTSConfig(model_path="/voices/en.onnx", voices={"hi-IN": "/voices/hi.onnx"}))
        self.calls: list[tuple[str, str | None]] = []

    async def synthesize_to_wavs(self, text, out_dir, base_name, *, language=None):
        self.calls.append((text, language))
        wav = Path(out_dir) / f"{base_name}_00.wav"
        wav.write_bytes(b"RIFF")
        return [wav]


class FakePlayer:
    def __init__(self) -> None:
        self.played: list[Path] = []
        self.stops = 0

    async def play_wav(self, wav_path) -> None:
        self.played.append(Path(wav_path))

    def stop_playback(self) -> None:
        self.stops += 1


@pytest.mark.asyncio
async def test_piper_output_caches_per_text_and_language(tmp_path: Path) -> None:
    piper = FakePiper()
    player = FakePlayer()
    output = PiperSpeechOutput(piper, player, tmp_path / "tts")

    first = await output.synthesize("Namaste", "hi-IN")
    await first.play()
    await output.synthesize("Namaste", "hi-IN")
    await output.synthesize("Namaste", "en-US")

    assert piper.calls == [("Namaste", "hi-IN"), ("Namaste", "en-US")]
    assert len(player.played) == 1

    first.stop()
    first.stop()
    assert player.stops == 1


def test_voice_model_falls_back_by_base_language() -> None:
    config = TTSConfig(model_path="/voices/default.onnx", voices={"en-US": "/voices/en.onnx"})
    assert config.model_for("en-IN") == "/voices/en.onnx"
    assert config.model_for("hi-IN") == "/voices/default.onnx"
