"""Voice-based interview interface.

Questions are spoken with Piper while they are printed; answers are captured
push-to-talk (press Enter to start and stop) with live recognition first and
record-and-transcribe as the fallback. Typed answers still work.
"""

from __future__ import annotations

import logging
from pathlib import Path

from foresight_interviewer.config import Settings
from foresight_interviewer.interview.schemas import InterviewResult
from foresight_interviewer.interview.session import (
    InterviewServices,
    InterviewSession,
)
from foresight_interviewer.io.text_interface import TextInterface
from foresight_interviewer.voice.audio_io import AudioIO, AudioIOConfig
from foresight_interviewer.voice.live_stt import WhisperLiveRecognizer
from foresight_interviewer.voice.stt import RemoteTranscriber, SpeechTranscriber, STTConfig, WhisperSTT
from foresight_interviewer.voice.tts import PiperSpeechOutput, PiperTTS, TTSConfig

logger = logging.getLogger(__name__)


def build_voice_services(settings: Settings, services: InterviewServices) -> InterviewServices:
    """
    Add speech output and capture collaborators to ``services``.

    Speech output is skipped when TTS is disabled or Piper is unusable for the
    session language (the interview then runs with text questions only).
    """
    audio = AudioIO(AudioIOConfig(sample_rate=settings.sample_rate))
    stt = WhisperSTT(
        STTConfig(
            model_size=settings.stt_model,
            device=settings.stt_device,
            compute_type=settings.stt_compute_type,
        )
    )

    speech_output = None
    if settings.tts_enabled:
        tts = PiperTTS(
            TTSConfig(
                piper_bin=settings.piper_bin,
                model_path=settings.piper_model,
                voices=dict(settings.piper_voices),
                timeout_s=settings.piper_timeout_s,
            )
        )
        ok, reason = tts.is_available(settings.language)
        if ok:
            speech_output = PiperSpeechOutput(tts, audio, Path(settings.artifacts_dir) / "tts_cache")
        else:
            logger.warning(f"[VOICE][TTS] unavailable; questions will be text only: {reason}")

    transcriber: SpeechTranscriber = stt
    if settings.speech_backend_url:
        transcriber = RemoteTranscriber(settings.speech_backend_url, timeout=settings.speech_backend_timeout)

    live = None
    if settings.live_capture_enabled:
        live = WhisperLiveRecognizer(
            stt,
            AudioIOConfig(sample_rate=settings.sample_rate),
            interim_interval_s=settings.live_interim_interval_s,
            segment_s=settings.live_segment_s,
        )

    return InterviewServices(
        question_generator=services.question_generator,
        speech_output=speech_output,
        live_recognizer=live,
        recorder=audio,
        transcriber=transcriber,
    )


class VoiceInterface(TextInterface):
    """Push-to-talk variant of the text interface: an empty line starts recording."""

    async def receive_input(self) -> str:
        return await self._get_input("Press Enter to speak, or type your answer: ")

    async def _handle_line(self, session: InterviewSession, line: str) -> bool:
        if not line.strip():
            await self._capture_answer(session)
            return False
        return await super()._handle_line(session, line)

    async def run(self) -> InterviewResult | None:
        try:
            return await super().run()
        finally:
            transcriber = self._services.transcriber
            if isinstance(transcriber, RemoteTranscriber):
                await transcriber.close()
