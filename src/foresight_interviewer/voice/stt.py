"""Speech-to-text for record-then-transcribe capture.

Two transcribers share one interface (audio payload + language in, text out):
a local faster-whisper model and an upload to a remote transcription backend.
"""

from __future__ import annotations

import asyncio
import logging
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

import httpx
import numpy as np

logger = logging.getLogger(__name__)


def whisper_language(code: str | None) -> str | None:
    """Map a session language code (``hi-IN``) to a Whisper language (``hi``)."""
    if not code:
        return None
    return code.split("-")[0].lower()


@dataclass(frozen=True)
class STTConfig:
    model_size: str = "small"
    # Default to CPU to avoid hard crashes when CUDA/cuDNN aren't present.
    device: str = "cpu"  # cpu|cuda|auto
    compute_type: str | None = None  # e.g. int8, float16
    vad_filter: bool = True


@dataclass(frozen=True)
class TranscriptionResult:
    text: str
    avg_logprob: float | None = None
    no_speech_prob: float | None = None


class SpeechTranscriber(ABC):
    """Transcribes a complete recorded utterance."""

    @abstractmethod
    async def transcribe(self, payload: bytes, language: str) -> str:
        """
        Transcribe one recorded utterance.

        Args:
            payload: WAV-encoded audio.
            language: Session language code.

        Returns:
            The transcript, possibly empty.
        """
        ...


class WhisperSTT(SpeechTranscriber):
    """faster-whisper wrapper."""

    def __init__(self, config: STTConfig | None = None) -> None:
        self._config = config or STTConfig()
        self._model = None

    @property
    def config(self) -> STTConfig:
        return self._config

    def _load_model(self):
        if self._model is not None:
            return self._model

        try:
            from faster_whisper import WhisperModel  # type: ignore
        except Exception as e:  # pragma: no cover
            raise RuntimeError(
                "faster-whisper is required for STT. Install with: pip install -e '.[voice]'"
            ) from e

        device = self._config.device
        if device == "auto":
            device = "cpu"

        kwargs = {}
        if self._config.compute_type:
            kwargs["compute_type"] = self._config.compute_type

        self._model = WhisperModel(self._config.model_size, device=device, **kwargs)
        return self._model

    def _transcribe_sync(self, audio: str | np.ndarray, language: str | None) -> TranscriptionResult:
        model = self._load_model()
        segments, info = model.transcribe(
            audio,
            language=whisper_language(language),
            vad_filter=self._config.vad_filter,
        )
        text = " ".join(s.text.strip() for s in segments if s.text and s.text.strip()).strip()
        return TranscriptionResult(
            text=text,
            avg_logprob=getattr(info, "avg_logprob", None),
            no_speech_prob=getattr(info, "no_speech_prob", None),
        )

    async def transcribe_file(self, wav_path: str | Path, language: str | None = None) -> TranscriptionResult:
        return await asyncio.to_thread(self._transcribe_sync, str(Path(wav_path)), language)

    async def transcribe_array(self, audio: np.ndarray, language: str | None = None) -> str:
        """Transcribe raw mono audio (int16 or float32 at 16 kHz)."""
        samples = audio.reshape(-1)
        if samples.dtype == np.int16:
            samples = samples.astype(np.float32) / 32768.0
        else:
            samples = samples.astype(np.float32, copy=False)
        result = await asyncio.to_thread(self._transcribe_sync, samples, language)
        return result.text

    async def transcribe(self, payload: bytes, language: str) -> str:
        with tempfile.NamedTemporaryFile(suffix=".wav") as f:
            f.write(payload)
            f.flush()
            result = await self.transcribe_file(f.name, language)
        logger.info(f"[VOICE][STT] chars={len(result.text)} avg_logprob={result.avg_logprob}")
        return result.text


class RemoteTranscriber(SpeechTranscriber):
    """
    Uploads recordings to a transcription backend.

    The backend accepts ``POST /transcribe-speech`` with multipart fields
    ``audio`` and ``lang`` and answers ``{"transcript": "..."}``.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def transcribe(self, payload: bytes, language: str) -> str:
        client = await self._get_client()
        response = await client.post(
            "/transcribe-speech",
            files={"audio": ("audio.wav", payload, "audio/wav")},
            data={"lang": language},
        )
        response.raise_for_status()
        data = response.json()
        transcript = data.get("transcript") if isinstance(data, dict) else None
        logger.info(f"[VOICE][STT] remote transcript chars={len(transcript or '')}")
        return (transcript or "").strip()
