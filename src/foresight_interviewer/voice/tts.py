"""Text-to-speech.

``PiperTTS`` runs the `piper` CLI via subprocess. ``PiperSpeechOutput`` wraps
it as a speech output service: text + language in, playable audio handle out.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
import shutil
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TTSConfig:
    piper_bin: str = "piper"
    model_path: str | None = None  # default voice, path to *.onnx
    voices: dict[str, str] = field(default_factory=dict)  # language code -> *.onnx
    speaker_id: int | None = None
    max_chars_per_chunk: int = 350
    timeout_s: float = 60.0

    def model_for(self, language: str | None) -> str | None:
        if language:
            if language in self.voices:
                return self.voices[language]
            base = language.split("-")[0]
            for code, model in self.voices.items():
                if code.split("-")[0] == base:
                    return model
        return self.model_path


class TTSProvider:
    async def synthesize_to_wavs(
        self,
        text: str,
        out_dir: str | Path,
        base_name: str,
        *,
        language: str | None = None,
    ) -> list[Path]:
        raise NotImplementedError


class PiperTTS(TTSProvider):
    def __init__(self, config: TTSConfig | None = None) -> None:
        self._config = config or TTSConfig()
        self._validated_piper_path: str | None = None

    @property
    def config(self) -> TTSConfig:
        return self._config

    def is_available(self, language: str | None = None) -> tuple[bool, str]:
        try:
            self._require_piper(language)
            return True, "ok"
        except RuntimeError as e:
            return False, str(e)

    def _looks_like_piper_tts(self, piper_path: str) -> bool:
        try:
            r = subprocess.run(
                [piper_path, "--help"],
                check=False,
                text=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                timeout=5,
            )
        except (OSError, subprocess.SubprocessError):
            return False

        out = (r.stdout or "").lower()
        # On many Linux desktops /usr/bin/piper is an unrelated GTK app.
        return ("--model" in out or "--output_file" in out) and "application options" not in out

    def _require_piper(self, language: str | None = None) -> str:
        if not self._config.model_for(language):  # pragma: no cover
            raise RuntimeError(
                f"No Piper voice configured for language {language!r}. "
                "Set FORESIGHT_PIPER_MODEL or FORESIGHT_PIPER_VOICES."
            )
        if self._validated_piper_path:
            return self._validated_piper_path

        p = shutil.which(self._config.piper_bin)
        if not p:  # pragma: no cover
            raise RuntimeError(
                "piper CLI not found. Install piper (binary) and ensure it's on PATH, "
                "or set FORESIGHT_PIPER_BIN."
            )
        if not self._looks_like_piper_tts(p):  # pragma: no cover
            raise RuntimeError(
                "Found a `piper` binary, but it does not look like the Piper TTS CLI. "
                "Install Piper TTS and set FORESIGHT_PIPER_BIN to that binary path (e.g., ~/piper/piper)."
            )

        self._validated_piper_path = p
        return p

    def _chunk_text(self, text: str) -> list[str]:
        t = (text or "").strip()
        if not t:
            return []

        # Split on sentence boundaries (including the Devanagari danda), then re-pack.
        parts = [p.strip() for p in re.split(r"(?<=[.!?।])\s+", t) if p.strip()]
        chunks: list[str] = []
        current = ""
        for p in parts:
            if not current:
                current = p
                continue
            if len(current) + 1 + len(p) <= self._config.max_chars_per_chunk:
                current = current + " " + p
            else:
                chunks.append(current)
                current = p
        if current:
            chunks.append(current)

        return chunks

    async def synthesize_to_wavs(
        self,
        text: str,
        out_dir: str | Path,
        base_name: str,
        *,
        language: str | None = None,
    ) -> list[Path]:
        out_dir = Path(out_dir)
        out_dir.mkdir(parents=True, exist_ok=True)

        chunks = self._chunk_text(text)
        if not chunks:
            return []

        piper_bin = self._require_piper(language)
        model_path = self._config.model_for(language)

        def _call(chunk: str, wav_path: Path) -> None:
            cmd = [piper_bin, "--model", str(model_path), "--output_file", str(wav_path)]
            if self._config.speaker_id is not None:
                cmd += ["--speaker", str(self._config.speaker_id)]
            try:
                subprocess.run(
                    cmd,
                    input=chunk,
                    text=True,
                    check=True,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.PIPE,
                    timeout=self._config.timeout_s,
                )
            except subprocess.TimeoutExpired as e:  # pragma: no cover
                raise RuntimeError(
                    f"piper timed out after {self._config.timeout_s:.1f}s. model={model_path!s}."
                ) from e
            except subprocess.CalledProcessError as e:  # pragma: no cover
                stderr = (e.stderr or "").strip()
                raise RuntimeError(
                    f"piper failed (exit={e.returncode}). model={model_path!s}. "
                    f"stderr={stderr or '<empty>'}"
                ) from e

        wavs: list[Path] = []
        for idx, chunk in enumerate(chunks):
            wav_path = out_dir / f"{base_name}_{idx:02d}.wav"
            await asyncio.to_thread(_call, chunk, wav_path)
            wavs.append(wav_path)

        return wavs


class AudioHandle(ABC):
    """Playable audio returned by a speech output service."""

    @abstractmethod
    async def play(self) -> None:
        """Play to completion. Returns early once :meth:`stop` is called."""
        ...

    @abstractmethod
    def stop(self) -> None:
        """Stop playback. Safe to call at any time, including more than once."""
        ...


class SpeechOutputService(ABC):
    """Turns text into a playable audio handle."""

    @abstractmethod
    async def synthesize(self, text: str, language: str) -> AudioHandle:
        """
        Synthesize speech.

        Args:
            text: Text to speak (non-empty).
            language: Session language code.

        Returns:
            A handle the caller plays and stops.
        """
        ...


class WavPlayerProtocol(Protocol):
    async def play_wav(self, wav_path: str | Path) -> None: ...

    def stop_playback(self) -> None: ...


class WavPlayback(AudioHandle):
    """Plays a list of WAV files in order through an audio device."""

    def __init__(self, player: WavPlayerProtocol, wavs: list[Path]) -> None:
        self._player = player
        self._wavs = list(wavs)
        self._stopped = False

    @property
    def wavs(self) -> list[Path]:
        return list(self._wavs)

    async def play(self) -> None:
        for wav in self._wavs:
            if self._stopped:
                return
            await self._player.play_wav(wav)

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self._player.stop_playback()


class SilentPlayback(AudioHandle):
    async def play(self) -> None:
        return None

    def stop(self) -> None:
        return None


class SilentSpeechOutput(SpeechOutputService):
    """Text-only sessions: every utterance finishes immediately without audio."""

    async def synthesize(self, text: str, language: str) -> AudioHandle:
        return SilentPlayback()


class PiperSpeechOutput(SpeechOutputService):
    """Piper synthesis with an on-disk cache keyed by text, language and voice."""

    def __init__(self, tts: PiperTTS, player: WavPlayerProtocol, cache_dir: str | Path) -> None:
        self._tts = tts
        self._player = player
        self._cache_dir = Path(cache_dir)

    def _cache_key(self, text: str, language: str) -> str:
        model = self._tts.config.model_for(language) or ""
        return hashlib.sha1(f"{model}\n{language}\n{text}".encode("utf-8")).hexdigest()[:16]

    async def synthesize(self, text: str, language: str) -> AudioHandle:
        self._cache_dir.mkdir(parents=True, exist_ok=True)
        cache_key = self._cache_key(text, language)
        wavs = sorted(self._cache_dir.glob(f"{cache_key}_*.wav"))
        if wavs:
            logger.info(f"[VOICE][TTS] cache hit key={cache_key} chunks={len(wavs)}")
        else:
            wavs = await self._tts.synthesize_to_wavs(
                text,
                out_dir=self._cache_dir,
                base_name=cache_key,
                language=language,
            )
            logger.info(f"[VOICE][TTS] synthesized key={cache_key} chunks={len(wavs)}")
        if not wavs:
            raise RuntimeError("piper produced no audio")
        return WavPlayback(self._player, wavs)
