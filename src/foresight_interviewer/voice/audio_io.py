"""Audio capture + playback.

This module is "dumb hardware I/O": it knows nothing about the interview.

It provides:
- push-to-talk microphone capture (start/stop) that always releases the device
- WAV encoding/saving/loading helpers
- cancellable speaker playback
"""

from __future__ import annotations

import asyncio
import io
import logging
import wave
from dataclasses import dataclass
from pathlib import Path

import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AudioIOConfig:
    sample_rate: int = 16000
    channels: int = 1
    dtype: str = "int16"  # sounddevice dtype and WAV sample width
    playback_timeout_s: float = 120.0


def require_sounddevice():
    try:
        import sounddevice as sd  # type: ignore

        return sd
    except Exception as e:  # pragma: no cover
        raise RuntimeError(
            "sounddevice is required for voice mode. Install Python deps with: pip install -e '.[voice]'. "
            "If you see 'PortAudio library not found', install PortAudio (Debian/Ubuntu: sudo apt-get install portaudio19-dev)."
        ) from e


class AudioIO:
    def __init__(self, config: AudioIOConfig | None = None) -> None:
        self._config = config or AudioIOConfig()
        self._recording_stream = None
        self._recording_frames: list[np.ndarray] = []

    @property
    def config(self) -> AudioIOConfig:
        return self._config

    @property
    def is_recording(self) -> bool:
        return self._recording_stream is not None

    async def start_recording(self) -> None:
        """Open the microphone and start buffering raw chunks."""
        sd = require_sounddevice()
        if self._recording_stream is not None:
            await self.stop_recording()
        self._recording_frames = []

        def callback(indata, frames, time, status):  # noqa: ANN001
            if status:
                logger.debug(f"Input status: {status}")
            self._recording_frames.append(indata.copy())

        stream = sd.InputStream(
            samplerate=self._config.sample_rate,
            channels=self._config.channels,
            dtype=self._config.dtype,
            callback=callback,
        )
        try:
            await asyncio.to_thread(stream.start)
        except BaseException:
            await asyncio.to_thread(stream.close)
            raise
        self._recording_stream = stream
        logger.info(f"[VOICE][AUDIO] recording started sr={self._config.sample_rate}")

    async def stop_recording(self) -> np.ndarray:
        """Stop mic capture and return audio as int16 numpy array [samples, channels]."""
        if self._recording_stream is None:
            return np.zeros((0, self._config.channels), dtype=np.int16)

        stream = self._recording_stream
        self._recording_stream = None

        try:
            await asyncio.to_thread(stream.stop)
        finally:
            await asyncio.to_thread(stream.close)

        frames, self._recording_frames = self._recording_frames, []
        if not frames:
            return np.zeros((0, self._config.channels), dtype=np.int16)

        audio = np.concatenate(frames, axis=0)
        logger.info(f"[VOICE][AUDIO] recording stopped samples={audio.shape[0]}")
        return audio

    def encode_wav(self, audio: np.ndarray) -> bytes:
        """Assemble captured chunks into one int16 PCM WAV payload."""
        if audio.ndim == 1:
            audio = audio[:, None]

        buf = io.BytesIO()
        with wave.open(buf, "wb") as wf:
            wf.setnchannels(self._config.channels)
            wf.setsampwidth(2)  # int16
            wf.setframerate(self._config.sample_rate)
            wf.writeframes(audio.astype(np.int16, copy=False).tobytes())
        return buf.getvalue()

    def read_wav(self, wav_path: str | Path) -> tuple[np.ndarray, int]:
        wav_path = Path(wav_path)
        with wave.open(str(wav_path), "rb") as wf:
            sr = wf.getframerate()
            n_channels = wf.getnchannels()
            sampwidth = wf.getsampwidth()
            if sampwidth != 2:
                raise ValueError(f"Only 16-bit WAV supported, got sampwidth={sampwidth}")
            frames = wf.readframes(wf.getnframes())

        audio = np.frombuffer(frames, dtype=np.int16)
        return audio.reshape(-1, n_channels), sr

    async def play_wav(self, wav_path: str | Path) -> None:
        """Play a WAV file to completion, or until :meth:`stop_playback`."""
        sd = require_sounddevice()

        audio, sr = self.read_wav(wav_path)
        audio_f32 = audio.astype(np.float32) / 32768.0
        if audio_f32.shape[1] == 1:
            audio_f32 = audio_f32[:, 0]

        sd.play(audio_f32, samplerate=sr, blocking=False)
        try:
            await asyncio.wait_for(asyncio.to_thread(sd.wait), timeout=self._config.playback_timeout_s)
        except asyncio.TimeoutError:
            logger.warning(f"[VOICE][AUDIO] playback timed out after {self._config.playback_timeout_s:.1f}s")
            sd.stop()
        except asyncio.CancelledError:
            sd.stop()
            raise

    def stop_playback(self) -> None:
        sd = require_sounddevice()
        sd.stop()
