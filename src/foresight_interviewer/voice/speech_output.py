"""Speech output coordination.

Speaks one agent turn at a time. While audio is being synthesized and played,
the question text is revealed character by character on a fixed tick so it is
readable before, or without, audio. Whatever ends the utterance first
(natural end, playback error, synthesis failure) finalizes it exactly once:
full text shown, speaking flag cleared, completion callback fired.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from foresight_interviewer.voice.tts import AudioHandle, SilentSpeechOutput, SpeechOutputService

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class _Utterance:
    turn_id: int
    text: str
    on_finished: Callable[[], None]
    finished: bool = False
    handle: AudioHandle | None = None
    tasks: list[asyncio.Task] = field(default_factory=list)


class SpeechOutputCoordinator:
    """
    Guarantees at most one active playback and one reveal at a time.

    Args:
        service: Speech output service; text-only when None.
        reveal_interval_s: Delay between revealed characters.
        on_notice: Receives participant-facing failure messages.
        on_change: Called whenever the revealed text or speaking flag changes.
    """

    def __init__(
        self,
        service: SpeechOutputService | None = None,
        *,
        reveal_interval_s: float = 0.05,
        on_notice: Callable[[str], None] | None = None,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self._service = service or SilentSpeechOutput()
        self._reveal_interval_s = reveal_interval_s
        self._on_notice = on_notice
        self._on_change = on_change
        self._current: _Utterance | None = None
        self._last_spoken: tuple[int, str] | None = None
        self._displayed_text = ""

    @property
    def is_speaking(self) -> bool:
        return self._current is not None

    @property
    def displayed_text(self) -> str:
        return self._displayed_text

    def speak(
        self,
        text: str,
        language: str,
        *,
        turn_id: int,
        on_finished: Callable[[], None],
        force: bool = False,
    ) -> bool:
        """
        Speak ``text`` for transcript turn ``turn_id``.

        A repeat request for the same turn and text is ignored unless
        ``force`` is set (replay).

        Args:
            text: Question or remark to speak.
            language: Session language code.
            turn_id: Index of the agent turn being spoken.
            on_finished: Called once when the utterance ends, unless it is
                cancelled by :meth:`stop` or superseded by another call.
            force: Replay even though this turn was already spoken.

        Returns:
            True if an utterance was started (or finished immediately).
        """
        marker = (turn_id, text)
        if marker == self._last_spoken and not force:
            logger.info(f"[SPEECH] turn {turn_id} already spoken; ignoring repeat request")
            return False

        self.stop()
        self._last_spoken = marker

        if not text.strip():
            logger.info(f"[SPEECH] turn {turn_id} has no text; skipping synthesis")
            self._displayed_text = text
            self._changed()
            on_finished()
            return True

        utterance = _Utterance(turn_id=turn_id, text=text, on_finished=on_finished)
        self._current = utterance
        self._displayed_text = ""
        loop = asyncio.get_running_loop()
        utterance.tasks = [
            loop.create_task(self._reveal(utterance)),
            loop.create_task(self._play(utterance, language)),
        ]
        self._changed()
        return True

    def stop(self) -> None:
        """Cancel the current utterance without firing its completion callback."""
        utterance, self._current = self._current, None
        if utterance is None:
            return
        utterance.finished = True
        if utterance.handle is not None:
            with contextlib.suppress(Exception):
                utterance.handle.stop()
        current = asyncio.current_task()
        for task in utterance.tasks:
            if task is not current:
                task.cancel()
        logger.debug(f"[SPEECH] turn {utterance.turn_id} stopped")
        self._changed()

    async def _reveal(self, utterance: _Utterance) -> None:
        for end in range(1, len(utterance.text) + 1):
            await asyncio.sleep(self._reveal_interval_s)
            if utterance.finished:
                return
            self._displayed_text = utterance.text[:end]
            self._changed()

    async def _play(self, utterance: _Utterance, language: str) -> None:
        try:
            handle = await self._service.synthesize(utterance.text, language)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"[SPEECH] synthesis failed for turn {utterance.turn_id}: {e}")
            # Allow a later replay of this turn to try synthesis again.
            if self._last_spoken == (utterance.turn_id, utterance.text):
                self._last_spoken = None
            self._notify(f"Failed to get speech: {e}.")
            self._finalize(utterance)
            return

        if utterance.finished:
            handle.stop()
            return
        utterance.handle = handle

        try:
            await handle.play()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"[SPEECH] playback failed for turn {utterance.turn_id}: {e}")
            self._notify("Audio playback error.")

        self._finalize(utterance)

    def _finalize(self, utterance: _Utterance) -> None:
        if utterance.finished:
            return
        utterance.finished = True
        for task in utterance.tasks:
            if task is not asyncio.current_task():
                task.cancel()
        if self._current is utterance:
            self._current = None
        self._displayed_text = utterance.text
        self._changed()
        utterance.on_finished()

    def _notify(self, message: str) -> None:
        if self._on_notice is not None:
            self._on_notice(message)

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()
