"""
Append-only interview transcript.

The transcript is the single record of what either party has said. Turns are
immutable once appended and strictly alternate AGENT/PARTICIPANT, starting with
an AGENT turn.
"""

import logging
from collections.abc import Iterable, Iterator, Sequence
from typing import Any

from foresight_interviewer.interview.schemas import AgentTurnCandidate, Speaker, TranscriptTurn

logger = logging.getLogger(__name__)


class TranscriptOrderError(RuntimeError):
    """Raised when an append would break strict speaker alternation."""


class Transcript:
    """
    Ordered, append-only sequence of transcript turns.

    Exposes copies only; there is no way to edit or remove a turn once it has
    been appended.
    """

    def __init__(self) -> None:
        self._turns: list[TranscriptTurn] = []

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[TranscriptTurn]:
        return iter(tuple(self._turns))

    @property
    def turns(self) -> tuple[TranscriptTurn, ...]:
        """Snapshot of all turns in causal order."""
        return tuple(self._turns)

    @property
    def last_turn(self) -> TranscriptTurn | None:
        return self._turns[-1] if self._turns else None

    @property
    def expected_speaker(self) -> Speaker:
        """The only speaker allowed to append next."""
        last = self.last_turn
        if last is None or last.speaker == Speaker.PARTICIPANT:
            return Speaker.AGENT
        return Speaker.PARTICIPANT

    def snapshot(self) -> tuple[TranscriptTurn, ...]:
        return self.turns

    def append_agent(self, candidate: AgentTurnCandidate) -> TranscriptTurn:
        """
        Record a question or remark spoken by the agent.

        Args:
            candidate: The repaired candidate being asked.

        Returns:
            The appended turn.
        """
        return self._append(
            TranscriptTurn(
                speaker=Speaker.AGENT,
                text=candidate.next_question_text,
                theme=candidate.theme,
                is_probing=candidate.is_probing,
            )
        )

    def append_participant(self, text: str, *, theme: str | None) -> TranscriptTurn:
        """
        Record a participant answer.

        Args:
            text: The answer text.
            theme: Theme of the question being answered.

        Returns:
            The appended turn.
        """
        return self._append(TranscriptTurn(speaker=Speaker.PARTICIPANT, text=text, theme=theme))

    def _append(self, turn: TranscriptTurn) -> TranscriptTurn:
        expected = self.expected_speaker
        if turn.speaker != expected:
            raise TranscriptOrderError(
                f"Cannot append a {turn.speaker.value} turn: expected {expected.value} "
                f"after {len(self._turns)} turn(s)"
            )
        self._turns.append(turn)
        logger.debug(f"Transcript turn {len(self._turns)}: {turn.speaker.value} ({turn.theme})")
        return turn

    def has_asked(self, question_text: str) -> bool:
        return has_asked(self._turns, question_text)


def asked_questions(turns: Iterable[TranscriptTurn]) -> set[str]:
    """Exact texts of every agent turn."""
    return {turn.text for turn in turns if turn.speaker == Speaker.AGENT}


def has_asked(turns: Iterable[TranscriptTurn], question_text: str) -> bool:
    """
    Whether ``question_text`` appears verbatim as an agent turn.

    The comparison is exact: case and whitespace differences count as a
    different question.
    """
    return question_text in asked_questions(turns)


def last_text(turns: Sequence[TranscriptTurn], speaker: Speaker) -> str | None:
    for turn in reversed(turns):
        if turn.speaker == speaker and turn.text:
            return turn.text
    return None


def to_prompt_payload(turns: Iterable[TranscriptTurn]) -> list[dict[str, Any]]:
    """Transcript as plain dicts for inclusion in an LLM prompt."""
    return [
        {
            "speaker": turn.speaker.value,
            "text": turn.text,
            "theme": turn.theme,
            "isProbing": turn.is_probing,
        }
        for turn in turns
    ]
