"""
Interview session stage machine.

Sequences question generation, speech output, response capture and the
transcript into one conversation:

    INITIAL -> PROCESSING -> ASKING <-> LISTENING -> PROCESSING -> ... -> CONCLUDING -> FINISHED

Everything runs on one asyncio loop. Pending operations (generation request,
synthesis, playback, capture, the reveal ticker) are tasks that are cancelled
or ignored once the turn or session they belong to has moved on.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from foresight_interviewer.interview.planning import (
    CONCLUSION_THEME,
    NO_FURTHER_COMMENT,
    emergency_candidate,
    next_planned_question,
    repair_candidate,
)
from foresight_interviewer.interview.schemas import (
    AgentTurnCandidate,
    CaptureStatus,
    CaptureTier,
    InterviewResult,
    InterviewStage,
    ResearchPlan,
    SessionOutcome,
    TranscriptTurn,
)
from foresight_interviewer.interview.transcript import Transcript
from foresight_interviewer.voice.capture import (
    AudioRecorderProtocol,
    CaptureCoordinator,
    LiveCapture,
    RecordedCapture,
)
from foresight_interviewer.voice.live_stt import LiveRecognizer
from foresight_interviewer.voice.speech_output import SpeechOutputCoordinator
from foresight_interviewer.voice.stt import SpeechTranscriber
from foresight_interviewer.voice.tts import SpeechOutputService

if TYPE_CHECKING:
    from foresight_interviewer.agents.question_generator import QuestionGenerationService
    from foresight_interviewer.config import Settings

logger = logging.getLogger(__name__)


class SessionClosedError(RuntimeError):
    """The session ended before reaching the awaited stage."""


@dataclass(frozen=True)
class SessionConfig:
    submit_debounce_s: float = 0.3
    conclude_settle_s: float = 0.5
    reveal_interval_s: float = 0.05
    generation_timeout_s: float | None = 90.0
    live_max_restarts: int = 20

    @classmethod
    def from_settings(cls, settings: Settings) -> SessionConfig:
        return cls(
            submit_debounce_s=settings.submit_debounce_ms / 1000.0,
            conclude_settle_s=settings.conclude_settle_ms / 1000.0,
            reveal_interval_s=settings.reveal_interval_ms / 1000.0,
            generation_timeout_s=settings.generation_timeout_s,
            live_max_restarts=settings.live_max_restarts,
        )


@dataclass
class InterviewServices:
    """External collaborators of a session. Only the generator is required."""

    question_generator: QuestionGenerationService
    speech_output: SpeechOutputService | None = None
    live_recognizer: LiveRecognizer | None = None
    recorder: AudioRecorderProtocol | None = None
    transcriber: SpeechTranscriber | None = None


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only view of the session for the presentation layer."""

    stage: InterviewStage
    transcript: tuple[TranscriptTurn, ...]
    active_question: AgentTurnCandidate | None
    displayed_text: str
    is_speaking: bool
    input_text: str
    capture_status: CaptureStatus
    capture_tier: CaptureTier | None
    capture_notice: str | None
    outcome: SessionOutcome | None


class InterviewSession:
    """
    Runs one interview from the first question to hand-off or cancellation.

    Args:
        plan: Research plan, immutable for the session.
        services: Generation, speech output and capture collaborators.
        language: Language code used for every generation, output and capture call.
        config: Timing configuration.
        on_complete: Receives the finished transcript, exactly once, on
            normal or early completion. Not called on cancellation.
        on_cancel: Called once if the session is cancelled.
        on_notice: Receives participant-facing messages about speech and
            capture failures.
    """

    def __init__(
        self,
        plan: ResearchPlan,
        services: InterviewServices,
        *,
        language: str = "en-US",
        config: SessionConfig | None = None,
        on_complete: Callable[[list[TranscriptTurn]], None] | None = None,
        on_cancel: Callable[[], None] | None = None,
        on_notice: Callable[[str], None] | None = None,
    ) -> None:
        self._plan = plan
        self._services = services
        self._language = language
        self._config = config or SessionConfig()
        self._on_complete = on_complete
        self._on_cancel = on_cancel
        self._on_notice = on_notice

        self._transcript = Transcript()
        self._stage = InterviewStage.INITIAL
        self._outcome: SessionOutcome | None = None
        self._active_question: AgentTurnCandidate | None = None
        self._active_turn_id: int | None = None
        self._input_text = ""
        self._started_at: datetime | None = None

        self._fetch_in_flight = False
        self._fetch_task: asyncio.Task | None = None
        self._debounce_handle: asyncio.TimerHandle | None = None
        self._settle_handle: asyncio.TimerHandle | None = None
        self._handed_off = False
        self._closed = False
        self._closed_event = asyncio.Event()
        self._stage_waiters: list[tuple[frozenset[InterviewStage], asyncio.Future]] = []
        self._listeners: list[Callable[[SessionSnapshot], None]] = []

        self._speech = SpeechOutputCoordinator(
            services.speech_output,
            reveal_interval_s=self._config.reveal_interval_s,
            on_notice=self._notify,
            on_change=self._emit,
        )
        self._capture = self._build_capture()

    def _build_capture(self) -> CaptureCoordinator:
        live = None
        if self._services.live_recognizer is not None:
            live = LiveCapture(
                self._services.live_recognizer,
                self._language,
                max_restarts=self._config.live_max_restarts,
            )
        recorded = None
        if self._services.recorder is not None and self._services.transcriber is not None:
            recorded = RecordedCapture(
                self._services.recorder,
                self._services.transcriber,
                self._language,
            )
        return CaptureCoordinator(
            live=live,
            recorded=recorded,
            on_text=self._on_capture_text,
            on_notice=self._notify,
            on_status=lambda _status: self._emit(),
        )

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def stage(self) -> InterviewStage:
        return self._stage

    @property
    def outcome(self) -> SessionOutcome | None:
        return self._outcome

    @property
    def language(self) -> str:
        return self._language

    @property
    def transcript(self) -> tuple[TranscriptTurn, ...]:
        return self._transcript.turns

    @property
    def active_question(self) -> AgentTurnCandidate | None:
        return self._active_question

    @property
    def input_text(self) -> str:
        return self._input_text

    @property
    def is_speaking(self) -> bool:
        return self._speech.is_speaking

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def capture_available(self) -> bool:
        return self._capture.available

    @property
    def capture_status(self) -> CaptureStatus:
        return self._capture.status

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            stage=self._stage,
            transcript=self._transcript.turns,
            active_question=self._active_question,
            displayed_text=self._speech.displayed_text,
            is_speaking=self._speech.is_speaking,
            input_text=self._input_text,
            capture_status=self._capture.status,
            capture_tier=self._capture.tier,
            capture_notice=self._capture.notice,
            outcome=self._outcome,
        )

    def add_listener(self, callback: Callable[[SessionSnapshot], None]) -> None:
        self._listeners.append(callback)

    def result(self) -> InterviewResult | None:
        """The completed session's result, or None while running or if cancelled."""
        if not self._handed_off or self._outcome is None:
            return None
        return InterviewResult(
            transcript=list(self._transcript.turns),
            language=self._language,
            outcome=self._outcome,
            started_at=self._started_at,
        )

    async def wait_for_stage(self, *stages: InterviewStage) -> InterviewStage:
        """
        Wait until the session enters one of ``stages``.

        Raises:
            SessionClosedError: If the session closes without reaching them.
        """
        if self._stage in stages:
            return self._stage
        if self._closed:
            raise SessionClosedError(f"Session closed in stage {self._stage.value}")
        future = asyncio.get_running_loop().create_future()
        self._stage_waiters.append((frozenset(stages), future))
        return await future

    async def wait_closed(self) -> SessionOutcome | None:
        await self._closed_event.wait()
        return self._outcome

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def start(self) -> bool:
        """Leave INITIAL and request the first question."""
        if self._stage is not InterviewStage.INITIAL or self._closed:
            logger.info(f"[SESSION] start ignored in stage {self._stage.value}")
            return False
        self._started_at = datetime.now(timezone.utc)
        logger.info(
            f"[SESSION] starting language={self._language} "
            f"planned_questions={self._plan.total_questions}"
        )
        return self._request_next_question()

    def update_input(self, text: str) -> bool:
        """Replace the participant's unsubmitted input (typed text)."""
        if self._closed or self._stage not in (InterviewStage.LISTENING, InterviewStage.CONCLUDING):
            logger.info(f"[SESSION] input ignored in stage {self._stage.value}")
            return False
        if self._capture.is_active:
            logger.info("[SESSION] input ignored while capturing")
            return False
        self._input_text = text
        self._emit()
        return True

    def submit_response(self, text: str | None = None) -> bool:
        """
        Record the participant's answer and request the next question.

        Args:
            text: Answer text; defaults to the current input buffer.

        Returns:
            True if the answer was accepted. Ineligible submissions are
            logged and rejected without side effects.
        """
        blocker = self._submission_blocker()
        if blocker:
            logger.info(f"[SESSION] submission rejected: {blocker}")
            return False

        answer = (self._input_text if text is None else text).strip()
        question = self._active_question
        theme = question.theme if question else None
        if not answer:
            if theme != CONCLUSION_THEME:
                logger.info("[SESSION] submission rejected: empty answer")
                return False
            answer = NO_FURTHER_COMMENT

        self._debounce_handle = asyncio.get_running_loop().call_later(
            self._config.submit_debounce_s, self._clear_debounce
        )
        self._transcript.append_participant(answer, theme=theme)
        self._input_text = ""
        self._capture.reset()
        logger.info(f"[SESSION] answer recorded ({len(answer)} chars)")
        return self._request_next_question()

    def _submission_blocker(self) -> str | None:
        if self._closed:
            return "session closed"
        if self._debounce_handle is not None:
            return "debounce window open"
        if self._stage is not InterviewStage.LISTENING:
            return f"stage is {self._stage.value}"
        if self._speech.is_speaking:
            return "question is being spoken"
        if self._capture.is_active:
            return f"capture is {self._capture.status.value}"
        if self._fetch_in_flight:
            return "a question request is in flight"
        return None

    def _clear_debounce(self) -> None:
        self._debounce_handle = None

    def replay(self) -> bool:
        """Speak the active question again without touching stage or transcript."""
        if self._closed or self._active_question is None or self._active_turn_id is None:
            return False
        if self._stage is not InterviewStage.LISTENING:
            logger.info(f"[SESSION] replay ignored in stage {self._stage.value}")
            return False
        if self._speech.is_speaking or self._fetch_in_flight or self._capture.is_active:
            logger.info("[SESSION] replay ignored: speaking, processing or capturing")
            return False
        return self._speech.speak(
            self._active_question.next_question_text,
            self._language,
            turn_id=self._active_turn_id,
            on_finished=self._emit,
            force=True,
        )

    async def start_capture(self) -> bool:
        """Start capturing the participant's spoken answer."""
        if self._closed or self._stage is not InterviewStage.LISTENING:
            logger.info(f"[SESSION] capture ignored in stage {self._stage.value}")
            return False
        if self._speech.is_speaking or self._fetch_in_flight:
            logger.info("[SESSION] capture ignored while speaking or processing")
            return False
        return await self._capture.start()

    async def stop_capture(self) -> bool:
        """Stop capturing; the transcribed text lands in the input buffer."""
        return await self._capture.stop()

    async def complete_early(self) -> bool:
        """
        End the session now and hand off the transcript as it stands.

        Unsubmitted input is appended first as a final participant turn.
        """
        if self._closed or self._stage not in (InterviewStage.LISTENING, InterviewStage.CONCLUDING):
            logger.info(f"[SESSION] early completion ignored in stage {self._stage.value}")
            return False

        self._cancel_timers()
        self._speech.stop()
        await self._capture.abort()
        if self._closed:
            return False

        pending = self._input_text.strip()
        if pending:
            theme = (self._active_question.theme if self._active_question else "") or CONCLUSION_THEME
            self._transcript.append_participant(pending, theme=theme)
            self._input_text = ""

        logger.info("[SESSION] completed early")
        self._set_stage(InterviewStage.FINISHED)
        self._hand_off(SessionOutcome.COMPLETED_EARLY)
        return True

    async def cancel(self) -> None:
        """Abandon the session. Nothing is handed off."""
        if self._closed:
            return
        logger.info(f"[SESSION] cancelled in stage {self._stage.value}")
        self._close(SessionOutcome.ABANDONED)
        await self._capture.abort()
        if self._on_cancel is not None:
            self._on_cancel()

    # ------------------------------------------------------------------
    # Next-question protocol
    # ------------------------------------------------------------------

    def _request_next_question(self) -> bool:
        if self._fetch_in_flight:
            logger.warning("[SESSION] next-question request ignored: one is already in flight")
            return False
        self._fetch_in_flight = True
        self._speech.stop()
        self._capture.reset()
        self._set_stage(InterviewStage.PROCESSING)
        snapshot = self._transcript.snapshot()
        self._fetch_task = asyncio.get_running_loop().create_task(self._fetch_next_question(snapshot))
        return True

    async def _fetch_next_question(self, snapshot: tuple[TranscriptTurn, ...]) -> None:
        next_planned = next_planned_question(self._plan, snapshot)
        generator = self._services.question_generator
        try:
            candidate = await asyncio.wait_for(
                generator.generate(self._plan, snapshot, self._language),
                timeout=self._config.generation_timeout_s,
            )
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            logger.error(
                f"[SESSION] question generation timed out after {self._config.generation_timeout_s}s; "
                "concluding"
            )
            candidate = emergency_candidate()
        except Exception as e:
            logger.error(f"[SESSION] question generation failed: {e}; concluding", exc_info=True)
            candidate = emergency_candidate()
        else:
            candidate = repair_candidate(candidate, next_planned)
        finally:
            self._fetch_in_flight = False

        if self._closed:
            return
        self._ask(candidate)

    def _ask(self, candidate: AgentTurnCandidate) -> None:
        self._transcript.append_agent(candidate)
        turn_id = len(self._transcript) - 1
        self._active_question = candidate
        self._active_turn_id = turn_id
        self._set_stage(
            InterviewStage.CONCLUDING if candidate.is_end_of_interview else InterviewStage.ASKING
        )
        self._speech.speak(
            candidate.next_question_text,
            self._language,
            turn_id=turn_id,
            on_finished=lambda: self._on_question_spoken(turn_id),
        )

    def _on_question_spoken(self, turn_id: int) -> None:
        if self._closed or turn_id != self._active_turn_id:
            return
        if self._stage is InterviewStage.ASKING:
            self._set_stage(InterviewStage.LISTENING)
        elif self._stage is InterviewStage.CONCLUDING and self._settle_handle is None:
            self._settle_handle = asyncio.get_running_loop().call_later(
                self._config.conclude_settle_s, self._finish
            )

    def _finish(self) -> None:
        self._settle_handle = None
        if self._closed:
            return
        self._set_stage(InterviewStage.FINISHED)
        self._hand_off(SessionOutcome.COMPLETED)

    def _hand_off(self, outcome: SessionOutcome) -> None:
        turns = list(self._transcript.turns)
        if not turns:
            logger.error("[SESSION] finished with an empty transcript; nothing handed off")
            self._close(outcome)
            return
        self._handed_off = True
        self._close(outcome)
        logger.info(f"[SESSION] handing off {len(turns)} turns ({outcome.value})")
        if self._on_complete is not None:
            self._on_complete(turns)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _set_stage(self, stage: InterviewStage) -> None:
        if stage is self._stage:
            return
        logger.info(f"[SESSION] stage {self._stage.value} -> {stage.value}")
        self._stage = stage
        for waiter in list(self._stage_waiters):
            stages, future = waiter
            if stage in stages:
                self._stage_waiters.remove(waiter)
                if not future.done():
                    future.set_result(stage)
        self._emit()

    def _cancel_timers(self) -> None:
        for handle in (self._debounce_handle, self._settle_handle):
            if handle is not None:
                handle.cancel()
        self._debounce_handle = None
        self._settle_handle = None

    def _close(self, outcome: SessionOutcome) -> None:
        if self._closed:
            return
        self._closed = True
        self._outcome = outcome
        self._cancel_timers()
        self._speech.stop()
        task = self._fetch_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        for _stages, future in self._stage_waiters:
            if not future.done():
                future.set_exception(SessionClosedError(f"Session {outcome.value}"))
        self._stage_waiters.clear()
        self._closed_event.set()
        self._emit()

    def _on_capture_text(self, text: str) -> None:
        if self._closed or self._stage is not InterviewStage.LISTENING:
            return
        self._input_text = text
        self._emit()

    def _notify(self, message: str) -> None:
        if self._on_notice is not None:
            self._on_notice(message)

    def _emit(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            listener(snapshot)
