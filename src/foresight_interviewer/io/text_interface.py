"""
Text-based interview interface.

Drives an interview session from the terminal: questions are printed as they
are asked and answers are typed. Commands: /replay, /voice, /done, /quit.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path

from foresight_interviewer.interview.schemas import (
    CaptureStatus,
    InterviewResult,
    InterviewStage,
    ResearchPlan,
    Speaker,
    TranscriptTurn,
    language_name,
)
from foresight_interviewer.interview.session import (
    InterviewServices,
    InterviewSession,
    SessionClosedError,
    SessionConfig,
)

logger = logging.getLogger(__name__)

HELP_TEXT = "Commands: /replay (hear the question again), /voice (speak your answer), /done (finish now), /quit (abandon)"


class InterviewInterface(ABC):
    """Abstract base class for interview interfaces."""

    @abstractmethod
    async def run(self) -> InterviewResult | None:
        """Run the interview and return its result, or None if abandoned."""
        ...

    @abstractmethod
    async def send_message(self, message: str) -> None:
        """
        Send a message to the participant.

        Args:
            message: Message to display.
        """
        ...

    @abstractmethod
    async def receive_input(self) -> str:
        """
        Receive input from the participant.

        Returns:
            Participant's input string.
        """
        ...


class TextInterface(InterviewInterface):
    """
    Command-line text interface for interviews.

    Provides a simple REPL on top of :class:`InterviewSession`.
    """

    def __init__(
        self,
        plan: ResearchPlan,
        services: InterviewServices,
        *,
        language: str = "en-US",
        config: SessionConfig | None = None,
        artifacts_dir: str | Path | None = None,
    ) -> None:
        """
        Initialize the text interface.

        Args:
            plan: Research plan to interview against.
            services: Session collaborators.
            language: Interview language code.
            config: Session timing configuration.
            artifacts_dir: Where to write ``result.json``; nothing is written if None.
        """
        self._plan = plan
        self._services = services
        self._language = language
        self._config = config
        self._artifacts_dir = Path(artifacts_dir) if artifacts_dir else None
        self._shown_turns = 0

    def _build_session(self) -> InterviewSession:
        return InterviewSession(
            self._plan,
            self._services,
            language=self._language,
            config=self._config,
            on_notice=self._on_notice,
        )

    async def run(self) -> InterviewResult | None:
        """Run the interactive interview session."""
        print("\n" + "=" * 60)
        print("Foresight Research Interview")
        print(f"Language: {language_name(self._language)}")
        print("=" * 60)
        print(HELP_TEXT + "\n")

        session = self._build_session()
        await session.start()

        while not session.is_closed:
            try:
                await session.wait_for_stage(
                    InterviewStage.ASKING,
                    InterviewStage.CONCLUDING,
                    InterviewStage.LISTENING,
                    InterviewStage.FINISHED,
                )
                await self._show_new_turns(session)
                if session.stage is not InterviewStage.LISTENING:
                    await session.wait_for_stage(InterviewStage.LISTENING, InterviewStage.FINISHED)
                    continue
            except SessionClosedError:
                break

            line = await self.receive_input()
            if await self._handle_line(session, line):
                break

        await self._show_new_turns(session)
        result = session.result()
        if result is not None:
            await self._display_result(result)
            self._write_result(result)
        else:
            print("\nInterview abandoned. Nothing was saved.")
        return result

    async def _handle_line(self, session: InterviewSession, line: str) -> bool:
        """Act on one line of input. Returns True when the loop should end."""
        command = line.strip().lower()
        if command in ("/quit", "/exit"):
            await session.cancel()
            return True
        if command in ("/done", "/end"):
            await session.complete_early()
            return True
        if command == "/replay":
            if not session.replay():
                print("Cannot replay right now.")
            return False
        if command == "/help":
            print(HELP_TEXT)
            return False
        if command == "/voice":
            await self._capture_answer(session)
            return False

        if not session.submit_response(line):
            print("Please enter a response or use /voice.")
        return False

    async def _capture_answer(self, session: InterviewSession) -> None:
        """Push-to-talk: record until Enter, then offer the transcript for submission."""
        if not session.capture_available:
            print("Voice capture is not available in this session.")
            return
        if not await session.start_capture():
            print("Cannot start recording right now.")
            return
        if session.capture_status is CaptureStatus.RECORDING:
            await self._get_input("Recording... press Enter to stop. ")
            print("Transcribing...")
            await session.stop_capture()

        if session.capture_status is not CaptureStatus.READY_TO_SUBMIT:
            return
        print(f"Heard: {session.input_text}")
        confirm = (await self._get_input("Submit this answer? [Y/n] ")).strip().lower()
        if confirm in ("", "y", "yes"):
            session.submit_response()

    async def _show_new_turns(self, session: InterviewSession) -> None:
        turns = session.transcript
        for turn in turns[self._shown_turns:]:
            if turn.speaker == Speaker.AGENT:
                await self.send_message(self._format_question(turn))
        self._shown_turns = len(turns)

    @staticmethod
    def _format_question(turn: TranscriptTurn) -> str:
        label = "Follow-up" if turn.is_probing else (turn.theme or "Interviewer")
        return f"Interviewer [{label}]: {turn.text}"

    def _on_notice(self, message: str) -> None:
        print(f"\n[!] {message}")

    async def send_message(self, message: str) -> None:
        """
        Display a message to the terminal.

        Args:
            message: Message to display.
        """
        print(f"\n{message}\n")

    async def receive_input(self) -> str:
        """
        Get input from the terminal.

        Returns:
            Participant's input string.
        """
        return await self._get_input("You: ")

    async def _get_input(self, prompt: str) -> str:
        """
        Get input with a specific prompt.

        Runs ``input()`` in a worker thread so playback, the reveal ticker and
        live capture keep running while the terminal waits.
        """
        try:
            return await asyncio.to_thread(input, prompt)
        except EOFError:
            return "/quit"

    async def _display_result(self, result: InterviewResult) -> None:
        print("\n" + "=" * 60)
        print("Interview Summary")
        print("=" * 60)
        print(f"Outcome: {result.outcome.value}")
        print(f"Duration: {result.started_at} to {result.completed_at}")
        print(f"Questions asked: {result.questions_asked}")
        print(f"Total turns: {len(result.transcript)}")

    def _write_result(self, result: InterviewResult) -> Path | None:
        if self._artifacts_dir is None:
            return None
        session_dir = self._artifacts_dir / datetime.now().strftime("%Y%m%d-%H%M%S")
        session_dir.mkdir(parents=True, exist_ok=True)
        path = session_dir / "result.json"
        data = result.model_dump(mode="json", by_alias=True)
        path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        logger.info(f"Wrote interview result to {path}")
        print(f"Transcript saved to {path}")
        return path
