import asyncio
import json
from pathlib import Path

import pytest

from foresight_interviewer.agents.question_generator import PlanSequenceGenerator
from foresight_interviewer.interview.schemas import ResearchPlan, SessionOutcome
from foresight_interviewer.interview.session import InterviewServices, SessionConfig
from foresight_interviewer.io.text_interface import TextInterface

FAST = SessionConfig(submit_debounce_s=0.0, conclude_settle_s=0.0, reveal_interval_s=0.0005)


class ScriptedTextInterface(TextInterface):
    def __init__(self, lines: list[str], **kwargs) -> None:
        super().__init__(**kwargs)
        self._lines = list(lines)
        self.messages: list[str] = []

    async def send_message(self, message: str) -> None:
        self.messages.append(message)

    async def _get_input(self, prompt: str) -> str:
        await asyncio.sleep(0)
        return self._lines.pop(0) if self._lines else "/quit"


def _interface(lines: list[str], artifacts_dir: Path) -> ScriptedTextInterface:
    plan = ResearchPlan.from_questions({"Pricing": ["Is the price fair?", "Would you pay more?"]})
    return ScriptedTextInterface(
        lines,
        plan=plan,
        services=InterviewServices(question_generator=PlanSequenceGenerator()),
        config=FAST,
        artifacts_dir=artifacts_dir,
    )


@pytest.mark.asyncio
async def test_text_interface_runs_interview_and_saves_result(tmp_path: Path) -> None:
    interface = _interface(["/help", "Yes, mostly", "", "Maybe a little"], tmp_path)

    result = await asyncio.wait_for(interface.run(), timeout=5.0)

    assert result is not None
    assert result.outcome == SessionOutcome.COMPLETED
    assert result.questions_asked == 3
    assert interface.messages[0] == "Interviewer [Pricing]: Is the price fair?"
    assert interface.messages[-1].startswith("Interviewer [Conclusion]:")

    [saved] = list(tmp_path.glob("*/result.json"))
    data = json.loads(saved.read_text(encoding="utf-8"))
    assert data["outcome"] == "completed"
    answer = data["transcript"][1]
    assert (answer["speaker"], answer["text"], answer["theme"]) == ("participant", "Yes, mostly", "Pricing")
    assert "isProbing" in answer


@pytest.mark.asyncio
async def test_text_interface_quit_saves_nothing(tmp_path: Path) -> None:
    interface = _interface(["/quit"], tmp_path)

    result = await asyncio.wait_for(interface.run(), timeout=5.0)

    assert result is None
    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_text_interface_done_hands_off_partial_transcript(tmp_path: Path) -> None:
    interface = _interface(["Yes, mostly", "/done"], tmp_path)

    result = await asyncio.wait_for(interface.run(), timeout=5.0)

    assert result is not None
    assert result.outcome == SessionOutcome.COMPLETED_EARLY
    assert [turn.text for turn in result.transcript] == [
        "Is the price fair?",
        "Yes, mostly",
        "Would you pay more?",
    ]
