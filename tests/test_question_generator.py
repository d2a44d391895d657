from typing import Any

import pytest

from foresight_interviewer.agents.question_generator import (
    LLMQuestionGenerator,
    PlanSequenceGenerator,
    QuestionGenerationError,
)
from foresight_interviewer.interview.planning import CLOSING_REMARK, CONCLUSION_THEME
from foresight_interviewer.interview.schemas import AgentTurnCandidate, ResearchPlan
from foresight_interviewer.interview.transcript import Transcript
from foresight_interviewer.models.llm_client import LLMClientBase, LLMResponse, Message
from foresight_interviewer.models.provider import LLMClientProvider


class FakeLLMClient(LLMClientBase):
    def __init__(self, content: str, finish_reason: str = "stop", raw: dict[str, Any] | None = None):
        self.content = content
        self.finish_reason = finish_reason
        self.raw = raw or {}
        self.prompts: list[str] = []

    async def chat(self, messages: list[Message], temperature: float = 0.7, **kwargs: Any) -> LLMResponse:
        self.prompts.append(messages[-1].content)
        return LLMResponse(content=self.content, finish_reason=self.finish_reason, raw_response=self.raw)


def _plan() -> ResearchPlan:
    return ResearchPlan.from_questions({"Onboarding": ["How did you hear about us?"]})


def _generator(client: LLMClientBase) -> LLMQuestionGenerator:
    return LLMQuestionGenerator(provider=LLMClientProvider(lambda: client))


@pytest.mark.asyncio
async def test_llm_generator_parses_camel_case_json() -> None:
    client = FakeLLMClient(
        '{"nextQuestionText": "What confused you?", "theme": "Probing", '
        '"isProbing": true, "isEndOfInterview": false}'
    )
    transcript = Transcript()
    transcript.append_agent(AgentTurnCandidate(next_question_text="How did you hear about us?", theme="Onboarding"))
    transcript.append_participant("A friend, but the site was confusing.", theme="Onboarding")

    candidate = await _generator(client).generate(_plan(), transcript.turns, "hi-IN")

    assert candidate == AgentTurnCandidate(
        next_question_text="What confused you?",
        theme="Probing",
        is_probing=True,
        is_end_of_interview=False,
    )
    prompt = client.prompts[0]
    assert "Hindi (India)" in prompt
    assert 'Last Answer: "A friend, but the site was confusing."' in prompt


@pytest.mark.asyncio
async def test_llm_generator_falls_back_to_plan_on_unparseable_output() -> None:
    client = FakeLLMClient("Let me think about what to ask next.")

    candidate = await _generator(client).generate(_plan(), (), "en-US")

    assert candidate.next_question_text == "How did you hear about us?"
    assert candidate.theme == "Onboarding"
    assert candidate.is_end_of_interview is False


@pytest.mark.asyncio
async def test_llm_generator_fallback_after_plan_is_generic_closing() -> None:
    client = FakeLLMClient("not json")
    transcript = Transcript()
    transcript.append_agent(AgentTurnCandidate(next_question_text="How did you hear about us?", theme="Onboarding"))
    transcript.append_participant("Search", theme="Onboarding")

    candidate = await _generator(client).generate(_plan(), transcript.turns, "en-US")

    assert "Is there anything else you'd like to share in English (US)?" in candidate.next_question_text
    assert candidate.is_end_of_interview is False


@pytest.mark.asyncio
async def test_llm_generator_raises_on_transport_error() -> None:
    client = FakeLLMClient("", finish_reason="error", raw={"error": "connection refused"})

    with pytest.raises(QuestionGenerationError, match="connection refused"):
        await _generator(client).generate(_plan(), (), "en-US")


@pytest.mark.asyncio
async def test_llm_generator_raises_when_client_cannot_be_created() -> None:
    def factory() -> LLMClientBase:
        raise RuntimeError("no ollama")

    generator = LLMQuestionGenerator(provider=LLMClientProvider(factory))

    with pytest.raises(QuestionGenerationError, match="no ollama"):
        await generator.generate(_plan(), (), "en-US")


@pytest.mark.asyncio
async def test_plan_sequence_generator_walks_plan_then_concludes() -> None:
    plan = ResearchPlan.from_questions({"A": ["Q1", "Q2"], "B": ["Q3"]})
    generator = PlanSequenceGenerator()
    transcript = Transcript()
    asked: list[str] = []

    while True:
        candidate = await generator.generate(plan, transcript.turns, "en-US")
        transcript.append_agent(candidate)
        asked.append(candidate.next_question_text)
        if candidate.is_end_of_interview:
            break
        transcript.append_participant("ok", theme=candidate.theme)

    assert asked == ["Q1", "Q2", "Q3", CLOSING_REMARK]
    assert transcript.last_turn.theme == CONCLUSION_THEME
