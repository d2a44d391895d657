"""
Question generation services.

Given the research plan and the transcript so far, a generation service
proposes the next agent turn. The session repairs the proposal and treats any
exception raised here as a generation failure.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence

from pydantic import ValidationError

from foresight_interviewer.interview.planning import (
    CLOSING_REMARK,
    CONCLUSION_THEME,
    next_planned_question,
)
from foresight_interviewer.interview.schemas import (
    AgentTurnCandidate,
    ResearchPlan,
    Speaker,
    TranscriptTurn,
    language_name,
)
from foresight_interviewer.interview.transcript import last_text, to_prompt_payload
from foresight_interviewer.models.llm_client import Message
from foresight_interviewer.models.provider import LLMClientProvider

logger = logging.getLogger(__name__)


class QuestionGenerationError(Exception):
    """The generation service could not produce a candidate."""


class QuestionGenerationService(ABC):
    """Abstract base class for question generation services."""

    @abstractmethod
    async def generate(
        self,
        plan: ResearchPlan,
        transcript: Sequence[TranscriptTurn],
        language: str,
    ) -> AgentTurnCandidate:
        """
        Propose the next agent turn.

        Args:
            plan: The session's research plan.
            transcript: Transcript so far, already containing the answer to react to.
            language: Session language code.

        Returns:
            Unrepaired candidate.

        Raises:
            QuestionGenerationError: On transport or model failure.
        """
        ...


class PlanSequenceGenerator(QuestionGenerationService):
    """Asks planned questions in declared order, never probing."""

    async def generate(
        self,
        plan: ResearchPlan,
        transcript: Sequence[TranscriptTurn],
        language: str,
    ) -> AgentTurnCandidate:
        planned = next_planned_question(plan, transcript)
        if planned is None:
            return AgentTurnCandidate(
                next_question_text=CLOSING_REMARK,
                theme=CONCLUSION_THEME,
                is_probing=False,
                is_end_of_interview=True,
            )
        return AgentTurnCandidate(
            next_question_text=planned.question_text,
            theme=planned.theme,
            is_probing=False,
            is_end_of_interview=False,
        )


class LLMQuestionGenerator(QuestionGenerationService):
    """
    LLM-based question generator.

    Decides between a probing follow-up, the next planned question and a
    concluding remark, in the interview language.
    """

    FOLLOW_UP_PROMPT = """You are an expert user research interviewer. Your goal is to conduct a natural, flowing interview based on a research plan.
The interview is being conducted in {language_name} ({language_code}). Formulate your questions in {language_name}.
You need to decide the next question to ask.

Key Questionnaire Themes and Questions:
{questionnaire}

Full Interview Transcript So Far (participant answers may be in {language_name} or mixed language):
{transcript}

Last Question: "{last_question}"
Last Answer: "{last_answer}"

Based on the last answer and the overall interview context:
1. Decide if a probing follow-up (in {language_name}) is needed to get more detail, clarification, or explore an interesting point. If yes, ask it; it must relate directly to the last answer.
2. Otherwise, or if you just asked a probing question, ask the next logical UNASKED question from the questionnaire.
3. If all planned questions have been asked, or the interview has covered sufficient ground, set "isEndOfInterview" to true and give a polite concluding remark in {language_name} as "nextQuestionText".
   If there are no UNASKED questions left in the questionnaire you MUST set "isEndOfInterview" to true.

Return JSON:
{{
    "nextQuestionText": "<the question or concluding remark, in {language_name}>",
    "theme": "<theme from the questionnaire, 'Probing' for a follow-up, or 'Conclusion' when ending>",
    "isProbing": <true for a follow-up to the last answer, otherwise false>,
    "isEndOfInterview": <true when this is the concluding turn>
}}

Example (probing):
Answer: "I found it a bit confusing."
{{"nextQuestionText": "Could you tell me more about what specifically you found confusing?", "theme": "Probing", "isProbing": true, "isEndOfInterview": false}}

Example (next planned question):
Answer: "It was okay, I guess."
{example_next}

Example (concluding):
Answer: "No, that's all."
{{"nextQuestionText": "Great, thank you for your time today! That's all my questions.", "theme": "Conclusion", "isProbing": false, "isEndOfInterview": true}}

Don't ask too many probing questions in a row without returning to the plan.
nextQuestionText must never be empty.

Only return valid JSON."""

    def __init__(
        self,
        provider: LLMClientProvider | None = None,
        temperature: float = 0.4,
    ) -> None:
        """
        Initialize the generator.

        Args:
            provider: Source of the shared LLM client. Creates a default Ollama provider if None.
            temperature: Sampling temperature for generation.
        """
        self._provider = provider or LLMClientProvider()
        self._temperature = temperature

    @property
    def provider(self) -> LLMClientProvider:
        return self._provider

    def build_prompt(
        self,
        plan: ResearchPlan,
        transcript: Sequence[TranscriptTurn],
        language: str,
    ) -> str:
        name = language_name(language)
        planned = next_planned_question(plan, transcript)
        example_next = json.dumps(
            {
                "nextQuestionText": (
                    planned.question_text
                    if planned
                    else f"Is there anything else you'd like to share in {name}?"
                ),
                "theme": planned.theme if planned else CONCLUSION_THEME,
                "isProbing": False,
                "isEndOfInterview": planned is None,
            },
            ensure_ascii=False,
        )
        questionnaire = json.dumps(
            [item.model_dump() for item in plan.key_questionnaire],
            indent=2,
            ensure_ascii=False,
        )
        return self.FOLLOW_UP_PROMPT.format(
            language_name=name,
            language_code=language,
            questionnaire=questionnaire,
            transcript=json.dumps(to_prompt_payload(transcript), indent=2, ensure_ascii=False),
            last_question=last_text(transcript, Speaker.AGENT) or "This is the first question.",
            last_answer=last_text(transcript, Speaker.PARTICIPANT) or "No previous answer.",
            example_next=example_next,
        )

    async def generate(
        self,
        plan: ResearchPlan,
        transcript: Sequence[TranscriptTurn],
        language: str,
    ) -> AgentTurnCandidate:
        try:
            client = self._provider.get()
        except Exception as e:
            raise QuestionGenerationError(str(e)) from e

        prompt = self.build_prompt(plan, transcript, language)
        response = await client.chat(
            messages=[Message(role="user", content=prompt)],
            temperature=self._temperature,
        )

        if response.finish_reason == "error":
            error = response.raw_response.get("error") or "LLM request failed"
            raise QuestionGenerationError(str(error))

        data = client.extract_json(response.content)
        if data:
            try:
                candidate = AgentTurnCandidate.model_validate(data)
                logger.info(
                    f"Generated question theme={candidate.theme!r} probing={candidate.is_probing} "
                    f"end={candidate.is_end_of_interview}"
                )
                return candidate
            except ValidationError as e:
                logger.warning(f"Generated question had an unexpected shape: {e}")

        logger.warning("Question generation returned no usable JSON; using the plan instead")
        return self._fallback_candidate(plan, transcript, language)

    def _fallback_candidate(
        self,
        plan: ResearchPlan,
        transcript: Sequence[TranscriptTurn],
        language: str,
    ) -> AgentTurnCandidate:
        """Next planned question, or a generic closing once the plan is exhausted."""
        planned = next_planned_question(plan, transcript)
        if planned is not None:
            return AgentTurnCandidate(
                next_question_text=planned.question_text,
                theme=planned.theme,
                is_probing=False,
                is_end_of_interview=False,
            )
        return AgentTurnCandidate(
            next_question_text=(
                "Thank you for your responses. "
                f"Is there anything else you'd like to share in {language_name(language)}?"
            ),
            theme="General Feedback",
            is_probing=False,
            is_end_of_interview=False,
        )
