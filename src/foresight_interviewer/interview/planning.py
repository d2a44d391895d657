"""
Research plan bookkeeping and candidate repair.

Finds the next unasked planned question and patches whatever the question
generation service proposes so the session never speaks an empty string and
always concludes once the plan is exhausted.
"""

import logging
from collections.abc import Iterable

from foresight_interviewer.interview.schemas import (
    AgentTurnCandidate,
    PlannedQuestion,
    ResearchPlan,
    TranscriptTurn,
)
from foresight_interviewer.interview.transcript import asked_questions

logger = logging.getLogger(__name__)

CONCLUSION_THEME = "Conclusion"

PLAN_COMPLETE_REMARK = (
    "Thank you for your time today. That's all the questions I have. "
    "Is there anything else you'd like to add or share before we finish?"
)
CLOSING_REMARK = "Thank you for your time today. That's all the questions I have."
FILLER_QUESTION = "I'm ready for your response."
EMERGENCY_REMARK = "An error occurred. We'll end the interview here. Thanks for your time."
NO_FURTHER_COMMENT = "No further comments."

# Substring of the stock "anything else" prompt that counts as a generic closing.
GENERIC_CLOSING_MARKER = "Is there anything else you'd like to share"


def next_planned_question(
    plan: ResearchPlan,
    turns: Iterable[TranscriptTurn],
) -> PlannedQuestion | None:
    """
    First planned question whose exact text is not yet an agent turn.

    Themes are scanned in declared order, and questions in declared order
    within each theme.

    Args:
        plan: The session's research plan.
        turns: Transcript so far.

    Returns:
        The next planned question, or None when the plan is exhausted.
    """
    asked = asked_questions(turns)
    for item in plan.key_questionnaire:
        for question in item.questions:
            if question not in asked:
                return PlannedQuestion(theme=item.theme, question_text=question)
    return None


def is_generic_closing(text: str) -> bool:
    return GENERIC_CLOSING_MARKER in text


def repair_candidate(
    candidate: AgentTurnCandidate,
    next_planned: PlannedQuestion | None,
) -> AgentTurnCandidate:
    """
    Validate and patch a generated candidate.

    Rules, in order:
    - plan exhausted: force a conclusion, replacing empty or generic text
      with the plan-complete remark;
    - end requested with empty text: demote to the next planned question;
    - any other empty text: use the filler question.

    Args:
        candidate: Candidate returned by the generation service.
        next_planned: Result of :func:`next_planned_question` for the same transcript.

    Returns:
        A candidate that is safe to append and speak.
    """
    text = candidate.next_question_text
    is_empty = not text.strip()

    if next_planned is None:
        if is_empty or is_generic_closing(text):
            text = PLAN_COMPLETE_REMARK
        repaired = candidate.model_copy(
            update={
                "next_question_text": text,
                "theme": CONCLUSION_THEME,
                "is_probing": False,
                "is_end_of_interview": True,
            }
        )
        if repaired != candidate:
            logger.info("Plan exhausted; forcing conclusion")
        return repaired

    if candidate.is_end_of_interview and is_empty:
        logger.info("End requested with empty text; continuing with the next planned question")
        return AgentTurnCandidate(
            next_question_text=next_planned.question_text,
            theme=next_planned.theme,
            is_probing=False,
            is_end_of_interview=False,
        )

    if is_empty:
        logger.info("Empty question text; substituting filler")
        return candidate.model_copy(update={"next_question_text": FILLER_QUESTION})

    return candidate


def emergency_candidate() -> AgentTurnCandidate:
    """Fixed closing used when the generation service fails."""
    return AgentTurnCandidate(
        next_question_text=EMERGENCY_REMARK,
        theme=CONCLUSION_THEME,
        is_probing=False,
        is_end_of_interview=True,
    )
