"""
Pydantic schemas for the interview module.

Defines the research plan, transcript turns, generated question candidates,
session stages and the result handed to the caller.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def _now_utc() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


LanguageCode = Literal["en-US", "en-IN", "hi-IN"]

LANGUAGE_OPTIONS: dict[str, str] = {
    "en-US": "English (US)",
    "en-IN": "English (India)",
    "hi-IN": "Hindi (India)",
}

DEFAULT_THEME = "General Questions"
DEFAULT_QUESTION = "What are your initial thoughts regarding this topic?"


def language_name(code: str) -> str:
    """Human-readable name for a language code (falls back to the code)."""
    return LANGUAGE_OPTIONS.get(code, code)


class _CamelModel(BaseModel):
    """Accepts both camelCase (wire format) and snake_case field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Speaker(str, Enum):
    """Who produced a transcript turn."""

    AGENT = "agent"
    PARTICIPANT = "participant"


class InterviewStage(str, Enum):
    """Stages of the interview session."""

    INITIAL = "initial"
    PROCESSING = "processing"
    ASKING = "asking"
    LISTENING = "listening"
    CONCLUDING = "concluding"
    FINISHED = "finished"


class SessionOutcome(str, Enum):
    """How a session ended."""

    COMPLETED = "completed"
    COMPLETED_EARLY = "completed_early"
    ABANDONED = "abandoned"


class CaptureStatus(str, Enum):
    """Status of participant speech capture, uniform across tiers."""

    IDLE = "idle"
    RECORDING = "recording"
    TRANSCRIBING = "transcribing"
    ERROR = "error"
    READY_TO_SUBMIT = "readyToSubmit"


class CaptureTier(str, Enum):
    """Live streaming transcription (A) or record-then-upload (B)."""

    LIVE = "live"
    RECORDED = "recorded"


class TranscriptTurn(_CamelModel):
    """One utterance recorded in the transcript. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    speaker: Speaker = Field(..., description="Who said it")
    text: str = Field(..., description="What was said")
    theme: str | None = Field(default=None, description="Plan theme the turn belongs to")
    is_probing: bool | None = Field(
        default=None,
        description="For agent turns, whether the question is a dynamic follow-up",
    )
    timestamp: datetime = Field(default_factory=_now_utc, description="When the turn was appended")


class PlannedQuestion(BaseModel):
    """A question taken from the research plan."""

    model_config = ConfigDict(frozen=True)

    theme: str
    question_text: str


class ThemeQuestions(_CamelModel):
    """One theme of the questionnaire with its ordered questions."""

    model_config = ConfigDict(frozen=True)

    theme: str = Field(default="Untitled Theme", description="Theme name")
    questions: list[str] = Field(default_factory=list, description="Questions in asking order")

    @field_validator("theme", mode="before")
    @classmethod
    def _clean_theme(cls, value: Any) -> str:
        text = str(value).strip() if value is not None else ""
        return text or "Untitled Theme"

    @field_validator("questions", mode="before")
    @classmethod
    def _clean_questions(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        return [str(q).strip() for q in value if q is not None and str(q).strip()]


class ResearchPlan(_CamelModel):
    """
    Research plan supplied at session start; immutable for the session.

    Only ``key_questionnaire`` drives the interview. The remaining fields are
    carried so a plan produced by the planning step round-trips unchanged.
    """

    model_config = ConfigDict(frozen=True)

    key_questionnaire: list[ThemeQuestions] = Field(
        default_factory=list,
        validate_default=True,
        description="Themes in declared order",
    )
    research_methods: list[str] = Field(default_factory=list)
    guardrails_probes: list[str] = Field(default_factory=list)
    estimated_participants: int | None = Field(default=None)
    participant_recruitment_criteria: list[str] = Field(default_factory=list)
    timeline_suggestion: str | None = Field(default=None)
    ethical_considerations: list[str] = Field(default_factory=list)

    @field_validator(
        "research_methods",
        "guardrails_probes",
        "participant_recruitment_criteria",
        "ethical_considerations",
        mode="before",
    )
    @classmethod
    def _clean_string_list(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        return [str(v).strip() for v in value if v is not None and str(v).strip()]

    @field_validator("key_questionnaire", mode="after")
    @classmethod
    def _ensure_questionnaire(cls, value: list[ThemeQuestions]) -> list[ThemeQuestions]:
        kept = [item for item in value if item.questions]
        if not kept:
            kept = [ThemeQuestions(theme=DEFAULT_THEME, questions=[DEFAULT_QUESTION])]
        return kept

    @classmethod
    def from_questions(cls, questionnaire: dict[str, list[str]]) -> "ResearchPlan":
        """Build a plan from an ordered ``{theme: [questions]}`` mapping."""
        return cls(
            key_questionnaire=[
                ThemeQuestions(theme=theme, questions=questions)
                for theme, questions in questionnaire.items()
            ]
        )

    @classmethod
    def from_file(cls, path: str | Path) -> "ResearchPlan":
        """Load a plan from a JSON file (camelCase or snake_case keys)."""
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls.model_validate(raw)

    @property
    def total_questions(self) -> int:
        return sum(len(item.questions) for item in self.key_questionnaire)


class AgentTurnCandidate(_CamelModel):
    """The generation service's proposed next turn, before repair."""

    model_config = ConfigDict(frozen=True)

    next_question_text: str = Field(default="", description="Question or remark to speak")
    theme: str = Field(default="", description="Plan theme, 'Probing', or 'Conclusion'")
    is_probing: bool = Field(default=False, description="Dynamic follow-up to the last answer")
    is_end_of_interview: bool = Field(default=False, description="This is the final turn")

    @field_validator("next_question_text", "theme", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value)

    @field_validator("is_probing", "is_end_of_interview", mode="before")
    @classmethod
    def _loose_bool(cls, value: Any) -> bool:
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "y"}
        return bool(value)


class InterviewResult(BaseModel):
    """What a finished session hands back to its caller."""

    transcript: list[TranscriptTurn] = Field(default_factory=list)
    language: str = Field(default="en-US")
    outcome: SessionOutcome = Field(...)
    started_at: datetime | None = Field(default=None)
    completed_at: datetime = Field(default_factory=_now_utc)

    @property
    def questions_asked(self) -> int:
        return sum(1 for turn in self.transcript if turn.speaker == Speaker.AGENT)
