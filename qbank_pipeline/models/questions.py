"""Models for candidate and stored questions, gate results and audit findings."""

import re
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from .enums import DefectReason, FailureKind, GateVerdict, QuestionStatus

OPTION_LETTERS = ("A", "B", "C", "D", "E")
MANDATORY_LETTERS = ("A", "B", "C", "D")

# "C", "c)", "(C)", "Letra C", "Alternativa: C"
ANSWER_LETTER_PATTERN = re.compile(
    r"^(?:(?:LETRA|ALTERNATIVA|OP[CÇ][AÃ]O)\s*[:\-]?\s*)?[(\[]?\s*([A-E])\s*[)\].:]?$"
)


def parse_answer_letter(value: Any) -> str | None:
    """Pull the A-E letter out of an answer such as "Letra C" or "(c)"."""
    if value is None:
        return None
    match = ANSWER_LETTER_PATTERN.match(str(value).strip().upper())
    return match.group(1) if match else None


class CandidateQuestion(BaseModel):
    """A question produced by a structuring strategy, not yet validated.

    Accepts both the English keys used by the current prompts and the
    Portuguese keys produced by older extraction prompts.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    number: int | None = Field(
        None,
        validation_alias=AliasChoices("number", "numero", "question_number"),
        description="Ordinal number as found in the source",
    )
    stem: str = Field(
        "",
        validation_alias=AliasChoices("stem", "texto_questao", "question_text", "enunciado"),
        description="Question statement",
    )
    option_a: str = Field("", validation_alias=AliasChoices("option_a", "alternativa_a"))
    option_b: str = Field("", validation_alias=AliasChoices("option_b", "alternativa_b"))
    option_c: str = Field("", validation_alias=AliasChoices("option_c", "alternativa_c"))
    option_d: str = Field("", validation_alias=AliasChoices("option_d", "alternativa_d"))
    option_e: str | None = Field(None, validation_alias=AliasChoices("option_e", "alternativa_e"))
    correct_option: str | None = Field(
        None,
        validation_alias=AliasChoices("correct_option", "gabarito", "resposta", "correct_answer"),
        description="Claimed correct alternative letter",
    )
    area: str | None = Field(None, description="Subject area")
    subarea: str | None = Field(None, description="Subject sub-area")
    topic: str | None = Field(None, description="Specific topic")
    explanation: str | None = Field(
        None,
        validation_alias=AliasChoices("explanation", "explicacao", "comentario"),
        description="Commented answer",
    )
    strategy: str | None = Field(None, description="Structuring strategy that produced it")
    answer_key_normalized: bool = Field(
        False, description="correct_option was replaced by the default key"
    )

    @model_validator(mode="before")
    @classmethod
    def _flatten_options(cls, data: Any) -> Any:
        # {"options": {"a": ..., "b": ...}} or {"options": [...]}
        if not isinstance(data, dict) or "options" not in data:
            return data
        data = dict(data)
        options = data.pop("options")
        if isinstance(options, dict):
            items = {str(k).strip().lower(): v for k, v in options.items()}
        elif isinstance(options, list):
            items = dict(zip("abcde", options))
        else:
            return data
        for letter, value in items.items():
            data.setdefault(f"option_{letter}", value)
        return data

    @field_validator("number", mode="before")
    @classmethod
    def _coerce_number(cls, value: Any) -> int | None:
        if value is None or isinstance(value, int):
            return value
        match = re.search(r"\d+", str(value))
        return int(match.group()) if match else None

    @field_validator("stem", "option_a", "option_b", "option_c", "option_d", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value).strip()

    @field_validator("option_e", "area", "subarea", "topic", "explanation", mode="before")
    @classmethod
    def _coerce_optional_text(cls, value: Any) -> str | None:
        if value is None:
            return None
        text = str(value).strip()
        if not text or text.lower() in ("null", "none"):
            return None
        return text

    @field_validator("correct_option", mode="before")
    @classmethod
    def _coerce_letter(cls, value: Any) -> str | None:
        if value is None:
            return None
        text = str(value).strip().upper()
        if not text:
            return None
        return parse_answer_letter(text) or text

    @property
    def options(self) -> list[str | None]:
        """Alternatives in letter order (A-E)."""
        return [self.option_a, self.option_b, self.option_c, self.option_d, self.option_e]

    def option_for(self, letter: str) -> str | None:
        """Get the alternative text for a letter, or None if out of range."""
        letter = letter.upper()
        if letter not in OPTION_LETTERS:
            return None
        return self.options[OPTION_LETTERS.index(letter)]

    def to_row(self) -> dict:
        """Fields written to the questions table."""
        return {
            "number_in_exam": self.number,
            "stem": self.stem,
            "option_a": self.option_a,
            "option_b": self.option_b,
            "option_c": self.option_c,
            "option_d": self.option_d,
            "option_e": self.option_e,
            "correct_option": self.correct_option,
            "explanation": self.explanation,
            "area": self.area,
            "subarea": self.subarea,
            "topic": self.topic,
            "answer_key_normalized": self.answer_key_normalized,
        }


class QuestionRecord(BaseModel):
    """Read model of a persisted question row."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    document_id: int
    number_in_exam: int | None = None
    stem: str = ""
    option_a: str | None = None
    option_b: str | None = None
    option_c: str | None = None
    option_d: str | None = None
    option_e: str | None = None
    correct_option: str
    explanation: str | None = None
    area: str | None = None
    subarea: str | None = None
    topic: str | None = None
    quality_flag: str | None = None
    answer_key_normalized: bool = False

    @property
    def options(self) -> list[str | None]:
        """Alternatives in letter order (A-E)."""
        return [self.option_a, self.option_b, self.option_c, self.option_d, self.option_e]


class GateResult(BaseModel):
    """Quality gate classification of one candidate."""

    verdict: GateVerdict
    reason: DefectReason | None = None
    detail: str | None = None
    candidate: CandidateQuestion
    answer_key_normalized: bool = False

    @property
    def accepted(self) -> bool:
        return self.verdict == GateVerdict.ACCEPTED


class RejectionRecord(BaseModel):
    """Emitted for every candidate rejected by the quality gate."""

    run_id: str = Field(..., description="Run that produced the candidate")
    document_title: str = Field(..., description="Source document title")
    number: int | None = Field(None, description="Candidate ordinal number")
    stem_preview: str = Field("", description="First characters of the stem")
    reason: DefectReason = Field(..., description="Rejection reason code")
    detail: str | None = Field(None, description="Extra information about the defect")
    strategy: str | None = Field(None, description="Structuring strategy used")
    kind: FailureKind = Field(
        FailureKind.VALIDATION_REJECTION, description="Failure class from the error taxonomy"
    )


class AuditFinding(BaseModel):
    """A defect detected in an already persisted question."""

    question_id: int
    document_id: int
    reason: DefectReason
    detail: str | None = None
    status: QuestionStatus = QuestionStatus.FLAGGED


class RepairOutcome(BaseModel):
    """Result of an AutoFixer attempt for one finding."""

    question_id: int
    reason: DefectReason
    status: QuestionStatus
    error: str | None = None
    fields_updated: list[str] = Field(default_factory=list)


class AnswerKeyOutcome(BaseModel):
    """Result of asking the LLM for the key of a question stored with a default key."""

    question_id: int
    previous_option: str
    resolved_option: str | None = None
    error: str | None = None

    @property
    def resolved(self) -> bool:
        return self.resolved_option is not None

    @property
    def changed(self) -> bool:
        return self.resolved and self.resolved_option != self.previous_option
