"""Data model for a consultation: the Response JSON contract and session records.

The Response family is pydantic so agent output can be validated strictly;
session records are plain dataclasses.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

SUMMARY_MAX_CHARS = 500


class Category(str, Enum):
    CODE_REVIEW = "CODE_REVIEW"
    BUG_DEBUG = "BUG_DEBUG"
    ARCHITECTURE = "ARCHITECTURE"
    ALGORITHM = "ALGORITHM"
    SECURITY = "SECURITY"
    QUICK_SYNTAX = "QUICK_SYNTAX"
    DATABASE = "DATABASE"
    API_DESIGN = "API_DESIGN"
    TESTING = "TESTING"
    GENERAL = "GENERAL"

    @classmethod
    def parse(cls, value: "str | Category | None") -> "Category":
        """Lenient lookup: "quick-syntax", "Quick Syntax" and None all resolve."""
        if isinstance(value, Category):
            return value
        if not value:
            return cls.GENERAL
        key = str(value).strip().upper().replace("-", "_").replace(" ", "_")
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"Unknown category: {value}") from None


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _str_list(value: object) -> object:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return value


class CodeSnippet(BaseModel):
    language: str = ""
    code: str = ""
    description: str = ""

    @model_validator(mode="before")
    @classmethod
    def _from_string(cls, value: object) -> object:
        return {"code": value} if isinstance(value, str) else value


class Alternative(BaseModel):
    name: str
    reason_not_chosen: str = ""

    @model_validator(mode="before")
    @classmethod
    def _from_string(cls, value: object) -> object:
        return {"name": value} if isinstance(value, str) else value


class ResponseContent(BaseModel):
    summary: str = ""
    detailed: str = ""
    approach: str = "unknown"
    pros: list[str] = Field(default_factory=list)
    cons: list[str] = Field(default_factory=list)
    alternatives: list[Alternative] = Field(default_factory=list)
    caveats: list[str] = Field(default_factory=list)
    code_snippets: list[CodeSnippet] = Field(default_factory=list)

    @field_validator("summary", mode="before")
    @classmethod
    def _truncate_summary(cls, value: object) -> object:
        if isinstance(value, str) and len(value) > SUMMARY_MAX_CHARS:
            return value[:SUMMARY_MAX_CHARS]
        return value

    @field_validator("approach", mode="before")
    @classmethod
    def _default_approach(cls, value: object) -> object:
        if value is None or (isinstance(value, str) and not value.strip()):
            return "unknown"
        return value

    @field_validator("pros", "cons", "caveats", mode="before")
    @classmethod
    def _listify(cls, value: object) -> object:
        return _str_list(value)


class Confidence(BaseModel):
    score: int = Field(ge=0, le=10)
    reasoning: str = ""
    uncertainty_factors: list[str] = Field(default_factory=list)

    @field_validator("uncertainty_factors", mode="before")
    @classmethod
    def _listify(cls, value: object) -> object:
        return _str_list(value)


class Metadata(BaseModel):
    tokens_used: int | None = None
    latency_ms: int = 0
    model_version: str = ""
    timestamp: str = Field(default_factory=lambda: utc_now().isoformat())
    error: str | None = None


class PeerCritique(BaseModel):
    target: str
    critique: str
    severity: Literal["minor", "moderate", "major"] = "moderate"

    @field_validator("severity", mode="before")
    @classmethod
    def _normalize_severity(cls, value: object) -> object:
        if isinstance(value, str):
            value = value.strip().lower()
            if value not in ("minor", "moderate", "major"):
                return "moderate"
        return value


class Incorporation(BaseModel):
    source: str
    idea: str


class DebateInfo(BaseModel):
    round: int = 0
    position_changed: bool = False
    critiques: list[PeerCritique] = Field(default_factory=list)
    incorporated_from: list[Incorporation] = Field(default_factory=list)


class JudgeInfo(BaseModel):
    overconfidence_detected: bool
    adjusted_confidence: int = Field(ge=1, le=10)
    red_flags: list[str] = Field(default_factory=list)
    recommendation: Literal["keep", "adjust_down", "flag_for_review"] = "keep"
    source: Literal["heuristic", "llm"] = "heuristic"


class CacheMetadata(BaseModel):
    fingerprint: str
    cached_at: str
    from_cache: bool = False


class ReflectionInfo(BaseModel):
    cycles_completed: int
    history: list[dict] = Field(default_factory=list)


class Response(BaseModel):
    """Canonical answer of one consultant in one round."""

    consultant: str
    model: str
    persona: str = ""
    response: ResponseContent
    confidence: Confidence
    metadata: Metadata = Field(default_factory=Metadata)
    debate: DebateInfo | None = None
    judge: JudgeInfo | None = None
    cache_metadata: CacheMetadata | None = None
    reflection: ReflectionInfo | None = None

    @property
    def is_error(self) -> bool:
        return self.confidence.score == 0

    @property
    def approach_key(self) -> str:
        return self.response.approach.strip().casefold()

    def effective_confidence(self, use_adjusted: bool = True) -> int:
        if use_adjusted and self.judge is not None and not self.is_error:
            return self.judge.adjusted_confidence
        return self.confidence.score


@dataclass
class Question:
    text: str
    source: str = "cli"                 # "cli" or file path
    category: Category | None = None
    context_path: Path | None = None

    def context_text(self) -> str:
        if self.context_path is None or not self.context_path.is_file():
            return ""
        return self.context_path.read_text(encoding="utf-8", errors="replace")

    def context_bytes(self) -> bytes | None:
        if self.context_path is None or not self.context_path.is_file():
            return None
        return self.context_path.read_bytes()


@dataclass
class DebateRound:
    number: int
    responses: list[Response] = field(default_factory=list)
    position_changed: dict[str, bool] = field(default_factory=dict)

    @property
    def position_changes(self) -> int:
        return sum(1 for changed in self.position_changed.values() if changed)

    @property
    def total_critiques(self) -> int:
        return sum(len(r.debate.critiques) for r in self.responses if r.debate)

    @property
    def stability(self) -> str:
        if self.position_changes == 0:
            return "stable"
        if self.position_changes <= 1:
            return "mostly_stable"
        return "volatile"
