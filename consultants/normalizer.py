"""Turn raw agent text into canonical Responses.

Parsing has three explicit outcomes: STRUCTURED (a JSON object with a
``response.summary``), FREE_TEXT (anything else that is non-empty) and
UNPARSEABLE (empty). Failed dispatches and unparseable output become
zero-confidence error Responses.
"""

import json
import logging
import math
import re
from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, Field, ValidationError, field_validator

from consultants.dispatcher import DispatchResult
from consultants.errors import redact
from consultants.models import (
    SUMMARY_MAX_CHARS,
    Confidence,
    DebateInfo,
    Metadata,
    Response,
    ResponseContent,
)

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.DOTALL)

FREE_TEXT_CAVEAT = "Unstructured output from consultant"
FREE_TEXT_UNCERTAINTY = "Non-standard response format"
NO_CONFIDENCE_REASONING = "Confidence not provided by consultant"
ERROR_SUMMARY = "ERROR: Consultation failed"


class ParseOutcome(str, Enum):
    STRUCTURED = "structured"
    FREE_TEXT = "free_text"
    UNPARSEABLE = "unparseable"


def coerce_confidence(value: object) -> int:
    """Integer confidence clamped to 1..10. Accepts 8, 8.4, "8" and "8/10"."""
    if isinstance(value, bool):
        raise ValueError("confidence score must be a number")
    if isinstance(value, str):
        match = re.match(r"\s*(-?\d+(?:\.\d+)?)", value)
        if not match:
            raise ValueError(f"confidence score is not numeric: {value!r}")
        value = float(match.group(1))
    if not isinstance(value, (int, float)) or math.isnan(value):
        raise ValueError(f"confidence score is not numeric: {value!r}")
    return max(1, min(10, int(round(value))))


class AgentConfidence(BaseModel):
    score: int = 5
    reasoning: str = NO_CONFIDENCE_REASONING
    uncertainty_factors: list[str] = Field(default_factory=list)

    @field_validator("score", mode="before")
    @classmethod
    def _clamp(cls, value: object) -> int:
        return 5 if value is None else coerce_confidence(value)

    @field_validator("uncertainty_factors", mode="before")
    @classmethod
    def _listify(cls, value: object) -> object:
        if value is None:
            return []
        return [value] if isinstance(value, str) else value


class AgentOutput(BaseModel):
    """What an agent is asked to emit: ``{response, confidence, debate?}``."""

    response: ResponseContent
    confidence: AgentConfidence = Field(default_factory=AgentConfidence)
    debate: DebateInfo | None = None

    @field_validator("confidence", mode="before")
    @classmethod
    def _bare_score(cls, value: object) -> object:
        # "confidence": 8 is read as the score
        if value is None:
            return {}
        if isinstance(value, (int, float, str)) and not isinstance(value, bool):
            return {"score": value}
        return value


@dataclass
class Parsed:
    outcome: ParseOutcome
    output: AgentOutput | None = None
    text: str = ""


def _json_candidates(text: str) -> list[str]:
    candidates = [text]
    fenced = _FENCE_RE.search(text)
    if fenced:
        candidates.append(fenced.group(1).strip())
    first, last = text.find("{"), text.rfind("}")
    if 0 <= first < last:
        candidates.append(text[first:last + 1])
    return candidates


def extract_json_object(text: str) -> dict | None:
    """First JSON object found as-is, inside a code fence, or between the outer braces."""
    for candidate in _json_candidates(text.strip()):
        try:
            data = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(data, dict):
            return data
    return None


def _drop_invalid_fields(data: dict, errors: list) -> bool:
    """Remove the optional fields named in validation errors. False if a required one failed."""
    dropped = False
    for error in errors:
        loc = error["loc"]
        if not loc or loc[:2] in (("response",), ("response", "summary")):
            return False
        parent, key = (data, loc[0]) if len(loc) == 1 or loc[0] == "debate" else (data.get(loc[0]), loc[1])
        if not isinstance(parent, dict):
            parent, key = data, loc[0]
        if isinstance(parent, dict) and key in parent:
            del parent[key]
            dropped = True
    return dropped


def _validate_output(data: dict) -> AgentOutput | None:
    """Validate agent JSON, keeping every field that is valid when some optional ones are not."""
    try:
        return AgentOutput.model_validate(data)
    except ValidationError as exc:
        errors = exc.errors()
    logger.debug("Structured output failed validation: %s", errors[:3])

    salvaged = json.loads(json.dumps(data))
    if not _drop_invalid_fields(salvaged, errors):
        return None
    try:
        return AgentOutput.model_validate(salvaged)
    except ValidationError as exc:
        logger.debug("Salvaged output still invalid: %s", exc.errors()[:3])
        return None


def parse(text: str | None) -> Parsed:
    stripped = (text or "").strip()
    if not stripped:
        return Parsed(ParseOutcome.UNPARSEABLE)

    data = extract_json_object(stripped)
    response_block = data.get("response") if data else None
    if isinstance(response_block, dict) and response_block.get("summary"):
        output = _validate_output(data)
        if output is not None:
            return Parsed(ParseOutcome.STRUCTURED, output, stripped)

    return Parsed(ParseOutcome.FREE_TEXT, text=stripped)


def error_response(
    consultant: str,
    model: str,
    persona: str,
    reason: str,
    latency_ms: int = 0,
) -> Response:
    reason = redact(reason)
    return Response(
        consultant=consultant,
        model=model,
        persona=persona,
        response=ResponseContent(summary=ERROR_SUMMARY, detailed=reason, approach="error"),
        confidence=Confidence(
            score=0,
            reasoning="Consultation failed",
            uncertainty_factors=["Execution error"],
        ),
        metadata=Metadata(latency_ms=latency_ms, model_version=model, error=reason),
    )


def normalize(
    text: str | None,
    consultant: str,
    model: str,
    persona: str,
    latency_ms: int = 0,
    tokens_used: int | None = None,
) -> Response:
    parsed = parse(text)
    metadata = Metadata(tokens_used=tokens_used, latency_ms=latency_ms, model_version=model)

    if parsed.outcome is ParseOutcome.UNPARSEABLE:
        return error_response(consultant, model, persona, "Empty response from consultant", latency_ms)

    if parsed.outcome is ParseOutcome.STRUCTURED:
        out = parsed.output
        return Response(
            consultant=consultant,
            model=model,
            persona=persona,
            response=out.response,
            confidence=Confidence(**out.confidence.model_dump()),
            metadata=metadata,
            debate=out.debate,
        )

    logger.info("%s returned unstructured output, wrapping as free text", consultant)
    return Response(
        consultant=consultant,
        model=model,
        persona=persona,
        response=ResponseContent(
            summary=parsed.text[:SUMMARY_MAX_CHARS],
            detailed=parsed.text,
            approach="unknown",
            caveats=[FREE_TEXT_CAVEAT],
        ),
        confidence=Confidence(
            score=5,
            reasoning=NO_CONFIDENCE_REASONING,
            uncertainty_factors=[FREE_TEXT_UNCERTAINTY],
        ),
        metadata=metadata,
    )


def normalize_dispatch(result: DispatchResult, consultant: str, model: str, persona: str) -> Response:
    if not result.ok:
        reason = f"{result.classification.value}: {result.error or 'unknown error'}"
        return error_response(consultant, model, persona, reason, result.latency_ms)
    return normalize(result.text, consultant, model, persona, result.latency_ms, result.tokens_used)
