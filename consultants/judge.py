"""Overconfidence judge: heuristic checks with an optional LLM meta-evaluator.

The judge never touches ``confidence.score``; it attaches a ``judge`` block
carrying the adjusted confidence that voting may use instead.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field

from config.config_loader import JudgeConfig, PromptsConfig
from consultants.agents.base import Agent
from consultants.dispatcher import Dispatcher
from consultants.models import JudgeInfo, Response
from consultants.normalizer import coerce_confidence, extract_json_object
from consultants.panel import gather_until_cancelled
from consultants.prompts import judge_prompt

logger = logging.getLogger(__name__)

_HEDGING_RE = re.compile(r"\b(?:might|could|possibly|perhaps|maybe|likely|probably|seems|appears|suggest)")
_CERTAINTY_RE = re.compile(r"\b(?:definitely|certainly|absolutely|always|never|must|clearly|obviously|undoubtedly)")
_EDGE_CASE_RE = re.compile(r"edge case|corner case|exception|special case")
_ALTERNATIVES_RE = re.compile(r"alternative|another approach|other option|could also|alternatively")

_RECOMMENDATIONS = ("keep", "adjust_down", "flag_for_review")


@dataclass
class Evaluation:
    consultant: str
    original_confidence: int
    overconfidence_detected: bool
    adjusted_confidence: int
    red_flags: list[str] = field(default_factory=list)
    recommendation: str = "keep"
    hedging_count: int = 0
    certainty_count: int = 0
    edge_cases_mentioned: bool = False
    alternatives_acknowledged: bool = False
    source: str = "heuristic"

    @property
    def evidence_quality(self) -> str:
        if self.hedging_count > self.certainty_count:
            return "weak"
        if self.hedging_count == self.certainty_count:
            return "moderate"
        return "strong"

    def to_info(self) -> JudgeInfo:
        return JudgeInfo(
            overconfidence_detected=self.overconfidence_detected,
            adjusted_confidence=self.adjusted_confidence,
            red_flags=self.red_flags,
            recommendation=self.recommendation,
            source=self.source,
        )

    def to_dict(self) -> dict:
        return {
            "consultant": self.consultant,
            "original_confidence": self.original_confidence,
            "overconfidence_detected": self.overconfidence_detected,
            "adjusted_confidence": self.adjusted_confidence,
            "analysis": {
                "hedging_language_count": self.hedging_count,
                "certainty_claims_count": self.certainty_count,
                "evidence_quality": self.evidence_quality,
                "complexity_acknowledged": self.hedging_count > 0,
                "edge_cases_mentioned": self.edge_cases_mentioned,
                "alternatives_acknowledged": self.alternatives_acknowledged,
            },
            "red_flags": list(self.red_flags),
            "recommendation": self.recommendation,
            "source": self.source,
        }


def _recommend(original: int, adjusted: int, flagged: bool) -> str:
    if not flagged:
        return "keep"
    return "adjust_down" if original - adjusted >= 2 else "flag_for_review"


def heuristic_evaluate(response: Response, params: JudgeConfig | None = None) -> Evaluation:
    params = params or JudgeConfig()
    text = " ".join(
        (response.response.summary, response.response.detailed, response.confidence.reasoning)
    ).lower()
    hedging = len(_HEDGING_RE.findall(text))
    certainty = len(_CERTAINTY_RE.findall(text))
    edge_cases = bool(_EDGE_CASE_RE.search(text))
    alternatives = bool(_ALTERNATIVES_RE.search(text))

    score = response.confidence.score
    adjusted = score
    red_flags: list[str] = []

    if score >= params.high_confidence and hedging >= params.hedging_threshold:
        red_flags.append("High confidence with excessive hedging language")
        adjusted -= params.hedging_penalty
    if score >= params.high_confidence and not edge_cases:
        red_flags.append("High confidence without edge case consideration")
        adjusted -= params.edge_case_penalty
    if score >= params.very_high_confidence:
        red_flags.append("Extremely high confidence (9-10) is rarely justified")
        adjusted -= params.very_high_penalty

    adjusted = max(1, min(10, adjusted))
    flagged = bool(red_flags)
    return Evaluation(
        consultant=response.consultant,
        original_confidence=score,
        overconfidence_detected=flagged,
        adjusted_confidence=adjusted,
        red_flags=red_flags,
        recommendation=_recommend(score, adjusted, flagged),
        hedging_count=hedging,
        certainty_count=certainty,
        edge_cases_mentioned=edge_cases,
        alternatives_acknowledged=alternatives,
    )


def parse_llm_evaluation(text: str | None, response: Response, fallback: Evaluation) -> Evaluation | None:
    """Read the meta-evaluator's JSON verdict. None when it is unusable."""
    data = extract_json_object(text or "")
    if data is None or "adjusted_confidence" not in data:
        return None
    try:
        adjusted = coerce_confidence(data["adjusted_confidence"])
    except ValueError:
        return None
    flagged = data.get("overconfidence_detected") is True
    recommendation = str(data.get("recommendation", "")).strip().lower()
    if recommendation not in _RECOMMENDATIONS:
        recommendation = _recommend(response.confidence.score, adjusted, flagged)
    red_flags = data.get("red_flags") or []
    return Evaluation(
        consultant=response.consultant,
        original_confidence=response.confidence.score,
        overconfidence_detected=flagged,
        adjusted_confidence=adjusted,
        red_flags=[str(f) for f in red_flags] if isinstance(red_flags, list) else [str(red_flags)],
        recommendation=recommendation,
        hedging_count=fallback.hedging_count,
        certainty_count=fallback.certainty_count,
        edge_cases_mentioned=fallback.edge_cases_mentioned,
        alternatives_acknowledged=fallback.alternatives_acknowledged,
        source="llm",
    )


class Judge:
    def __init__(
        self,
        params: JudgeConfig,
        prompts: PromptsConfig | None = None,
        evaluator: Agent | None = None,
        dispatcher: Dispatcher | None = None,
        timeout_sec: float = 120.0,
    ) -> None:
        self.params = params
        self.prompts = prompts
        self.evaluator = evaluator if prompts is not None and dispatcher is not None else None
        self.dispatcher = dispatcher
        self.timeout_sec = timeout_sec

    async def evaluate(self, response: Response) -> Evaluation:
        heuristic = heuristic_evaluate(response, self.params)
        if self.evaluator is None:
            return heuristic

        result = await self.dispatcher.invoke(self.evaluator, judge_prompt(self.prompts, response), self.timeout_sec)
        if result.ok:
            evaluation = parse_llm_evaluation(result.text, response, heuristic)
            if evaluation is not None:
                return evaluation
            logger.warning("Judge verdict for %s was not valid JSON, using heuristic", response.consultant)
        else:
            logger.warning("Judge agent failed for %s, using heuristic: %s", response.consultant, result.error)
        return heuristic

    async def judge_all(
        self,
        responses: list[Response],
        cancel_event: asyncio.Event | None = None,
    ) -> tuple[list[Response], dict]:
        """Attach a judge block to every non-error Response.

        A cancel while the LLM evaluator is running falls back to the heuristic
        verdict for the unfinished evaluations.

        Returns:
            (judged responses in the same order, judge report dict)
        """
        targets = [r for r in responses if not r.is_error]
        finished = await gather_until_cancelled([self.evaluate(r) for r in targets], cancel_event)
        evaluations = [
            heuristic_evaluate(resp, self.params) if evaluation is None else evaluation
            for resp, evaluation in zip(targets, finished)
        ]
        by_name = {e.consultant: e for e in evaluations}

        judged = []
        for resp in responses:
            evaluation = by_name.get(resp.consultant)
            if evaluation is None or resp.is_error:
                judged.append(resp)
                continue
            if evaluation.overconfidence_detected:
                logger.info(
                    "Judge flagged %s: %d -> %d (%s)",
                    resp.consultant, evaluation.original_confidence,
                    evaluation.adjusted_confidence, evaluation.recommendation,
                )
            judged.append(resp.model_copy(update={"judge": evaluation.to_info()}))

        return judged, judge_report(evaluations)


def judge_report(evaluations: list[Evaluation]) -> dict:
    total = len(evaluations)
    overconfident = sum(1 for e in evaluations if e.overconfidence_detected)
    if overconfident == 0:
        reliability = "high"
    elif overconfident / total < 0.3:
        reliability = "medium"
    else:
        reliability = "low"
    return {
        "total_evaluated": total,
        "overconfidence_detected": overconfident,
        "evaluations": [e.to_dict() for e in evaluations],
        "summary": {"reliability": reliability, "action_required": overconfident > 0},
    }
