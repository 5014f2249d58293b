"""Confidence-weighted voting and consensus scoring over a panel's final answers.

Approach labels are compared case-insensitively. Failed agents (confidence 0)
count toward the panel size in the consensus score but never form the
plurality. They carry no weight and stay out of the confidence spread.
"""

import logging
import statistics
from collections import Counter
from dataclasses import dataclass, field

from consultants.models import Response

logger = logging.getLogger(__name__)

HIGH_VARIANCE_STDDEV = 2.0

_LEVELS = ((100, "unanimous"), (75, "high"), (50, "medium"), (25, "low"))


def consensus_level(score: int) -> str:
    for threshold, level in _LEVELS:
        if score >= threshold:
            return level
    return "none"


def consensus_score(responses: list[Response]) -> int:
    """floor(100 * plurality count / total), total being every Response."""
    labels = [r.approach_key for r in responses if not r.is_error]
    if not labels:
        return 0
    most_common = Counter(labels).most_common(1)[0][1]
    return most_common * 100 // len(responses)


@dataclass
class WeightedRecommendation:
    approach: str | None
    weighted_score: int
    supporting: list[str] = field(default_factory=list)
    dissenting: list[str] = field(default_factory=list)
    neutral: list[str] = field(default_factory=list)


@dataclass
class ConfidenceInterval:
    mean: float
    stddev: float
    low: float
    high: float

    @property
    def high_variance(self) -> bool:
        return self.stddev > HIGH_VARIANCE_STDDEV


@dataclass
class ConsensusReport:
    consensus_score: int
    consensus_level: str
    recommendation: WeightedRecommendation
    confidence_interval: ConfidenceInterval
    average_confidence: float
    final_weighted_score: float

    def to_dict(self) -> dict:
        ci = self.confidence_interval
        rec = self.recommendation
        return {
            "voting_report": {
                "consensus": {"score": self.consensus_score, "level": self.consensus_level},
                "average_confidence": self.average_confidence,
                "confidence_interval": {
                    "mean": ci.mean,
                    "stddev": ci.stddev,
                    "low": ci.low,
                    "high": ci.high,
                    "high_variance": ci.high_variance,
                },
                "recommendation": {
                    "recommended_approach": rec.approach,
                    "total_weight": rec.weighted_score,
                    "supporters": rec.supporting,
                    "dissenters": rec.dissenting,
                    "neutral": rec.neutral,
                },
                "final_weighted_score": self.final_weighted_score,
            }
        }


def weighted_recommendation(responses: list[Response], use_adjusted: bool = True) -> WeightedRecommendation:
    weights: dict[str, int] = {}
    display: dict[str, str] = {}
    for r in responses:
        if r.is_error:
            continue
        key = r.approach_key
        weights[key] = weights.get(key, 0) + r.effective_confidence(use_adjusted)
        display.setdefault(key, r.response.approach.strip())

    neutral = [r.consultant for r in responses if r.is_error]
    if not weights:
        return WeightedRecommendation(approach=None, weighted_score=0, neutral=neutral)

    # max() keeps the first key on ties, i.e. the first label seen
    best = max(weights, key=lambda k: weights[k])
    supporting = [r.consultant for r in responses if not r.is_error and r.approach_key == best]
    dissenting = [r.consultant for r in responses if not r.is_error and r.approach_key != best]
    return WeightedRecommendation(
        approach=display[best],
        weighted_score=weights[best],
        supporting=supporting,
        dissenting=dissenting,
        neutral=neutral,
    )


def final_weighted_score(responses: list[Response], winner: str | None, use_adjusted: bool = True) -> float:
    winner_key = winner.strip().casefold() if winner else None
    total = 0
    weighted = 0
    for r in responses:
        if r.is_error:
            continue
        conf = r.effective_confidence(use_adjusted)
        total += conf
        weighted += conf * 10 if r.approach_key == winner_key else conf * 2
    if total == 0:
        return 5.0
    return round(max(1.0, min(10.0, weighted / total)), 2)


def confidence_interval(scores: list[int]) -> ConfidenceInterval:
    if not scores:
        return ConfidenceInterval(mean=0.0, stddev=0.0, low=0.0, high=0.0)
    mean = statistics.fmean(scores)
    stddev = statistics.stdev(scores) if len(scores) > 1 else 0.0
    return ConfidenceInterval(
        mean=round(mean, 2),
        stddev=round(stddev, 2),
        low=round(max(1.0, mean - stddev), 2),
        high=round(min(10.0, mean + stddev), 2),
    )


def build_report(responses: list[Response], use_adjusted: bool = True) -> ConsensusReport:
    score = consensus_score(responses)
    recommendation = weighted_recommendation(responses, use_adjusted)
    scores = [r.effective_confidence(use_adjusted) for r in responses if not r.is_error]
    interval = confidence_interval(scores)
    report = ConsensusReport(
        consensus_score=score,
        consensus_level=consensus_level(score),
        recommendation=recommendation,
        confidence_interval=interval,
        average_confidence=interval.mean,
        final_weighted_score=final_weighted_score(responses, recommendation.approach, use_adjusted),
    )
    logger.info(
        "Consensus %d%% (%s), recommended: %s, final score %.2f",
        report.consensus_score, report.consensus_level,
        recommendation.approach or "<none>", report.final_weighted_score,
    )
    if interval.high_variance:
        logger.info("Confidence spread is high (stddev %.2f)", interval.stddev)
    return report
