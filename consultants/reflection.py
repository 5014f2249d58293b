"""Self-critique and refine cycles for a single agent's answer.

Each cycle walks an explicit state machine:

    GENERATED -> CRITIQUED -> REFINING -> GENERATED (next cycle) ... -> DONE

A cycle ends in DONE early when the critique says no refinement is needed or
when the critique or refinement call fails; the last good Response is kept.
Reflection is never fatal to the session.
"""

import asyncio
import json
import logging
from dataclasses import asdict, dataclass, field
from enum import Enum

from config.config_loader import PromptsConfig
from consultants.dispatcher import Dispatcher
from consultants.models import ReflectionInfo, Response
from consultants.normalizer import extract_json_object
from consultants.panel import Panelist, ask, gather_until_cancelled
from consultants.prompts import critique_prompt, refine_prompt

logger = logging.getLogger(__name__)


class ReflectionState(str, Enum):
    GENERATED = "generated"
    CRITIQUED = "critiqued"
    REFINING = "refining"
    DONE = "done"


def should_reflect(response: Response) -> bool:
    """Low confidence, many caveats or many uncertainty factors."""
    if response.confidence.score < 6:
        return True
    if len(response.response.caveats) > 3:
        return True
    return len(response.confidence.uncertainty_factors) > 2


def quality_score(response: Response) -> int:
    score = response.confidence.score
    score += bool(response.response.code_snippets)
    score += bool(response.response.pros)
    score += bool(response.response.cons)
    return min(score, 10)


def _strings(value: object) -> list[str]:
    if isinstance(value, list):
        return [str(v) for v in value]
    return [str(value)] if value else []


@dataclass
class Critique:
    strengths: list[str] = field(default_factory=list)
    weaknesses: list[str] = field(default_factory=list)
    missing_aspects: list[str] = field(default_factory=list)
    errors_found: list[str] = field(default_factory=list)
    improvement_suggestions: list[str] = field(default_factory=list)
    overall_quality: int | None = None
    needs_refinement: bool = False

    @classmethod
    def from_text(cls, text: str | None) -> "Critique | None":
        data = extract_json_object(text or "")
        if data is None:
            return None
        inner = data.get("critique") if isinstance(data.get("critique"), dict) else data
        quality = data.get("overall_quality")
        try:
            quality = int(quality) if quality is not None else None
        except (TypeError, ValueError):
            quality = None
        return cls(
            strengths=_strings(inner.get("strengths")),
            weaknesses=_strings(inner.get("weaknesses")),
            missing_aspects=_strings(inner.get("missing_aspects")),
            errors_found=_strings(inner.get("errors_found")),
            improvement_suggestions=_strings(inner.get("improvement_suggestions")),
            overall_quality=quality,
            needs_refinement=data.get("needs_refinement") is True,
        )

    def to_dict(self) -> dict:
        return asdict(self)


class ReflectionEngine:
    def __init__(self, dispatcher: Dispatcher, prompts: PromptsConfig, max_cycles: int = 1) -> None:
        self.dispatcher = dispatcher
        self.prompts = prompts
        self.max_cycles = max(0, max_cycles)

    async def _critique(self, panelist: Panelist, response: Response) -> Critique | None:
        result = await self.dispatcher.invoke(
            panelist.agent, critique_prompt(self.prompts, response), panelist.timeout_sec
        )
        if not result.ok:
            logger.warning("%s self-critique failed: %s", panelist.name, result.error)
            return None
        critique = Critique.from_text(result.text)
        if critique is None:
            logger.warning("%s self-critique was not valid JSON", panelist.name)
        return critique

    async def _refine(self, panelist: Panelist, response: Response, critique: Critique) -> Response | None:
        prompt = refine_prompt(self.prompts, response, json.dumps(critique.to_dict(), indent=2))
        refined = await ask(self.dispatcher, panelist, prompt)
        if refined.is_error:
            logger.warning("%s refinement failed, keeping previous response", panelist.name)
            return None
        return refined.model_copy(update={"debate": response.debate})

    async def reflect(self, panelist: Panelist, response: Response) -> Response:
        state = ReflectionState.GENERATED
        current = response
        critique: Critique | None = None
        cycles = 0
        history: list[dict] = []

        while state is not ReflectionState.DONE:
            if state is ReflectionState.GENERATED:
                if cycles >= self.max_cycles:
                    state = ReflectionState.DONE
                    continue
                critique = await self._critique(panelist, current)
                if critique is None:
                    state = ReflectionState.DONE
                    continue
                history.append({
                    "cycle": cycles + 1,
                    "critique": critique.to_dict(),
                    "quality_before": quality_score(current),
                    "refined": False,
                })
                state = ReflectionState.CRITIQUED

            elif state is ReflectionState.CRITIQUED:
                if critique.needs_refinement:
                    state = ReflectionState.REFINING
                else:
                    logger.debug("%s: no refinement needed at cycle %d", panelist.name, cycles + 1)
                    cycles += 1
                    state = ReflectionState.DONE

            elif state is ReflectionState.REFINING:
                refined = await self._refine(panelist, current, critique)
                cycles += 1
                if refined is None:
                    state = ReflectionState.DONE
                    continue
                current = refined
                history[-1]["refined"] = True
                history[-1]["quality_after"] = quality_score(current)
                state = ReflectionState.GENERATED

        logger.info("%s: reflection finished after %d cycle(s)", panelist.name, cycles)
        return current.model_copy(update={"reflection": ReflectionInfo(cycles_completed=cycles, history=history)})

    async def reflect_all(
        self,
        panel: list[Panelist],
        responses: list[Response],
        only_when_needed: bool = True,
        cancel_event: asyncio.Event | None = None,
    ) -> list[Response]:
        """Reflect non-error answers concurrently. Order is preserved.

        With ``only_when_needed`` only answers ``should_reflect`` flags are
        reflected. A cancel keeps the unreflected answer for every agent still
        in progress.
        """
        by_name = {p.name: p for p in panel}

        async def _one(resp: Response) -> Response:
            panelist = by_name.get(resp.consultant)
            if panelist is None or resp.is_error:
                return resp
            if only_when_needed and not should_reflect(resp):
                return resp
            return await self.reflect(panelist, resp)

        results = await gather_until_cancelled([_one(r) for r in responses], cancel_event)
        return [resp if result is None else result for resp, result in zip(responses, results)]
