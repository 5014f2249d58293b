"""Debate orchestration: cross-critique rounds over the panel's previous answers."""

import asyncio
import logging
from collections.abc import Callable

from config.config_loader import PromptsConfig
from consultants.dispatcher import Dispatcher
from consultants.models import DebateInfo, DebateRound, Response
from consultants.panel import Panelist, run_round
from consultants.prompts import debate_prompt

logger = logging.getLogger(__name__)


def _with_debate(response: Response, round_number: int, changed: bool, carried: bool = False) -> Response:
    info = DebateInfo() if carried or response.debate is None else response.debate
    return response.model_copy(
        update={"debate": info.model_copy(update={"round": round_number, "position_changed": changed})}
    )


def merge_round(
    round_number: int,
    previous: list[Response],
    fresh: list[Response],
) -> DebateRound:
    """Pair each agent's new answer with its previous one and flag position changes.

    An agent that fails in a critique round keeps its previous answer.
    """
    by_name = {r.consultant: r for r in fresh}
    responses: list[Response] = []
    changed: dict[str, bool] = {}

    for prev in previous:
        new = by_name.get(prev.consultant)
        if new is None or new.is_error:
            if new is not None and not prev.is_error:
                logger.warning(
                    "%s failed in round %d, keeping its round %d answer",
                    prev.consultant, round_number, round_number - 1,
                )
            responses.append(prev if prev.is_error else _with_debate(prev, round_number, False, carried=True))
            changed[prev.consultant] = False
            continue
        is_changed = new.approach_key != prev.approach_key
        responses.append(_with_debate(new, round_number, is_changed))
        changed[prev.consultant] = is_changed

    return DebateRound(number=round_number, responses=responses, position_changed=changed)


async def run_debate(
    question: str,
    panel: list[Panelist],
    initial: list[Response],
    dispatcher: Dispatcher,
    prompts: PromptsConfig,
    max_rounds: int,
    on_round_complete: Callable[[DebateRound], None] | None = None,
    early_termination_min: int | None = None,
    grace_sec: float = 0.0,
    cancel_event: asyncio.Event | None = None,
) -> list[DebateRound]:
    """Run critique rounds 2..max_rounds on top of the independent round 1.

    Agents whose round 1 failed sit the debate out. The debate stops early
    when a critique round changes nobody's position. Round 1 has no
    position changes by definition, so the first critique round always runs:
    with ``max_rounds=2`` round 2 is never skipped, and the earliest possible
    stop is before round 3.

    Returns:
        List of DebateRound objects, round 1 included.
    """
    rounds = [DebateRound(number=1, responses=list(initial))]

    for round_num in range(2, max_rounds + 1):
        if cancel_event is not None and cancel_event.is_set():
            logger.info("Debate cancelled before round %d", round_num)
            break

        previous = rounds[-1].responses
        live = [r for r in previous if not r.is_error]
        if len(live) < 2:
            logger.info("Fewer than 2 agents with a position, skipping debate round %d", round_num)
            break

        by_name = {r.consultant: r for r in previous}
        participants = [p for p in panel if p.name in by_name and not by_name[p.name].is_error]
        prompts_for_round = {
            p.name: debate_prompt(prompts, round_num, question, by_name[p.name], live)
            for p in participants
        }

        logger.info("Starting debate round %d with %d agents", round_num, len(participants))
        fresh = await run_round(
            dispatcher,
            participants,
            prompts_for_round,
            round_num,
            early_termination_min=early_termination_min,
            grace_sec=grace_sec,
            cancel_event=cancel_event,
        )
        current = merge_round(round_num, previous, fresh)
        rounds.append(current)

        logger.info(
            "Round %d summary: %d responded, %d position change(s), %d critique(s), %s",
            round_num,
            sum(1 for r in fresh if not r.is_error),
            current.position_changes,
            current.total_critiques,
            current.stability,
        )

        if on_round_complete:
            on_round_complete(current)

        if current.position_changes == 0:
            logger.info("No position changed in round %d, ending debate", round_num)
            break

    return rounds
