"""One round of parallel agent calls behind a barrier.

Every panelist runs as its own task; one failure never affects the others.
The barrier waits for all of them unless early termination or a cancel event
cuts it short, in which case unfinished agents get error Responses so the
round always holds exactly one Response per panelist.
"""

import asyncio
import logging
from collections.abc import Coroutine
from dataclasses import dataclass
from typing import Any, TypeVar

from consultants.agents.base import Agent
from consultants.dispatcher import Dispatcher
from consultants.models import Response
from consultants.normalizer import error_response, normalize_dispatch
from consultants.personas import Persona

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Panelist:
    agent: Agent
    persona: Persona
    timeout_sec: float

    @property
    def name(self) -> str:
        return self.agent.name()

    @property
    def model(self) -> str:
        return self.agent.model_string()


async def ask(dispatcher: Dispatcher, panelist: Panelist, prompt: str) -> Response:
    """Dispatch one prompt and normalize the outcome. Never raises for agent failures."""
    result = await dispatcher.invoke(panelist.agent, prompt, panelist.timeout_sec)
    return normalize_dispatch(result, panelist.name, panelist.model, panelist.persona.name)


async def run_round(
    dispatcher: Dispatcher,
    panel: list[Panelist],
    prompts: dict[str, str],
    round_number: int,
    early_termination_min: int | None = None,
    grace_sec: float = 0.0,
    cancel_event: asyncio.Event | None = None,
) -> list[Response]:
    """Run every panelist's prompt concurrently. Returns Responses in panel order."""
    tasks: dict[str, asyncio.Task[Response]] = {
        p.name: asyncio.create_task(ask(dispatcher, p, prompts[p.name]), name=f"{p.name}-r{round_number}")
        for p in panel
    }
    pending: set[asyncio.Task] = set(tasks.values())
    cancel_waiter = asyncio.create_task(cancel_event.wait()) if cancel_event else None
    cut_reason: str | None = None

    try:
        while pending:
            waiting = pending | {cancel_waiter} if cancel_waiter else pending
            done, _ = await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)
            pending -= done

            if cancel_waiter is not None and cancel_waiter in done:
                cut_reason = "cancelled"
                break

            if early_termination_min and pending:
                succeeded = sum(
                    1 for t in tasks.values()
                    if t.done() and t.exception() is None and not t.result().is_error
                )
                if succeeded >= early_termination_min:
                    if grace_sec > 0:
                        _, pending = await asyncio.wait(pending, timeout=grace_sec)
                    cut_reason = "late"
                    break
    finally:
        if cancel_waiter is not None:
            cancel_waiter.cancel()

    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)
        logger.warning(
            "Round %d: %d agent(s) did not finish (%s)", round_number, len(pending), cut_reason,
        )

    responses: list[Response] = []
    for p in panel:
        task = tasks[p.name]
        if task.cancelled():
            reason = "Cancelled by user" if cut_reason == "cancelled" else "Late response dropped by early termination"
            responses.append(error_response(p.name, p.model, p.persona.name, reason))
        elif task.exception() is not None:
            logger.error("Agent %s crashed in round %d: %s", p.name, round_number, task.exception())
            responses.append(error_response(p.name, p.model, p.persona.name, f"Unexpected error: {task.exception()}"))
        else:
            responses.append(task.result())

    succeeded = sum(1 for r in responses if not r.is_error)
    logger.info("Round %d complete: %d/%d agents succeeded", round_number, succeeded, len(panel))
    return responses


async def gather_until_cancelled(
    coros: list[Coroutine[Any, Any, T]],
    cancel_event: asyncio.Event | None = None,
) -> list[T | None]:
    """Await every coroutine concurrently, in order. Unfinished ones are None after a cancel."""
    if cancel_event is None:
        return list(await asyncio.gather(*coros))

    tasks = [asyncio.create_task(c) for c in coros]
    cancel_waiter = asyncio.create_task(cancel_event.wait())
    pending: set[asyncio.Task] = set(tasks)
    try:
        while pending:
            done, _ = await asyncio.wait(pending | {cancel_waiter}, return_when=asyncio.FIRST_COMPLETED)
            pending -= done
            if cancel_waiter in done:
                break
    finally:
        cancel_waiter.cancel()

    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)
        logger.warning("Cancelled with %d call(s) still running", len(pending))
    # exceptions propagate as they would from asyncio.gather
    return [None if t.cancelled() else t.result() for t in tasks]
