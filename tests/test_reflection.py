"""Tests for consultants/reflection.py."""

import asyncio
import json

from consultants.errors import AgentError, FailureKind
from consultants.models import CodeSnippet
from consultants.normalizer import error_response
from consultants.panel import Panelist
from consultants.personas import get_persona
from consultants.reflection import Critique, ReflectionEngine, quality_score, should_reflect
from tests.conftest import HangingAgent, MockAgent, make_response, structured

NEEDS_WORK = json.dumps({
    "critique": {"strengths": ["clear"], "weaknesses": ["no tests"], "improvement_suggestions": ["add tests"]},
    "overall_quality": 5,
    "needs_refinement": True,
})
GOOD_ENOUGH = json.dumps({"critique": {"strengths": ["solid"]}, "overall_quality": 9, "needs_refinement": False})


def _panelist(agent: MockAgent) -> Panelist:
    return Panelist(agent=agent, persona=get_persona(15), timeout_sec=30)


def test_should_reflect():
    assert should_reflect(make_response("a", "X", 5))
    assert not should_reflect(make_response("a", "X", 8))
    assert should_reflect(make_response("a", "X", 8, caveats=["1", "2", "3", "4"]))


def test_quality_score():
    assert quality_score(make_response("a", "X", 6)) == 6
    rich = make_response(
        "a", "X", 9, pros=["p"], cons=["c"], code_snippets=[CodeSnippet(language="py", code="x = 1")]
    )
    assert quality_score(rich) == 10


def test_critique_from_text():
    critique = Critique.from_text(f"Here is my critique:\n```json\n{NEEDS_WORK}\n```")
    assert critique.needs_refinement is True
    assert critique.weaknesses == ["no tests"]
    assert critique.overall_quality == 5
    assert Critique.from_text("no json here") is None


async def test_reflect_refines_when_needed(dispatcher, sample_prompts_config):
    agent = MockAgent("alpha", [NEEDS_WORK, structured("Repository Pattern with tests", 8)])
    engine = ReflectionEngine(dispatcher, sample_prompts_config, max_cycles=1)

    result = await engine.reflect(_panelist(agent), make_response("alpha", "Repository Pattern", 6))

    assert result.response.approach == "Repository Pattern with tests"
    assert result.reflection.cycles_completed == 1
    history = result.reflection.history[0]
    assert history["refined"] is True
    assert history["quality_before"] == 6
    assert history["quality_after"] == 10
    assert "add tests" in agent.prompts[1]


async def test_reflect_stops_when_critique_is_satisfied(dispatcher, sample_prompts_config):
    agent = MockAgent("alpha", GOOD_ENOUGH)
    engine = ReflectionEngine(dispatcher, sample_prompts_config, max_cycles=3)
    original = make_response("alpha", "Repository Pattern", 8)

    result = await engine.reflect(_panelist(agent), original)

    assert result.response == original.response
    assert result.reflection.cycles_completed == 1
    assert result.reflection.history[0]["refined"] is False
    assert agent.respond.await_count == 1


async def test_reflect_runs_multiple_cycles(dispatcher, sample_prompts_config):
    agent = MockAgent("alpha", [
        NEEDS_WORK, structured("V2", 7),
        NEEDS_WORK, structured("V3", 8),
    ])
    engine = ReflectionEngine(dispatcher, sample_prompts_config, max_cycles=2)

    result = await engine.reflect(_panelist(agent), make_response("alpha", "V1", 6))

    assert result.response.approach == "V3"
    assert result.reflection.cycles_completed == 2
    assert agent.respond.await_count == 4


async def test_failed_critique_keeps_original(dispatcher, sample_prompts_config):
    agent = MockAgent("alpha", AgentError("alpha", FailureKind.AUTH_FAILURE, "HTTP 401"))
    engine = ReflectionEngine(dispatcher, sample_prompts_config)
    original = make_response("alpha", "Repository Pattern", 6)

    result = await engine.reflect(_panelist(agent), original)

    assert result.response == original.response
    assert result.reflection.cycles_completed == 0


async def test_failed_refinement_keeps_previous(dispatcher, sample_prompts_config):
    agent = MockAgent("alpha", [NEEDS_WORK, AgentError("alpha", FailureKind.CLIENT_ERROR, "HTTP 400")])
    engine = ReflectionEngine(dispatcher, sample_prompts_config)
    original = make_response("alpha", "Repository Pattern", 6)

    result = await engine.reflect(_panelist(agent), original)

    assert result.response == original.response
    assert result.reflection.cycles_completed == 1
    assert result.reflection.history[0]["refined"] is False


async def test_reflect_all_skips_errors_and_confident_answers(dispatcher, sample_prompts_config):
    alpha = MockAgent("alpha", GOOD_ENOUGH)
    beta = MockAgent("beta", GOOD_ENOUGH)
    gamma = MockAgent("gamma", GOOD_ENOUGH)
    panel = [_panelist(alpha), _panelist(beta), _panelist(gamma)]
    responses = [
        make_response("alpha", "X", 9),
        make_response("beta", "X", 4),
        error_response("gamma", "m", "p", "unknown: boom"),
    ]
    engine = ReflectionEngine(dispatcher, sample_prompts_config)

    result = await engine.reflect_all(panel, responses, only_when_needed=True)

    assert [r.consultant for r in result] == ["alpha", "beta", "gamma"]
    assert result[0].reflection is None
    assert result[1].reflection is not None
    assert result[2].is_error
    assert alpha.respond.await_count == 0
    assert gamma.respond.await_count == 0


async def test_reflect_all_can_reflect_confident_answers(dispatcher, sample_prompts_config):
    alpha = MockAgent("alpha", GOOD_ENOUGH)
    engine = ReflectionEngine(dispatcher, sample_prompts_config)

    result = await engine.reflect_all([_panelist(alpha)], [make_response("alpha", "X", 9)], only_when_needed=False)

    assert result[0].reflection.cycles_completed == 1
    assert alpha.respond.await_count == 1


async def test_reflect_all_cancel_keeps_unreflected_answers(dispatcher, sample_prompts_config):
    alpha = MockAgent("alpha", GOOD_ENOUGH)
    panel = [_panelist(alpha), _panelist(HangingAgent("beta"))]
    responses = [make_response("alpha", "X", 4), make_response("beta", "Y", 4)]
    engine = ReflectionEngine(dispatcher, sample_prompts_config)
    cancel = asyncio.Event()
    asyncio.get_running_loop().call_later(0.01, cancel.set)

    result = await engine.reflect_all(panel, responses, cancel_event=cancel)

    assert result[0].reflection.cycles_completed == 1
    assert result[1] == responses[1]
    assert result[1].reflection is None
