"""Tests for consultants/engine.py."""

import asyncio

import pytest

from consultants.engine import ConsultationEngine, ConsultOptions
from consultants.errors import AgentError, ConsultationError, FailureKind
from consultants.models import Category, Question
from tests.conftest import HangingAgent, MockAgent, make_agent_config, structured


def _agents(**replies) -> dict:
    return {name: MockAgent(name, reply) for name, reply in replies.items()}


def _answers_then_hangs(name: str, answer: str) -> MockAgent:
    """Answers the first prompt, then never answers again."""
    agent = MockAgent(name, answer)
    answer_once = agent.respond.side_effect

    async def _respond(prompt: str, timeout: float):
        if agent.prompts:
            await asyncio.Event().wait()
        return await answer_once(prompt, timeout)

    agent.respond.side_effect = _respond
    return agent


def _standard_agents() -> dict:
    return _agents(
        alpha=structured("Repository Pattern", 8),
        beta=structured("Repository Pattern", 8),
        gamma=structured("Active Record", 7),
    )


async def test_too_few_agents_raises(make_engine, sample_question):
    engine = make_engine(_agents(alpha=structured("A", 8)))
    with pytest.raises(ConsultationError, match="at least 2"):
        await engine.consult(sample_question)


async def test_full_consultation(make_engine, sample_question):
    engine = make_engine(_standard_agents())
    seen = []

    result = await engine.consult(sample_question, ConsultOptions(judge=False), on_round_complete=seen.append)

    assert result.category is Category.ARCHITECTURE
    assert result.routing.agents == ("alpha", "beta", "gamma")
    assert len(result.rounds) == 1
    assert len(seen) == 1
    assert result.report.recommendation.approach == "Repository Pattern"
    assert result.report.consensus_score == 66
    assert result.report.consensus_level == "medium"
    assert result.judge_report is None
    assert sample_question.text in engine.agents["alpha"].prompts[0]


async def test_judge_adjusts_votes(make_engine, sample_question):
    engine = make_engine(_standard_agents())
    result = await engine.consult(sample_question)
    assert result.judge_report["total_evaluated"] == 3
    # 8 -> 7 for the two supporters (no edge cases); 7 stays
    assert [r.judge.adjusted_confidence for r in result.responses] == [7, 7, 7]
    assert result.report.recommendation.weighted_score == 14


async def test_explicit_category_skips_classification(make_engine, sample_question):
    engine = make_engine(_standard_agents())
    result = await engine.consult(sample_question, ConsultOptions(category=Category.SECURITY, judge=False))
    assert result.category is Category.SECURITY


async def test_failed_agent_counts_toward_consensus(make_engine, sample_question):
    agents = _standard_agents()
    agents["gamma"] = MockAgent("gamma", AgentError("gamma", FailureKind.AUTH_FAILURE, "HTTP 401"))
    engine = make_engine(agents)

    result = await engine.consult(sample_question, ConsultOptions(judge=False))

    assert result.responses[2].is_error
    assert result.report.consensus_score == 66
    assert result.report.consensus_level == "medium"
    assert result.report.recommendation.neutral == ["gamma"]


async def test_second_consultation_served_from_cache(make_engine, sample_question):
    engine = make_engine(_standard_agents())
    await engine.consult(sample_question, ConsultOptions(judge=False))

    result = await engine.consult(sample_question, ConsultOptions(judge=False))

    assert result.cache_hits == ["alpha", "beta", "gamma"]
    assert all(a.respond.await_count == 1 for a in engine.agents.values())
    assert all(r.cache_metadata.from_cache for r in result.responses)


async def test_no_cache_option_calls_agents_again(make_engine, sample_question):
    engine = make_engine(_standard_agents())
    await engine.consult(sample_question, ConsultOptions(judge=False))
    result = await engine.consult(sample_question, ConsultOptions(judge=False, use_cache=False))
    assert result.cache_hits == []
    assert all(a.respond.await_count == 2 for a in engine.agents.values())


async def test_errors_not_cached(make_engine, sample_question):
    agents = _standard_agents()
    agents["gamma"] = MockAgent("gamma", AgentError("gamma", FailureKind.CLIENT_ERROR, "HTTP 400"))
    engine = make_engine(agents)
    await engine.consult(sample_question, ConsultOptions(judge=False))

    result = await engine.consult(sample_question, ConsultOptions(judge=False))

    assert result.cache_hits == ["alpha", "beta"]
    assert agents["gamma"].respond.await_count == 2


async def test_debate_rounds_capped_and_run(make_engine, sample_question, sample_app_config):
    sample_app_config.defaults.max_debate_rounds = 2
    agents = _agents(
        alpha=structured("Repository Pattern", 8),
        beta=structured("Repository Pattern", 8),
        gamma=[structured("Active Record", 7), structured("Repository Pattern", 8)],
    )
    engine = make_engine(agents)

    result = await engine.consult(sample_question, ConsultOptions(debate_rounds=5, judge=False))

    assert [r.number for r in result.rounds] == [1, 2]
    assert result.rounds[1].position_changed["gamma"] is True
    assert result.report.consensus_level == "unanimous"


async def test_reflection_gated_to_uncertain_answers(make_engine, sample_question):
    critique = '{"critique": {"strengths": ["ok"]}, "needs_refinement": false}'
    agents = _agents(
        alpha=[structured("Repository Pattern", 9), critique],
        beta=[structured("Repository Pattern", 5), critique],
        gamma=[structured("Active Record", 4), critique],
    )
    engine = make_engine(agents)

    result = await engine.consult(sample_question, ConsultOptions(reflect=True, judge=False, use_cache=False))

    assert result.responses[0].reflection is None
    assert agents["alpha"].respond.await_count == 1
    assert [r.reflection.cycles_completed for r in result.responses[1:]] == [1, 1]


async def test_reflection_of_every_answer_when_not_selective(make_engine, sample_app_config, sample_question):
    sample_app_config.defaults.reflection_selective = False
    critique = '{"critique": {"strengths": ["ok"]}, "needs_refinement": false}'
    agents = _agents(
        alpha=[structured("Repository Pattern", 9), critique],
        beta=[structured("Repository Pattern", 8), critique],
        gamma=[structured("Active Record", 7), critique],
    )
    engine = make_engine(agents)

    result = await engine.consult(sample_question, ConsultOptions(reflect=True, judge=False, use_cache=False))

    assert all(r.reflection.cycles_completed == 1 for r in result.responses)


async def test_cancel_during_reflection_keeps_round_answers(make_engine, sample_question):
    agents = {
        name: _answers_then_hangs(name, structured("Repository Pattern", 4))
        for name in ("alpha", "beta", "gamma")
    }
    engine = make_engine(agents)
    cancel = asyncio.Event()
    asyncio.get_running_loop().call_later(0.05, cancel.set)

    result = await engine.consult(sample_question, ConsultOptions(reflect=True, use_cache=False), cancel_event=cancel)

    assert result.cancelled
    assert all(not r.is_error and r.reflection is None for r in result.responses)
    assert all(a.respond.await_count == 2 for a in agents.values())
    assert result.report.consensus_level == "unanimous"


async def test_single_mode_routing(make_engine, sample_app_config):
    sample_app_config.routing.modes = {"QUICK_SYNTAX": "single"}
    sample_app_config.routing.timeouts = {"QUICK_SYNTAX": 60}
    engine = make_engine(_standard_agents())

    result = await engine.consult(Question(text="Give me a one-liner to reverse a string"), ConsultOptions(judge=False))

    assert result.category is Category.QUICK_SYNTAX
    assert result.routing.agents == ("alpha",)
    assert result.routing.timeout_sec == 60
    assert engine.agents["beta"].respond.await_count == 0


async def test_routing_selecting_nobody_raises(make_engine, sample_app_config, sample_question):
    sample_app_config.routing.modes = {"ARCHITECTURE": "selective"}
    sample_app_config.routing.min_affinity = 11
    engine = make_engine(_standard_agents())
    with pytest.raises(ConsultationError, match="no agents"):
        await engine.consult(sample_question)


async def test_early_termination(make_engine, sample_app_config, sample_question):
    sample_app_config.defaults.early_termination_min = 2
    agents = _standard_agents()
    agents["gamma"] = HangingAgent("gamma")
    engine = make_engine(agents)

    result = await engine.consult(sample_question, ConsultOptions(judge=False))

    assert result.responses[2].metadata.error == "Late response dropped by early termination"
    assert result.report.consensus_score == 66
    assert result.report.recommendation.neutral == ["gamma"]


async def test_cancel_event(make_engine, sample_question):
    engine = make_engine({name: HangingAgent(name) for name in ("alpha", "beta", "gamma")})
    cancel = asyncio.Event()
    asyncio.get_running_loop().call_later(0.01, cancel.set)

    result = await engine.consult(sample_question, ConsultOptions(debate_rounds=3), cancel_event=cancel)

    assert result.cancelled
    assert len(result.rounds) == 1
    assert all(r.is_error for r in result.responses)
    assert result.report.consensus_level == "none"


async def test_to_dict(make_engine, sample_question):
    engine = make_engine(_standard_agents())
    data = (await engine.consult(sample_question)).to_dict()
    assert data["category"] == "ARCHITECTURE"
    assert data["voting_report"]["consensus"]["level"] == "medium"
    assert len(data["rounds"][0]["responses"]) == 3
    assert data["judge_report"]["total_evaluated"] == 3


def test_from_config_builds_memory_cache(sample_app_config):
    engine = ConsultationEngine.from_config(sample_app_config)
    assert sorted(engine.agents) == ["alpha", "beta", "gamma"]
    assert engine.dispatcher.rate_limiter.limit_for("alpha") == 30
    assert engine.cache.enabled


async def test_classifier_agent_picks_category(make_engine, sample_app_config, sample_question):
    sample_app_config.defaults.classifier_agent = "referee"
    agents = _standard_agents()
    agents["referee"] = MockAgent("referee", "SECURITY")
    engine = make_engine(agents)

    result = await engine.consult(sample_question, ConsultOptions(judge=False))

    assert result.category is Category.SECURITY
    assert sample_question.text in agents["referee"].prompts[0]
    assert "referee" not in result.routing.agents


async def test_classifier_agent_garbage_falls_back_to_patterns(make_engine, sample_app_config, sample_question):
    sample_app_config.defaults.classifier_agent = "referee"
    agents = _standard_agents()
    agents["referee"] = MockAgent("referee", "no idea, sorry")
    engine = make_engine(agents)

    result = await engine.consult(sample_question, ConsultOptions(judge=False))

    assert result.category is Category.ARCHITECTURE


def test_from_config_builds_classifier_agent_outside_panel(sample_app_config):
    sample_app_config.agents["referee"] = make_agent_config("referee")
    sample_app_config.available_agents.add("referee")
    sample_app_config.defaults.classifier_agent = "referee"

    engine = ConsultationEngine.from_config(sample_app_config, only=["alpha", "beta"])

    assert sorted(engine.agents) == ["alpha", "beta", "referee"]
    assert engine.registry.enabled_ids() == ["alpha", "beta"]
