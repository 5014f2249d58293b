"""Tests for consultants/routing.py."""

from config.config_loader import AppConfig, RoutingConfig
from consultants.models import Category
from consultants.registry import AgentRegistry
from consultants.routing import RoutingMode, SmartRouter
from tests.conftest import make_agent_config


def _router(app_config, **overrides) -> SmartRouter:
    cfg = RoutingConfig(
        modes={"QUICK_SYNTAX": "single", "CODE_REVIEW": "selective", "ARCHITECTURE": "selective"},
        timeouts={"QUICK_SYNTAX": 60, "ARCHITECTURE": 240},
        selective_count=2,
    )
    for key, value in overrides.items():
        setattr(cfg, key, value)
    return SmartRouter(AgentRegistry.from_config(app_config), cfg)


def test_single_mode_picks_top_agent_with_category_timeout(sample_app_config):
    decision = _router(sample_app_config).route(Category.QUICK_SYNTAX)
    assert decision.mode is RoutingMode.SINGLE
    assert decision.agents == ("alpha",)
    assert decision.timeout_sec == 60
    assert decision.timeout_for(30) == 60


def test_selective_ranks_by_affinity(sample_app_config):
    decision = _router(sample_app_config).route(Category.CODE_REVIEW)
    assert decision.mode is RoutingMode.SELECTIVE
    assert decision.agents == ("beta", "gamma")
    assert decision.scores == (("beta", 10), ("gamma", 9))


def test_ties_keep_registry_order(sample_app_config):
    # alpha and gamma both score 9 for ARCHITECTURE
    decision = _router(sample_app_config).route(Category.ARCHITECTURE)
    assert decision.agents == ("alpha", "gamma")


def test_selective_filters_below_min_affinity(sample_app_config):
    decision = _router(sample_app_config, min_affinity=10).route(Category.ARCHITECTURE)
    assert decision.agents == ()


def test_full_mode_uses_all_enabled(sample_app_config):
    decision = _router(sample_app_config).route(Category.SECURITY)
    assert decision.mode is RoutingMode.FULL
    assert decision.agents == ("alpha", "beta", "gamma")
    assert decision.timeout_sec == 180


def test_routing_disabled_keeps_agent_timeouts(sample_app_config):
    decision = _router(sample_app_config, enabled=False).route(Category.QUICK_SYNTAX)
    assert decision.mode is RoutingMode.FULL
    assert decision.timeout_sec is None
    assert decision.timeout_for(30) == 30
    assert len(decision.agents) == 3


def test_to_dict(sample_app_config):
    data = _router(sample_app_config).route(Category.QUICK_SYNTAX).to_dict()
    assert data == {
        "category": "QUICK_SYNTAX",
        "mode": "single",
        "agents": ["alpha"],
        "timeout_sec": 60,
        "affinity": {"alpha": 10},
    }


def test_quick_syntax_with_five_agents_routes_to_exactly_one(sample_app_config):
    affinities = {"gemini": 10, "codex": 8, "mistral": 5, "qwen3": 7, "glm": 6}
    agents = {
        name: make_agent_config(name, affinity={"QUICK_SYNTAX": score})
        for name, score in affinities.items()
    }
    app_config = AppConfig(
        defaults=sample_app_config.defaults,
        agents=agents,
        prompts=sample_app_config.prompts,
        available_agents=set(agents),
    )

    decision = _router(app_config).route(Category.QUICK_SYNTAX)

    assert decision.agents == ("gemini",)
    assert decision.timeout_sec == 60
