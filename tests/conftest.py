"""Shared pytest fixtures."""

import asyncio
import json
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from config.config_loader import AgentConfig, AppConfig, DefaultsConfig, PromptsConfig, RetryConfig
from consultants.agents.base import Agent, AgentReply
from consultants.cache import MemoryCacheStore, SemanticCache
from consultants.dispatcher import Dispatcher, RetryPolicy
from consultants.engine import ConsultationEngine
from consultants.models import Confidence, Question, Response, ResponseContent
from consultants.rate_limit import SlidingWindowRateLimiter
from consultants.registry import AgentRegistry

AFFINITY = {
    "alpha": {"QUICK_SYNTAX": 10, "CODE_REVIEW": 8, "ARCHITECTURE": 9},
    "beta": {"QUICK_SYNTAX": 8, "CODE_REVIEW": 10, "ARCHITECTURE": 6},
    "gamma": {"QUICK_SYNTAX": 5, "CODE_REVIEW": 9, "ARCHITECTURE": 9},
}


def structured(
    approach: str,
    score: int = 8,
    summary: str | None = None,
    detailed: str = "Details.",
    **extra,
) -> str:
    """JSON text in the shape agents are asked to produce."""
    payload = {
        "response": {
            "summary": summary or f"Use {approach}.",
            "detailed": detailed,
            "approach": approach,
            "pros": ["clear"],
            "cons": ["boilerplate"],
        },
        "confidence": {"score": score, "reasoning": "Seen this before.", "uncertainty_factors": []},
    }
    payload.update(extra)
    return json.dumps(payload)


def make_response(consultant: str, approach: str, score: int, **content) -> Response:
    return Response(
        consultant=consultant,
        model="mock-model",
        persona="The Tester",
        response=ResponseContent(summary=f"Use {approach}.", approach=approach, **content),
        confidence=Confidence(score=score, reasoning="Because."),
    )


class MockAgent(Agent):
    """Test double Agent. ``respond`` is an AsyncMock; prompts are recorded."""

    def __init__(self, agent_name: str = "mock", replies: list | str = "Mock response") -> None:
        self._name = agent_name
        self.prompts: list[str] = []
        items = [replies] if isinstance(replies, (str, Exception)) else list(replies)
        self._items = items

        async def _respond(prompt: str, timeout: float) -> AgentReply:
            self.prompts.append(prompt)
            item = self._items.pop(0) if len(self._items) > 1 else self._items[0]
            if isinstance(item, Exception):
                raise item
            return AgentReply(text=item, tokens_used=10)

        # Shadow the class method with an AsyncMock at the instance level
        self.respond = AsyncMock(side_effect=_respond)  # type: ignore[assignment]

    def name(self) -> str:
        return self._name

    def model_string(self) -> str:
        return "mock-model"

    async def respond(self, prompt: str, timeout: float) -> AgentReply:  # type: ignore[override]
        """Default implementation; replaced by AsyncMock in __init__."""
        return AgentReply(text="Mock response")


class HangingAgent(Agent):
    """Never answers until cancelled."""

    def __init__(self, agent_name: str) -> None:
        self._name = agent_name

    def name(self) -> str:
        return self._name

    def model_string(self) -> str:
        return "hang-model"

    async def respond(self, prompt: str, timeout: float) -> AgentReply:
        await asyncio.Event().wait()
        return AgentReply(text="never")


class FakeClock:
    """Manual clock whose ``sleep`` advances time instead of waiting."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sample_prompts_config() -> PromptsConfig:
    return PromptsConfig(
        query="{system_prompt}\n\nQ: {question}\n{context}",
        output_format="Answer in JSON.",
        debate=(
            "Round {round} (after {previous_round}). Q: {question}\n"
            "You said: {own_summary} [{own_approach}, {own_confidence}/10]\nOthers:\n{peer_summaries}"
        ),
        critique="Critique this:\n{response}",
        refine="Improve:\n{original}\nCritique:\n{critique}",
        judge="Judge {consultant} ({confidence}/10): {summary}\n{detailed}\n{reasoning}",
    )


@pytest.fixture
def sample_defaults_config(tmp_path: Path) -> DefaultsConfig:
    return DefaultsConfig(output_dir=tmp_path / "output")


def make_agent_config(name: str, persona_id: int = 1, **overrides) -> AgentConfig:
    fields = dict(
        name=name,
        kind="process",
        model="mock-model",
        persona_id=persona_id,
        timeout_sec=30,
        rate_limit_per_minute=30,
        affinity=dict(AFFINITY.get(name, {})),
        command=["mock-cli"],
    )
    fields.update(overrides)
    return AgentConfig(**fields)


@pytest.fixture
def sample_app_config(sample_defaults_config, sample_prompts_config) -> AppConfig:
    agents = {
        name: make_agent_config(name, persona_id=i + 1)
        for i, name in enumerate(("alpha", "beta", "gamma"))
    }
    return AppConfig(
        defaults=sample_defaults_config,
        agents=agents,
        prompts=sample_prompts_config,
        retry=RetryConfig(max_attempts=2, base_backoff_sec=2, max_backoff_sec=60, fixed_delay_sec=5),
        available_agents=set(agents),
    )


@pytest.fixture
def sample_question() -> Question:
    return Question(text="Should the data layer use the repository pattern?", source="cli")


@pytest.fixture
def dispatcher(clock) -> Dispatcher:
    limiter = SlidingWindowRateLimiter(60, 30, clock=clock, sleep=clock.sleep)
    return Dispatcher(limiter, RetryPolicy(), sleep=clock.sleep, clock=clock)


@pytest.fixture
def memory_cache(clock) -> SemanticCache:
    return SemanticCache(MemoryCacheStore(), ttl_hours=24, clock=clock)


@pytest.fixture
def make_engine(sample_app_config, dispatcher, memory_cache):
    """Factory: build an engine over MockAgents keyed by agent id."""

    def _make(agents: dict[str, Agent], config: AppConfig | None = None) -> ConsultationEngine:
        cfg = config or sample_app_config
        registry = AgentRegistry.from_config(cfg)
        return ConsultationEngine(cfg, registry, agents, dispatcher, memory_cache)

    return _make
