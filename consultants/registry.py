"""Agent registry: immutable descriptors, the affinity matrix, and agent construction."""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType

from config.config_loader import AgentConfig, AppConfig
from consultants.agents.anthropic import AnthropicAgent
from consultants.agents.base import Agent
from consultants.agents.gemini import GeminiAgent
from consultants.agents.openai_compat import OpenAICompatAgent
from consultants.agents.process import ProcessAgent
from consultants.models import Category

logger = logging.getLogger(__name__)

DEFAULT_AFFINITY = 5


class AgentKind(str, Enum):
    PROCESS = "process"
    HTTP = "http"


@dataclass(frozen=True)
class AgentDescriptor:
    id: str
    kind: AgentKind
    model: str
    persona_id: int
    timeout_sec: int
    rate_limit_per_minute: int
    affinity: Mapping[Category, int] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def from_config(cls, cfg: AgentConfig) -> "AgentDescriptor":
        affinity: dict[Category, int] = {}
        for key, value in cfg.affinity.items():
            category = Category.parse(key)
            affinity[category] = max(1, min(10, int(value)))
        return cls(
            id=cfg.name,
            kind=AgentKind(cfg.kind),
            model=cfg.model,
            persona_id=cfg.persona_id,
            timeout_sec=cfg.timeout_sec,
            rate_limit_per_minute=cfg.rate_limit_per_minute,
            affinity=MappingProxyType(affinity),
        )

    def affinity_for(self, category: Category) -> int:
        return self.affinity.get(category, DEFAULT_AFFINITY)


class AffinityMatrix:
    """Table of affinity scores indexed by (Category, agent id)."""

    def __init__(self, descriptors: Iterable[AgentDescriptor]) -> None:
        self._table: dict[Category, dict[str, int]] = {
            category: {d.id: d.affinity_for(category) for d in descriptors}
            for category in Category
        }

    def get(self, category: Category, agent_id: str) -> int:
        return self._table[category].get(agent_id, DEFAULT_AFFINITY)

    def row(self, category: Category) -> Mapping[str, int]:
        return MappingProxyType(self._table[category])


class AgentRegistry:
    """Ordered collection of descriptors plus the set of enabled agent ids.

    Registry order is the order agents appear in settings.yaml and is used to
    break affinity ties during routing.
    """

    def __init__(self, descriptors: Iterable[AgentDescriptor], enabled: Iterable[str]) -> None:
        self._descriptors: dict[str, AgentDescriptor] = {d.id: d for d in descriptors}
        enabled_set = set(enabled)
        unknown = enabled_set - self._descriptors.keys()
        if unknown:
            raise ValueError(f"Unknown agent(s): {', '.join(sorted(unknown))}")
        self._enabled = [name for name in self._descriptors if name in enabled_set]
        self.matrix = AffinityMatrix(self._descriptors.values())

    @classmethod
    def from_config(cls, config: AppConfig, only: Iterable[str] | None = None) -> "AgentRegistry":
        descriptors = [AgentDescriptor.from_config(cfg) for cfg in config.agents.values()]
        enabled = set(config.available_agents)
        if only is not None:
            requested = {name.strip() for name in only if name.strip()}
            unknown = requested - config.agents.keys()
            if unknown:
                raise ValueError(f"Unknown agent(s): {', '.join(sorted(unknown))}")
            enabled &= requested
        return cls(descriptors, enabled)

    def get(self, agent_id: str) -> AgentDescriptor:
        return self._descriptors[agent_id]

    def enabled(self) -> list[AgentDescriptor]:
        return [self._descriptors[name] for name in self._enabled]

    def enabled_ids(self) -> list[str]:
        return list(self._enabled)

    def disable(self, agent_id: str) -> None:
        """Drop an agent for the rest of the process, e.g. after a failed health check."""
        if agent_id in self._enabled:
            self._enabled.remove(agent_id)

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._descriptors

    def __len__(self) -> int:
        return len(self._descriptors)


SDK_CLASSES: dict[str, type[Agent]] = {
    "openai": OpenAICompatAgent,
    "anthropic": AnthropicAgent,
    "gemini": GeminiAgent,
}


def create_agent(cfg: AgentConfig) -> Agent:
    if cfg.kind == AgentKind.PROCESS.value:
        return ProcessAgent(cfg)
    if cfg.sdk not in SDK_CLASSES:
        raise ValueError(f"Agent '{cfg.name}' uses unknown sdk: {cfg.sdk}")
    return SDK_CLASSES[cfg.sdk](cfg)


def build_agents(config: AppConfig, registry: AgentRegistry) -> dict[str, Agent]:
    """Instantiate every enabled agent. Returns dict keyed by agent id."""
    agents: dict[str, Agent] = {}
    for name in registry.enabled_ids():
        try:
            agents[name] = create_agent(config.agents[name])
        except Exception as exc:
            logger.warning("Failed to instantiate agent '%s': %s", name, exc)
    return agents
