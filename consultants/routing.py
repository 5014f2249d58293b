"""Smart routing: pick the agent subset and timeout for a question category."""

import logging
from dataclasses import dataclass
from enum import Enum

from config.config_loader import RoutingConfig
from consultants.models import Category
from consultants.registry import AgentRegistry

logger = logging.getLogger(__name__)


class RoutingMode(str, Enum):
    FULL = "full"
    SELECTIVE = "selective"
    SINGLE = "single"


@dataclass(frozen=True)
class RoutingDecision:
    category: Category
    mode: RoutingMode
    agents: tuple[str, ...]
    timeout_sec: int | None        # None: each agent keeps its own timeout
    scores: tuple[tuple[str, int], ...] = ()

    def timeout_for(self, agent_timeout: int) -> int:
        return self.timeout_sec if self.timeout_sec is not None else agent_timeout

    def to_dict(self) -> dict:
        return {
            "category": self.category.value,
            "mode": self.mode.value,
            "agents": list(self.agents),
            "timeout_sec": self.timeout_sec,
            "affinity": dict(self.scores),
        }


class SmartRouter:
    def __init__(self, registry: AgentRegistry, config: RoutingConfig) -> None:
        self.registry = registry
        self.config = config

    def mode_for(self, category: Category) -> RoutingMode:
        raw = self.config.modes.get(category.value, self.config.default_mode)
        return RoutingMode(raw.lower())

    def timeout_for(self, category: Category) -> int:
        return self.config.timeouts.get(category.value, self.config.default_timeout_sec)

    def ranked(self, category: Category) -> list[tuple[str, int]]:
        """Enabled agents by descending affinity, registry order breaking ties."""
        enabled = self.registry.enabled_ids()
        scored = [(name, self.registry.matrix.get(category, name)) for name in enabled]
        # sorted() is stable, so equal scores keep registry order
        return sorted(scored, key=lambda item: -item[1])

    def route(self, category: Category) -> RoutingDecision:
        enabled = self.registry.enabled_ids()

        if not self.config.enabled:
            return RoutingDecision(category, RoutingMode.FULL, tuple(enabled), None)

        mode = self.mode_for(category)
        timeout = self.timeout_for(category)
        ranked = self.ranked(category)

        if mode is RoutingMode.FULL:
            chosen = ranked
        else:
            count = 1 if mode is RoutingMode.SINGLE else self.config.selective_count
            chosen = [item for item in ranked if item[1] >= self.config.min_affinity][:count]

        decision = RoutingDecision(
            category=category,
            mode=mode,
            agents=tuple(name for name, _ in chosen) if mode is not RoutingMode.FULL else tuple(enabled),
            timeout_sec=timeout,
            scores=tuple(chosen),
        )
        logger.info(
            "Routing %s (%s): %s, timeout %ds",
            category.value, mode.value, ", ".join(decision.agents) or "<none>", timeout,
        )
        return decision
