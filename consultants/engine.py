"""Session orchestration: classify, route, consult, debate, reflect, judge, vote."""

import asyncio
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from config.config_loader import AppConfig
from consultants.agents.base import Agent
from consultants.cache import FileCacheStore, MemoryCacheStore, SemanticCache, fingerprint
from consultants.classifier import classify, classify_with_agent
from consultants.debate import run_debate
from consultants.dispatcher import Dispatcher, RetryPolicy
from consultants.errors import ConsultationError
from consultants.judge import Judge
from consultants.models import Category, DebateRound, Question, Response
from consultants.panel import Panelist, run_round
from consultants.personas import persona_for
from consultants.prompts import query_prompt
from consultants.rate_limit import SlidingWindowRateLimiter
from consultants.reflection import ReflectionEngine
from consultants.registry import AgentRegistry, build_agents
from consultants.routing import RoutingDecision, RoutingMode, SmartRouter
from consultants.voting import ConsensusReport, build_report

logger = logging.getLogger(__name__)


def _is_set(event: asyncio.Event | None) -> bool:
    return event is not None and event.is_set()


@dataclass
class ConsultOptions:
    """Per-session overrides. None means "use the configured default"."""

    category: Category | None = None
    debate_rounds: int | None = None
    reflect: bool | None = None
    judge: bool | None = None
    use_cache: bool = True
    use_routing: bool | None = None


@dataclass
class ConsultationResult:
    question: Question
    category: Category
    routing: RoutingDecision
    rounds: list[DebateRound]
    responses: list[Response]
    report: ConsensusReport
    duration_sec: float
    judge_report: dict | None = None
    cache_hits: list[str] = field(default_factory=list)
    cancelled: bool = False

    def to_dict(self) -> dict:
        return {
            "question": self.question.text,
            "source": self.question.source,
            "category": self.category.value,
            "routing": self.routing.to_dict(),
            "rounds": [
                {
                    "number": rnd.number,
                    "position_changes": rnd.position_changes,
                    "total_critiques": rnd.total_critiques,
                    "stability": rnd.stability,
                    "responses": [r.model_dump(mode="json", exclude_none=True) for r in rnd.responses],
                }
                for rnd in self.rounds
            ],
            "responses": [r.model_dump(mode="json", exclude_none=True) for r in self.responses],
            **self.report.to_dict(),
            "judge_report": self.judge_report,
            "cache_hits": self.cache_hits,
            "duration_sec": round(self.duration_sec, 2),
            "cancelled": self.cancelled,
        }


class ConsultationEngine:
    def __init__(
        self,
        config: AppConfig,
        registry: AgentRegistry,
        agents: dict[str, Agent],
        dispatcher: Dispatcher,
        cache: SemanticCache,
    ) -> None:
        self.config = config
        self.registry = registry
        self.agents = agents
        self.dispatcher = dispatcher
        self.cache = cache
        self.router = SmartRouter(registry, config.routing)

    @classmethod
    def from_config(cls, config: AppConfig, only: Iterable[str] | None = None) -> "ConsultationEngine":
        registry = AgentRegistry.from_config(config, only=only)
        agents = build_agents(config, registry)
        # judge and classifier agents may sit outside the panel
        helpers = [
            name for name in (config.judge.agent, config.defaults.classifier_agent)
            if name and name not in agents and name in config.available_agents
        ]
        if helpers:
            agents.update(build_agents(config, AgentRegistry.from_config(config, only=helpers)))

        limiter = SlidingWindowRateLimiter(config.rate_limit.window_sec, config.rate_limit.default_per_minute)
        for name, agent_cfg in config.agents.items():
            limiter.set_limit(name, agent_cfg.rate_limit_per_minute)
        dispatcher = Dispatcher(limiter, RetryPolicy.from_config(config.retry))

        store = FileCacheStore(config.cache.dir) if config.cache.dir else MemoryCacheStore()
        cache = SemanticCache(store, ttl_hours=config.cache.ttl_hours, enabled=config.cache.enabled)
        return cls(config, registry, agents, dispatcher, cache)

    def _usable_ids(self) -> list[str]:
        return [name for name in self.registry.enabled_ids() if name in self.agents]

    def _panel(self, decision: RoutingDecision) -> list[Panelist]:
        panel = []
        for name in decision.agents:
            if name not in self.agents:
                continue
            descriptor = self.registry.get(name)
            panel.append(
                Panelist(
                    agent=self.agents[name],
                    persona=persona_for(name, descriptor.persona_id),
                    timeout_sec=decision.timeout_for(descriptor.timeout_sec),
                )
            )
        return panel

    def _route(self, category: Category, use_routing: bool) -> RoutingDecision:
        usable = self._usable_ids()
        if not use_routing:
            return RoutingDecision(category, RoutingMode.FULL, tuple(usable), None)
        decision = self.router.route(category)
        return RoutingDecision(
            category=decision.category,
            mode=decision.mode,
            agents=tuple(name for name in decision.agents if name in usable),
            timeout_sec=decision.timeout_sec,
            scores=decision.scores,
        )

    async def _classify(self, question: Question) -> Category:
        if not self.config.defaults.enable_classification:
            return Category.GENERAL
        name = self.config.defaults.classifier_agent
        agent = self.agents.get(name) if name else None
        if agent is None:
            return classify(question.text)
        return await classify_with_agent(question.text, agent, self.dispatcher)

    def _judge(self) -> Judge:
        evaluator = self.agents.get(self.config.judge.agent) if self.config.judge.agent else None
        return Judge(self.config.judge, self.config.prompts, evaluator, self.dispatcher)

    async def _first_round(
        self,
        question: Question,
        panel: list[Panelist],
        fp: str,
        use_cache: bool,
        cancel_event: asyncio.Event | None,
    ) -> tuple[list[Response], list[str]]:
        cached: dict[str, Response] = {}
        if use_cache:
            for p in panel:
                hit = await self.cache.get(fp, p.name)
                if hit is not None:
                    cached[p.name] = self.cache.mark_from_cache(hit)

        live = [p for p in panel if p.name not in cached]
        context = question.context_text()
        prompts = {
            p.name: query_prompt(self.config.prompts, p.persona, question.text, context)
            for p in live
        }
        fresh: list[Response] = []
        if live:
            logger.info("Round 1: consulting %d agent(s), %d from cache", len(live), len(cached))
            fresh = await run_round(
                self.dispatcher,
                live,
                prompts,
                1,
                early_termination_min=self.config.defaults.early_termination_min,
                grace_sec=self.config.defaults.straggler_grace_sec,
                cancel_event=cancel_event,
            )
        by_name = {r.consultant: r for r in fresh} | cached
        return [by_name[p.name] for p in panel], list(cached)

    async def consult(
        self,
        question: Question,
        options: ConsultOptions | None = None,
        cancel_event: asyncio.Event | None = None,
        on_round_complete: Callable[[DebateRound], None] | None = None,
    ) -> ConsultationResult:
        """Run one consultation session end to end.

        Raises:
            ConsultationError: If fewer than min_agents agents are enabled or
                routing selects none. Agent failures never raise.
        """
        options = options or ConsultOptions()
        defaults = self.config.defaults
        start = time.monotonic()

        usable = self._usable_ids()
        if len(usable) < defaults.min_agents:
            raise ConsultationError(
                f"Need at least {defaults.min_agents} enabled agents, got {len(usable)}"
                + (f" ({', '.join(usable)})" if usable else "")
            )

        category = options.category or question.category
        if category is None:
            category = await self._classify(question)
            logger.info("Question classified as %s", category.value)

        use_routing = self.config.routing.enabled if options.use_routing is None else options.use_routing
        decision = self._route(category, use_routing)
        panel = self._panel(decision)
        if not panel:
            raise ConsultationError(f"Routing selected no agents for {category.value}")

        use_cache = options.use_cache and self.cache.enabled
        fp = fingerprint(question.text, category, question.context_bytes())

        initial, cache_hits = await self._first_round(question, panel, fp, use_cache, cancel_event)
        rounds = [DebateRound(number=1, responses=initial)]
        if on_round_complete:
            on_round_complete(rounds[0])

        requested_rounds = options.debate_rounds
        if requested_rounds is None:
            requested_rounds = defaults.debate_rounds if defaults.enable_debate else 1
        max_rounds = max(1, min(requested_rounds, defaults.max_debate_rounds))

        cancelled = _is_set(cancel_event)
        if max_rounds > 1 and not cancelled:
            rounds = await run_debate(
                question=question.text,
                panel=panel,
                initial=initial,
                dispatcher=self.dispatcher,
                prompts=self.config.prompts,
                max_rounds=max_rounds,
                on_round_complete=on_round_complete,
                early_termination_min=defaults.early_termination_min,
                grace_sec=defaults.straggler_grace_sec,
                cancel_event=cancel_event,
            )
        final = rounds[-1].responses
        cancelled = _is_set(cancel_event)

        reflect = defaults.enable_reflection if options.reflect is None else options.reflect
        if reflect and not cancelled:
            engine = ReflectionEngine(self.dispatcher, self.config.prompts, defaults.reflection_cycles)
            final = await engine.reflect_all(
                panel, final, only_when_needed=defaults.reflection_selective, cancel_event=cancel_event,
            )

        judge_report: dict | None = None
        run_judge = defaults.enable_judge if options.judge is None else options.judge
        if run_judge:
            final, judge_report = await self._judge().judge_all(final, cancel_event)

        report = build_report(final, use_adjusted=run_judge and defaults.use_adjusted_confidence)

        if use_cache:
            stored = []
            for resp in final:
                fresh_answer = not resp.is_error and not (resp.cache_metadata and resp.cache_metadata.from_cache)
                stored.append(await self.cache.put(fp, resp.consultant, resp) if fresh_answer else resp)
            final = stored

        return ConsultationResult(
            question=question,
            category=category,
            routing=decision,
            rounds=rounds,
            responses=final,
            report=report,
            duration_sec=time.monotonic() - start,
            judge_report=judge_report,
            cache_hits=cache_hits,
            cancelled=cancelled or _is_set(cancel_event),
        )
