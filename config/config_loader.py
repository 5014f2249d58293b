"""Load settings.yaml into typed dataclasses. Checks agent availability at startup."""

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"


@dataclass
class AgentConfig:
    name: str
    kind: str                      # "process" or "http"
    model: str
    persona_id: int
    timeout_sec: int
    rate_limit_per_minute: int
    affinity: dict[str, int] = field(default_factory=dict)
    enabled: bool = True
    command: list[str] = field(default_factory=list)
    sdk: str | None = None         # "openai", "anthropic", "gemini"
    api_key_env: str | None = None
    base_url: str | None = None
    max_tokens: int = 4096


@dataclass
class PromptsConfig:
    query: str
    output_format: str
    debate: str
    critique: str
    refine: str
    judge: str


@dataclass
class DefaultsConfig:
    output_dir: Path
    min_agents: int = 2
    debate_rounds: int = 1
    max_debate_rounds: int = 3
    reflection_cycles: int = 1
    reflection_selective: bool = True
    enable_debate: bool = False
    enable_reflection: bool = False
    enable_judge: bool = True
    enable_classification: bool = True
    use_adjusted_confidence: bool = True
    early_termination_min: int | None = None
    straggler_grace_sec: float = 0.0
    classifier_agent: str | None = None


@dataclass
class RetryConfig:
    max_attempts: int = 2
    base_backoff_sec: float = 2.0
    max_backoff_sec: float = 60.0
    fixed_delay_sec: float = 5.0


@dataclass
class RateLimitConfig:
    window_sec: float = 60.0
    default_per_minute: int = 30


@dataclass
class CacheConfig:
    enabled: bool = True
    ttl_hours: float = 24.0
    dir: Path | None = None


@dataclass
class RoutingConfig:
    enabled: bool = True
    min_affinity: int = 7
    selective_count: int = 3
    default_mode: str = "full"
    modes: dict[str, str] = field(default_factory=dict)
    default_timeout_sec: int = 180
    timeouts: dict[str, int] = field(default_factory=dict)


@dataclass
class JudgeConfig:
    agent: str | None = None
    high_confidence: int = 8
    very_high_confidence: int = 9
    hedging_threshold: int = 3
    hedging_penalty: int = 2
    edge_case_penalty: int = 1
    very_high_penalty: int = 1


@dataclass
class AppConfig:
    defaults: DefaultsConfig
    agents: dict[str, AgentConfig]
    prompts: PromptsConfig
    retry: RetryConfig = field(default_factory=RetryConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    routing: RoutingConfig = field(default_factory=RoutingConfig)
    judge: JudgeConfig = field(default_factory=JudgeConfig)
    available_agents: set[str] = field(default_factory=set)


def _is_available(agent_cfg: AgentConfig) -> bool:
    """Enabled agents are available when their executable or API key is present."""
    if not agent_cfg.enabled:
        logger.info("Agent disabled in settings: %s", agent_cfg.name)
        return False

    if agent_cfg.kind == "process":
        executable = agent_cfg.command[0] if agent_cfg.command else ""
        if executable and shutil.which(executable):
            return True
        logger.info("Agent skipped (executable not found): %s - %s", agent_cfg.name, executable or "<none>")
        return False

    api_key = os.environ.get(agent_cfg.api_key_env or "", "").strip()
    if api_key:
        return True
    logger.info(
        "Agent skipped (no API key): %s - set %s in .env",
        agent_cfg.name,
        agent_cfg.api_key_env,
    )
    return False


def _load_agent(name: str, agent_raw: dict, default_rate_limit: int) -> AgentConfig:
    kind = str(agent_raw["kind"])
    if kind not in ("process", "http"):
        raise ValueError(f"Agent '{name}' has unknown kind: {kind}")
    if kind == "process" and not agent_raw.get("command"):
        raise ValueError(f"Agent '{name}' of kind 'process' needs a command")
    if kind == "http" and not agent_raw.get("sdk"):
        raise ValueError(f"Agent '{name}' of kind 'http' needs an sdk")

    return AgentConfig(
        name=name,
        kind=kind,
        model=str(agent_raw.get("model", "default")),
        persona_id=int(agent_raw.get("persona_id", 0)),
        timeout_sec=int(agent_raw.get("timeout_sec", 180)),
        rate_limit_per_minute=int(agent_raw.get("rate_limit_per_minute", default_rate_limit)),
        affinity={str(k).upper(): int(v) for k, v in (agent_raw.get("affinity") or {}).items()},
        enabled=bool(agent_raw.get("enabled", True)),
        command=[str(part) for part in agent_raw.get("command") or []],
        sdk=agent_raw.get("sdk"),
        api_key_env=agent_raw.get("api_key_env"),
        base_url=agent_raw.get("base_url"),
        max_tokens=int(agent_raw.get("max_tokens", 4096)),
    )


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing.
    Logs unavailable agents but does not raise - the engine checks the
    enabled agent count before dispatching.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    defaults_raw = raw["defaults"]
    early_min = defaults_raw.get("early_termination_min")
    defaults = DefaultsConfig(
        output_dir=Path(defaults_raw["output_dir"]),
        min_agents=int(defaults_raw.get("min_agents", 2)),
        debate_rounds=int(defaults_raw.get("debate_rounds", 1)),
        max_debate_rounds=int(defaults_raw.get("max_debate_rounds", 3)),
        reflection_cycles=int(defaults_raw.get("reflection_cycles", 1)),
        reflection_selective=bool(defaults_raw.get("reflection_selective", True)),
        enable_debate=bool(defaults_raw.get("enable_debate", False)),
        enable_reflection=bool(defaults_raw.get("enable_reflection", False)),
        enable_judge=bool(defaults_raw.get("enable_judge", True)),
        enable_classification=bool(defaults_raw.get("enable_classification", True)),
        use_adjusted_confidence=bool(defaults_raw.get("use_adjusted_confidence", True)),
        early_termination_min=int(early_min) if early_min is not None else None,
        straggler_grace_sec=float(defaults_raw.get("straggler_grace_sec", 0)),
        classifier_agent=defaults_raw.get("classifier_agent"),
    )

    retry = RetryConfig(**(raw.get("retry") or {}))
    rate_limit = RateLimitConfig(**(raw.get("rate_limit") or {}))

    cache_raw = raw.get("cache") or {}
    cache = CacheConfig(
        enabled=bool(cache_raw.get("enabled", True)),
        ttl_hours=float(cache_raw.get("ttl_hours", 24)),
        dir=Path(cache_raw["dir"]) if cache_raw.get("dir") else None,
    )

    routing_raw = raw.get("routing") or {}
    routing = RoutingConfig(
        enabled=bool(routing_raw.get("enabled", True)),
        min_affinity=int(routing_raw.get("min_affinity", 7)),
        selective_count=int(routing_raw.get("selective_count", 3)),
        default_mode=str(routing_raw.get("default_mode", "full")),
        modes={str(k).upper(): str(v) for k, v in (routing_raw.get("modes") or {}).items()},
        default_timeout_sec=int(routing_raw.get("default_timeout_sec", 180)),
        timeouts={str(k).upper(): int(v) for k, v in (routing_raw.get("timeouts") or {}).items()},
    )

    judge = JudgeConfig(**(raw.get("judge") or {}))

    prompts_raw = raw["prompts"]
    prompts = PromptsConfig(
        query=prompts_raw["query"],
        output_format=prompts_raw["output_format"],
        debate=prompts_raw["debate"],
        critique=prompts_raw["critique"],
        refine=prompts_raw["refine"],
        judge=prompts_raw["judge"],
    )

    agents: dict[str, AgentConfig] = {}
    available_agents: set[str] = set()

    for agent_name, agent_raw in raw["agents"].items():
        agent_cfg = _load_agent(agent_name, agent_raw, rate_limit.default_per_minute)
        agents[agent_name] = agent_cfg
        if _is_available(agent_cfg):
            available_agents.add(agent_name)
            logger.info("Agent available: %s", agent_name)

    return AppConfig(
        defaults=defaults,
        agents=agents,
        prompts=prompts,
        retry=retry,
        rate_limit=rate_limit,
        cache=cache,
        routing=routing,
        judge=judge,
        available_agents=available_agents,
    )
