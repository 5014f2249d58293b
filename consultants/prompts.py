"""Prompt construction from the templates in settings.yaml."""

from config.config_loader import PromptsConfig
from consultants.models import Response
from consultants.personas import Persona


def system_prompt(persona: Persona, prompts: PromptsConfig) -> str:
    return f"{persona.system_line()}\n\n{prompts.output_format}"


def query_prompt(prompts: PromptsConfig, persona: Persona, question: str, context: str = "") -> str:
    context_block = f"\n# Context\n{context}\n" if context.strip() else ""
    return prompts.query.format(
        system_prompt=system_prompt(persona, prompts),
        question=question,
        context=context_block,
    )


def peer_summaries(own_name: str, previous: list[Response]) -> str:
    """Named summaries of every other consultant's previous-round answer."""
    parts = []
    for resp in previous:
        if resp.consultant == own_name:
            continue
        parts.append(
            f"### {resp.consultant} ({resp.persona})\n"
            f"Approach: {resp.response.approach}\n"
            f"Confidence: {resp.confidence.score}/10\n"
            f"{resp.response.summary}"
        )
    return "\n\n".join(parts) if parts else "(no other responses)"


def debate_prompt(
    prompts: PromptsConfig,
    round_number: int,
    question: str,
    own: Response,
    previous: list[Response],
) -> str:
    return prompts.debate.format(
        round=round_number,
        previous_round=round_number - 1,
        question=question,
        own_summary=own.response.summary,
        own_approach=own.response.approach,
        own_confidence=own.confidence.score,
        peer_summaries=peer_summaries(own.consultant, previous),
    )


def critique_prompt(prompts: PromptsConfig, response: Response) -> str:
    body = response.model_dump_json(include={"response", "confidence"}, indent=2)
    return prompts.critique.format(response=body)


def refine_prompt(prompts: PromptsConfig, original: Response, critique: str) -> str:
    body = original.model_dump_json(include={"response", "confidence"}, indent=2)
    return prompts.refine.format(original=body, critique=critique)


def judge_prompt(prompts: PromptsConfig, response: Response) -> str:
    return prompts.judge.format(
        consultant=response.consultant,
        confidence=response.confidence.score,
        summary=response.response.summary,
        detailed=response.response.detailed,
        reasoning=response.confidence.reasoning,
    )
