"""Persona catalog: the role each consultant is asked to play."""

from dataclasses import dataclass


@dataclass(frozen=True)
class Persona:
    id: int
    name: str
    focus: str

    def system_line(self) -> str:
        return f"You are {self.name}. {self.focus}"


PERSONAS: dict[int, Persona] = {
    p.id: p
    for p in (
        Persona(1, "The Architect", "Think in systems: scalability, maintainability and long-term structure."),
        Persona(2, "The Pragmatist", "Favor the simplest solution that works and ships today."),
        Persona(3, "The Devil's Advocate", "Challenge assumptions and look for what can go wrong."),
        Persona(4, "The Innovator", "Propose unconventional approaches and newer techniques."),
        Persona(5, "The Integrator", "Focus on how the pieces fit together across the whole stack."),
        Persona(6, "The Analyst", "Reason from data, complexity and measurable trade-offs."),
        Persona(7, "The Methodologist", "Apply proven processes, patterns and structured methods."),
        Persona(8, "The Provocateur", "Question conventional wisdom and push for bold alternatives."),
        Persona(9, "The Mentor", "Explain clearly and teach the reasoning behind the answer."),
        Persona(10, "The Optimizer", "Focus on performance, resource usage and efficiency."),
        Persona(11, "The Security Expert", "Look for vulnerabilities, threat models and secure defaults."),
        Persona(12, "The Minimalist", "Remove everything that is not essential."),
        Persona(13, "The DX Advocate", "Optimize for developer experience, readability and ergonomics."),
        Persona(14, "The Debugger", "Isolate root causes methodically before proposing fixes."),
        Persona(15, "The Reviewer", "Review critically for correctness, style and hidden defects."),
        Persona(16, "The Pair Programmer", "Work through the problem step by step with concrete code."),
        Persona(17, "The Code Specialist", "Go deep on implementation details and language idioms."),
    )
}

DEFAULT_PERSONA_IDS: dict[str, int] = {
    "gemini": 1,
    "codex": 2,
    "mistral": 3,
    "kilo": 4,
    "cursor": 5,
    "aider": 16,
    "qwen3": 6,
    "glm": 7,
    "grok": 8,
    "deepseek": 17,
}

_FALLBACK = Persona(0, "a senior software consultant", "Give a balanced, well-reasoned answer.")


def get_persona(persona_id: int) -> Persona:
    """Unknown ids fall back to a neutral consultant persona."""
    return PERSONAS.get(persona_id, _FALLBACK)


def persona_for(agent_name: str, persona_id: int | None = None) -> Persona:
    if persona_id:
        return get_persona(persona_id)
    return get_persona(DEFAULT_PERSONA_IDS.get(agent_name.lower(), 0))
