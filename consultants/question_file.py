"""Question files: markdown with optional YAML front matter.

Recognised front matter keys: category, debate_rounds, reflect, agents.
"""

from dataclasses import dataclass
from pathlib import Path

import frontmatter

from consultants.models import Category, Question


@dataclass
class QuestionFile:
    question: Question
    debate_rounds: int | None = None
    reflect: bool | None = None
    agents: list[str] | None = None


def _agent_list(value: object) -> list[str] | None:
    if value is None:
        return None
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, list):
        items = [str(v) for v in value]
    else:
        raise ValueError(f"agents must be a list or comma-separated string, got {value!r}")
    names = [item.strip() for item in items if item.strip()]
    return names or None


def parse_file(file_path: Path, context_path: Path | None = None) -> QuestionFile:
    """Parse a question file.

    Raises:
        ValueError: If the body is empty or a front matter value is invalid.
    """
    post = frontmatter.load(str(file_path))
    text = post.content.strip()
    if not text:
        raise ValueError(f"Question file is empty: {file_path}")
    meta = dict(post.metadata)

    category = Category.parse(meta["category"]) if meta.get("category") else None
    rounds = meta.get("debate_rounds")
    reflect = meta.get("reflect")

    return QuestionFile(
        question=Question(text=text, source=str(file_path), category=category, context_path=context_path),
        debate_rounds=int(rounds) if rounds is not None else None,
        reflect=bool(reflect) if reflect is not None else None,
        agents=_agent_list(meta.get("agents")),
    )
