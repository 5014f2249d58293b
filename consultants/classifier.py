"""Map a free-text question to a Category.

Keyword patterns are checked in a fixed order and the first match wins. An
optional agent-backed classifier falls back to the patterns on any failure.
"""

import logging
import re

from consultants.agents.base import Agent
from consultants.dispatcher import Dispatcher
from consultants.models import Category

logger = logging.getLogger(__name__)

_PATTERNS: list[tuple[Category, re.Pattern[str]]] = [
    (Category.CODE_REVIEW, re.compile(r"review|check|analy[sz]e.*code|quality|qualit")),
    (Category.BUG_DEBUG, re.compile(
        r"bug|error|crash|fix|debug|problem|issue|not working|fails|exception|traceback")),
    (Category.ARCHITECTURE, re.compile(
        r"architect|design|pattern|structure|microservic|monolit|scalabil|refactor|organi[sz]|system design")),
    (Category.ALGORITHM, re.compile(
        r"algorithm|optimi|performance|complexit|o\(|big-o|efficien|sort|search|data structure")),
    (Category.SECURITY, re.compile(
        r"security|vulnerabil|injection|xss|csrf|auth|password|encrypt|decrypt|token|jwt")),
    (Category.QUICK_SYNTAX, re.compile(r"syntax|how to write|example of|snippet|one-liner")),
    (Category.DATABASE, re.compile(
        r"database|sql|query|mongodb|postgres|mysql|redis|index|migration|schema")),
    (Category.API_DESIGN, re.compile(r"api|rest|graphql|endpoint|request|response|http|webhook")),
    (Category.TESTING, re.compile(r"test|unit test|integration|mock|stub|coverage|tdd|bdd")),
]

CLASSIFY_PROMPT = """Classify this programming question into ONE category only:

CATEGORIES:
- CODE_REVIEW: Code review, quality analysis, best practices
- BUG_DEBUG: Debugging, error fixing, troubleshooting
- ARCHITECTURE: System design, patterns, project structure
- ALGORITHM: Algorithms, data structures, complexity, optimization
- SECURITY: Security, vulnerabilities, authentication
- QUICK_SYNTAX: Quick syntax questions, snippets, one-liners
- DATABASE: SQL queries, schema design, database operations
- API_DESIGN: API design, REST, GraphQL, endpoints
- TESTING: Unit testing, integration testing, TDD
- GENERAL: Other

QUESTION: {question}

Reply ONLY with the category name (e.g.: ARCHITECTURE), nothing else."""


def classify(question: str) -> Category:
    text = question.lower()
    for category, pattern in _PATTERNS:
        if pattern.search(text):
            return category
    return Category.GENERAL


async def classify_with_agent(
    question: str,
    agent: Agent,
    dispatcher: Dispatcher,
    timeout: float = 30.0,
) -> Category:
    result = await dispatcher.invoke(agent, CLASSIFY_PROMPT.format(question=question), timeout)
    if result.ok and result.text:
        answer = result.text.strip().splitlines()[0].strip().strip("`*.\"'")
        try:
            return Category.parse(answer)
        except ValueError:
            logger.info("Classifier agent answered %r, using keyword patterns", answer[:40])
    return classify(question)
