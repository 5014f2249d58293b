"""Rich console output and markdown/JSON report save for consultation results."""

import json
import logging
import re
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from consultants.engine import ConsultationResult
from consultants.models import DebateRound, Response
from consultants.routing import RoutingDecision

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

_LEVEL_STYLES = {
    "unanimous": "bold green",
    "high": "green",
    "medium": "yellow",
    "low": "red",
    "none": "bold red",
}


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len]


def _response_preview(response: Response, words: int = 50) -> str:
    """Return first N words of a response summary."""
    all_words = response.response.summary.split()
    preview = " ".join(all_words[:words])
    if len(all_words) > words:
        preview += "..."
    return preview


def _confidence_label(response: Response) -> str:
    label = f"{response.confidence.score}/10"
    if response.judge and response.judge.adjusted_confidence != response.confidence.score:
        label += f" (judge: {response.judge.adjusted_confidence})"
    return label


def print_routing(decision: RoutingDecision) -> None:
    timeout = f"{decision.timeout_sec}s" if decision.timeout_sec is not None else "agent default"
    console.print(
        Text(
            f"Category: {decision.category.value} | Mode: {decision.mode.value} | "
            f"Agents: {', '.join(decision.agents)} | Timeout: {timeout}",
            style="dim",
        )
    )


def print_round_summary(rnd: DebateRound) -> None:
    """Print a brief panel per agent for one round."""
    title = "Independent Answers" if rnd.number == 1 else f"Cross-Critique ({rnd.stability})"
    console.print(Rule(f"[bold cyan]Round {rnd.number}: {title}[/bold cyan]"))
    for resp in rnd.responses:
        if resp.is_error:
            console.print(
                Panel(
                    Text(resp.metadata.error or resp.response.detailed),
                    title=f"[bold red]{resp.consultant}[/bold red] ({resp.model})",
                    border_style="red",
                )
            )
            continue
        marker = " (changed)" if rnd.position_changed.get(resp.consultant) else ""
        cached = " (cached)" if resp.cache_metadata and resp.cache_metadata.from_cache else ""
        console.print(
            Panel(
                Text(_response_preview(resp)),
                title=(
                    f"[bold]{resp.consultant}[/bold] ({escape(resp.persona)}) - "
                    f"{escape(resp.response.approach)}{marker}{cached}"
                ),
                subtitle=f"confidence {_confidence_label(resp)} | {resp.metadata.latency_ms / 1000:.1f}s",
                border_style="dim",
            )
        )


def print_consensus(result: ConsultationResult) -> None:
    """Print the voting outcome and the per-agent table."""
    report = result.report
    rec = report.recommendation
    console.print(Rule("[bold green]Consensus[/bold green]"))

    table = Table(show_header=True, header_style="bold")
    table.add_column("Agent")
    table.add_column("Approach")
    table.add_column("Confidence", justify="right")
    table.add_column("Stance")
    for resp in result.responses:
        if resp.consultant in rec.supporting:
            stance = "[green]supports[/green]"
        elif resp.consultant in rec.neutral:
            stance = "[dim]failed[/dim]"
        else:
            stance = "[yellow]dissents[/yellow]"
        table.add_row(resp.consultant, escape(resp.response.approach), _confidence_label(resp), stance)
    console.print(table)

    level_style = _LEVEL_STYLES.get(report.consensus_level, "")
    ci = report.confidence_interval
    console.print(
        f"Recommended: [bold]{escape(rec.approach or 'none')}[/bold] "
        f"(weight {rec.weighted_score}, score {report.final_weighted_score:.2f}/10)"
    )
    console.print(
        f"Consensus: [{level_style}]{report.consensus_score}% ({report.consensus_level})[/{level_style}] | "
        f"Confidence {ci.mean:.1f} +/- {ci.stddev:.1f}" + (" [red](high variance)[/red]" if ci.high_variance else "")
    )
    if result.judge_report and result.judge_report["overconfidence_detected"]:
        summary = result.judge_report["summary"]
        console.print(
            f"[yellow]Judge:[/yellow] {result.judge_report['overconfidence_detected']} overconfident "
            f"answer(s), reliability {summary['reliability']}"
        )
    console.print(Text(f"Duration: {result.duration_sec:.1f}s | Rounds: {len(result.rounds)}", style="dim"))


def _markdown(result: ConsultationResult) -> str:
    report = result.report
    rec = report.recommendation
    lines: list[str] = [
        f"# AI Consultants: {result.question.text[:80]}",
        "",
        f"**Date:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"**Category:** {result.category.value}",
        f"**Routing:** {result.routing.mode.value} ({', '.join(result.routing.agents)})",
        f"**Rounds:** {len(result.rounds)}",
        f"**Duration:** {result.duration_sec:.1f}s",
        f"**Source:** {result.question.source}",
        "",
        "## Recommendation",
        "",
        f"- **Approach:** {rec.approach or 'none'}",
        f"- **Consensus:** {report.consensus_score}% ({report.consensus_level})",
        f"- **Final weighted score:** {report.final_weighted_score:.2f}/10",
        f"- **Supporters:** {', '.join(rec.supporting) or '-'}",
        f"- **Dissenters:** {', '.join(rec.dissenting) or '-'}",
        f"- **Failed:** {', '.join(rec.neutral) or '-'}",
        "",
        "---",
        "",
    ]

    for rnd in result.rounds:
        round_label = "Independent Answers" if rnd.number == 1 else "Cross-Critique"
        lines.append(f"## Round {rnd.number}: {round_label}")
        lines.append("")
        for resp in rnd.responses:
            lines.append(f"### {resp.consultant} ({resp.persona}, {resp.model})")
            lines.append("")
            lines.append(f"**Approach:** {resp.response.approach} | **Confidence:** {_confidence_label(resp)}")
            lines.append("")
            lines.append(resp.response.detailed or resp.response.summary)
            lines.append("")
            if resp.debate and resp.debate.critiques:
                for c in resp.debate.critiques:
                    lines.append(f"- critique of {c.target} ({c.severity}): {c.critique}")
                lines.append("")

    return "\n".join(lines)


def save_to_file(result: ConsultationResult, output_dir: Path, slug_override: str | None = None) -> Path:
    """Save the consultation as markdown plus a JSON report next to it.

    Returns:
        Path to the saved markdown file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    slug = slug_override if slug_override is not None else _slug(result.question.text)
    filepath = output_dir / f"{timestamp}_{slug}.md"

    filepath.write_text(_markdown(result), encoding="utf-8")
    filepath.with_suffix(".json").write_text(json.dumps(result.to_dict(), indent=2), encoding="utf-8")
    logger.info("Consultation saved to: %s", filepath)
    return filepath
