"""Click CLI: config loading, agent selection, consultation and output."""

import asyncio
import logging
import signal
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from config.config_loader import AppConfig, load_config
from consultants.engine import ConsultationEngine, ConsultationResult, ConsultOptions
from consultants.errors import ConsultationError
from consultants.healthcheck import run_health_checks
from consultants.models import Category, DebateRound, Question
from consultants.output import print_consensus, print_round_summary, print_routing, save_to_file
from consultants.question_file import parse_file

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )
    # SDK request logs are noise at INFO
    for noisy in ("httpx", "httpcore", "openai", "anthropic", "google_genai"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def _check_and_filter_agents(engine: ConsultationEngine) -> None:
    """Run health checks, print results, and ask the user what to do on failures.

    Failed agents are disabled in the engine's registry. Exits if the user
    declines to continue or no agents pass.
    """
    console.print("\n[bold]Checking agents...[/bold]")
    results: dict[str, tuple[bool, str]] = asyncio.run(run_health_checks(engine.agents))

    failed_names: list[str] = []
    for name in sorted(results):
        ok, err = results[name]
        if ok:
            console.print(f"  [green]OK  [/green] {name}")
        else:
            short_err = err.splitlines()[0][:120] if err else "unknown error"
            console.print(f"  [red]FAIL[/red] {name}: {escape(short_err)}")
            failed_names.append(name)

    if not failed_names:
        console.print()
        return

    working = [n for n in engine.agents if n not in failed_names]
    if not working:
        console.print("\n[bold red]Error:[/bold red] No agents passed the health check.")
        sys.exit(1)

    console.print(f"\n[yellow]{len(failed_names)} agent(s) failed:[/yellow] {', '.join(failed_names)}")
    console.print(f"Working agents: {', '.join(sorted(working))}")

    if not click.confirm("Continue with working agents only?", default=True):
        sys.exit(0)

    for name in failed_names:
        engine.registry.disable(name)
    console.print()


async def _run_consultation(
    engine: ConsultationEngine,
    question: Question,
    options: ConsultOptions,
) -> ConsultationResult:
    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
    except (NotImplementedError, RuntimeError):
        # Windows event loops have no signal handler support
        pass

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            TimeElapsedColumn(),
            console=console,
            transient=True,
        ) as progress:

            def on_round_complete(rnd: DebateRound) -> None:
                ok = sum(1 for r in rnd.responses if not r.is_error)
                progress.print(f"[green]OK[/green] Round {rnd.number} complete ({ok}/{len(rnd.responses)} answered)")

            progress.add_task("Consulting agents...", total=None)
            return await engine.consult(question, options, cancel_event, on_round_complete)
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass


def _print_result(result: ConsultationResult) -> None:
    print_routing(result.routing)
    for rnd in result.rounds:
        print_round_summary(rnd)
    print_consensus(result)
    if result.cancelled:
        console.print("[yellow]Consultation was cancelled; unfinished agents are reported as failed.[/yellow]")


@click.command()
@click.argument("question", required=False)
@click.option("--file", "question_file", type=click.Path(exists=True, dir_okay=False),
              help="Read question from .md file (front matter: category, debate_rounds, reflect, agents)")
@click.option("--category", default=None,
              type=click.Choice([c.value for c in Category], case_sensitive=False),
              help="Skip classification and use this category")
@click.option("--agents", default=None, help="Comma-separated agent ids, restricts the panel")
@click.option("--context", "context_file", type=click.Path(exists=True, dir_okay=False), default=None,
              help="File whose contents are sent along with the question")
@click.option("--debate-rounds", default=None, type=click.IntRange(1, None),
              help="Total rounds including the independent one (default: from config)")
@click.option("--reflect/--no-reflect", default=None, help="Self-critique and refine each answer")
@click.option("--no-judge", is_flag=True, default=False, help="Skip the overconfidence judge")
@click.option("--no-cache", is_flag=True, default=False, help="Ignore and do not update the response cache")
@click.option("--no-routing", is_flag=True, default=False, help="Consult every enabled agent")
@click.option("--output", "output_path", default=None, help="Output directory (default: from config)")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
@click.option("--skip-health-check", is_flag=True, default=False,
              help="Skip the agent connectivity check at startup")
@click.option("--clear-cache", is_flag=True, default=False, help="Delete all cached responses and exit")
def main(
    question: str | None,
    question_file: str | None,
    category: str | None,
    agents: str | None,
    context_file: str | None,
    debate_rounds: int | None,
    reflect: bool | None,
    no_judge: bool,
    no_cache: bool,
    no_routing: bool,
    output_path: str | None,
    verbose: bool,
    skip_health_check: bool,
    clear_cache: bool,
) -> None:
    """AI Consultants -- ask a panel of AI agents and get a weighted consensus.

    \b
    Examples:
      ai-consultants "Should we use the repository pattern here?"
      ai-consultants "Fix this race condition" --context worker.py --debate-rounds 2
      ai-consultants "Best index for this query?" --agents codex,qwen3 --no-routing
      ai-consultants --file question.md --reflect
      ai-consultants --clear-cache
    """
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")

    load_dotenv()
    _setup_logging(verbose)

    try:
        config: AppConfig = load_config()
    except (FileNotFoundError, ValueError) as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)

    if clear_cache:
        engine = ConsultationEngine.from_config(config, only=[])
        removed = engine.cache.clear()
        console.print(f"Removed {removed} cached response(s).")
        return

    file_meta = None
    context_path = Path(context_file) if context_file else None
    if question_file:
        try:
            file_meta = parse_file(Path(question_file), context_path)
        except ValueError as exc:
            console.print(f"[bold red]Error:[/bold red] {exc}")
            sys.exit(1)
        q = file_meta.question
    elif question:
        q = Question(text=question, source="cli", context_path=context_path)
    else:
        console.print("[bold red]Error:[/bold red] Provide a QUESTION argument or --file.")
        sys.exit(1)

    # CLI flags win over front matter, front matter over config defaults
    agent_ids = [a.strip() for a in agents.split(",")] if agents else (file_meta.agents if file_meta else None)
    options = ConsultOptions(
        category=Category.parse(category) if category else q.category,
        debate_rounds=debate_rounds if debate_rounds is not None else (file_meta.debate_rounds if file_meta else None),
        reflect=reflect if reflect is not None else (file_meta.reflect if file_meta else None),
        judge=False if no_judge else None,
        use_cache=not no_cache,
        use_routing=False if no_routing else None,
    )

    try:
        engine = ConsultationEngine.from_config(config, only=agent_ids)
    except ValueError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        sys.exit(1)

    if not engine.agents:
        console.print("[bold red]Error:[/bold red] No agents available. Check CLIs on PATH and API keys in .env.")
        sys.exit(1)

    if not skip_health_check:
        _check_and_filter_agents(engine)

    console.print(
        f"\n[bold cyan]AI Consultants[/bold cyan] - {len(engine.registry.enabled_ids())} agents available"
    )
    preview = escape(q.text[:80]) + ("..." if len(q.text) > 80 else "")
    console.print(f"Question: [italic]{preview}[/italic]\n")

    try:
        result = asyncio.run(_run_consultation(engine, q, options))
    except ConsultationError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        sys.exit(1)

    _print_result(result)

    output_dir = Path(output_path) if output_path else config.defaults.output_dir
    saved_path = save_to_file(
        result,
        output_dir,
        slug_override=Path(question_file).stem if question_file else None,
    )
    console.print(f"\n[dim]Saved to: {saved_path}[/dim]")


if __name__ == "__main__":
    main()
