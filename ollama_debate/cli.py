"""Click CLI: validate models, read a topic, run the debate under a live display."""

import asyncio
import logging
import signal
import sys

import click
from dotenv import load_dotenv
from rich.live import Live
from rich.logging import RichHandler

from config.config_loader import AppConfig, load_config, normalize_base_url
from ollama_debate.debate import DebateSession, TopicValidationError
from ollama_debate.healthcheck import run_health_checks
from ollama_debate.models import SessionSnapshot
from ollama_debate.output import console, print_transcript, render_snapshot
from ollama_debate.providers.ollama import OllamaClient

logger = logging.getLogger(__name__)

# The live view only shows the tail; the full transcript is printed on exit.
_LIVE_TURNS = 4


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def _resolve_participants(
    config: AppConfig,
    model1: str | None,
    model2: str | None,
) -> tuple[str, str]:
    """CLI flags override config defaults. Both names must be set and distinct."""
    first = (model1 or config.defaults.model1).strip()
    second = (model2 or config.defaults.model2).strip()
    if not first or not second:
        raise click.BadParameter("model names cannot be empty")
    if first == second:
        raise click.BadParameter(f"both participants are '{first}'; pick two different models")
    return first, second


async def _validate_participants(client: OllamaClient, participants: tuple[str, str]) -> bool:
    """Check both models against the server's catalog and print the results."""
    console.print("\n[bold]Validating models...[/bold]")
    results = await run_health_checks(client, list(participants))

    failed: list[str] = []
    for name in participants:
        ok, err = results[name]
        if ok:
            console.print(f"  [green]OK  [/green] {name}")
        else:
            short_err = err.splitlines()[0][:120] if err else "unknown error"
            console.print(f"  [red]FAIL[/red] {name}: {short_err}")
            failed.append(name)

    if failed:
        console.print(f"\nPlease ensure Ollama is running at {client.base_url} and the models are installed.")
        for name in failed:
            console.print(f"You can install it with: [bold]ollama pull {name}[/bold]")
        return False

    console.print(f"[green]Models validated:[/green] {participants[0]} and {participants[1]}\n")
    return True


def _submit_topic(session: DebateSession, topic: str | None) -> None:
    """Submit ``topic``, prompting again until a non-blank one is accepted."""
    while True:
        if topic is None:
            # Nothing else runs on the loop yet, so blocking on stdin here is fine.
            topic = click.prompt("Enter a debate topic", default="", show_default=False)
        try:
            session.submit(topic)
            return
        except TopicValidationError as exc:
            console.print(f"[bold red]Error:[/bold red] {exc}")
            topic = None


async def _run_debate(
    config: AppConfig,
    participants: tuple[str, str],
    topic: str | None,
    skip_validation: bool,
) -> int:
    """Run one debate until Ctrl+C or the failure cap. Returns the exit code."""
    async with OllamaClient(config.ollama.base_url, config.ollama.connect_timeout_sec) as client:
        if not skip_validation and not await _validate_participants(client, participants):
            return 1

        live = Live(console=console, refresh_per_second=8, transient=True)

        def on_change(snapshot: SessionSnapshot) -> None:
            live.update(render_snapshot(snapshot, max_turns=_LIVE_TURNS))

        session = DebateSession(
            client,
            participants,
            prompts=config.prompts,
            max_consecutive_failures=config.defaults.max_consecutive_failures,
            max_context_turns=config.defaults.max_context_turns,
            generation_timeout_sec=config.ollama.generation_timeout_sec,
            on_change=on_change,
        )
        _submit_topic(session, topic)

        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, session.stop)
            handler_installed = True
        except (NotImplementedError, RuntimeError):
            # Windows: Ctrl+C surfaces as KeyboardInterrupt instead.
            handler_installed = False

        try:
            with live:
                await session.run()
        finally:
            if handler_installed:
                loop.remove_signal_handler(signal.SIGINT)
            await session.aclose()

    snapshot = session.snapshot()
    print_transcript(snapshot)
    cap = config.defaults.max_consecutive_failures
    return 1 if cap and snapshot.consecutive_failures >= cap else 0


@click.command()
@click.option("--model1", default=None, help="First model; opens the debate (default: from config)")
@click.option("--model2", default=None, help="Second model (default: from config)")
@click.option("--topic", default=None, help="Debate topic; prompted for when omitted")
@click.option("--host", default=None, help="Ollama base URL (default: OLLAMA_HOST or config)")
@click.option("--timeout", "timeout_sec", type=click.FloatRange(min=0, min_open=True), default=None,
              help="Per-turn time limit in seconds (default: from config, none)")
@click.option("--max-failures", type=click.IntRange(min=1), default=None,
              help="Stop after this many failed turns in a row (default: from config)")
@click.option("--skip-validation", is_flag=True, default=False,
              help="Skip the model availability check at startup")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
def main(
    model1: str | None,
    model2: str | None,
    topic: str | None,
    host: str | None,
    timeout_sec: float | None,
    max_failures: int | None,
    skip_validation: bool,
    verbose: bool,
) -> None:
    """Ollama Debate -- two local models argue a topic, turn by turn.

    \b
    Examples:
      ollama-debate
      ollama-debate --model1 llama3.2 --model2 mistral:7b
      ollama-debate --topic "Is remote work better than office work?"
      ollama-debate --host http://gpu-box:11434 --timeout 120
    """
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")

    load_dotenv()
    _setup_logging(verbose)

    try:
        config = load_config()
    except (FileNotFoundError, ValueError) as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)

    if host:
        config.ollama.base_url = normalize_base_url(host)
    if timeout_sec is not None:
        config.ollama.generation_timeout_sec = timeout_sec
    if max_failures is not None:
        config.defaults.max_consecutive_failures = max_failures

    participants = _resolve_participants(config, model1, model2)

    try:
        exit_code = asyncio.run(_run_debate(config, participants, topic, skip_validation))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted.[/yellow]")
        exit_code = 130
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
