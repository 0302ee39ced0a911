"""Rich renderables for a debate session snapshot."""

from rich.console import Console, Group, RenderableType
from rich.panel import Panel
from rich.rule import Rule
from rich.text import Text

from ollama_debate.models import SessionSnapshot, SessionState, Turn

console = Console(legacy_windows=False)

ROLE_STYLES = ("deep_sky_blue1", "green3")
ERROR_STYLE = "bold red"

_STATUS_LABELS = {
    SessionState.AWAITING_TOPIC: "Waiting for a topic",
    SessionState.RUNNING: "Debating (Ctrl+C to stop)",
    SessionState.FAILED: "Debating, last turn failed (Ctrl+C to stop)",
    SessionState.STOPPED: "Stopped",
}


def _turn_panel(turn: Turn, style: str) -> Panel:
    if turn.completed_at is not None:
        subtitle = turn.completed_at.strftime("%H:%M:%S")
    else:
        subtitle = "speaking..." if turn.is_open else ""
    return Panel(
        Text(turn.content or " "),
        title=f"[bold]{turn.participant}[/bold]",
        subtitle=subtitle,
        title_align="left",
        subtitle_align="right",
        border_style=style,
    )


def render_header(snapshot: SessionSnapshot) -> RenderableType:
    first, second = snapshot.participants
    header = Text.assemble(
        ("AI Debate: ", "bold yellow"),
        (first, f"bold {ROLE_STYLES[0]}"),
        " vs ",
        (second, f"bold {ROLE_STYLES[1]}"),
    )
    parts: list[RenderableType] = [header]
    if snapshot.topic:
        parts.append(Text(f"Topic: {snapshot.topic}", style="italic"))
    return Group(*parts)


def render_snapshot(snapshot: SessionSnapshot, max_turns: int | None = None) -> RenderableType:
    """Render the header, the transcript (optionally only its tail) and the status line.

    The last error is shown below the transcript, never instead of it.
    """
    parts: list[RenderableType] = [render_header(snapshot), Rule(style="dim")]

    turns = snapshot.turns
    if max_turns is not None and len(turns) > max_turns:
        hidden = len(turns) - max_turns
        parts.append(Text(f"... {hidden} earlier turn(s) not shown", style="dim italic"))
        turns = turns[-max_turns:]
    for turn in turns:
        parts.append(_turn_panel(turn, ROLE_STYLES[snapshot.role_of(turn.participant)]))

    if snapshot.state is SessionState.RUNNING and snapshot.generating and snapshot.open_turn is None:
        parts.append(
            Text(f"[{snapshot.active_participant} is thinking...]", style=f"italic {ROLE_STYLES[snapshot.active_role]}")
        )

    if snapshot.last_error:
        parts.append(Text(snapshot.last_error, style=ERROR_STYLE))

    status = _STATUS_LABELS[snapshot.display_state]
    parts.append(
        Text(
            f"{status} | turns: {len(snapshot.closed_turns)} | failed attempts: {snapshot.failed_attempts}",
            style="dim",
        )
    )
    return Group(*parts)


def print_transcript(snapshot: SessionSnapshot) -> None:
    """Print the whole transcript once the debate is over."""
    console.print(Rule("[bold green]Debate Transcript[/bold green]"))
    console.print(render_snapshot(snapshot))
