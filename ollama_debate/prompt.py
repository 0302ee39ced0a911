"""Build the next debate prompt from the topic and the closed turns so far."""

from collections.abc import Sequence

from config.config_loader import PromptsConfig
from ollama_debate.models import Turn

_DEFAULT_PROMPTS = PromptsConfig()


def attribution(participant: str) -> str:
    return f"[{participant}]"


def format_history(turns: Sequence[Turn]) -> str:
    """One entry per turn, each led by its speaker's tag, blank line in between."""
    return "\n\n".join(f"{attribution(t.participant)}: {t.content}" for t in turns)


def compose(
    topic: str,
    turns: Sequence[Turn],
    participant: str,
    is_opening_turn: bool,
    prompts: PromptsConfig = _DEFAULT_PROMPTS,
) -> str:
    """Return the prompt for ``participant``'s next turn.

    Args:
        topic: The debate topic, embedded verbatim.
        turns: Closed turns to quote back, oldest first. Callers decide how
            many; nothing is truncated here.
        participant: The model about to speak.
        is_opening_turn: True when ``participant`` has not spoken yet. With no
            turns it opens the debate, otherwise it answers the opening.
        prompts: Template wording.
    """
    parts = [prompts.preamble.format(topic=topic, participant=participant)]

    if is_opening_turn:
        parts.append(prompts.opposing_position if turns else prompts.opening_position)

    if turns:
        parts.append(prompts.history_header)
        parts.append(format_history(turns))
        parts.append("\n\n")
        parts.append(prompts.continue_instruction)
    else:
        parts.append(prompts.opening_instruction)

    return "".join(parts)
