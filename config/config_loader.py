"""Load settings.yaml into typed dataclasses. Applies env overrides at startup."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"

DEFAULT_BASE_URL = "http://localhost:11434"


@dataclass
class OllamaConfig:
    base_url: str = DEFAULT_BASE_URL
    connect_timeout_sec: float = 10.0
    generation_timeout_sec: float | None = None  # None: no wall-clock limit per turn


@dataclass
class DefaultsConfig:
    model1: str = "gemma3n:e4b"
    model2: str = "gemma3:4b"
    max_consecutive_failures: int | None = 5
    max_context_turns: int | None = None  # None: whole transcript goes into every prompt


@dataclass
class PromptsConfig:
    preamble: str = (
        'You are participating in a debate on the topic: "{topic}"\n\n'
        "You are {participant}. Your role is to present arguments and respond "
        "to your opponent's points.\n\n"
    )
    opening_position: str = (
        "You will be presenting the opening argument. Take a clear position on "
        "this topic and present your initial arguments.\n\n"
    )
    opposing_position: str = (
        "You will be responding to the opening argument. Take an opposing or "
        "alternative perspective and present your counterarguments.\n\n"
    )
    history_header: str = "Previous discussion:\n"
    opening_instruction: str = (
        "Provide your opening argument. Be thoughtful, specific, and clearly "
        "state your position.\n"
    )
    continue_instruction: str = (
        "Provide your next argument or response. Be thoughtful, specific, and "
        "engage directly with the previous points made.\n"
    )


@dataclass
class AppConfig:
    ollama: OllamaConfig = field(default_factory=OllamaConfig)
    defaults: DefaultsConfig = field(default_factory=DefaultsConfig)
    prompts: PromptsConfig = field(default_factory=PromptsConfig)


def normalize_base_url(url: str) -> str:
    """Accept OLLAMA_HOST-style values ("0.0.0.0:11434") as well as full URLs."""
    url = url.strip()
    if "://" not in url:
        url = f"http://{url}"
    return url.rstrip("/")


def _optional_int(value: object) -> int | None:
    return None if value is None else int(value)


def _optional_float(value: object) -> float | None:
    return None if value is None else float(value)


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Every section is optional; missing keys fall back to the dataclass
    defaults. OLLAMA_HOST in the environment overrides ``ollama.base_url``.

    Raises FileNotFoundError if settings file missing, ValueError if a prompt
    template cannot embed the topic.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    ollama_raw = raw.get("ollama") or {}
    base_url = ollama_raw.get("base_url", DEFAULT_BASE_URL)
    env_host = os.environ.get("OLLAMA_HOST", "").strip()
    if env_host:
        logger.info("Using OLLAMA_HOST from environment: %s", env_host)
        base_url = env_host
    ollama = OllamaConfig(
        base_url=normalize_base_url(str(base_url)),
        connect_timeout_sec=float(ollama_raw.get("connect_timeout_sec", 10.0)),
        generation_timeout_sec=_optional_float(ollama_raw.get("generation_timeout_sec")),
    )

    defaults_raw = raw.get("defaults") or {}
    defaults = DefaultsConfig(
        model1=str(defaults_raw.get("model1", DefaultsConfig.model1)),
        model2=str(defaults_raw.get("model2", DefaultsConfig.model2)),
        max_consecutive_failures=_optional_int(defaults_raw.get("max_consecutive_failures", 5)),
        max_context_turns=_optional_int(defaults_raw.get("max_context_turns")),
    )

    prompts_raw = raw.get("prompts") or {}
    unknown = set(prompts_raw) - set(PromptsConfig.__dataclass_fields__)
    if unknown:
        logger.warning("Ignoring unknown prompt templates: %s", ", ".join(sorted(unknown)))
    prompts = PromptsConfig(
        **{k: str(v) for k, v in prompts_raw.items() if k in PromptsConfig.__dataclass_fields__}
    )
    if "{topic}" not in prompts.preamble:
        raise ValueError("prompts.preamble must contain the {topic} placeholder")

    return AppConfig(ollama=ollama, defaults=defaults, prompts=prompts)
