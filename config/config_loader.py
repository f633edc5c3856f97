"""Load settings.yaml into typed dataclasses: defaults, agent commands, presets."""

import logging
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"

TIERS = ("fast", "default", "heavy")
MODES = ("compete", "merge")


@dataclass
class AgentCommandConfig:
    name: str
    tiers: dict[str, list[str]]
    prompt_via_stdin: bool = True


@dataclass
class TwoPassPreset:
    enabled: bool = False
    pass1_tier: str | None = None
    pass2_tier: str | None = None
    pass1_format: str | None = None
    pass1_is_custom_prompt: bool = False
    pass2_format: str | None = None
    pass2_is_custom_prompt: bool = False


@dataclass
class CritiquePreset:
    enabled: bool = False
    agents: list[str] | None = None
    chairman: str | None = None
    prompt: str | None = None
    confirm: bool = False


@dataclass
class PresetConfig:
    name: str
    mode: str
    stage1: list[str]
    chairman: str
    stage2: list[str] | None = None
    fallback: str | None = None
    stage1_prompt: str | None = None
    output_format: str | None = None
    use_summaries: bool = False
    two_pass: TwoPassPreset = field(default_factory=TwoPassPreset)
    critique: CritiquePreset = field(default_factory=CritiquePreset)


@dataclass
class InboxConfig:
    dir: Path
    archive_dir: Path


@dataclass
class DefaultsConfig:
    preset: str
    output_dir: Path
    timeout_sec: int | None = None
    checkpoint_dir: Path | None = None


@dataclass
class AppConfig:
    defaults: DefaultsConfig
    agents: dict[str, AgentCommandConfig]
    presets: dict[str, PresetConfig]
    inbox: InboxConfig


def _optional_int(value: object) -> int | None:
    if value in (None, "", 0):
        return None
    return int(value)  # type: ignore[arg-type]


def _load_agent(name: str, raw: dict) -> AgentCommandConfig:
    tiers_raw = raw.get("tiers", {})
    unknown = set(tiers_raw) - set(TIERS)
    if unknown:
        raise ValueError(f"Agent '{name}': unknown tiers {sorted(unknown)}")
    tiers = {tier: [str(arg) for arg in argv] for tier, argv in tiers_raw.items()}
    if "default" not in tiers:
        raise ValueError(f"Agent '{name}': a 'default' tier command is required")
    return AgentCommandConfig(
        name=name,
        tiers=tiers,
        prompt_via_stdin=bool(raw.get("prompt_via_stdin", True)),
    )


def _load_preset(name: str, raw: dict) -> PresetConfig:
    mode = str(raw.get("mode", "compete"))
    if mode not in MODES:
        raise ValueError(f"Preset '{name}': unknown mode '{mode}'")

    two_pass_raw = raw.get("two_pass") or {}
    critique_raw = raw.get("critique") or {}
    stage2 = raw.get("stage2")

    return PresetConfig(
        name=name,
        mode=mode,
        stage1=[str(a) for a in raw["stage1"]],
        chairman=str(raw["chairman"]),
        stage2=[str(a) for a in stage2] if stage2 else None,
        fallback=raw.get("fallback"),
        stage1_prompt=raw.get("stage1_prompt"),
        output_format=raw.get("output_format"),
        use_summaries=bool(raw.get("use_summaries", False)),
        two_pass=TwoPassPreset(
            enabled=bool(two_pass_raw.get("enabled", False)),
            pass1_tier=two_pass_raw.get("pass1_tier"),
            pass2_tier=two_pass_raw.get("pass2_tier"),
            pass1_format=two_pass_raw.get("pass1_format"),
            pass1_is_custom_prompt=bool(two_pass_raw.get("pass1_is_custom_prompt", False)),
            pass2_format=two_pass_raw.get("pass2_format"),
            pass2_is_custom_prompt=bool(two_pass_raw.get("pass2_is_custom_prompt", False)),
        ),
        critique=CritiquePreset(
            enabled=bool(critique_raw.get("enabled", False)),
            agents=list(critique_raw["agents"]) if critique_raw.get("agents") else None,
            chairman=critique_raw.get("chairman"),
            prompt=critique_raw.get("prompt"),
            confirm=bool(critique_raw.get("confirm", False)),
        ),
    )


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if the settings file is missing and ValueError
    for unknown modes or tiers. Whether the agent CLIs are installed is not
    checked here; see council.healthcheck.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    defaults_raw = raw["defaults"]
    checkpoint_dir = defaults_raw.get("checkpoint_dir")
    defaults = DefaultsConfig(
        preset=str(defaults_raw["preset"]),
        output_dir=Path(defaults_raw["output_dir"]),
        timeout_sec=_optional_int(defaults_raw.get("timeout_sec")),
        checkpoint_dir=Path(checkpoint_dir) if checkpoint_dir else None,
    )

    agents = {name: _load_agent(name, agent_raw) for name, agent_raw in raw["agents"].items()}
    presets = {name: _load_preset(name, preset_raw) for name, preset_raw in raw["presets"].items()}

    if defaults.preset not in presets:
        raise ValueError(f"Default preset '{defaults.preset}' is not defined")

    inbox_raw = raw.get("inbox", {})
    inbox = InboxConfig(
        dir=Path(inbox_raw.get("dir", "./inbox")),
        archive_dir=Path(inbox_raw.get("archive_dir", "./inbox/archive")),
    )

    logger.debug("Loaded %d agents and %d presets from %s", len(agents), len(presets), settings_path)
    return AppConfig(defaults=defaults, agents=agents, presets=presets, inbox=inbox)
