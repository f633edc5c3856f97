"""Agent definitions: default CLIs, tiered specs like ``claude:fast``, chairman choice."""

import logging
from collections.abc import Mapping, Sequence

from config.config_loader import TIERS, AgentCommandConfig
from council.errors import PipelineConfigError
from council.models import AgentSpec

logger = logging.getLogger(__name__)

DEFAULT_AGENTS: list[AgentSpec] = [
    AgentSpec(name="claude", command=("claude", "--print", "--output-format", "text"), prompt_via_stdin=True),
    AgentSpec(name="codex", command=("codex", "exec", "--skip-git-repo-check", "-"), prompt_via_stdin=True),
    AgentSpec(name="gemini", command=("gemini", "--output-format", "text"), prompt_via_stdin=True),
]

DEFAULT_CHAIRMAN = "gemini"
DEFAULT_TIER = "default"


def lower_tier(tier: str) -> str:
    """One step cheaper: heavy -> default -> fast. fast stays fast."""
    idx = TIERS.index(tier)
    return TIERS[max(idx - 1, 0)]


def split_agent_spec(text: str) -> tuple[str, str]:
    """``"claude:fast"`` -> ``("claude", "fast")``; a bare name gets the default tier."""
    name, _, tier = text.strip().partition(":")
    tier = tier.strip().lower() or DEFAULT_TIER
    if tier not in TIERS:
        raise PipelineConfigError(f"Unknown tier '{tier}' in agent spec '{text}'. Valid: {', '.join(TIERS)}")
    return name.strip().lower(), tier


class AgentRegistry:
    """Builds AgentSpecs from the per-tier commands in settings."""

    def __init__(self, commands: Mapping[str, AgentCommandConfig]) -> None:
        self._commands = {name.lower(): cfg for name, cfg in commands.items()}

    def __contains__(self, name: str) -> bool:
        return name.lower() in self._commands

    def create(self, text: str) -> AgentSpec:
        """Build the AgentSpec for ``name`` or ``name:tier``."""
        name, tier = split_agent_spec(text)
        cfg = self._commands.get(name)
        if cfg is None:
            raise PipelineConfigError(f"Unknown agent '{name}'. Known: {', '.join(self._commands)}")
        command = cfg.tiers.get(tier) or cfg.tiers.get(DEFAULT_TIER)
        if not command:
            raise PipelineConfigError(f"Agent '{name}' has no command for tier '{tier}'")
        spec_name = name if tier == DEFAULT_TIER else f"{name}:{tier}"
        return AgentSpec(name=spec_name, command=tuple(command), prompt_via_stdin=cfg.prompt_via_stdin)

    def create_many(self, texts: Sequence[str]) -> list[AgentSpec]:
        specs = [self.create(t) for t in texts]
        seen: set[str] = set()
        for spec in specs:
            key = spec.name.lower()
            if key in seen:
                raise PipelineConfigError(f"Duplicate agent '{spec.name}'")
            seen.add(key)
        return specs

    def resolve_tier(self, spec: AgentSpec, tier: str | None) -> AgentSpec:
        """Same agent at another tier, or ``spec`` unchanged when that is not possible."""
        if tier is None:
            return spec
        base = spec.name.partition(":")[0]
        if base not in self:
            logger.debug("No tier commands for %s; keeping it as configured", spec.name)
            return spec
        return self.create(f"{base}:{tier}")


def create_agent_from_spec(text: str, registry: AgentRegistry | None = None) -> AgentSpec:
    """``claude`` / ``claude:fast`` -> AgentSpec.

    Without a registry only the built-in agents are known, and they have a
    single command regardless of tier.
    """
    if registry is not None:
        return registry.create(text)
    name, tier = split_agent_spec(text)
    spec = find_agent(DEFAULT_AGENTS, name)
    if spec is None:
        known = ", ".join(a.name for a in DEFAULT_AGENTS)
        raise PipelineConfigError(f"Unknown agent '{name}'. Known: {known}")
    if tier != DEFAULT_TIER:
        logger.debug("Built-in agent %s has no '%s' tier; using its default command", name, tier)
    return spec


def find_agent(agents: Sequence[AgentSpec], name: str) -> AgentSpec | None:
    for agent in agents:
        if agent.name.lower() == name.lower():
            return agent
    return None


def pick_chairman(agents: Sequence[AgentSpec], name: str | None = None) -> AgentSpec:
    """Requested chairman, else the default chairman, else the first agent."""
    if not agents:
        raise PipelineConfigError("No agents to pick a chairman from")
    if name:
        found = find_agent(agents, name)
        if found:
            return found
        logger.warning("Chairman '%s' not available, falling back", name)
    return find_agent(agents, DEFAULT_CHAIRMAN) or agents[0]
