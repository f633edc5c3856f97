"""Exceptions raised by the council pipeline."""


class CouncilError(Exception):
    """Base class for council pipeline errors."""


class PipelineConfigError(CouncilError, ValueError):
    """Raised for an invalid pipeline configuration, before any process is spawned."""


class ChairmanError(CouncilError):
    """Raised when a chairman (and its fallback, if any) fails to produce output."""

    def __init__(self, agent_name: str, message: str) -> None:
        self.agent_name = agent_name
        super().__init__(f"[{agent_name}] {message}")
