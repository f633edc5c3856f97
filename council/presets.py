"""Turn a named preset from settings.yaml into pipeline arguments."""

import logging
from dataclasses import dataclass

from config.config_loader import AppConfig, PresetConfig
from council.agents import AgentRegistry
from council.critique import CritiqueConfig
from council.errors import PipelineConfigError
from council.models import AgentSpec
from council.pipeline import PipelineOptions
from council.synthesis import TwoPassConfig

logger = logging.getLogger(__name__)


@dataclass
class CouncilPlan:
    preset: str
    responders: list[AgentSpec]
    chairman: AgentSpec
    options: PipelineOptions


def get_preset(config: AppConfig, name: str | None) -> PresetConfig:
    preset_name = name or config.defaults.preset
    preset = config.presets.get(preset_name)
    if preset is None:
        raise PipelineConfigError(f"Unknown preset '{preset_name}'. Available: {', '.join(config.presets)}")
    return preset


def build_pipeline_options(
    config: AppConfig,
    preset_name: str | None = None,
    *,
    mode: str | None = None,
    responders: list[str] | None = None,
    chairman: str | None = None,
    timeout_sec: float | None = None,
    two_pass: bool | None = None,
    critique: bool | None = None,
    confirm: bool | None = None,
) -> CouncilPlan:
    """Resolve a preset plus per-run overrides into agents and PipelineOptions.

    Overrides win over the preset. Compete presets without an explicit
    ``stage2`` list use the responders as evaluators; merge presets have none.
    The caller fills in callbacks, the confirm handler and resume state.
    """
    preset = get_preset(config, preset_name)
    registry = AgentRegistry(config.agents)

    effective_mode = mode or preset.mode
    stage1 = registry.create_many(responders or preset.stage1)
    chairman_spec = registry.create(chairman or preset.chairman)

    fallback: AgentSpec | None = None
    if preset.fallback:
        fallback = registry.create(preset.fallback)
        if fallback.name.lower() == chairman_spec.name.lower():
            fallback = None

    evaluators: list[AgentSpec] | None = None
    if effective_mode == "compete":
        if preset.stage2 and not responders:
            evaluators = registry.create_many(preset.stage2)
        else:
            evaluators = list(stage1)

    tp = preset.two_pass
    cq = preset.critique
    critique_enabled = cq.enabled if critique is None else critique
    options = PipelineOptions(
        timeout_sec=timeout_sec if timeout_sec is not None else config.defaults.timeout_sec,
        mode=effective_mode,
        stage1_prompt=preset.stage1_prompt,
        evaluators=evaluators,
        output_format=preset.output_format,
        fallback_chairman=fallback,
        use_summaries=preset.use_summaries,
        two_pass=TwoPassConfig(
            enabled=tp.enabled if two_pass is None else two_pass,
            pass1_tier=tp.pass1_tier,
            pass2_tier=tp.pass2_tier,
            pass1_format=tp.pass1_format,
            pass1_is_custom_prompt=tp.pass1_is_custom_prompt,
            pass2_format=tp.pass2_format,
            pass2_is_custom_prompt=tp.pass2_is_custom_prompt,
        ),
        critique=CritiqueConfig(
            enabled=critique_enabled,
            agents=registry.create_many(cq.agents) if cq.agents else None,
            chairman=registry.create(cq.chairman) if cq.chairman else None,
            prompt=cq.prompt,
            confirm=cq.confirm if confirm is None else confirm,
        ),
        registry=registry,
    )
    logger.debug(
        "Preset %s: mode=%s responders=%s chairman=%s",
        preset.name,
        effective_mode,
        [s.name for s in stage1],
        chairman_spec.name,
    )
    return CouncilPlan(preset=preset.name, responders=stage1, chairman=chairman_spec, options=options)
