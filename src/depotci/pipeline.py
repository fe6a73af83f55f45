# pipeline.py
#
# Turns gathered targets into scheduler steps, split by phase.
#
# Each target gets one build step. Extra steps declared in a target's
# `ci.extra_steps` are validated, attached to (a possibly overridden view of)
# their parent and placed in the phase they ask for. Steps in the release
# phase may be gated behind a manual approval.
from __future__ import annotations

import shlex
from dataclasses import dataclass, replace
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from . import settings
from .errors import ConfigurationError
from .model import (
    INIT_KEY,
    KNOWN_PHASES,
    Block,
    ExtraStepSpec,
    GateGroup,
    PipelineStep,
    Step,
    Target,
    step_key,
)
from .ui.console import get_console

UNCHANGED = "Target has not changed."
DISABLED = "Step is disabled."

TARGET_ENV = "DEPOTCI_TARGET"


def default_build_command(target: Target) -> str:
    return f"{settings.CLI_NAME} build --out-link result {shlex.quote(target.label)}"


def should_skip(parent_map: Mapping[str, str], label: str, descriptor: str) -> str | None:
    """Skip reason if the target built to the same descriptor in the parent run."""
    if label in parent_map and parent_map[label] == descriptor:
        return UNCHANGED
    return None


def mk_step(
    parent_map: Mapping[str, str],
    target: Target,
    build_command: Callable[[Target], str] = default_build_command,
) -> Step:
    """Create the build step of a single target."""
    label = target.label
    return Step(
        label=label,
        key=step_key(label),
        command=build_command(target),
        # The init step always runs, so build steps uploaded in early chunks
        # can start before the rest of the pipeline is known.
        depends_on=frozenset({INIT_KEY}),
        skip_reason=should_skip(parent_map, label, target.descriptor),
        phase="build",
        env={TARGET_ENV: label},
    )


# ----------------------------------------------------------------------
# Extra steps
# ----------------------------------------------------------------------

def extra_step_key(parent_label: str, name: str) -> str:
    """Key of the extra step `name` of the target `parent_label`."""
    # prefixed so it cannot collide with a target label like 'web:test'
    return step_key(f":extra:{parent_label}:{name}")


@dataclass(frozen=True)
class ExtraStepConfig:
    """An extra step after validation, bound to its parent's step."""
    key: str
    label: str
    command: str
    phase: str
    parent: Step
    parent_label: str
    needs_output: bool = False
    always_run: bool = False
    skip: Union[bool, str] = False
    prompt: Union[bool, str] = False
    branches: Optional[Tuple[str, ...]] = None
    agents: Optional[Dict[str, str]] = None


def _resolve_phase(label: str, parent_label: str, spec: ExtraStepSpec) -> str:
    phase = spec.phase
    if phase is None:
        if spec.post_build is not None:
            get_console().print_warning(
                f"In step '{label}' (from {parent_label}): `post_build` is deprecated, "
                f"set phase=\"{'release' if spec.post_build else 'build'}\" instead."
            )
        phase = "release" if spec.post_build else "build"

    if phase not in KNOWN_PHASES:
        raise ConfigurationError(
            f"Phase '{phase}' is not valid.\n\nKnown phases: {', '.join(KNOWN_PHASES)}",
            target=parent_label,
            step=label,
        )
    return phase


def normalise_extra_step(
    name: str,
    spec: ExtraStepSpec,
    target: Target,
    parent_map: Mapping[str, str],
    build_command: Callable[[Target], str] = default_build_command,
) -> ExtraStepConfig:
    """
    Validate an extra step declaration before any steps are generated.

    The parent is compiled from `spec.parent_override(target)`, so skip,
    command and key of the parent reflect the override.
    """
    label = spec.label or name
    parent = mk_step(parent_map, spec.parent_override(target), build_command)
    parent_label = target.label

    if not spec.command:
        raise ConfigurationError("Missing required `command`.", target=parent_label, step=label)

    phase = _resolve_phase(label, parent_label, spec)

    if spec.prompt is not False and not isinstance(spec.prompt, str):
        raise ConfigurationError(
            f"The 'prompt' must be the text shown to the approver, got {spec.prompt!r}.",
            target=parent_label,
            step=label,
        )

    if spec.prompt is not False and phase == "build":
        raise ConfigurationError(
            "The 'prompt' feature can only be used by steps in the \"release\" "
            "phase, because CI builds should not be gated on manual human "
            "approvals.",
            target=parent_label,
            step=label,
        )

    return ExtraStepConfig(
        key=name,
        label=label,
        command=spec.command,
        phase=phase,
        parent=parent,
        parent_label=parent_label,
        needs_output=spec.needs_output,
        always_run=spec.always_run,
        skip=spec.skip,
        prompt=spec.prompt,
        branches=tuple(spec.branches) if spec.branches is not None else None,
        agents=spec.agents,
    )


def _extra_step_script(cfg: ExtraStepConfig) -> str:
    lines = ["set -ueo pipefail"]
    if cfg.needs_output:
        lines.append(f"echo {shlex.quote('~~~ Preparing build output of ' + cfg.parent_label)}")
        lines.append(cfg.parent.command)
    lines.append("echo '+++ Running extra step command'")
    lines.append(f"exec {cfg.command}")
    return "\n".join(lines)


def _extra_skip(cfg: ExtraStepConfig) -> str | None:
    if cfg.always_run:
        return None
    if cfg.skip is True:
        return DISABLED
    if isinstance(cfg.skip, str) and cfg.skip:
        return cfg.skip
    return cfg.parent.skip_reason


def mk_gated_step(step: Step, cfg: ExtraStepConfig) -> GateGroup:
    """Wrap `step` in a group behind a manual approval block."""
    block = Block(
        label=f"Run {cfg.label}? (from {cfg.parent_label})",
        prompt=str(cfg.prompt),
        branches=step.branches,
    )
    return GateGroup(
        label=cfg.label,
        depends_on=step.depends_on,
        skip_reason=step.skip_reason,
        block=block,
        # The block is now the only thing in front of the step.
        step=replace(step, depends_on=frozenset(), gate=str(cfg.prompt)),
    )


def mk_extra_step(cfg: ExtraStepConfig, build_enabled: bool = True) -> PipelineStep:
    label = f"{cfg.label} (from {cfg.parent_label})"

    # A step that needs the parent's output builds it inline, so it does not
    # wait on the parent step.
    depends_on: frozenset[str] = frozenset()
    if build_enabled and not cfg.always_run and not cfg.needs_output:
        depends_on = frozenset({cfg.parent.key})

    step = Step(
        label=label,
        # labels are display text and may repeat, step names per target may not
        key=extra_step_key(cfg.parent_label, cfg.key),
        command=_extra_step_script(cfg),
        depends_on=depends_on,
        skip_reason=_extra_skip(cfg),
        phase=cfg.phase,
        branches=cfg.branches,
        agents=cfg.agents,
    )

    if isinstance(cfg.prompt, str):
        return mk_gated_step(step, cfg)
    return step


# ----------------------------------------------------------------------
# Whole pipeline
# ----------------------------------------------------------------------

def _check_phases(active_phases: Iterable[str]) -> List[str]:
    requested = list(active_phases)
    unknown = [p for p in requested if p not in KNOWN_PHASES]
    if unknown:
        raise ConfigurationError(
            f"Unknown phase(s) requested: {', '.join(unknown)}",
            details={"known phases": ", ".join(KNOWN_PHASES)},
        )
    return [p for p in KNOWN_PHASES if p in requested]


def target_to_steps(
    target: Target,
    parent_map: Mapping[str, str],
    phases: List[str],
    build_command: Callable[[Target], str] = default_build_command,
) -> Dict[str, List[PipelineStep]]:
    """All steps of one target, keyed by phase."""
    build_enabled = "build" in phases
    out: Dict[str, List[PipelineStep]] = {p: [] for p in phases}

    if build_enabled:
        out["build"].append(mk_step(parent_map, target, build_command))

    extra_steps = target.meta.extra_steps if target.meta is not None else {}
    for name, spec in extra_steps.items():
        cfg = normalise_extra_step(name, spec, target, parent_map, build_command)
        if cfg.phase in out:
            out[cfg.phase].append(mk_extra_step(cfg, build_enabled))

    return out


def compile_pipeline(
    targets: Iterable[Target],
    parent_map: Optional[Mapping[str, str]] = None,
    extra_global_steps: Optional[Mapping[str, List[PipelineStep]]] = None,
    active_phases: Iterable[str] = KNOWN_PHASES,
    *,
    build_command: Callable[[Target], str] = default_build_command,
) -> Tuple[List[PipelineStep], List[PipelineStep]]:
    """
    Compile targets into (build_steps, release_steps).

    Args:
        targets: Gathered targets, in upload order.
        parent_map: label -> descriptor of the previous run. Targets whose
            descriptor is unchanged are skipped. Empty means build everything.
        extra_global_steps: Steps not owned by any target, per phase. They are
            appended to their phase unchanged.
        active_phases: Phases to generate. Steps of other phases are dropped.

    Raises:
        ConfigurationError: on invalid extra step declarations or unknown phases.
    """
    parent_map = parent_map or {}
    phases = _check_phases(active_phases)

    by_phase: Dict[str, List[PipelineStep]] = {p: [] for p in KNOWN_PHASES}
    for target in targets:
        for phase, steps in target_to_steps(target, parent_map, phases, build_command).items():
            by_phase[phase].extend(steps)

    for phase, steps in (extra_global_steps or {}).items():
        if phase not in KNOWN_PHASES:
            raise ConfigurationError(
                f"Global steps given for unknown phase '{phase}'",
                details={"known phases": ", ".join(KNOWN_PHASES)},
            )
        if phase in phases:
            by_phase[phase].extend(steps)

    return by_phase["build"], by_phase["release"]


def mk_target_map(targets: Iterable[Target]) -> Dict[str, dict]:
    """The map persisted for the next run: label -> descriptor and attr path."""
    return {
        t.label: {"descriptor": t.descriptor, "attr_path": t.attr_path}
        for t in targets
    }
