# dsl.py
from __future__ import annotations

from typing import Callable, Dict, List, Optional, Union

from .model import Artifact, CIMeta, ExtraStepSpec, Target


# ---------------------------------------------------------------------
# Extra steps
# ---------------------------------------------------------------------

def extra_step(
    command: str,
    *,
    label: Optional[str] = None,
    phase: Optional[str] = None,
    needs_output: bool = False,
    parent_override: Optional[Callable[[Target], Target]] = None,
    branches: Optional[List[str]] = None,
    always_run: bool = False,
    prompt: Union[bool, str] = False,
    skip: Union[bool, str] = False,
    agents: Optional[Dict[str, str]] = None,
) -> ExtraStepSpec:
    """
    Declare an extra CI step for the target it is attached to.

    Example:
        ci(extra_steps={
            "deploy": extra_step("./deploy.sh", phase="release",
                                 prompt="Deploy to production?",
                                 branches=["refs/heads/main"]),
        })
    """
    return ExtraStepSpec(
        command=command,
        label=label,
        phase=phase,
        needs_output=needs_output,
        parent_override=parent_override or (lambda target: target),
        branches=branches,
        always_run=always_run,
        prompt=prompt,
        skip=skip,
        agents=agents,
    )


def ci(
    *,
    extra_steps: Optional[Dict[str, ExtraStepSpec]] = None,
    virtual_targets: Optional[List[str]] = None,
) -> CIMeta:
    return CIMeta(extra_steps=dict(extra_steps or {}), virtual_targets=list(virtual_targets or []))


# ---------------------------------------------------------------------
# Artifacts
# ---------------------------------------------------------------------

def artifact(
    name: str,
    run: str,
    *,
    inputs: Optional[List[str]] = None,
    env: Optional[Dict[str, str]] = None,
    cwd: str | None = None,
    subtargets: Optional[Dict[str, Artifact]] = None,
    meta: Optional[CIMeta] = None,
) -> Artifact:
    """
    Declare a buildable artifact.

    Example (tools/lint/default.py):
        from depotci.dsl import artifact, ci, extra_step

        def define(located_at, **args):
            return artifact(
                "lint",
                "ruff check . && touch $out/ok",
                inputs=["tools/lint/**"],
                cwd="tools/lint",
                meta=ci(virtual_targets=["strict"]),
                subtargets={"strict": artifact("lint-strict", "ruff check --select ALL .")},
            )
    """
    if not run or not run.strip():
        raise ValueError(f"artifact({name!r}) must have a run command")

    return Artifact(
        name=name,
        run=run,
        inputs=list(inputs or []),
        env={k: str(v) for k, v in (env or {}).items()},
        cwd=cwd,
        subtargets=dict(subtargets or {}),
        ci=meta,
    )
