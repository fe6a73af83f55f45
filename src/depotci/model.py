# model.py
from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Union


KNOWN_PHASES = ("build", "release")

# Key of the always-run step uploaded by the static part of the pipeline.
INIT_KEY = ":init:"


def step_key(label: str) -> str:
    """Stable scheduler key for a label."""
    return hashlib.sha1(label.encode("utf-8")).hexdigest()


def mk_label(path: Tuple[str, ...] | List[str], subtarget: str | None = None) -> str:
    label = "/".join(path)
    if subtarget is not None:
        label = f"{label}:{subtarget}"
    return label


def parse_label(label: str) -> Tuple[Tuple[str, ...], Optional[str]]:
    """Inverse of mk_label: 'a/b:test' -> (('a', 'b'), 'test')."""
    physical, sep, subtarget = label.partition(":")
    path = tuple(p for p in physical.split("/") if p)
    return path, (subtarget if sep else None)


# ---------------------------------------------------------------------
# Definition values
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class ExtraStepSpec:
    """
    An extra CI step declared by a target in `ci.extra_steps`.

    Only `command` is required; it is validated when the pipeline is compiled
    so that errors can name the owning target.
    """
    command: Optional[str] = None
    label: Optional[str] = None
    needs_output: bool = False
    parent_override: Callable[["Target"], "Target"] = lambda target: target
    branches: Optional[List[str]] = None
    always_run: bool = False
    prompt: Union[bool, str] = False
    phase: Optional[str] = None
    skip: Union[bool, str] = False
    agents: Optional[Dict[str, str]] = None

    # Deprecated: use phase="release" instead.
    post_build: Optional[bool] = None


@dataclass(frozen=True)
class CIMeta:
    extra_steps: Dict[str, ExtraStepSpec] = field(default_factory=dict)
    virtual_targets: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class Artifact:
    """
    Something the build backend knows how to build.

    `run` is executed with `$out` pointing at the output location. The
    descriptor of an artifact only depends on what goes into the build
    (command, env, cwd, contents of `inputs`), never on where it was found.
    """
    name: str
    run: str
    inputs: List[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    cwd: str | None = None
    subtargets: Dict[str, "Artifact"] = field(default_factory=dict)
    ci: Optional[CIMeta] = None


# ---------------------------------------------------------------------
# Targets and steps
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class Target:
    """A buildable unit found in the workspace, physical or virtual."""
    path: Tuple[str, ...]
    descriptor: str
    value: Any = None
    subtarget: str | None = None
    meta: Optional[CIMeta] = None

    @property
    def label(self) -> str:
        return mk_label(self.path, self.subtarget)

    @property
    def key(self) -> str:
        return step_key(self.label)

    @property
    def is_virtual(self) -> bool:
        return self.subtarget is not None

    @property
    def attr_path(self) -> List[str]:
        parts = list(self.path)
        if self.subtarget is not None:
            parts.append(self.subtarget)
        return parts


@dataclass(frozen=True)
class Step:
    """A single unit of work handed to the CI scheduler."""
    label: str
    key: str
    command: str
    depends_on: frozenset[str] = frozenset()
    skip_reason: str | None = None
    phase: str = "build"
    branches: Optional[Tuple[str, ...]] = None
    gate: str | None = None
    env: Dict[str, str] = field(default_factory=dict)
    agents: Optional[Dict[str, str]] = None


@dataclass(frozen=True)
class Block:
    """Manual approval element of a gate group."""
    label: str
    prompt: str
    branches: Optional[Tuple[str, ...]] = None


@dataclass(frozen=True)
class GateGroup:
    """
    A step behind a manual approval.

    The group keeps the dependency and skip reason of the wrapped step; the
    wrapped step itself has no dependencies because the block sits in front
    of it.
    """
    label: str
    depends_on: frozenset[str]
    skip_reason: str | None
    block: Block
    step: Step

    @property
    def phase(self) -> str:
        return self.step.phase

    @property
    def steps(self) -> Tuple[Block, Step]:
        return (self.block, self.step)


PipelineStep = Union[Step, GateGroup]


@dataclass(frozen=True)
class PipelineChunk:
    phase: str
    index: int
    steps: List[PipelineStep]

    @property
    def filename(self) -> str:
        return f"{self.phase}-chunk-{self.index}.json"
