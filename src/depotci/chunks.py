# chunks.py
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, TypeVar, Union

from pydantic import BaseModel, Field, TypeAdapter

from . import settings
from .model import KNOWN_PHASES, Block, GateGroup, PipelineChunk, PipelineStep, Step, Target
from .pipeline import mk_target_map

T = TypeVar("T")

# -------------------- Schemas --------------------

class BlockPayload(BaseModel):
    block: str
    prompt: str
    branches: Optional[str] = None


class StepPayload(BaseModel):
    label: str
    key: str
    command: str
    depends_on: list[str] = Field(default_factory=list)
    skip: Union[str, bool] = False
    env: dict[str, str] = Field(default_factory=dict)
    branches: Optional[str] = None
    agents: Optional[dict[str, str]] = None


class GroupPayload(BaseModel):
    group: str
    depends_on: list[str] = Field(default_factory=list)
    skip: Union[str, bool] = False
    steps: list[Union[BlockPayload, StepPayload]]


class ChunkPayload(BaseModel):
    steps: list[Union[GroupPayload, StepPayload]]


class TargetMapEntry(BaseModel):
    descriptor: str
    attr_path: list[str] = Field(default_factory=list)


_target_map_adapter = TypeAdapter(Dict[str, TargetMapEntry])


# -------------------- Conversion --------------------

def _branches(branches: Optional[Sequence[str]]) -> Optional[str]:
    # the scheduler takes a space separated list
    return " ".join(branches) if branches is not None else None


def step_to_payload(step: Step) -> StepPayload:
    return StepPayload(
        label=step.label,
        key=step.key,
        command=step.command,
        depends_on=sorted(step.depends_on),
        skip=step.skip_reason or False,
        env=dict(step.env),
        branches=_branches(step.branches),
        agents=step.agents,
    )


def block_to_payload(block: Block) -> BlockPayload:
    return BlockPayload(block=block.label, prompt=block.prompt, branches=_branches(block.branches))


def to_payload(step: PipelineStep) -> Union[StepPayload, GroupPayload]:
    if isinstance(step, GateGroup):
        return GroupPayload(
            group=step.label,
            depends_on=sorted(step.depends_on),
            skip=step.skip_reason or False,
            steps=[block_to_payload(step.block), step_to_payload(step.step)],
        )
    return step_to_payload(step)


def chunk_to_dict(chunk: PipelineChunk) -> dict:
    payload = ChunkPayload(steps=[to_payload(s) for s in chunk.steps])
    return payload.model_dump(exclude_none=True)


# -------------------- Chunking --------------------

def chunks_of(items: Sequence[T], n: int) -> List[List[T]]:
    """
    Split `items` into consecutive chunks of at most `n` elements.

    Element i (0-based) lands in chunk i // n + 1; order is preserved.
    """
    if n < 1:
        raise ValueError(f"chunk size must be at least 1, got {n}")

    grouped: Dict[int, List[T]] = {}
    for idx, item in enumerate(items):
        grouped.setdefault(idx // n + 1, []).append(item)
    return [grouped[i] for i in sorted(grouped)]


def pipeline_chunks(
    phase: str,
    steps: Sequence[PipelineStep],
    max_size: int = settings.CHUNK_SIZE,
) -> List[PipelineChunk]:
    return [
        PipelineChunk(phase=phase, index=i, steps=chunk)
        for i, chunk in enumerate(chunks_of(steps, max_size), start=1)
    ]


def mk_pipeline(
    build_steps: Sequence[PipelineStep],
    release_steps: Sequence[PipelineStep],
    phases: Iterable[str] = KNOWN_PHASES,
    max_size: int = settings.CHUNK_SIZE,
) -> List[PipelineChunk]:
    """Chunks of all phases with steps, in upload order (build first)."""
    by_phase = {"build": build_steps, "release": release_steps}
    active = set(phases)
    out: List[PipelineChunk] = []
    for phase in KNOWN_PHASES:
        if phase in active and by_phase[phase]:
            out.extend(pipeline_chunks(phase, by_phase[phase], max_size))
    return out


# -------------------- Files --------------------

def write_pipeline(out_dir: str | Path, chunks: Iterable[PipelineChunk]) -> List[Path]:
    """Write every chunk to `<out_dir>/<phase>-chunk-<n>.json`, in order."""
    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)
    written: List[Path] = []
    for chunk in chunks:
        path = out / chunk.filename
        path.write_text(json.dumps(chunk_to_dict(chunk), indent=2) + "\n", encoding="utf-8")
        written.append(path)
    return written


def write_target_map(out_dir: str | Path, targets: Iterable[Target]) -> Path:
    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)
    path = out / settings.TARGET_MAP_FILE
    path.write_text(json.dumps(mk_target_map(targets), indent=2, sort_keys=True) + "\n", encoding="utf-8")
    return path


def load_target_map(path: str | Path | None) -> Dict[str, str]:
    """
    Read a target map written by a previous run into label -> descriptor.

    A missing file is not an error: everything gets built.
    """
    if path is None:
        return {}
    p = Path(path)
    if not p.exists():
        return {}
    entries: Dict[str, Any] = _target_map_adapter.validate_json(p.read_bytes())
    return {label: entry.descriptor for label, entry in entries.items()}
