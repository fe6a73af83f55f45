from .dsl import artifact, ci, extra_step
from .tree import read_tree, Leaf, Namespace
from .gather import gather
from .pipeline import compile_pipeline
from .chunks import chunks_of, pipeline_chunks, mk_pipeline, write_pipeline
from .model import Artifact, CIMeta, ExtraStepSpec, Target, Step, GateGroup

__all__ = [
    "artifact", "ci", "extra_step",
    "read_tree", "Leaf", "Namespace", "gather", "compile_pipeline",
    "chunks_of", "pipeline_chunks", "mk_pipeline", "write_pipeline",
    "Artifact", "CIMeta", "ExtraStepSpec", "Target", "Step", "GateGroup",
]
