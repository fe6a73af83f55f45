# errors.py
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class ConfigurationError(Exception):
    """
    Invalid CI configuration. Aborts the whole run.

    `step` and `target` are filled in when the problem is in an extra step,
    so the message can point at the definition that needs fixing.
    """
    message: str
    target: str | None = None
    step: str | None = None
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        if self.step is not None:
            lines = [f"In step '{self.step}' (from {self.target}):", "", self.message]
        elif self.target is not None:
            lines = [f"In target '{self.target}':", "", self.message]
        else:
            lines = [self.message]
        for k, v in self.details.items():
            lines.append(f"{k}: {v}")
        return "\n".join(lines)


@dataclass
class ResolutionError(Exception):
    """A definition file could not be read into the tree."""
    path: str
    message: str

    def __str__(self) -> str:
        return f"read_tree: {self.path}: {self.message}"


@dataclass
class BuildFailure(Exception):
    label: str
    cmd: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    def __str__(self) -> str:
        return f"[{self.label}] build failed (exit={self.exit_code}): {self.cmd}"
