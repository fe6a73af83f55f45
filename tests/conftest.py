"""
Test fixtures for depotci.

Provides throwaway workspaces with definition files and small builders for
targets, so tests can exercise the resolver, gatherer and compiler without a
real monorepo.
"""

import textwrap
from pathlib import Path

import pytest

from depotci.model import Artifact, CIMeta, Target
from depotci.ui.console import Console, set_console


class Workspace:
    """A workspace directory under tmp_path with helpers to populate it."""

    def __init__(self, root: Path):
        self.root = root

    def write(self, rel: str, content: str = "") -> Path:
        path = self.root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(content), encoding="utf-8")
        return path

    def define(self, rel: str, expr: str, imports: str = "") -> Path:
        """Write a definition file returning the Python expression `expr`."""
        source = f"{imports}\n\ndef define(**args):\n    return {expr}\n"
        return self.write(rel, source)

    def artifact(self, rel: str, name: str, run: str | None = None, **kwargs) -> Path:
        """Write a definition file returning an artifact."""
        run = run or f"echo {name} > $out/{name}"
        extra = "".join(f", {k}={v!r}" for k, v in kwargs.items())
        return self.define(
            rel,
            f"artifact({name!r}, {run!r}{extra})",
            imports="from depotci.dsl import artifact",
        )

    def mark(self, rel_dir: str, marker: str) -> Path:
        return self.write(f"{rel_dir}/{marker}" if rel_dir else marker)


@pytest.fixture
def workspace(tmp_path):
    root = tmp_path / "depot"
    root.mkdir()
    return Workspace(root)


@pytest.fixture(autouse=True)
def fresh_console():
    """Reset the global console between tests."""
    set_console(Console(debug=False))
    yield


def make_target(path, descriptor="d1", subtarget=None, meta: CIMeta | None = None) -> Target:
    parts = tuple(path.split("/")) if isinstance(path, str) else tuple(path)
    return Target(
        path=parts,
        descriptor=descriptor,
        value=Artifact(name=parts[-1], run="true", ci=meta),
        subtarget=subtarget,
        meta=meta,
    )


def is_artifact(value) -> bool:
    return isinstance(value, Artifact)


def describe_by_name(value: Artifact) -> str:
    return f"drv-{value.name}"
