# backend.py
from __future__ import annotations

import hashlib
import json
import os
import shutil
import subprocess
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from . import settings
from .errors import BuildFailure, ConfigurationError
from .model import Artifact
from .ui.console import get_console

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# descriptor = hash(
#     artifact command + cwd,
#     artifact env,
#     contents of declared input files/dirs (globs),
# )
#
# The descriptor names the build, not the place it was declared: moving a
# target to another directory without touching its inputs keeps the
# descriptor. Realised outputs live in the store under their descriptor,
# so an existing store path is a finished build.
# ---------------------------------------------------------------------

DEFAULT_EXCLUDES = [
    ".git/**",
    ".depotci/**",
    "**/__pycache__/**",
    "**/*.pyc",
    "**/.DS_Store",
]


def _sha256_str(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def _json_dumps_stable(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _relpath(p: Path, root: Path) -> str:
    return str(p.resolve().relative_to(root.resolve())).replace("\\", "/")


def _iter_files_under(root: Path) -> Iterable[Path]:
    # deterministic traversal
    for p in sorted(root.rglob("*")):
        if p.is_file():
            yield p


def _matches_any_glob(rel: str, globs: List[str]) -> bool:
    rel_path = Path(rel)
    return any(rel_path.match(g) for g in globs)


def _hash_file_contents(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        while True:
            chunk = f.read(1024 * 1024)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


def _resolve_globs(root: Path, patterns: List[str]) -> List[Path]:
    """
    Expand input patterns into concrete paths.
    Supports:
      - file path: "pyproject.toml"
      - dir path:  "src/"
      - glob:      "backend/**", "tests/**/*.py"
    """
    out: List[Path] = []
    for pat in patterns:
        pat = pat.strip()
        if not pat:
            continue
        p = root / pat
        if p.exists():
            out.append(p)
            continue
        out.extend(m for m in sorted(root.glob(pat)) if m.exists())

    # De-dupe while preserving order
    seen = set()
    uniq: List[Path] = []
    for p in out:
        rp = str(p.resolve())
        if rp not in seen:
            seen.add(rp)
            uniq.append(p)
    return uniq


def _check_inside(root: Path, pattern: str) -> None:
    p = Path(pattern.strip())
    if p.is_absolute() or ".." in p.parts:
        raise ConfigurationError(
            f"Input '{pattern}' is outside the workspace.",
            details={"workspace": str(root)},
        )


def hash_inputs(
    root: Path,
    inputs: List[str],
    *,
    excludes: List[str],
) -> Tuple[str, Dict]:
    """
    Hash the declared input set deterministically (relative path, content
    digest and size of every file). Patterns matching nothing are recorded,
    so adding a file later changes the hash.

    Raises:
        ConfigurationError: an input lies outside `root`.
    """
    for pat in inputs:
        _check_inside(root, pat)

    file_fps: List[Tuple[str, str, int]] = []
    for p in _resolve_globs(root, inputs):
        files = [p] if p.is_file() else list(_iter_files_under(p))
        for f in files:
            try:
                rel = _relpath(f, root)
            except ValueError:
                # a symlink pointing out of the workspace
                raise ConfigurationError(
                    f"Input '{f}' resolves outside the workspace.",
                    details={"workspace": str(root)},
                ) from None
            if _matches_any_glob(rel, excludes):
                continue
            file_fps.append((rel, _hash_file_contents(f), f.stat().st_size))

    file_fps.sort(key=lambda t: t[0])  # stable ordering by relpath
    unmatched = sorted(pat for pat in inputs if not _resolve_globs(root, [pat]))
    payload = {"files": file_fps, "unmatched": unmatched}
    return _sha256_str(_json_dumps_stable(payload)), payload


class LocalBackend:
    """
    Build backend for artifacts declared in the workspace itself.

    Args:
        root: Workspace root; inputs and cwd are relative to it.
        store: Directory holding realised outputs, relative to root unless absolute.
    """

    def __init__(self, root: str | Path, store: str | Path = settings.STORE_DIR):
        self.root = Path(root).resolve()
        store_path = Path(store)
        self.store = store_path if store_path.is_absolute() else self.root / store_path

    def eligible(self, value: Any) -> bool:
        return isinstance(value, Artifact)

    def describe(self, artifact: Artifact) -> str:
        """Content-addressed descriptor: '<hash>-<name>'."""
        inputs_hash, _ = hash_inputs(self.root, list(artifact.inputs), excludes=DEFAULT_EXCLUDES)
        payload = {
            "v": 1,  # bump this if the hashing format changes
            "name": artifact.name,
            "run": artifact.run,
            "cwd": artifact.cwd or ".",
            "env": dict(artifact.env),
            "inputs_hash": inputs_hash,
        }
        return f"{_sha256_str(_json_dumps_stable(payload))[:32]}-{artifact.name}"

    def store_path(self, artifact: Artifact) -> Path:
        return self.store / self.describe(artifact)

    def realise(self, artifact: Artifact, label: str, out_link: Optional[str | Path] = None) -> Path:
        """
        Build `artifact` into the store unless it is already there.

        `run` is executed through the shell with `$out` set to a scratch
        directory that is moved into the store on success. If `out_link` is
        given, it is replaced by a symlink to the store path.

        Raises:
            BuildFailure: the build command exited non-zero.
            FileNotFoundError: the artifact's cwd does not exist.
        """
        console = get_console()
        descriptor = self.describe(artifact)
        out = self.store / descriptor
        console.print_build_started(label, descriptor)

        if out.exists():
            console.print_store_hit(str(out))
        else:
            cwd = (self.root / (artifact.cwd or ".")).resolve()
            if not cwd.exists():
                raise FileNotFoundError(f"[{label}] cwd not found: {cwd}")

            scratch = self.store / f".{descriptor}.tmp"
            if scratch.exists():
                shutil.rmtree(scratch)
            scratch.mkdir(parents=True)

            env = os.environ.copy()
            env.update(artifact.env)
            env["out"] = str(scratch)

            proc = subprocess.run(
                artifact.run,
                shell=True,
                cwd=str(cwd),
                env=env,
                text=True,
                capture_output=True,   # so we can show output on failure
            )
            if proc.returncode != 0:
                shutil.rmtree(scratch, ignore_errors=True)
                raise BuildFailure(
                    label=label,
                    cmd=artifact.run,
                    exit_code=proc.returncode,
                    stdout=proc.stdout[-4000:],
                    stderr=proc.stderr[-4000:],
                )
            if proc.stdout:
                console.print_info(proc.stdout.rstrip())
            scratch.rename(out)

        if out_link is not None:
            link = Path(out_link)
            if link.is_symlink() or link.exists():
                link.unlink()
            link.symlink_to(out)
            console.print_debug(f"{link} -> {out}")

        return out
