# tree.py
#
# Reads a workspace directory structure into a tree of definitions.
#
# Every directory becomes a node. A directory's `default.py` defines the
# node itself; other `*.py` files define sibling nodes named after the file.
# Each definition file has to provide `define(**args)`, which is called with
# the workspace arguments and `located_at` (the node's path).
#
#   .skip-tree     the directory and everything below it is ignored
#   .skip-subtree  default.py is still read, nothing else in the directory is
from __future__ import annotations

import inspect
import runpy
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence, Tuple, Union

from . import settings
from .errors import ConfigurationError, ResolutionError
from .ui.console import get_console


@dataclass(frozen=True)
class Leaf:
    """A definition whose value is not a mapping. Nothing is merged into it."""
    path: Tuple[str, ...]
    value: Any
    source: Optional[Path] = None


@dataclass(frozen=True)
class Namespace:
    """
    A mapping-valued node.

    `entries` holds plain data keys (from a default.py mapping) as well as
    discovered child nodes; `children` names the keys that are child nodes.
    """
    path: Tuple[str, ...]
    entries: Dict[str, Any] = field(default_factory=dict)
    children: Tuple[str, ...] = ()
    source: Optional[Path] = None

    def __getitem__(self, key: str) -> Any:
        return self.entries[key]

    def __contains__(self, key: object) -> bool:
        return key in self.entries

    def get(self, key: str, default: Any = None) -> Any:
        return self.entries.get(key, default)

    def child_nodes(self) -> list[Node]:
        return [self.entries[c] for c in self.children]

    def lookup(self, attr_path: Sequence[str]) -> Any:
        """Follow `attr_path` through child nodes. Raises KeyError if absent."""
        node: Any = self
        for i, part in enumerate(attr_path):
            if not isinstance(node, Namespace) or part not in node.entries:
                raise KeyError("/".join(attr_path[: i + 1]))
            node = node.entries[part]
        return node


Node = Union[Leaf, Namespace]

ArgsType = Union[Mapping, Callable[[Tuple[str, ...]], Mapping]]
ArgsFilter = Callable[[Dict[str, Any], Tuple[str, ...]], Dict[str, Any]]


# ----------------------------------------------------------------------
# Directory listing
# ----------------------------------------------------------------------

def _is_visible(name: str) -> bool:
    if name in (settings.SKIP_SUBTREE, settings.SKIP_TREE):
        return True
    return not name.startswith(".") and not name.startswith("__")


def _read_dir_visible(path: Path) -> Dict[str, Path]:
    # sorted for deterministic traversal
    return {p.name: p for p in sorted(path.iterdir()) if _is_visible(p.name)}


def _definition_name(entry: Path) -> str | None:
    if entry.is_file() and entry.suffix == ".py":
        return entry.stem
    return None


# ----------------------------------------------------------------------
# Loading definition files
# ----------------------------------------------------------------------

def _args_for(
    args: ArgsType,
    parts: Tuple[str, ...],
    args_filter: Optional[ArgsFilter],
) -> Dict[str, Any]:
    base = args(parts) if callable(args) else args
    merged: Dict[str, Any] = {"located_at": parts, **dict(base)}
    if args_filter is not None:
        merged = dict(args_filter(merged, parts))
    return merged


def _accepts_kwargs(fn: Callable) -> bool:
    try:
        params = inspect.signature(fn).parameters.values()
    except (TypeError, ValueError):
        return False
    return any(p.kind is inspect.Parameter.VAR_KEYWORD for p in params)


def load_definition(
    path: Path,
    parts: Tuple[str, ...],
    args: ArgsType,
    args_filter: Optional[ArgsFilter] = None,
) -> Any:
    """
    Execute a definition file and call its entry point.

    Raises ResolutionError if the file does not provide a callable
    `define(**args)`.
    """
    module_name = "depotci_definition_" + "_".join(parts or ("root",))
    globals_dict = runpy.run_path(str(path), run_name=module_name)

    entry = globals_dict.get(settings.ENTRYPOINT)
    if entry is None:
        raise ResolutionError(
            path=str(path),
            message=f"no `{settings.ENTRYPOINT}` found, "
                    f"you need to add a function like `def {settings.ENTRYPOINT}(**args): ...`",
        )
    if not callable(entry):
        raise ResolutionError(
            path=str(path),
            message=f"`{settings.ENTRYPOINT}` is a {type(entry).__name__}, "
                    f"you need to make it a function like `def {settings.ENTRYPOINT}(**args): ...`",
        )
    if not _accepts_kwargs(entry):
        raise ResolutionError(
            path=str(path),
            message=f"`{settings.ENTRYPOINT}` must accept arbitrary keyword arguments (**args)",
        )

    return entry(**_args_for(args, parts, args_filter))


def _as_node(value: Any, parts: Tuple[str, ...], source: Path) -> Node:
    if isinstance(value, Mapping):
        return Namespace(path=parts, entries=dict(value), children=(), source=source)
    return Leaf(path=parts, value=value, source=source)


def _overlay(
    base: Dict[str, Any],
    children: Dict[str, Node],
    where: Path,
) -> Dict[str, Any]:
    merged = dict(base)
    for name, child in children.items():
        if name in merged:
            get_console().print_warning(
                f"{where}: '{name}' is defined twice, the subdirectory takes precedence"
            )
        merged[name] = child
    return merged


# ----------------------------------------------------------------------
# Tree walk
# ----------------------------------------------------------------------

def _read_tree(
    dir_path: Path,
    parts: Tuple[str, ...],
    args: ArgsType,
    args_filter: Optional[ArgsFilter],
    root: bool = False,
) -> Optional[Node]:
    """Returns None if the directory is excluded with .skip-tree."""
    entries = _read_dir_visible(dir_path)

    if settings.SKIP_TREE in entries:
        return None

    default = entries.get(settings.DEFAULT_DEFINITION)
    has_default = default is not None and default.is_file()
    skip_subtree = settings.SKIP_SUBTREE in entries

    self_value: Any = {}
    if has_default and not root:
        self_value = load_definition(default, parts, args, args_filter)
        if not isinstance(self_value, Mapping):
            return Leaf(path=parts, value=self_value, source=default)

    subdirs: Dict[str, Node] = {}
    siblings: Dict[str, Node] = {}

    if not skip_subtree:
        for name, entry in entries.items():
            if entry.is_dir():
                child = _read_tree(entry, parts + (name,), args, args_filter)
                if child is not None:
                    subdirs[name] = child

        if not has_default:
            for name, entry in entries.items():
                stem = _definition_name(entry)
                if stem is None:
                    continue
                value = load_definition(entry, parts + (stem,), args, args_filter)
                siblings[stem] = _as_node(value, parts + (stem,), entry)

    if has_default:
        merged = _overlay(dict(self_value), subdirs, dir_path)
        child_keys = sorted(subdirs)
    else:
        merged = _overlay(siblings, subdirs, dir_path)
        child_keys = sorted(set(siblings) | set(subdirs))

    return Namespace(
        path=parts,
        entries=merged,
        children=tuple(child_keys),
        source=default if has_default else dir_path,
    )


def read_tree(
    path: str | Path,
    *,
    args: Optional[ArgsType] = None,
    args_filter: Optional[ArgsFilter] = None,
) -> Namespace:
    """
    Read the workspace at `path` into a Namespace.

    Args:
        path: Workspace root directory.
        args: Mapping passed to every definition, or a function of the node
            path returning one.
        args_filter: Optional `(args, located_at) -> args` applied per node.

    Raises:
        ConfigurationError: the root itself is marked with .skip-tree.
        ResolutionError: a definition file is not a valid definition.
    """
    root = Path(path).expanduser().resolve()
    if not root.is_dir():
        raise ConfigurationError(f"Workspace root is not a directory: {root}")

    tree = _read_tree(root, (), args if args is not None else {}, args_filter, root=True)
    if tree is None:
        raise ConfigurationError(
            f"Workspace root {root} is marked with {settings.SKIP_TREE}, nothing to do"
        )
    # root is never loaded from default.py, so this is always a Namespace
    assert isinstance(tree, Namespace)
    return tree
