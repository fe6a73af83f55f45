# gather.py
from __future__ import annotations

from typing import Any, Callable, List

from .errors import ConfigurationError
from .model import Target, mk_label
from .tree import Leaf, Node


def _ci_meta(value: Any):
    return getattr(value, "ci", None)


def _virtual_targets(
    node: Leaf,
    describe: Callable[[Any], str],
) -> List[Target]:
    meta = _ci_meta(node.value)
    names = list(getattr(meta, "virtual_targets", None) or [])
    if not names:
        return []

    subtargets = getattr(node.value, "subtargets", None) or {}
    out: List[Target] = []
    for name in names:
        if name not in subtargets:
            raise ConfigurationError(
                f"Virtual target '{name}' is not a subtarget. "
                f"Known subtargets: {sorted(subtargets)}",
                target=mk_label(node.path),
            )
        value = subtargets[name]
        out.append(
            Target(
                path=node.path,
                descriptor=describe(value),
                value=value,
                subtarget=name,
                meta=_ci_meta(value),
            )
        )
    return out


def gather(
    node: Node,
    eligible: Callable[[Any], bool],
    describe: Callable[[Any], str],
) -> List[Target]:
    """
    Collect all eligible targets below `node`, depth-first, in discovery order.

    Only child nodes found on the filesystem are visited; data keys of a
    default.py mapping are not. An eligible value listing
    `ci.virtual_targets` additionally yields one target per listed subtarget.
    """
    if isinstance(node, Leaf):
        if not eligible(node.value):
            return []
        target = Target(
            path=node.path,
            descriptor=describe(node.value),
            value=node.value,
            meta=_ci_meta(node.value),
        )
        return [target] + _virtual_targets(node, describe)

    targets: List[Target] = []
    for child in node.child_nodes():
        targets.extend(gather(child, eligible, describe))
    return targets


def find_target(targets: List[Target], label: str) -> Target:
    for t in targets:
        if t.label == label:
            return t
    raise KeyError(label)
