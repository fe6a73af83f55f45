# cli.py
from __future__ import annotations

import shutil
import subprocess
import sys

import click
from pydantic import ValidationError

from depotci import settings
from depotci.backend import LocalBackend
from depotci.chunks import load_target_map, mk_pipeline, write_pipeline, write_target_map
from depotci.dispatch.api_client import APIClient
from depotci.dispatch.hook import (
    EXIT_CONFIG,
    EXIT_FAILURE,
    EXIT_OK,
    parse_ref_updates,
    report_result,
    trigger_builds,
)
from depotci.dispatch.models import DispatchConfig
from depotci.errors import BuildFailure, ConfigurationError, ResolutionError
from depotci.gather import gather
from depotci.git_facts.git import find_parent_map
from depotci.model import KNOWN_PHASES, parse_label
from depotci.pipeline import compile_pipeline
from depotci.tree import Leaf, read_tree
from depotci.ui.console import Console, get_console, set_console


def discover(root: str):
    """Resolve the workspace at `root` and gather its targets."""
    backend = LocalBackend(root)
    tree = read_tree(backend.root, args={"workspace": backend.root})
    targets = gather(tree, backend.eligible, backend.describe)
    return backend, tree, targets


def _fail(ctx, title: str, e: Exception, suggestion: str | None = None) -> None:
    console = get_console()
    console.print_error(title, str(e), suggestion=suggestion)
    if ctx.obj.get("debug", False):
        import traceback
        traceback.print_exc()
    sys.exit(EXIT_FAILURE)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """depotci: monorepo target discovery and CI pipeline generation."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--root", default=".", show_default=True, help="Workspace root")
@click.pass_context
def targets(ctx, root):
    """List all targets in the workspace, in upload order."""
    console = get_console()
    try:
        _backend, _tree, found = discover(root)
    except (ConfigurationError, ResolutionError) as e:
        _fail(ctx, "Failed to read workspace", e)

    console.print_header(f"TARGETS ({len(found)})")
    for t in found:
        console.print_target(t.label, t.descriptor, virtual=t.is_virtual)


@cli.command()
@click.option("--root", default=".", show_default=True, help="Workspace root")
@click.option("--out", "out_dir", default="pipeline", show_default=True, help="Output directory for chunks")
@click.option("--parent-map", default=None, help="Target map of the parent build (JSON)")
@click.option(
    "--phase",
    "phases",
    multiple=True,
    type=click.Choice(KNOWN_PHASES),
    help="Phase to generate (repeatable, defaults to all)",
)
@click.option("--chunk-size", default=settings.CHUNK_SIZE, show_default=True, type=click.IntRange(min=1))
@click.pass_context
def pipeline(ctx, root, out_dir, parent_map, phases, chunk_size):
    """Generate pipeline chunks and the target map."""
    console = get_console()
    phases = list(phases) or list(KNOWN_PHASES)

    try:
        _backend, _tree, found = discover(root)
        parent = load_target_map(parent_map)
        build_steps, release_steps = compile_pipeline(found, parent, active_phases=phases)
    except (ConfigurationError, ResolutionError) as e:
        _fail(ctx, "Failed to generate pipeline", e)
    except ValidationError as e:
        _fail(ctx, "Invalid parent target map", e, suggestion="Delete it to build all targets.")

    chunks = mk_pipeline(build_steps, release_steps, phases, chunk_size)
    for path, chunk in zip(write_pipeline(out_dir, chunks), chunks):
        console.print_chunk_written(path.name, len(chunk.steps))
    write_target_map(out_dir, found)

    unchanged = sum(1 for t in found if parent.get(t.label) == t.descriptor)
    console.print_pipeline_summary(targets=len(found), skipped=unchanged, chunks=len(chunks))


@cli.command()
@click.argument("label")
@click.option("--root", default=".", show_default=True, help="Workspace root")
@click.option("--out-link", default=None, help="Symlink to create pointing at the output")
@click.pass_context
def build(ctx, label, root, out_link):
    """Build a single target by label (e.g. 'tools/lint:strict')."""
    console = get_console()
    try:
        backend, tree, _targets = discover(root)
        path, subtarget = parse_label(label)
        node = tree.lookup(path)
    except (ConfigurationError, ResolutionError) as e:
        _fail(ctx, "Failed to read workspace", e)
    except KeyError as e:
        console.print_error("Unknown target", f"No target at {label} (missing {e})")
        sys.exit(EXIT_FAILURE)

    value = node.value if isinstance(node, Leaf) else None
    if subtarget is not None and value is not None:
        value = getattr(value, "subtargets", {}).get(subtarget)
    if not backend.eligible(value):
        console.print_error("Not buildable", f"{label} is not a build target")
        sys.exit(EXIT_FAILURE)

    try:
        backend.realise(value, label, out_link=out_link)
    except BuildFailure as e:
        console.print_error(
            "Build failed",
            str(e),
            details=[line for line in (e.stderr or e.stdout).splitlines()[-20:]],
        )
        sys.exit(e.exit_code or EXIT_FAILURE)
    except FileNotFoundError as e:
        _fail(ctx, "Build failed", e)


@cli.command("parent-map")
@click.option("--store", required=True, help="Directory with target maps named <commit>.json")
@click.option("--compare-ref", default="origin/main", show_default=True, help="Git ref to fork from")
@click.option("--output", default="parent-target-map.json", show_default=True)
@click.pass_context
def parent_map_cmd(ctx, store, compare_ref, output):
    """Fetch the target map of the closest previous build."""
    console = get_console()
    try:
        found = find_parent_map(store, compare_ref)
    except (subprocess.CalledProcessError, FileNotFoundError) as e:
        _fail(ctx, "Could not determine fork point", e, suggestion="Check that --compare-ref exists.")

    if found is None:
        # not critical: everything gets built
        console.print_info("No parent target map found, all targets will be built.")
        return
    shutil.copyfile(found, output)
    console.print_info(f"Fetched target map {found.name}")


def _load_config(path: str) -> DispatchConfig:
    try:
        return DispatchConfig.load(path)
    except (OSError, ValidationError) as e:
        get_console().print_error("Failed to load dispatcher config", str(e))
        sys.exit(EXIT_CONFIG)


@cli.command()
@click.option("--config", "config_path", required=True, help="Dispatcher config (JSON)")
@click.pass_context
def dispatch(ctx, config_path):
    """Trigger builds for ref updates read from stdin (post-receive hook)."""
    console = get_console()
    config = _load_config(config_path)

    try:
        updates = parse_ref_updates(sys.stdin)
    except ValueError as e:
        _fail(ctx, "Could not parse updated refs", e)

    console.print_info(f"triggering builds for {len(updates)} refs")
    try:
        client = APIClient(config.api_url, token=config.token())
    except OSError as e:
        console.print_error("Failed to read API token", str(e))
        sys.exit(EXIT_CONFIG)
    trigger_builds(config, updates, client)
    sys.exit(EXIT_OK)


@cli.command()
@click.option("--config", "config_path", required=True, help="Dispatcher config (JSON)")
@click.option("--commit", required=True, help="Commit the build ran for")
@click.option("--exit-status", required=True, type=int, help="Exit status of the build")
@click.option("--build-url", default=None, help="Link to the build")
@click.pass_context
def report(ctx, config_path, commit, exit_status, build_url):
    """Post a build result back to code review."""
    config = _load_config(config_path)
    # a failed notification does not change the outcome
    report_result(config, commit, exit_status, build_url=build_url)
    sys.exit(EXIT_OK)


if __name__ == "__main__":
    cli()
