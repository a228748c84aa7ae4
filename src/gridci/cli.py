# cli.py
from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Optional

import click

from .cache import FileCacheStore
from .errors import CollaboratorUnavailable, ConfigurationError
from .events import event_from_payload, parse_kind, push_event_from_git
from .executor import ExecutionEnvironment, ShellCommandRunner, resolve_cache_key
from .logging import configure_logging
from .matrix import expand
from .model import EventDescriptor, EventKind, StepKind
from .pipeline import Pipeline, load_pipeline, per_job_workspace, run_pipeline
from .settings import Settings
from .trigger import evaluate
from .ui.console import Console, get_console, set_console

EXIT_FAILED = 1
EXIT_CONFIG = 2
EXIT_INTERRUPTED = 130

DEFAULT_PIPELINE_FILES = ("gridci.yml", "gridci.yaml", "gridci.json", "gridci_pipeline.py")


def find_pipeline_files(root: Path = Path(".")) -> list[Path]:
    """Pipeline files in `root`: the default names plus any *_pipeline.py."""
    found = [root / name for name in DEFAULT_PIPELINE_FILES if (root / name).exists()]
    for path in sorted(root.glob("*_pipeline.py")):
        if path not in found:
            found.append(path)
    return found


def discover_pipeline(pipeline_arg: str | None) -> Path:
    """
    Pipeline path from the --pipeline argument, or the single default file
    in the current directory. Exits with a config error otherwise.
    """
    console = get_console()

    if pipeline_arg:
        path = Path(pipeline_arg)
        if not path.exists():
            console.print_error(
                "Pipeline file not found",
                f"Could not find pipeline file: {pipeline_arg}",
                suggestion="Create a pipeline file or specify a different path:\n  gridci run --pipeline gridci.yml",
            )
            sys.exit(EXIT_CONFIG)
        return path

    files = find_pipeline_files()
    if not files:
        console.print_error(
            "No pipeline file found",
            "Could not find any pipeline files.",
            details=["Looked for:", *[f"  {n}" for n in DEFAULT_PIPELINE_FILES], "  *_pipeline.py"],
            suggestion="Create gridci.yml or specify a pipeline explicitly:\n  gridci run --pipeline my_pipeline.py",
        )
        sys.exit(EXIT_CONFIG)
    if len(files) > 1:
        console.print_error(
            "Multiple pipeline files found",
            "Found multiple pipeline files. Please specify which one to use:",
            details=[str(f) for f in files],
            suggestion="gridci run --pipeline gridci.yml",
        )
        sys.exit(EXIT_CONFIG)
    return files[0]


def build_event(
    kind: str,
    paths: tuple[str, ...],
    branch: Optional[str],
    git_diff: bool,
    compare_ref: str,
    event_file: Optional[str],
) -> EventDescriptor:
    if event_file:
        try:
            payload = json.loads(Path(event_file).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError("could not read event file", {"file": event_file, "error": e}) from e
        if not isinstance(payload, dict):
            raise ConfigurationError("event file must hold a JSON object", {"file": event_file})
        return event_from_payload(payload)

    if git_diff:
        return push_event_from_git(compare_ref)

    event_kind = parse_kind(kind)
    if event_kind == EventKind.PUSH:
        if not paths:
            raise ConfigurationError("push event needs at least one --path (or use --git-diff)")
        return event_from_payload({"kind": "push", "changed_paths": list(paths)})
    if event_kind == EventKind.PULL_REQUEST:
        return event_from_payload({"kind": "pull_request", "target_branch": branch})
    return event_from_payload({"kind": "manual"})


def _load(pipeline_arg: str | None) -> Pipeline:
    path = discover_pipeline(pipeline_arg)
    get_console().print_debug(f"loading pipeline from {path}")
    return load_pipeline(path)


def event_options(f):
    f = click.option("--event-file", default=None, help="JSON event payload ({kind, changedPaths?, targetBranch?})")(f)
    f = click.option("--compare-ref", default="origin/main", show_default=True, help="Git ref to diff against with --git-diff")(f)
    f = click.option("--git-diff", is_flag=True, default=False, help="Build a push event from git changed files")(f)
    f = click.option("--branch", default=None, help="Target branch (pull_request events)")(f)
    f = click.option("--path", "paths", multiple=True, help="Changed path (push events, repeatable)")(f)
    f = click.option(
        "--event",
        "event_kind",
        type=click.Choice([k.value for k in EventKind]),
        default=EventKind.MANUAL.value,
        show_default=True,
        help="Kind of triggering event",
    )(f)
    f = click.option("--pipeline", "pipeline_arg", default=None, help="Pipeline file (.yml, .yaml, .json or .py)")(f)
    return f


@click.group()
@click.option("--debug", is_flag=True, default=False, help="Show stack traces and debug logs")
@click.option("--log-json", is_flag=True, default=False, help="Emit logs as JSON lines")
@click.pass_context
def cli(ctx, debug, log_json):
    """gridci: trigger, matrix and step execution engine."""
    try:
        settings = Settings.from_env()
    except ConfigurationError as e:
        Console(debug=debug).print_error("Invalid configuration", str(e))
        sys.exit(EXIT_CONFIG)
    configure_logging("DEBUG" if debug else settings.log_level, json_output=log_json)
    set_console(Console(debug=debug))
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["settings"] = settings


@cli.command()
@event_options
@click.option("--workers", default=None, type=int, help="Max jobs running at once (default: one per platform)")
@click.option("--cache-dir", default=None, help="Cache directory (default: $GRIDCI_CACHE_DIR or .gridci/cache)")
@click.option("--cache/--no-cache", "use_cache", default=True, help="Use the file cache store")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the run report as JSON")
@click.option("--quiet", is_flag=True, default=False, help="Hide per-step progress")
@click.option("--job-workspaces", is_flag=True, default=False, help="Run each job in .gridci/work/<platform> instead of the repo root")
@click.pass_context
def run(ctx, pipeline_arg, event_kind, paths, branch, git_diff, compare_ref, event_file,
        workers, cache_dir, use_cache, as_json, quiet, job_workspaces):
    """Evaluate the trigger and run every matrix job."""
    settings: Settings = ctx.obj["settings"]
    console = Console(debug=ctx.obj["debug"], quiet=quiet or as_json)
    set_console(console)

    try:
        pipeline = _load(pipeline_arg)
        event = build_event(event_kind, paths, branch, git_diff, compare_ref, event_file)
        store = FileCacheStore(cache_dir or settings.cache_dir) if use_cache else None

        def on_start(decision, jobs):
            if not as_json:
                console.print_run_started(pipeline.name, event, decision, len(jobs))

        decision, report = run_pipeline(
            pipeline,
            event,
            runner=ShellCommandRunner(),
            store=store,
            repo_root=".",
            max_concurrency=workers if workers is not None else settings.max_concurrency,
            on_start=on_start,
            workspace_for=per_job_workspace if job_workspaces else None,
        )
    except ConfigurationError as e:
        console.print_error("Invalid configuration", str(e))
        sys.exit(EXIT_CONFIG)
    except CollaboratorUnavailable as e:
        console.print_error("Collaborator unavailable", str(e))
        sys.exit(EXIT_CONFIG)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(EXIT_INTERRUPTED)
    except Exception as e:
        console.print_exception(e)
        sys.exit(EXIT_FAILED)

    if report is None:
        if as_json:
            click.echo(json.dumps({"triggered": False, "reason": decision.reason}))
        else:
            console.print_not_triggered(pipeline.name, decision)
        return

    if store is not None:
        store.prune(keep=settings.cache_keep)

    if as_json:
        click.echo(json.dumps({"triggered": True, "reason": decision.reason, **report.to_dict()}, indent=2))
    else:
        console.print_results(report)

    if not report.succeeded:
        sys.exit(EXIT_FAILED)


@cli.command()
@event_options
@click.pass_context
def plan(ctx, pipeline_arg, event_kind, paths, branch, git_diff, compare_ref, event_file):
    """Show whether the event triggers a run and which jobs would run."""
    console = get_console()
    try:
        pipeline = _load(pipeline_arg)
        event = build_event(event_kind, paths, branch, git_diff, compare_ref, event_file)
        decision = evaluate(event, pipeline.triggers)
    except ConfigurationError as e:
        console.print_error("Invalid configuration", str(e))
        sys.exit(EXIT_CONFIG)

    if not decision.run:
        console.print_not_triggered(pipeline.name, decision)
        return

    jobs = expand(pipeline.axis)
    console.print_header(f"PLAN: {pipeline.name} ({decision.reason})")
    for job in jobs:
        console.print_plan_job(job.platform, [s.name for s in pipeline.steps])


@cli.command("cache-key")
@click.option("--pipeline", "pipeline_arg", default=None, help="Pipeline file (.yml, .yaml, .json or .py)")
@click.pass_context
def cache_key(ctx, pipeline_arg):
    """Print the cache key of every cacheRestore step for every platform."""
    console = get_console()
    try:
        pipeline = _load(pipeline_arg)
    except ConfigurationError as e:
        console.print_error("Invalid configuration", str(e))
        sys.exit(EXIT_CONFIG)

    cache_steps = [s for s in pipeline.steps if s.kind == StepKind.CACHE_RESTORE]
    if not cache_steps:
        console.print_info("no cacheRestore steps")
        return

    root = Path(".").resolve()
    runner = ShellCommandRunner()
    for platform in pipeline.platforms:
        env = ExecutionEnvironment(platform=platform, runner=runner, repo_root=root, scope=pipeline.name)
        for step in cache_steps:
            click.echo(f"{platform}\t{step.name}\t{resolve_cache_key(step, env)}")


if __name__ == "__main__":
    cli()
