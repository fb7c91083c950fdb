# cli.py
from __future__ import annotations

import sys
from pathlib import Path
from typing import List, Sequence

import click

from ruleflow.dag import DAGBuilder
from ruleflow.dsl import load_workflow
from ruleflow.errors import AmbiguousRule, MissingConfigKey, NoRuleToMakeTarget, WorkflowError
from ruleflow.runner import PLANNED, execute
from ruleflow.ui.console import Console, get_console, set_console

DEFAULT_WORKFLOW = "ruleflow_workflow.py"


def find_workflow_files() -> list[Path]:
    """
    Find all workflow files in the current directory.

    Returns:
        List of Path objects for workflow files
    """
    workflow_files = []
    current_dir = Path(".")

    default_workflow = current_dir / DEFAULT_WORKFLOW
    if default_workflow.exists():
        return [default_workflow]

    for path in current_dir.glob("*_workflow.py"):
        workflow_files.append(path)

    return sorted(workflow_files)


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Discover workflow file from argument or default.

    Raises:
        SystemExit: If workflow cannot be found or multiple workflows exist
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and workflow_path.suffix != ".py":
            workflow_path = Path(str(workflow_path) + ".py")
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  ruleflow run --workflow my_workflow.py",
            )
            sys.exit(1)
        return workflow_path

    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=[
                "Looked for:",
                f"  {DEFAULT_WORKFLOW}",
                "  *_workflow.py",
            ],
            suggestion=f"Create a workflow file:\n  {DEFAULT_WORKFLOW}\n\nOr specify a workflow explicitly:\n  ruleflow run --workflow my_workflow.py",
        )
        sys.exit(1)

    if len(workflow_files) > 1:
        file_list = "\n".join(f"  {f}" for f in workflow_files)
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[file_list],
            suggestion=f"Specify a workflow explicitly:\n  ruleflow run --workflow {workflow_files[0]}",
        )
        sys.exit(1)

    return workflow_files[0]


def expand_config_args(args: Sequence[str]) -> List[str]:
    """
    Rewrite `--config a=1 b=2 -- target` into repeated `--config` options.

    The value list ends at `--` (which is dropped) or at the next option.
    """
    out: List[str] = []
    i = 0
    while i < len(args):
        arg = args[i]
        if arg in ("--config", "-C"):
            i += 1
            while i < len(args) and not args[i].startswith("-"):
                out += ["--config", args[i]]
                i += 1
            if i < len(args) and args[i] == "--":
                i += 1
            continue
        out.append(arg)
        i += 1
    return out


class ConfigArgsCommand(click.Command):
    def parse_args(self, ctx, args):
        return super().parse_args(ctx, expand_config_args(args))


def _suggestion(exc: WorkflowError) -> str | None:
    if isinstance(exc, MissingConfigKey):
        return f"Add '{exc.key}' to your config file or pass:\n  --config {exc.key}=VALUE"
    if isinstance(exc, AmbiguousRule):
        return "Mark one rule default=True, or pass --allow-ambiguity to use declaration order."
    if isinstance(exc, NoRuleToMakeTarget):
        return "Check the target path for typos, or create the missing input file."
    return None


def _report_workflow_error(ctx, exc: WorkflowError) -> None:
    console = get_console()
    console.print_error(type(exc).__name__, str(exc), suggestion=_suggestion(exc))
    if ctx.obj.get("debug", False):
        import traceback
        traceback.print_exc()
    sys.exit(1)


def workflow_options(fn):
    fn = click.option("--workflow", "-s", default=None, help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)")(fn)
    fn = click.option("--configfile", default=None, type=click.Path(dir_okay=False), help="Config file overriding the workflow's default configfile")(fn)
    fn = click.option("--config", "-C", "overrides", multiple=True, help="key=value overrides; several may follow one --config, end the list with --")(fn)
    return fn


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """ruleflow: rule-based, file-driven workflow runner."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command(cls=ConfigArgsCommand)
@click.argument("targets", nargs=-1)
@workflow_options
@click.option("--dry-run", "-n", is_flag=True, default=False, help="Show what would run without running it")
@click.option("--force", "-f", is_flag=True, default=False, help="Re-run the jobs producing the requested targets")
@click.option("--forceall", "-F", is_flag=True, default=False, help="Re-run every job needed for the targets")
@click.option("--forcerun", "-R", multiple=True, help="Re-run every job of the named rule")
@click.option("--cores", "-j", default=None, type=click.IntRange(min=1), help="Number of cores / parallel jobs")
@click.option("--printshellcmds", "-p", is_flag=True, default=False, help="Print shell commands")
@click.option("--keep-going", "-k", is_flag=True, default=False, help="Keep running independent jobs after a failure")
@click.option("--allow-ambiguity", is_flag=True, default=False, help="Resolve ambiguous rules by declaration order")
@click.option("--notemp", is_flag=True, default=False, help="Keep temp() outputs")
@click.option("--quiet", "-q", is_flag=True, default=False, help="Only print the results summary")
@click.pass_context
def run(ctx, targets, workflow, configfile, overrides, dry_run, force, forceall, forcerun, cores,
        printshellcmds, keep_going, allow_ambiguity, notemp, quiet):
    """Build TARGETS (files or rule names; default: the first rule)."""
    console = get_console()
    console.quiet = quiet

    workflow_path = discover_workflow(workflow)

    try:
        wf = load_workflow(workflow_path, configfile=configfile, overrides=overrides)
        graph = DAGBuilder(wf.registry, wf.config, allow_ambiguity=allow_ambiguity).plan(targets)

        if forceall:
            force_set = "all"
        else:
            force_set = set(forcerun)
            if force:
                force_set.update(graph.targets)

        console.print_run_started(workflow_path.name, len(graph), dry_run=dry_run)

        result = execute(
            graph,
            dry_run=dry_run,
            force=force_set,
            cores=cores,
            keep_going=keep_going,
            print_commands=printshellcmds,
            notemp=notemp,
        )

        if dry_run:
            planned = sum(1 for s in result.statuses.values() if s == PLANNED)
            console.print_info(f"\n{planned} of {len(graph)} job(s) would run.")
        else:
            console.print_results(result.statuses)

        if not result.success:
            sys.exit(1)

    except WorkflowError as e:
        _report_workflow_error(ctx, e)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)


@cli.command("list", cls=ConfigArgsCommand)
@workflow_options
@click.pass_context
def list_rules(ctx, workflow, configfile, overrides):
    """List the rules declared by the workflow."""
    workflow_path = discover_workflow(workflow)
    try:
        wf = load_workflow(workflow_path, configfile=configfile, overrides=overrides)
    except WorkflowError as e:
        _report_workflow_error(ctx, e)
    get_console().print_rules(wf.rules)


@cli.command(cls=ConfigArgsCommand)
@click.argument("targets", nargs=-1)
@workflow_options
@click.option("--allow-ambiguity", is_flag=True, default=False, help="Resolve ambiguous rules by declaration order")
@click.pass_context
def dag(ctx, targets, workflow, configfile, overrides, allow_ambiguity):
    """Print the job graph for TARGETS in Graphviz dot format."""
    workflow_path = discover_workflow(workflow)
    try:
        wf = load_workflow(workflow_path, configfile=configfile, overrides=overrides)
        graph = DAGBuilder(wf.registry, wf.config, allow_ambiguity=allow_ambiguity).plan(targets)
    except WorkflowError as e:
        _report_workflow_error(ctx, e)
    click.echo(graph.to_dot())


if __name__ == "__main__":
    cli()
