"""iamrecon CLI — the main entry point for the IAM declaration reconciler."""

import functools
import json

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from iamrecon import __version__
from iamrecon.errors import DeclarationError, IamReconError
from iamrecon.utils.log import LOG_LEVELS, configure_logging

console = Console()

ACTION_STYLES = {
    "create": ("[green]+[/]", "green"),
    "update": ("[yellow]~[/]", "yellow"),
    "replace": ("[magenta]-/+[/]", "magenta"),
    "delete": ("[red]-[/]", "red"),
    "noop": ("[dim]=[/]", "dim"),
}


def handle_errors(func):
    """Print iamrecon errors cleanly and exit 1 instead of dumping a traceback."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except DeclarationError as e:
            console.print(f"[red]Error:[/] {escape(e.args[0])}")
            for issue in e.issues:
                console.print(f"  [red]x[/] {escape(str(issue))}")
            raise SystemExit(1)
        except IamReconError as e:
            console.print(f"[red]Error:[/] {escape(str(e))}")
            raise SystemExit(1)

    return wrapper


def variable_options(func):
    func = click.option("--var", "-v", "var", multiple=True, help="Set a variable (KEY=VALUE)")(func)
    func = click.option("--var-file", default=None, help="YAML file of variable values")(func)
    return func


def _variables(var: tuple, var_file: str | None) -> dict:
    from iamrecon.spec.variables import load_var_file, parse_overrides

    values = load_var_file(var_file) if var_file else {}
    values.update(parse_overrides(var))
    return values


def _workspace(ctx):
    """Settings, control plane and state store for this invocation."""
    from iamrecon.backends import get_backend
    from iamrecon.reconcile.state import StateStore

    settings = ctx.obj["settings"]
    try:
        backend = get_backend(settings.backend, settings)
    except ValueError as e:
        raise IamReconError(str(e)) from e
    return settings, backend, StateStore(settings.state_path)


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "config_file", default=None, help="Settings file (default: ./iamrecon.yaml)")
@click.option("--state-dir", default=None, help="Directory holding state and journal")
@click.option("--backend", "-b", default=None, type=click.Choice(["aws", "local"]), help="Control plane")
@click.option("--profile", default=None, help="AWS profile for the aws backend")
@click.option("--region", default=None, help="AWS region for the aws backend")
@click.option("--log-level", default=None, type=click.Choice(LOG_LEVELS, case_sensitive=False))
@click.pass_context
@handle_errors
def main(ctx, config_file, state_dir, backend, profile, region, log_level):
    """iamrecon — declarative IAM reconciler.

    Validate IAM declarations (roles, policies, attachments, instance
    profiles), resolve their dependency order, and reconcile them against
    AWS or a local simulated control plane.
    """
    from iamrecon.config import load_settings

    settings = load_settings(
        config_file,
        state_dir=state_dir,
        backend=backend,
        profile=profile,
        region=region,
        log_level=log_level,
    )
    configure_logging(settings.log_level)
    ctx.obj = {"settings": settings}


# ── Validate ─────────────────────────────────────────────────────────


@main.command()
@click.argument("path")
@variable_options
@click.option("--strict", is_flag=True, help="Treat warnings as errors")
@handle_errors
def validate(path: str, var: tuple, var_file: str | None, strict: bool):
    """Validate a declaration file.

    Runs both gates: schema validation, then (after variable interpolation)
    semantic validation and least-privilege lint.
    """
    from iamrecon.graph.builder import load_declarations, render
    from iamrecon.spec.semantic_validator import validate_semantics

    console.print(f"\n[bold blue]iamrecon[/] — Validating: {escape(path)}\n")

    data = load_declarations(path)
    try:
        rendered = render(data, _variables(var, var_file))
    except DeclarationError as e:
        console.print("[red]Schema validation FAILED:[/]")
        for issue in e.issues:
            console.print(f"  [red]x[/] {escape(str(issue))}")
        raise SystemExit(1)
    console.print("  [green]v[/] Schema validation passed")

    result = validate_semantics(rendered)
    if result.errors:
        console.print("[red]Semantic validation FAILED:[/]")
        for issue in result.errors:
            console.print(f"  [red]x[/] {escape(str(issue))}")
    else:
        console.print("  [green]v[/] Semantic validation passed")

    for w in result.warnings:
        console.print(f"  [yellow]![/] {escape(str(w))}")
    for i in result.infos:
        console.print(f"  [dim]i {escape(str(i))}[/]")

    if not result.passed:
        raise SystemExit(1)
    if strict and result.warnings:
        console.print("\n[red]FAIL[/] (strict mode: warnings treated as errors)")
        raise SystemExit(1)

    console.print("\n[green]Valid![/]")


# ── Render ───────────────────────────────────────────────────────────


@main.command(name="render")
@click.argument("path")
@variable_options
@handle_errors
def render_cmd(path: str, var: tuple, var_file: str | None):
    """Print every resource with variables interpolated."""
    from iamrecon.graph.builder import build_graph_from_file
    from iamrecon.models.resources import ResourceKind

    graph = build_graph_from_file(path, _variables(var, var_file))

    for role in graph.resources(ResourceKind.ROLE):
        console.print(Panel(escape(json.dumps(role.trust_policy(), indent=2)), title=f"{role.address} ({role.name})"))
    for policy in graph.resources(ResourceKind.POLICY):
        console.print(Panel(escape(policy.document.to_json()), title=f"{policy.address} ({policy.name})"))

    table = Table(title="Bindings")
    table.add_column("Address", style="cyan")
    table.add_column("Role")
    table.add_column("Policy / profile")
    for attachment in graph.resources(ResourceKind.ATTACHMENT):
        table.add_row(attachment.address, attachment.role_name, attachment.policy_arn or attachment.policy_name)
    for profile in graph.resources(ResourceKind.INSTANCE_PROFILE):
        table.add_row(profile.address, profile.role_name, profile.name)
    console.print(table)


# ── Graph ────────────────────────────────────────────────────────────


@main.command()
@click.argument("path")
@variable_options
@handle_errors
def graph(path: str, var: tuple, var_file: str | None):
    """Show the dependency order resources are created in."""
    from iamrecon.graph.builder import build_graph_from_file
    from iamrecon.graph.resolver import levels

    resource_graph = build_graph_from_file(path, _variables(var, var_file))

    table = Table(title=f"Creation order ({len(resource_graph)} resources)")
    table.add_column("Level", style="dim", width=5)
    table.add_column("Address", style="cyan")
    table.add_column("Depends on")

    for level, addresses in enumerate(levels(resource_graph)):
        for address in addresses:
            table.add_row(str(level), address, ", ".join(resource_graph.dependencies(address)))

    console.print(table)


# ── Plan / Apply / Destroy ──────────────────────────────────────────


def _print_plan(plan) -> None:
    from iamrecon.reconcile.diff import ChangeAction

    changes = [c for c in plan.changes if c.action != ChangeAction.NOOP]
    if changes:
        table = Table(title=f"Plan ({plan.backend} backend)")
        table.add_column("", width=3)
        table.add_column("Address", style="cyan")
        table.add_column("Why")
        for change in changes:
            symbol, style = ACTION_STYLES[change.action.value]
            table.add_row(symbol, f"[{style}]{escape(change.address)}[/]", escape("; ".join(change.reasons)))
        console.print(table)
    console.print(f"\n{plan.summary()}")


@main.command()
@click.argument("path")
@variable_options
@click.option(
    "--detailed-exitcode",
    is_flag=True,
    help="Exit 2 when there are changes, 0 when there are none",
)
@click.pass_context
@handle_errors
def plan(ctx, path: str, var: tuple, var_file: str | None, detailed_exitcode: bool):
    """Show what apply would change."""
    from iamrecon.graph.builder import build_graph_from_file
    from iamrecon.reconcile.planner import Planner

    resource_graph = build_graph_from_file(path, _variables(var, var_file))
    _, backend, state = _workspace(ctx)

    result = Planner(backend, state).plan(resource_graph)
    _print_plan(result)

    if detailed_exitcode and result.has_changes:
        raise SystemExit(2)


@main.command()
@click.argument("path")
@variable_options
@click.option("--auto-approve", is_flag=True, help="Skip the confirmation prompt")
@click.pass_context
@handle_errors
def apply(ctx, path: str, var: tuple, var_file: str | None, auto_approve: bool):
    """Reconcile remote IAM with a declaration file."""
    from iamrecon.graph.builder import build_graph_from_file
    from iamrecon.reconcile.executor import Executor
    from iamrecon.reconcile.planner import Planner

    resource_graph = build_graph_from_file(path, _variables(var, var_file))
    _, backend, state = _workspace(ctx)

    result = Planner(backend, state).plan(resource_graph)
    _print_plan(result)
    if not result.steps:
        return
    if result.has_changes and not auto_approve:
        click.confirm("Apply these changes?", abort=True)

    outcome = Executor(backend, state).apply(result)
    _print_outcome(outcome)


@main.command()
@click.option("--auto-approve", is_flag=True, help="Skip the confirmation prompt")
@click.pass_context
@handle_errors
def destroy(ctx, auto_approve: bool):
    """Delete every resource iamrecon manages."""
    from iamrecon.reconcile.executor import Executor
    from iamrecon.reconcile.planner import Planner

    _, backend, state = _workspace(ctx)
    result = Planner(backend, state).plan_destroy()
    _print_plan(result)
    if not result.steps:
        return
    if not auto_approve:
        click.confirm("Destroy these resources?", abort=True)

    outcome = Executor(backend, state).apply(result)
    _print_outcome(outcome)


def _print_outcome(outcome) -> None:
    if outcome.success:
        console.print(f"\n[green]{escape(outcome.summary())}[/]")
        return
    console.print(f"\n[red]{escape(outcome.summary())}[/]")
    console.print(f"  [red]x[/] {escape(outcome.error)}")
    for label in outcome.skipped:
        console.print(f"  [dim]skipped {escape(label)}[/]")
    raise SystemExit(1)


# ── Drift ────────────────────────────────────────────────────────────


@main.command()
@click.option("--address", "-a", default=None, help="Check one address (default: all)")
@click.pass_context
@handle_errors
def drift(ctx, address: str | None):
    """Check for changes made to managed resources outside iamrecon."""
    from iamrecon.reconcile.drift import DriftDetector

    _, backend, state = _workspace(ctx)
    detector = DriftDetector(backend, state)

    if address:
        try:
            reports = [detector.check(address)]
        except KeyError as e:
            raise IamReconError(str(e.args[0])) from e
    else:
        reports = detector.check_all()

    if not reports:
        console.print("[yellow]Nothing is managed yet (empty state).[/]")
        return

    drifted = False
    for report in reports:
        if report.has_drift:
            drifted = True
            console.print(f"  [red]DRIFT[/] {escape(report.summary())}")
            for detail in report.details:
                console.print(f"    - {escape(detail)}")
        else:
            console.print(f"  [green]OK[/] {escape(report.summary())}")

    if drifted:
        raise SystemExit(2)


# ── Schema ───────────────────────────────────────────────────────────


@main.command(name="schema")
def dump_schema():
    """Print the JSON Schema for declaration files."""
    from iamrecon.spec.schema import get_schema

    click.echo(json.dumps(get_schema(), indent=2))


# ── Bundled ──────────────────────────────────────────────────────────


@main.command()
@click.argument("name", default="nexus")
def bundled(name: str):
    """Print the path of a declaration file shipped with iamrecon."""
    from iamrecon.declarations import bundled_path

    try:
        click.echo(str(bundled_path(name)))
    except FileNotFoundError as e:
        raise click.BadParameter(str(e), param_hint="NAME") from e


if __name__ == "__main__":
    main()
