"""Typer-based CLI for CodeFlow annotation readiness and flow tracing."""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import asdict
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from . import __version__, config, config_manager
from .atomic_flows import AtomicFlowBuilder
from .classifier import HeuristicMemberClassifier, LLMMemberClassifier, MemberClassifier
from .dedup import deduplicate_by_interaction_overlap
from .entry_points import build_candidates, build_entry_point_modules, classify
from .flow_tracer import FlowTracer, build_flow_tracing_context
from .gap_flows import GapFlowBuilder
from .llm import PROVIDERS, LocalLLM
from .models import Flow
from .readiness import ReadinessEngine, validate_aspect
from .storage import GraphStore, ProjectManager

console = Console()

app = typer.Typer(
    help="CodeFlow CLI: annotation readiness and flow tracing over a code graph.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
project_app = typer.Typer(help="Manage project memories.", no_args_is_help=True)
symbols_app = typer.Typer(help="Annotation readiness for definitions.", no_args_is_help=True)
flows_app = typer.Typer(help="Entry points and traced flows.", no_args_is_help=True)

app.add_typer(project_app, name="project")
app.add_typer(symbols_app, name="symbols")
app.add_typer(flows_app, name="flows")


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"CodeFlow CLI v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
):
    """CodeFlow CLI: find what to annotate next and how requests flow through a codebase."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _open_current_store(pm: ProjectManager) -> GraphStore:
    project = pm.get_current_project()
    if not project:
        raise typer.BadParameter("No project loaded. Use 'cf project import <snapshot>' or 'cf project load <name>'.")
    project_dir = pm.project_dir(project)
    if not project_dir.exists():
        raise typer.BadParameter(f"Loaded project '{project}' does not exist in memory.")
    return GraphStore(project_dir)


def _aspect(value: str) -> str:
    try:
        return validate_aspect(value)
    except ValueError as exc:
        raise typer.BadParameter(str(exc))


# ===================================================================
# project
# ===================================================================


@project_app.command("import")
def import_project(
    snapshot: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON graph snapshot to import."),
    project_name: Optional[str] = typer.Option(None, "--name", "-n", help="Explicit memory name for project."),
):
    """Import a graph snapshot into project memory and make it current."""
    try:
        payload = json.loads(snapshot.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"Snapshot is not valid JSON: {exc}")

    pm = ProjectManager()
    name = project_name or snapshot.stem.replace(" ", "_")
    store = GraphStore(pm.create_or_get_project(name))
    try:
        counts = store.import_snapshot(payload)
    except (KeyError, TypeError, ValueError, sqlite3.IntegrityError) as exc:
        store.close()
        raise typer.BadParameter(f"Malformed snapshot: {exc}")
    store.close()
    pm.set_current_project(name)

    typer.echo(f"Imported '{snapshot}' as project '{name}'.")
    typer.echo(
        f"Definitions: {counts['definitions']} | Modules: {counts['modules']} | "
        f"Calls: {counts['calls']} | Interactions: {counts['interactions']}"
    )


@project_app.command("list")
def list_projects():
    """List all persisted project memories."""
    pm = ProjectManager()
    projects = pm.list_projects()
    current = pm.get_current_project()

    if not projects:
        typer.echo("No projects imported yet.")
        raise typer.Exit(code=0)

    for p in projects:
        marker = "*" if p == current else " "
        typer.echo(f"{marker} {p}")


@project_app.command("load")
def load_project(project_name: str = typer.Argument(..., help="Name of project memory to load.")):
    """Switch active project memory."""
    pm = ProjectManager()
    if project_name not in pm.list_projects():
        raise typer.BadParameter(f"Project '{project_name}' not found.")
    pm.set_current_project(project_name)
    typer.echo(f"Loaded project '{project_name}'.")


@project_app.command("unload")
def unload_project():
    """Unload active project memory without deleting data."""
    ProjectManager().unload_project()
    typer.echo("Unloaded active project.")


@project_app.command("delete")
def delete_project(project_name: str = typer.Argument(..., help="Project memory to delete.")):
    """Delete persisted project memory."""
    pm = ProjectManager()
    if not pm.delete_project(project_name):
        raise typer.BadParameter(f"Project '{project_name}' not found.")
    if pm.get_current_project() == project_name:
        pm.unload_project()
    typer.echo(f"Deleted project '{project_name}'.")


@project_app.command("current")
def current_project():
    """Print active project memory name and its size."""
    pm = ProjectManager()
    current = pm.get_current_project()
    if not current:
        typer.echo("No project loaded")
        return
    store = GraphStore(pm.project_dir(current))
    stats = store.stats()
    store.close()
    typer.echo(current)
    typer.echo(
        f"Definitions: {stats['definitions']} | Modules: {stats['modules']} | "
        f"Calls: {stats['calls']} | Interactions: {stats['interactions']}"
    )


# ===================================================================
# symbols
# ===================================================================


@symbols_app.command("ready")
def ready(
    aspect: str = typer.Option(..., "--aspect", "-a", help="Metadata key, e.g. 'purpose'."),
    kind: Optional[str] = typer.Option(None, "--kind", "-k", help="Only definitions of this kind."),
    file_pattern: Optional[str] = typer.Option(None, "--file", "-f", help="Substring of the file path."),
    limit: int = typer.Option(config.DEFAULT_READY_LIMIT, min=1, help="Maximum rows to show."),
):
    """List definitions whose dependencies already carry ASPECT."""
    aspect = _aspect(aspect)
    store = _open_current_store(ProjectManager())
    summary = ReadinessEngine(store).get_ready_summary(aspect, kind=kind, file_pattern=file_pattern, limit=limit)
    store.close()

    if not summary.definitions:
        typer.echo(f"No definitions ready for '{aspect}'.")
        if summary.remaining:
            typer.echo(f"{summary.remaining} remaining are blocked; try 'cf symbols cycles -a {aspect}'.")
        return

    table = Table(title=f"Ready for '{aspect}'")
    table.add_column("ID", justify="right")
    table.add_column("Name", style="cyan")
    table.add_column("Kind")
    table.add_column("Location", style="dim")
    for d in summary.definitions:
        table.add_row(str(d.id), d.name, d.kind, f"{d.file_path}:{d.line}")
    console.print(table)
    typer.echo(f"Showing {len(summary.definitions)} of {summary.total_ready} ready; {summary.remaining} blocked.")


@symbols_app.command("prereqs")
def prereqs(
    definition_id: int = typer.Argument(..., help="Target definition id."),
    aspect: str = typer.Option(..., "--aspect", "-a", help="Metadata key, e.g. 'purpose'."),
):
    """Show what must be annotated before DEFINITION_ID, leaves first."""
    aspect = _aspect(aspect)
    store = _open_current_store(ProjectManager())
    target = store.get_definition(definition_id)
    if target is None:
        store.close()
        raise typer.BadParameter(f"Definition {definition_id} not found.")

    chain = ReadinessEngine(store).get_prerequisite_chain(definition_id, aspect)
    store.close()

    if not chain:
        typer.echo(f"'{target.name}' has no unmet dependencies for '{aspect}'.")
        return

    table = Table(title=f"Prerequisites of {target.name} for '{aspect}'")
    table.add_column("#", justify="right")
    table.add_column("ID", justify="right")
    table.add_column("Name", style="cyan")
    table.add_column("Unmet deps", justify="right")
    table.add_column("Location", style="dim")
    for index, entry in enumerate(chain, 1):
        d = entry.definition
        table.add_row(str(index), str(d.id), d.name, str(entry.unmet_dep_count), f"{d.file_path}:{d.line}")
    console.print(table)


@symbols_app.command("cycles")
def cycles(
    aspect: str = typer.Option(..., "--aspect", "-a", help="Metadata key, e.g. 'purpose'."),
):
    """Show call cycles among definitions that still lack ASPECT."""
    aspect = _aspect(aspect)
    store = _open_current_store(ProjectManager())
    found = ReadinessEngine(store).find_cycles(aspect)

    if not found:
        store.close()
        typer.echo(f"No blocking cycles for '{aspect}'.")
        return

    for index, members in enumerate(found, 1):
        names = []
        for definition_id in sorted(members):
            d = store.get_definition(definition_id)
            names.append(f"{d.name} ({definition_id})" if d else str(definition_id))
        typer.echo(f"Cycle {index}: " + ", ".join(names))
    store.close()
    typer.echo("Annotate any one member to break a cycle.")


@symbols_app.command("coverage")
def coverage(
    kind: Optional[str] = typer.Option(None, "--kind", "-k", help="Only definitions of this kind."),
    file_pattern: Optional[str] = typer.Option(None, "--file", "-f", help="Substring of the file path."),
):
    """Show per-aspect annotation coverage."""
    store = _open_current_store(ProjectManager())
    rows = ReadinessEngine(store).get_aspect_coverage(kind=kind, file_pattern=file_pattern)
    store.close()

    if not rows:
        typer.echo("No aspects recorded yet.")
        return

    table = Table(title="Aspect coverage")
    table.add_column("Aspect", style="cyan")
    table.add_column("Covered", justify="right")
    table.add_column("Total", justify="right")
    table.add_column("%", justify="right")
    for row in rows:
        table.add_row(row.aspect, str(row.covered), str(row.total), f"{row.percentage:.1f}")
    console.print(table)


@symbols_app.command("set")
def set_aspect(
    definition_id: int = typer.Argument(..., help="Definition id."),
    aspect: str = typer.Argument(..., help="Metadata key."),
    value: str = typer.Argument(..., help="Annotation text."),
):
    """Annotate a definition with ASPECT = VALUE."""
    aspect = _aspect(aspect)
    store = _open_current_store(ProjectManager())
    if store.get_definition(definition_id) is None:
        store.close()
        raise typer.BadParameter(f"Definition {definition_id} not found.")
    store.set_metadata(definition_id, aspect, value)
    store.close()
    typer.echo(f"Set '{aspect}' on {definition_id}.")


@symbols_app.command("unset")
def unset_aspect(
    definition_id: int = typer.Argument(..., help="Definition id."),
    aspect: str = typer.Argument(..., help="Metadata key."),
):
    """Remove ASPECT from a definition."""
    aspect = _aspect(aspect)
    store = _open_current_store(ProjectManager())
    removed = store.unset_metadata(definition_id, aspect)
    store.close()
    if not removed:
        typer.echo(f"'{aspect}' was not set on {definition_id}.")
        raise typer.Exit(code=1)
    typer.echo(f"Removed '{aspect}' from {definition_id}.")


@symbols_app.command("show")
def show_symbol(definition_id: int = typer.Argument(..., help="Definition id.")):
    """Show a definition with its annotations."""
    store = _open_current_store(ProjectManager())
    d = store.get_definition(definition_id)
    if d is None:
        store.close()
        raise typer.BadParameter(f"Definition {definition_id} not found.")
    metadata = store.get_definition_metadata(definition_id)
    callees = store.callees(definition_id)
    store.close()

    typer.echo(f"{d.name} ({d.kind})  {d.file_path}:{d.line}-{d.end_line}")
    typer.echo(f"Calls: {len(callees)} definitions")
    for key in sorted(metadata):
        typer.echo(f"  {key}: {metadata[key]}")


# ===================================================================
# flows
# ===================================================================


def _classifier(no_llm: bool) -> MemberClassifier:
    if no_llm:
        return HeuristicMemberClassifier()
    return LLMMemberClassifier(LocalLLM())


@flows_app.command("entry-points")
def entry_points(
    no_llm: bool = typer.Option(False, "--no-llm", help="Classify with name/path heuristics only."),
):
    """Classify modules and list the entry points found."""
    store = _open_current_store(ProjectManager())
    candidates = build_candidates(store.get_all_modules_with_members())
    classifications = classify(candidates, _classifier(no_llm), context=store.list_module_pairs())
    modules = build_entry_point_modules(classifications, candidates)
    store.close()

    if not modules:
        typer.echo("No entry-point modules found.")
        return

    by_module = {c.module_id: c for c in classifications}
    table = Table(title="Entry-point modules")
    table.add_column("Module", style="cyan")
    table.add_column("Members")
    table.add_column("Confidence")
    table.add_column("Via")
    table.add_column("Reason", style="dim")
    for module in modules:
        classification = by_module[module.module_id]
        members = ", ".join(
            f"{m.name}[{m.action_type}]" if m.action_type else m.name for m in module.member_definitions
        )
        table.add_row(
            module.module_path, members, classification.confidence, classification.via, classification.reason,
        )
    console.print(table)


@flows_app.command("generate")
def generate_flows(
    no_llm: bool = typer.Option(False, "--no-llm", help="Classify with name/path heuristics only."),
    max_depth: int = typer.Option(config.DEFAULT_MAX_DEPTH, min=1, help="Maximum call depth to trace."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write flows as JSON to this file."),
):
    """Build atomic flows and trace flows from every entry point."""
    store = _open_current_store(ProjectManager())
    modules_with_members = store.get_all_modules_with_members()
    interactions = store.list_module_pairs()

    atomic = AtomicFlowBuilder().build_atomic_flows(interactions, modules_with_members)

    candidates = build_candidates(modules_with_members)
    classifications = classify(candidates, _classifier(no_llm), context=interactions)
    entry_modules = build_entry_point_modules(classifications, candidates)

    context = build_flow_tracing_context(store.call_graph(), modules_with_members, interactions)
    traced = FlowTracer(context, max_depth=max_depth).trace_flows_from_entry_points(entry_modules, atomic)
    store.close()

    traced = deduplicate_by_interaction_overlap(traced)
    covered = {interaction_id for flow in traced for interaction_id in flow.interaction_ids}
    gaps = GapFlowBuilder().build_gap_flows(covered, interactions, reserved_slugs=[f.slug for f in atomic])

    flows: List[Flow] = atomic + traced + gaps
    if output is not None:
        output.write_text(json.dumps([asdict(f) for f in flows], indent=2), encoding="utf-8")
        typer.echo(f"Wrote {len(flows)} flows to {output}")
    if gaps:
        typer.echo(f"Added {len(gaps)} gap flows for interactions no entry point reaches.")

    if not traced:
        typer.echo(f"Built {len(atomic)} atomic flows; no entry point produced a traced flow.")
        return

    table = Table(title=f"Traced flows ({len(atomic)} atomic subflows available)")
    table.add_column("Flow", style="cyan")
    table.add_column("Entry", style="dim")
    table.add_column("Stakeholder")
    table.add_column("Steps", justify="right")
    table.add_column("Bridges", justify="right")
    table.add_column("Subflows")
    for flow in traced:
        table.add_row(
            flow.name,
            flow.entry_path,
            flow.stakeholder,
            str(len(flow.definition_steps)),
            str(len(flow.inferred_steps)),
            ", ".join(flow.subflow_slugs),
        )
    console.print(table)


# ===================================================================
# LLM configuration
# ===================================================================


@app.command("set-llm")
def set_llm(
    provider: str = typer.Argument(..., help="LLM provider: ollama, groq, openai, anthropic"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model name (uses provider default if not set)."),
    api_key: Optional[str] = typer.Option(None, "--api-key", "-k", help="API key for cloud providers."),
    endpoint: Optional[str] = typer.Option(None, "--endpoint", "-e", help="Custom endpoint URL."),
):
    """Switch the LLM provider used for entry-point classification."""
    provider = provider.lower().strip()
    if provider not in PROVIDERS:
        typer.echo(f"Unknown provider '{provider}'. Choose from: {', '.join(PROVIDERS)}", err=True)
        raise typer.Exit(code=1)

    defaults = config_manager.get_provider_config(provider)
    if provider != "ollama" and not api_key:
        current = config_manager.load_config()
        if current.get("provider") == provider and current.get("api_key"):
            api_key = current["api_key"]
        else:
            typer.echo(f"Provider '{provider}' needs an API key (--api-key).", err=True)
            raise typer.Exit(code=1)

    saved = config_manager.save_config(
        provider,
        model or defaults.get("model", ""),
        api_key or "",
        endpoint or defaults.get("endpoint", ""),
    )
    if not saved:
        typer.echo("Failed to write configuration.", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"LLM provider set to {provider} ({model or defaults.get('model', '')}).")


@app.command("show-llm")
def show_llm():
    """Show current LLM provider configuration."""
    cfg = config_manager.load_config()
    api_key = cfg.get("api_key", "")

    typer.echo(f"Provider  {cfg.get('provider', 'ollama')}")
    typer.echo(f"Model     {cfg.get('model', 'qwen2.5-coder:7b')}")
    if cfg.get("endpoint"):
        typer.echo(f"Endpoint  {cfg['endpoint']}")
    typer.echo(f"API Key   {api_key[:8] + '****' if api_key else '(not set)'}")
    typer.echo(f"Config    {config_manager.config_file()}")


if __name__ == "__main__":
    app()
