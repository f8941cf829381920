"""
CLI entry point for patchkeeper: keep local fixes alive across upstream rebuilds.
"""

import logging
import sys
import warnings
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

try:
    from importlib.metadata import version as pkg_version

    _version = pkg_version("patchkeeper")
except Exception:
    _version = "0.3.0"

from patchkeeper.core.config import PatcherConfig, load_config
from patchkeeper.core.errors import ConfigError, MetadataError, PartialImportWarning
from patchkeeper.core.manager import PatchManager
from patchkeeper.models.patch import PatchKind, PatchState, PatchStatus, RunSummary

console = Console()
console_err = Console(stderr=True)

GROUP_LABELS = {
    "pending": "Pending (need apply)",
    "applied": "Applied",
    "already_applied": "Already applied",
    "version_skipped": "Skipped (version range)",
    "disabled": "Disabled",
    "resolved": "Resolved (no longer needed)",
    "error": "Errors",
}


def _setup_logging(debug: bool) -> None:
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(name)s: %(message)s")
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def _get_config(ctx: click.Context) -> PatcherConfig:
    obj = ctx.find_root().obj
    try:
        return load_config(
            obj.get("config_path"),
            install_dir=obj.get("install_dir"),
            patches_dir=obj.get("patches_dir"),
        )
    except ConfigError as e:
        console_err.print(f"[red]Error:[/red] {escape(str(e))}")
        sys.exit(1)


def _get_manager(ctx: click.Context) -> PatchManager:
    return PatchManager(_get_config(ctx))


def _print_status_line(status: PatchStatus, indent: str = "  ") -> None:
    console.print(
        f"{indent}{escape(status.icon)} [bold]{escape(status.name)}[/bold]: "
        f"{status.state.value} - {escape(status.message)}"
    )


# =============================================================================
# Root CLI Group
# =============================================================================


@click.group()
@click.version_option(version=_version, prog_name="patchkeeper")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: ~/.patchkeeper/config.yaml)",
)
@click.option("--install-dir", type=click.Path(file_okay=False, path_type=Path), default=None, help="Install root to patch")
@click.option("--patches-dir", type=click.Path(file_okay=False, path_type=Path), default=None, help="Directory of patches")
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: Path | None,
    install_dir: Path | None,
    patches_dir: Path | None,
    debug: bool,
):
    """
    Patchkeeper - re-apply local patches after upstream updates.

    \b
        patchkeeper list               # Show every patch and its state
        patchkeeper apply [NAME]       # Apply one or all pending patches
        patchkeeper run                # Full reconciliation pass
        patchkeeper add NAME           # Scaffold a new patch
        patchkeeper import-pr NUMBER   # Create a patch from a pull request
    """
    ctx.ensure_object(dict)
    ctx.obj.update(
        config_path=config_path,
        install_dir=install_dir,
        patches_dir=patches_dir,
        debug=debug,
    )
    if debug:
        _setup_logging(True)


# =============================================================================
# Inspection
# =============================================================================


@cli.command("list")
@click.pass_context
def list_patches(ctx: click.Context):
    """List all patches and their current status."""
    statuses = _get_manager(ctx).check_all()

    if not statuses:
        console.print("No patches found. Use [cyan]patchkeeper add <name>[/cyan] to create one.")
        return

    console.print()
    console.print("[bold]Patches[/bold]")
    console.print()
    for s in statuses:
        console.print(f"  {escape(s.icon)} [bold]{escape(s.name)}[/bold] \\[{s.state.value}]")
        console.print(f"     {escape(s.message)}")
        if s.record and s.record.description:
            console.print(f"     [dim]{escape(s.record.description)}[/dim]")
        if s.record and s.record.issue:
            console.print(f"     Issue: {escape(s.record.issue)}")
        console.print()


@cli.command()
@click.pass_context
def check(ctx: click.Context):
    """Check which patches are still needed, grouped by state."""
    statuses = _get_manager(ctx).check_all()
    if not statuses:
        console.print("No patches found.")
        return

    summary = RunSummary(statuses=statuses)
    groups = summary.grouped()
    messages = {s.name: s.message for s in statuses}

    console.print()
    for category, label in GROUP_LABELS.items():
        names = groups.get(category)
        if not names:
            continue
        if category == "error":
            listed = ", ".join(f"{n} ({messages[n]})" for n in names)
        else:
            listed = ", ".join(names)
        console.print(f"  [bold]{label}:[/bold] {escape(listed)}")
    console.print()


@cli.command()
@click.pass_context
def status(ctx: click.Context):
    """Show installed version, last reconciliation, and patch states."""
    summary = _get_manager(ctx).get_status_summary()

    table = Table(title="Patcher Status", show_header=False, box=None, padding=(0, 2))
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Installed version", summary.installed_version or "unknown")
    table.add_row("Last reconciled version", summary.last_reconciled_version or "never")
    table.add_row("Last reconciled at", summary.last_reconciled_at or "never")
    table.add_row("Total patches", str(summary.patch_count))
    console.print(table)

    if summary.statuses:
        console.print()
        for s in summary.statuses:
            console.print(f"    {escape(s.icon)} {escape(s.name)}: {s.state.value}")
    console.print()


# =============================================================================
# Apply
# =============================================================================


@cli.command()
@click.argument("name", required=False)
@click.pass_context
def apply(ctx: click.Context, name: str | None):
    """
    Apply a specific patch, or all pending patches.

    \b
    Examples:
        patchkeeper apply
        patchkeeper apply cron-scheduler-fix
    """
    manager = _get_manager(ctx)

    if name:
        result = manager.apply_patch(name)
        _print_status_line(result, indent="")
        if result.state == PatchState.ERROR:
            sys.exit(1)
        return

    results = manager.apply_all()
    if not results:
        console.print("No patches found.")
        return

    console.print()
    console.print("[bold]Patch Results[/bold]")
    console.print()
    for r in results:
        _print_status_line(r)


@cli.command()
@click.pass_context
def run(ctx: click.Context):
    """Run a full reconciliation pass and record the run state."""
    root = ctx.find_root().obj
    if not root.get("debug"):
        _setup_logging(_get_config(ctx).debug)

    results = _get_manager(ctx).run_auto_apply()
    if not results:
        console.print("Nothing to reconcile.")
        return

    for r in results:
        _print_status_line(r)


# =============================================================================
# Authoring
# =============================================================================


@cli.command()
@click.argument("name")
@click.option(
    "--kind",
    "-k",
    type=click.Choice([k.value for k in PatchKind]),
    default=PatchKind.PROGRAMMABLE.value,
    show_default=True,
    help="Patch kind",
)
@click.pass_context
def add(ctx: click.Context, name: str, kind: str):
    """Scaffold a new patch directory with template files."""
    manager = _get_manager(ctx)
    try:
        directory = manager.scaffold_patch(name, kind)
    except FileExistsError as e:
        console_err.print(f"[red]Error:[/red] {escape(str(e))}")
        sys.exit(1)

    console.print(f"\n[green]Created patch scaffold at:[/green]\n  {directory}/\n")
    console.print("Files created:")
    for entry in sorted(directory.iterdir()):
        console.print(f"  {entry.name}")
    console.print("\nNext steps:")
    console.print("  1. Edit patch.yaml to set target_files, description and issue")
    console.print("  2. Implement the fix in the generated template")
    console.print("  3. Run [cyan]patchkeeper check[/cyan] to verify detection")
    console.print("  4. Run [cyan]patchkeeper apply[/cyan] to apply")


@cli.command()
@click.argument("name")
@click.pass_context
def unresolve(ctx: click.Context, name: str):
    """Clear a patch's resolved marker so it is checked again."""
    try:
        _get_manager(ctx).unresolve_patch(name)
    except MetadataError as e:
        console_err.print(f"[red]Error:[/red] {escape(str(e))}")
        sys.exit(1)
    console.print(f"[green]✓[/green] Cleared resolved marker on {escape(name)}")


@cli.command("import-pr")
@click.argument("number", type=int)
@click.option("--repo", "-r", default=None, help="owner/name (default: github_repo from config)")
@click.option(
    "--kind",
    "-k",
    type=click.Choice([PatchKind.HUNKS.value, PatchKind.PROGRAMMABLE.value]),
    default=PatchKind.HUNKS.value,
    show_default=True,
    help="Generate BEFORE/AFTER hunks or a programmable patch.py",
)
@click.option("--name", "-n", default=None, help="Patch name (default: pr-<number>)")
@click.option("--dry-run", is_flag=True, help="Show what would be written without writing")
@click.pass_context
def import_pr_command(
    ctx: click.Context,
    number: int,
    repo: str | None,
    kind: str,
    name: str | None,
    dry_run: bool,
):
    """
    Create a patch from a pull request's diff.

    \b
    Examples:
        patchkeeper import-pr 10350
        patchkeeper import-pr 10350 --kind programmable --dry-run
    """
    from patchkeeper.core.diff_import import import_pr

    config = _get_config(ctx)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", PartialImportWarning)
        result = import_pr(number, config, repo=repo, kind=kind, name=name, dry_run=dry_run)

    if not result.ok:
        console_err.print(f"[red]Import failed:[/red] {escape(result.error or 'unknown error')}")
        sys.exit(1)

    verb = "Would write" if result.dry_run else "Wrote"
    console.print(
        f"[green]✓[/green] PR #{number}: mapped [cyan]{len(result.mapped_hunks)}[/cyan] hunk(s) "
        f"into patch [bold]{escape(result.patch_name or '')}[/bold]"
    )
    for m in result.mapped_hunks:
        console.print(f"  [dim]{escape(m.hunk.source_path or '?')} -> {escape(Path(m.bundle_path).name)}[/dim]")

    if result.unmapped_hunks:
        console.print()
        console.print(f"[yellow]{len(result.unmapped_hunks)} hunk(s) need manual review:[/yellow]")
        for u in result.unmapped_hunks:
            preview = u.preview.replace("\n", "\\n")
            console.print(f"  {escape(u.source_path or '?')}: {escape(preview)} [dim]({escape(u.reason)})[/dim]")

    console.print()
    console.print(f"{verb}:")
    for path in result.files_written:
        console.print(f"  {escape(path)}")


if __name__ == "__main__":
    cli()
