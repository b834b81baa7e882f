"""
reprosetup — CLI entrypoint.

Usage:
    reprosetup --help
    reprosetup apply
    reprosetup plan
    reprosetup config check
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

from reprosetup import __version__
from reprosetup.core.observability.logging_config import resolve_level, setup_logging

_STATUS_STYLE = {
    "applied": ("✓", "green"),
    "failed": ("✗", "red"),
    "skipped": ("⊘", "yellow"),
}


@click.group()
@click.version_option(version=__version__, prog_name="reprosetup")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to reprosetup.yml (default: auto-detect).",
)
@click.option(
    "--state",
    "state_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to the state file (default: ~/.config/reprosetup/state.json).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
    state_path: str | None,
) -> None:
    """reprosetup — converge this host to its declared configuration."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None
    ctx.obj["state_path"] = Path(state_path) if state_path else None

    # ── Logging setup (once, at process start) ──────────────────
    setup_logging(
        level=resolve_level(debug=debug, verbose=verbose, quiet=quiet),
        log_file=os.environ.get("REPROSETUP_LOG_FILE"),
        log_file_level=os.environ.get("REPROSETUP_LOG_FILE_LEVEL"),
    )


# ── Report rendering ────────────────────────────────────────────


def _print_report(result, verbose: bool = False, quiet: bool = False) -> None:
    report = result.report
    if report is None:
        return

    mode_label = "[dry-run] " if result.dry_run else "[mock] " if result.mock else ""
    if not quiet:
        click.secho(f"\n⚡ {mode_label}reprosetup — {result.config_path}", fg="cyan", bold=True)
        click.echo(f"   Domains: {len(result.domains)} | Outcomes: {report.total}")
        click.echo()

    for domain, outcomes in report.by_domain().items():
        click.secho(f"   {domain}", bold=True)
        for outcome in outcomes:
            if quiet and not outcome.failed:
                continue
            marker, color = _STATUS_STYLE[outcome.status]
            if outcome.warning:
                color = "yellow"
            click.secho(f"     {marker} {outcome.resource}", fg=color, nl=False)
            if outcome.failed:
                click.echo()
                if outcome.command:
                    code = f" (exit {outcome.return_code})" if outcome.return_code is not None else ""
                    click.echo(f"       │ $ {outcome.command}{code}")
                for line in (outcome.error or "").split("\n")[:5]:
                    click.echo(f"       │ {line}")
            else:
                click.echo(f"  {outcome.message}" if outcome.message else "")

    if report.drift:
        click.echo()
        click.secho("   ⚠️  Drift (reported, not corrected):", fg="yellow")
        for domain, items in report.drift.items():
            click.echo(f"     • {domain}: {len(items)}")
            if verbose:
                for item in items:
                    click.echo(f"         {item}")

    click.echo()
    status_color = {"ok": "green", "partial": "yellow", "failed": "red"}.get(
        report.status, "white"
    )
    click.secho(
        f"   Result: {report.applied} applied, {report.skipped} skipped, {report.failed} failed",
        fg=status_color,
        bold=True,
    )
    click.echo()


def _converge(
    ctx: click.Context,
    *,
    yes: bool,
    no: bool,
    force_recreate: bool,
    update_images: bool,
    no_recreate: bool,
    dry_run: bool,
    mock: bool,
    only: tuple[str, ...],
    as_json: bool,
) -> None:
    from reprosetup.core.config.loader import ConfigError
    from reprosetup.core.models.policy import ConfirmationPolicy, RunModes
    from reprosetup.core.use_cases.apply import run_apply

    try:
        policy = ConfirmationPolicy.from_flags(yes=yes, no=no)
    except ConfigError as e:
        if as_json:
            click.echo(json.dumps({"error": str(e)}, indent=2))
        else:
            click.secho(f"❌ {e}", fg="red")
        sys.exit(1)

    modes = RunModes(
        force_recreate=force_recreate,
        update_images=update_images,
        no_recreate=no_recreate,
        dry_run=dry_run,
    )
    result = run_apply(
        config_path=ctx.obj.get("config_path"),
        state_path=ctx.obj.get("state_path"),
        policy=policy,
        modes=modes,
        only=list(only) if only else None,
        mock_mode=mock,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(result.exit_code)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    _print_report(result, verbose=ctx.obj.get("verbose", False), quiet=ctx.obj.get("quiet", False))
    if result.exit_code:
        sys.exit(result.exit_code)


_only_option = click.option(
    "--only",
    "only",
    multiple=True,
    help="Restrict to a domain (host, packages, packages.<manager>, services, "
    "containers, dotfiles, commands). Repeatable.",
)
_json_option = click.option(
    "--json-output", "--json", "as_json", is_flag=True, help="Output as JSON."
)


@cli.command()
@click.option("--yes", "-y", is_flag=True, help="Confirm every destructive action.")
@click.option("--no", "-n", is_flag=True, help="Decline every destructive action.")
@click.option("--force-recreate", is_flag=True, help="Recreate containers even when unchanged.")
@click.option("--update-images", is_flag=True, help="Pull images; recreate containers whose image changed.")
@click.option("--no-recreate", is_flag=True, help="Never recreate containers; report drift instead.")
@click.option("--dry-run", is_flag=True, help="Query and diff, but change nothing.")
@click.option("--mock", is_flag=True, help="Use mock adapters (no real execution).")
@_only_option
@_json_option
@click.pass_context
def apply(
    ctx: click.Context,
    yes: bool,
    no: bool,
    force_recreate: bool,
    update_images: bool,
    no_recreate: bool,
    dry_run: bool,
    mock: bool,
    only: tuple[str, ...],
    as_json: bool,
) -> None:
    """Converge this host to reprosetup.yml.

    Examples:

        reprosetup apply

        reprosetup apply --yes --only packages

        reprosetup apply --update-images --only containers
    """
    _converge(
        ctx,
        yes=yes,
        no=no,
        force_recreate=force_recreate,
        update_images=update_images,
        no_recreate=no_recreate,
        dry_run=dry_run,
        mock=mock,
        only=only,
        as_json=as_json,
    )


@cli.command()
@click.option("--force-recreate", is_flag=True, help="Plan as if --force-recreate were given.")
@click.option("--update-images", is_flag=True, help="Plan as if --update-images were given.")
@click.option("--no-recreate", is_flag=True, help="Plan as if --no-recreate were given.")
@_only_option
@_json_option
@click.pass_context
def plan(
    ctx: click.Context,
    force_recreate: bool,
    update_images: bool,
    no_recreate: bool,
    only: tuple[str, ...],
    as_json: bool,
) -> None:
    """Show what apply would change (a dry run without prompts)."""
    _converge(
        ctx,
        yes=False,
        no=False,
        force_recreate=force_recreate,
        update_images=update_images,
        no_recreate=no_recreate,
        dry_run=True,
        mock=False,
        only=only,
        as_json=as_json,
    )


@cli.command()
@_json_option
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show what the state store remembers and the last runs."""
    from reprosetup.core.use_cases.status import get_status

    result = get_status(state_path=ctx.obj.get("state_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    click.secho(f"\n📋 State: {result.state_path}", fg="cyan", bold=True)
    if not result.exists:
        click.echo("   No state recorded yet.")
        click.echo()
        return

    click.echo(f"   Updated: {result.updated_at}")
    for kind, count in result.counts.items():
        click.echo(f"     • {kind}: {count}")

    last = result.last_run
    if last is not None:
        click.echo()
        click.secho("   Last run:", fg="white", bold=True)
        status_color = {"ok": "green", "partial": "yellow", "failed": "red"}.get(
            last.status, "white"
        )
        label = "plan" if last.dry_run else last.operation_type
        click.echo(f"     {label} {last.operation_id} — ", nl=False)
        click.secho(last.status, fg=status_color)
        click.echo(
            f"     {last.outcomes_applied} applied, {last.outcomes_skipped} skipped, "
            f"{last.outcomes_failed} failed at {last.timestamp}"
        )
    click.echo()


@cli.group()
def config() -> None:
    """Configuration commands."""


@config.command("check")
@_json_option
@click.pass_context
def config_check(ctx: click.Context, as_json: bool) -> None:
    """Validate reprosetup.yml."""
    from reprosetup.core.use_cases.config_check import check_config

    result = check_config(config_path=ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.valid else 1)

    if result.valid:
        assert result.desired is not None  # guaranteed when valid
        click.secho("✅ Configuration is valid", fg="green", bold=True)
        click.echo(f"   File:   {result.config_path}")
        click.echo(f"   Distro: {result.desired.distro}")
        for name, count in result.summary().items():
            click.echo(f"   {name}: {count}")
    else:
        click.secho("❌ Configuration errors:", fg="red", bold=True)
        for err in result.errors:
            click.echo(f"   • {err}")

    if result.warnings:
        click.echo()
        click.secho("⚠️  Warnings:", fg="yellow")
        for warn in result.warnings:
            click.echo(f"   • {warn}")

    if not result.valid:
        click.echo()
        sys.exit(1)

    click.echo()


# ── Register sub-command groups from reprosetup/ui/cli/ ─────────

from reprosetup.ui.cli.state import state  # noqa: E402

cli.add_command(state)


if __name__ == "__main__":
    cli()
