"""
CLI commands for the state store.

Thin wrappers over ``reprosetup.core.persistence.state_file``.
"""

from __future__ import annotations

import json
import sys

import click


def _open_store(ctx: click.Context, read_only: bool = True):
    from reprosetup.core.persistence.state_file import StateStore

    return StateStore.open(ctx.obj.get("state_path"), read_only=read_only)


@click.group()
def state() -> None:
    """State — inspect and edit what reprosetup remembers."""


@state.command("show")
@click.option("--prefix", default="", help="Only keys starting with this prefix (e.g. container:).")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def show(ctx: click.Context, prefix: str, as_json: bool) -> None:
    """Show stored fingerprints."""
    store = _open_store(ctx)
    data = store.to_dict()
    records = {k: v for k, v in data["records"].items() if k.startswith(prefix)}

    if as_json:
        click.echo(json.dumps({**data, "records": records}, indent=2))
        return

    if not records:
        click.secho("⚠️  No records", fg="yellow")
        return

    click.secho(f"📋 {store.path}", fg="cyan", bold=True)
    for key, record in records.items():
        click.echo(f"   {key}")
        click.echo(f"      {record['fingerprint'][:16]}  {record['applied_at']}")
        for name, value in record.get("metadata", {}).items():
            click.echo(f"      {name}: {value}")
    click.echo()


@state.command("forget")
@click.argument("key")
@click.pass_context
def forget(ctx: click.Context, key: str) -> None:
    """Forget KEY, so the next apply treats it as never applied."""
    from reprosetup.core.persistence.state_file import StateStoreError

    store = _open_store(ctx, read_only=False)
    if not store.forget(key):
        click.secho(f"❌ No such key: {key}", fg="red")
        sys.exit(1)

    try:
        store.flush()
    except StateStoreError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)

    click.secho(f"✅ Forgot {key}", fg="green")


@state.command("path")
@click.pass_context
def path(ctx: click.Context) -> None:
    """Print the state file location."""
    click.echo(str(_open_store(ctx).path))
