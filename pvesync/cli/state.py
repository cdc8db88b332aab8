import click
import json
from rich.console import Console
from rich.json import JSON
from rich.table import Table

from pvesync.database.store import FingerprintStore
from pvesync.resources.models import ResourceId, ResourceKind
from .utils import handle_async_command

console = Console()


@click.group(name='state')
def state_cli():
    """State database commands."""
    pass


@state_cli.command(name="list")
@click.option('--json', 'json_output', is_flag=True, help='Output in JSON format.')
@click.pass_context
@handle_async_command
async def list_records(ctx, json_output: bool) -> None:
    """Lists all reconciliation records."""
    store = FingerprintStore(ctx.obj['STATE_PATH'])
    try:
        records = await store.all()
    finally:
        store.close()

    if json_output:
        records_data = [
            {
                "kind": record.kind.value,
                "key": record.key,
                "fingerprint": record.fingerprint,
                "last_state": record.last_state,
                "last_outcome": record.last_outcome.value,
                "owned": record.owned,
                "updated_at": record.updated_at.isoformat() if record.updated_at else None,
            }
            for record in records
        ]
        console.print(JSON(json.dumps(records_data)))
        return

    if not records:
        console.print("[yellow]No managed resources recorded.[/yellow]")
        return

    table = Table(title="Managed Resources")
    table.add_column("Kind", style="cyan")
    table.add_column("Key")
    table.add_column("State")
    table.add_column("Last outcome")
    table.add_column("Owned")
    table.add_column("Fingerprint")
    for record in records:
        table.add_row(
            record.kind.value,
            record.key,
            record.last_state,
            record.last_outcome.value,
            "yes" if record.owned else "no",
            (record.fingerprint or "")[:12],
        )
    console.print(table)


@state_cli.command()
@click.argument('kind', type=click.Choice([k.value for k in ResourceKind]))
@click.argument('key')
@click.pass_context
@handle_async_command
async def forget(ctx, kind: str, key: str) -> int:
    """Removes a record without touching the remote node."""
    rid = ResourceId(ResourceKind(kind), key)
    store = FingerprintStore(ctx.obj['STATE_PATH'])
    try:
        removed = await store.delete(rid)
    finally:
        store.close()

    if removed:
        console.print(f"[green]✅ Record '{rid}' removed.[/green]")
        return 0
    console.print(f"[red]Record '{rid}' not found.[/red]")
    return 1
