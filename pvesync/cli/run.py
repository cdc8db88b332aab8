import asyncio
import click
import json
import logging
import signal
from typing import Optional

from rich.console import Console
from rich.json import JSON
from rich.table import Table

from pvesync.config import settings
from pvesync.database.store import FingerprintStore
from pvesync.driver.apply import ApplyDriver
from pvesync.driver.report import PassPlan, PassReport
from pvesync.inventory.loader import load_config
from pvesync.scheduler.tiers import TierScheduler
from pvesync.ssh.client import SSHExecutor
from .utils import handle_async_command

console = Console()
logger = logging.getLogger(__name__)

OUTCOME_STYLES = {
    'applied': 'green',
    'destroyed': 'green',
    'skipped': 'cyan',
    'failed': 'red',
    'not_attempted': 'yellow',
}


def _install_sigint(loop: asyncio.AbstractEventLoop, callback) -> bool:
    try:
        loop.add_signal_handler(signal.SIGINT, callback)
    except (NotImplementedError, RuntimeError) as e:
        logger.debug(f"SIGINT handler not installed: {e}")
        return False
    return True


def render_report(report: PassReport) -> None:
    table = Table(title=f"{report.action} pass")
    table.add_column("Outcome")
    table.add_column("Count", justify="right")
    for name, count in report.counts().items():
        style = OUTCOME_STYLES.get(name, "white")
        table.add_row(f"[{style}]{name}[/{style}]", str(count))
    console.print(table)

    failures = report.failures
    if failures:
        failed = Table(title="Failures", show_lines=True)
        failed.add_column("Resource", style="cyan", no_wrap=True)
        failed.add_column("Phase", no_wrap=True)
        failed.add_column("Error", no_wrap=True)
        failed.add_column("Message")
        failed.add_column("Stderr", overflow="fold")
        for entry in failures:
            failed.add_row(
                str(entry.resource_id),
                entry.phase,
                entry.error_kind or "-",
                entry.message,
                entry.stderr or "",
            )
        console.print(failed)

    if report.cancelled:
        console.print("[yellow]Pass was cancelled; remaining resources were not attempted[/yellow]")
    if report.success:
        console.print("[green]✅ Pass completed successfully[/green]")
    else:
        console.print(f"[red]❌ Pass completed with {report.failed} failure(s)[/red]")


def render_plan(plan: PassPlan) -> None:
    table = Table(title="Plan")
    table.add_column("Resource", style="cyan", no_wrap=True)
    table.add_column("Action")
    for descriptor in plan.added:
        table.add_row(str(descriptor.resource_id), "[green]create[/green]")
    for descriptor in plan.changed:
        table.add_row(str(descriptor.resource_id), "[yellow]reconcile (changed)[/yellow]")
    for descriptor in plan.retry:
        table.add_row(str(descriptor.resource_id), "[yellow]reconcile (retry)[/yellow]")
    for record in plan.removed:
        table.add_row(str(record.resource_id), "[red]destroy[/red]")
    console.print(table)
    retry_ids = {d.resource_id for d in plan.retry}
    unchanged = sum(1 for d in plan.unchanged if d.resource_id not in retry_ids)
    console.print(f"{unchanged} unchanged resource(s) will be verified or skipped")


async def _run_pass(
    state_path: str,
    config_path: Optional[str],
    action: str,
    workers: Optional[int] = None,
    verify: bool = settings.VERIFY_UNCHANGED,
    json_output: bool = False,
) -> int:
    desired = load_config(config_path)
    store = FingerprintStore(state_path)
    executor = SSHExecutor()
    driver = ApplyDriver(
        store,
        executor,
        desired.context,
        scheduler=TierScheduler(max_workers=workers or settings.MAX_WORKERS),
        verify_unchanged=verify,
    )

    loop = asyncio.get_running_loop()
    installed = _install_sigint(loop, driver.cancel)
    try:
        if action == "apply":
            report = await driver.apply(desired.resources)
        else:
            report = await driver.destroy()
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)
        await executor.close()
        store.close()

    if json_output:
        console.print(JSON(json.dumps(report.to_dict())))
    else:
        render_report(report)
    return 0 if report.success else 2


@click.command()
@click.argument('config', type=click.Path(exists=True, dir_okay=False))
@click.option('--workers', type=click.IntRange(min=1), default=None, help='Concurrent reconciliations per tier.')
@click.option('--no-verify', is_flag=True, help='Skip unchanged resources without probing them.')
@click.option('--json', 'json_output', is_flag=True, help='Output the report in JSON format.')
@click.pass_context
@handle_async_command
async def apply_cmd(ctx, config: str, workers: Optional[int], no_verify: bool, json_output: bool) -> int:
    """Converge the nodes to the configuration in CONFIG."""
    if not json_output:
        console.print(f"[bold blue]Applying {config}[/bold blue]")
    verify = settings.VERIFY_UNCHANGED and not no_verify
    return await _run_pass(ctx.obj['STATE_PATH'], config, "apply", workers, verify, json_output)


@click.command()
@click.argument('config', type=click.Path(exists=True, dir_okay=False))
@click.option('--json', 'json_output', is_flag=True, help='Output the plan in JSON format.')
@click.pass_context
@handle_async_command
async def plan_cmd(ctx, config: str, json_output: bool) -> None:
    """Show what an apply of CONFIG would do, without contacting any node."""
    desired = load_config(config)
    store = FingerprintStore(ctx.obj['STATE_PATH'])
    try:
        driver = ApplyDriver(store, SSHExecutor(), desired.context)
        plan = await driver.plan(desired.resources)
    finally:
        store.close()

    if json_output:
        console.print(JSON(json.dumps(plan.to_dict())))
    else:
        render_plan(plan)


@click.command()
@click.argument('config', type=click.Path(exists=True, dir_okay=False))
@click.option('--workers', type=click.IntRange(min=1), default=None, help='Concurrent destroys per tier.')
@click.option('--json', 'json_output', is_flag=True, help='Output the report in JSON format.')
@click.pass_context
@handle_async_command
async def destroy_cmd(ctx, config: str, workers: Optional[int], json_output: bool) -> int:
    """Destroy every resource recorded in the state database."""
    if not json_output:
        console.print("[bold red]Destroying managed resources[/bold red]")
    return await _run_pass(ctx.obj['STATE_PATH'], config, "destroy", workers, json_output=json_output)
