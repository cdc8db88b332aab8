import click
import logging

from pvesync.config import settings
from pvesync.utils.logging import setup_logging

from .run import apply_cmd, destroy_cmd, plan_cmd
from .state import state_cli


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Enables verbose mode.')
@click.option('--quiet', '-q', is_flag=True, help='Enables quiet mode.')
@click.option('--state', 'state_path', type=click.Path(dir_okay=False),
              default=None, help='Path to the state database.')
@click.pass_context
def app(ctx, verbose, quiet, state_path):
    """
    pvesync: declarative Proxmox VE configuration over SSH.
    """
    ctx.ensure_object(dict)
    ctx.obj['VERBOSE'] = verbose
    ctx.obj['QUIET'] = quiet
    ctx.obj['STATE_PATH'] = state_path or settings.STATE_DB_PATH

    if verbose:
        setup_logging(force=True, level=logging.DEBUG)
    elif quiet:
        setup_logging(force=True, level=logging.ERROR)
    else:
        setup_logging()

# Add subcommands
app.add_command(apply_cmd, name='apply')
app.add_command(plan_cmd, name='plan')
app.add_command(destroy_cmd, name='destroy')
app.add_command(state_cli, name='state')

if __name__ == '__main__':
    app()
