import asyncio
import functools
import sys
from rich.console import Console

from pvesync.errors import ConfigError

console = Console()


def handle_async_command(async_func):
    """Decorator to handle async CLI commands.

    A non-zero integer returned by the command becomes the exit status.
    """
    @functools.wraps(async_func)
    def wrapper(*args, **kwargs):
        try:
            result = asyncio.run(async_func(*args, **kwargs))
        except KeyboardInterrupt:
            console.print("\n[yellow]Operation cancelled by user[/yellow]")
            sys.exit(1)
        except ConfigError as e:
            console.print(f"[red]Configuration error: {e}[/red]")
            sys.exit(1)
        except Exception as e:
            console.print(f"[red]Error: {e}[/red]")
            sys.exit(1)
        if isinstance(result, int) and result:
            sys.exit(result)
        return result
    return wrapper
