"""
Async SSH executor for Proxmox nodes.

Runs exactly one remote command per call over a pooled asyncssh connection
and reports exit status, stdout and stderr. Failures to reach a host are
raised as RemoteConnectionError. A transport drop after the command was
sent is RemoteInterruptedError, and command timeouts are RemoteTimeoutError.
A non-zero exit is returned to the caller, never retried here.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import asyncssh

from pvesync.config import settings
from pvesync.errors import (
    RemoteCommandError,
    RemoteConnectionError,
    RemoteInterruptedError,
    RemoteTimeoutError,
)

logger = logging.getLogger(__name__)


@dataclass
class ConnectionContext:
    """
    Connection parameters shared by every resource in a pass.

    Built once per pass from the declarative configuration. Credential
    fields are excluded from repr so they never reach logs.
    """

    user: str = "root"
    port: int = 22
    private_key_path: Optional[str] = field(default=None, repr=False)
    password: Optional[str] = field(default=None, repr=False)
    connect_timeout: int = settings.CONNECT_TIMEOUT
    command_timeout: int = settings.COMMAND_TIMEOUT
    known_hosts: Optional[str] = settings.KNOWN_HOSTS
    verify_host_keys: bool = settings.VERIFY_HOST_KEYS
    default_host: Optional[str] = None
    node_hosts: Dict[str, str] = field(default_factory=dict)

    def host_for(self, node: str) -> str:
        """Resolve a Proxmox node name to the address used for SSH."""
        return self.node_hosts.get(node, node)

    def fingerprint_params(self) -> Dict[str, Any]:
        """Non-secret connection parameters mixed into resource fingerprints."""
        return {"user": self.user, "port": self.port}


@dataclass
class SSHCommandResult:
    """Result of SSH command execution."""

    command: str
    host: str
    exit_code: int
    stdout: str
    stderr: str
    execution_time: float

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        """Combined stdout and stderr."""
        if self.stderr:
            return f"{self.stdout}\n{self.stderr}".strip()
        return self.stdout.strip()

    def check(self) -> "SSHCommandResult":
        """Raise RemoteCommandError if the command exited non-zero."""
        if not self.success:
            raise RemoteCommandError(
                f"Command exited {self.exit_code} on {self.host}: {self.command}",
                host=self.host,
                exit_code=self.exit_code,
                stderr=self.stderr,
            )
        return self


class SSHConnectionPool:
    """
    Pool of SSH connections keyed by user@host:port.

    Holds at most one connection per key. Connections live for the
    duration of a reconciliation pass and are closed together by close_all().
    """

    def __init__(self):
        self._connections: Dict[str, asyncssh.SSHClientConnection] = {}
        self._connection_locks: Dict[str, asyncio.Lock] = {}

    def _get_connection_key(self, host: str, context: ConnectionContext) -> str:
        """Generate unique key for connection."""
        return f"{context.user}@{host}:{context.port}"

    async def get_connection(
        self, host: str, context: ConnectionContext
    ) -> asyncssh.SSHClientConnection:
        """
        Get or create SSH connection from pool.

        Raises:
            RemoteConnectionError: If the connection cannot be established
        """
        key = self._get_connection_key(host, context)

        lock = self._connection_locks.setdefault(key, asyncio.Lock())
        async with lock:
            conn = self._connections.get(key)
            if conn is not None:
                if not conn.is_closing():
                    return conn
                del self._connections[key]

            logger.debug(f"Creating new SSH connection to {key}")
            conn = await self._create_connection(host, context)
            self._connections[key] = conn
            return conn

    async def _create_connection(
        self, host: str, context: ConnectionContext
    ) -> asyncssh.SSHClientConnection:
        """Create new SSH connection with key or password authentication."""
        connect_kwargs: Dict[str, Any] = {
            'host': host,
            'port': context.port,
            'username': context.user,
            'connect_timeout': context.connect_timeout,
        }

        if not context.verify_host_keys:
            logger.warning(f"Host key verification disabled for {host}")
            connect_kwargs['known_hosts'] = None
        elif context.known_hosts:
            connect_kwargs['known_hosts'] = context.known_hosts

        if context.private_key_path:
            key_path = Path(context.private_key_path).expanduser()
            if not key_path.exists():
                raise RemoteConnectionError(
                    f"SSH private key not found for {context.user}@{host}", host=host
                )
            connect_kwargs['client_keys'] = [str(key_path)]
        elif context.password:
            connect_kwargs['password'] = context.password

        try:
            return await asyncssh.connect(**connect_kwargs)
        except (asyncssh.Error, OSError, asyncio.TimeoutError) as e:
            # asyncssh messages do not carry credential material
            raise RemoteConnectionError(
                f"Cannot connect to {context.user}@{host}:{context.port}: {e}", host=host
            ) from e

    async def close_all(self):
        """Close all connections in the pool."""
        for key, conn in list(self._connections.items()):
            try:
                conn.close()
                await conn.wait_closed()
            except Exception as e:
                logger.warning(f"Error closing SSH connection {key}: {e}")

        self._connections.clear()
        self._connection_locks.clear()


class SSHExecutor:
    """
    Remote executor for Proxmox CLI commands.

    One call issues one command exactly once. Retry policy belongs to the
    reconcilers, not to this layer.
    """

    def __init__(self, pool: Optional[SSHConnectionPool] = None):
        self.connection_pool = pool or SSHConnectionPool()

    async def execute(
        self,
        host: str,
        context: ConnectionContext,
        command: str,
        timeout: Optional[int] = None,
    ) -> SSHCommandResult:
        """
        Execute command on remote host.

        Args:
            host: Host name or address
            context: Connection context for the pass
            command: Command line to execute
            timeout: Command timeout (uses context default if None)

        Returns:
            Command execution result, including non-zero exits

        Raises:
            RemoteConnectionError: If the transport cannot be established
            RemoteInterruptedError: If the transport drops after the command was sent
            RemoteTimeoutError: If the command does not finish in time
        """
        timeout = timeout or context.command_timeout
        loop = asyncio.get_running_loop()
        start_time = loop.time()

        conn = await self.connection_pool.get_connection(host, context)

        logger.debug(f"Executing SSH command on {host}: {command}")
        try:
            result = await asyncio.wait_for(conn.run(command, check=False), timeout=timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"SSH command timed out after {timeout}s on {host}: {command}")
            raise RemoteTimeoutError(
                f"Command timed out after {timeout}s on {host}: {command}", host=host
            ) from e
        except asyncssh.ChannelOpenError as e:
            # The session never opened, so the command was not sent
            logger.error(f"SSH session could not be opened on {host}: {e}")
            raise RemoteConnectionError(f"SSH session could not be opened on {host}: {e}", host=host) from e
        except (asyncssh.Error, OSError) as e:
            logger.error(f"SSH transport dropped on {host} while running: {command}")
            raise RemoteInterruptedError(
                f"SSH transport dropped on {host} while running {command}: {e}", host=host
            ) from e

        execution_time = loop.time() - start_time
        exit_code = result.exit_status if result.exit_status is not None else -1

        return SSHCommandResult(
            command=command,
            host=host,
            exit_code=exit_code,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
            execution_time=execution_time,
        )

    async def close(self):
        """Close all pooled connections."""
        await self.connection_pool.close_all()
