"""
SSH module for pvesync.

Provides the remote executor used to run Proxmox CLI commands on cluster nodes.
"""

from pvesync.ssh.client import ConnectionContext, SSHCommandResult, SSHExecutor

__all__ = ["ConnectionContext", "SSHCommandResult", "SSHExecutor"]
