"""
Remote state probing for pvesync.
"""

from pvesync.probe.prober import StateProber

__all__ = ["StateProber"]
