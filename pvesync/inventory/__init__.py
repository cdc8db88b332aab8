"""
Declarative configuration loading.
"""

from pvesync.inventory.loader import DesiredState, load_config, parse_config

__all__ = ["DesiredState", "load_config", "parse_config"]
