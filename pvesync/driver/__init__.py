"""
Apply/destroy passes and their reports.
"""

from pvesync.driver.apply import ApplyDriver
from pvesync.driver.report import PassPlan, PassReport

__all__ = ["ApplyDriver", "PassPlan", "PassReport"]
