"""
Per-kind reconcilers and the Proxmox command builders they issue.
"""

from pvesync.reconcile.reconcilers import BaseReconciler, build_reconcilers

__all__ = ["BaseReconciler", "build_reconcilers"]
