"""
Deployment ledger.

A JSON document of deployment outcomes keyed by account address:
- read at startup (already-deployed short-circuit)
- upserted at completion (read-merge-write, atomic rename)
- never deleted from by the flow
"""

from .store import DeploymentLedger, deep_merge

__all__ = ["DeploymentLedger", "deep_merge"]
