"""Machina - Deployment & Provisioning Orchestrator.

Turns "deploy / destroy / reboot a machine" intents into sequenced,
auditable infrastructure changes executed through Terraform, against a
credential vault holding per-provider secrets, and reconciled against
provider-reported reality.

Key Components:
    - api: REST surface (FastAPI)
    - application: Deployment state machine, reconciliation and services
    - domain: Machines, deployments, provider accounts and audit events
    - infrastructure: Persistence, vault, Terraform wrapper and locking
    - providers: Cloud provider adapters
"""

from ._package import PACKAGE_NAME, __version__

__package_name__ = PACKAGE_NAME
