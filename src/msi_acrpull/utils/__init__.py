"""
Utils package - Utility modules for MSI AcrPull operator functionality.

Contains helper modules for:
- Kubernetes object access
- Pull secret rendering
- Per-binding reconciliation gating
"""

from msi_acrpull.utils.kubernetes import KubernetesObjectStore, get_kubernetes_client
from msi_acrpull.utils.reconcile_gate import ReconcileGate

__all__ = [
    "KubernetesObjectStore",
    "ReconcileGate",
    "get_kubernetes_client",
]
