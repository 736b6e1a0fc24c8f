"""Local homelab cluster manager: k3d, Cilium, Argo CD and GitOps."""

__version__ = "0.1.0"
