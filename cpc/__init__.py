"""cpc - personal Kubernetes cluster orchestrator."""

__version__ = "0.1.0"
