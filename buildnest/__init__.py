"""Builder instance store, driver registry, Kubernetes manifests and build flag parsing."""

__version__ = "0.1.0"