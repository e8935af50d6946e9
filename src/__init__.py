"""nobl9-sync - Apply Nobl9 manifests from a repository with resilient identity resolution."""

__version__ = "0.1.0"
