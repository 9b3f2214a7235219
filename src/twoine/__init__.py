"""twoine: self-hosted multi-tenant hosting control plane."""

__version__ = "0.4.0"
