"""Dependency-ordered deployment provisioner."""

__version__ = "0.1.0"
