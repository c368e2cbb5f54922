"""Tooling for DependencyControl update feeds."""

__version__ = "0.3.0"
