"""Zettelclaw memory migration tooling."""

__version__ = "0.1.0"
