"""Local development Certificate Authority and certificate lifecycle tooling."""

__version__ = "0.1.0"
