"""Homestead - converge a fresh machine to a declared setup."""

__version__ = "0.1.0"
