"""Command line interface for the City Prosperity Index engine."""

from cityprosperity.cli.main import app, main

__all__ = ["app", "main"]
