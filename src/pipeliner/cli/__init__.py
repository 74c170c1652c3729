"""Command line interface for pipeliner."""

from pipeliner.cli.app import app, main

__all__ = [
    "app",
    "main",
]
