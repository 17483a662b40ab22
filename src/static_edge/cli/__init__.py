"""Command line interface for static-edge."""

from static_edge.cli.main import cli, main

__all__ = ['cli', 'main']
