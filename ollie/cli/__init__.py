"""
Ollie command line interface
"""

from ollie.cli.main import cli

__all__ = ["cli"]
