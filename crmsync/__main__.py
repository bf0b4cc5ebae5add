"""
Entry point for running crmsync as a module.

Usage:
    python -m crmsync --help
    python -m crmsync start --user alice
    python -m crmsync tick
"""

from crmsync.cli import cli

if __name__ == "__main__":
    cli()
