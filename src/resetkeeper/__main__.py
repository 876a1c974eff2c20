"""CLI entrypoint for running resetkeeper as a module."""

from resetkeeper.cli import cli
from resetkeeper.logging import setup_logging

if __name__ == "__main__":
    setup_logging()
    cli()
