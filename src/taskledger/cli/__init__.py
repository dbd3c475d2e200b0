"""CLI interface for taskledger."""

from taskledger.cli.main import app

__all__ = ["app"]
