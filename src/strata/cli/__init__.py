"""strata command-line interface."""

from strata.cli.app import app

__all__ = ["app"]
