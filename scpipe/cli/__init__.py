"""Command-line interface for scpipe.

Example Usage
-------------
    # From command line:
    scpipe --help
    scpipe config --out scpipe.yaml
    scpipe run --input counts.h5ad --out results/ --config scpipe.yaml
"""

from .main import cli, main

__all__ = [
    "cli",
    "main",
]
