# src/drroute/__main__.py
"""Dr. Route entry point: ``python -m drroute serve``."""
from drroute.cli import cli

if __name__ == "__main__":
    cli()
