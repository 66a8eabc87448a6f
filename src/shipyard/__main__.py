"""Entry point for ``python -m shipyard``."""

from shipyard.cli import run

if __name__ == "__main__":
    run()
