"""
Entry point for running claimenv as a module.

Allows running the CLI via:
    python -m claimenv
"""

from claimenv.cli import run

if __name__ == "__main__":
    run()
