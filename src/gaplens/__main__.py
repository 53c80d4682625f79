"""
Entry point for running Gaplens as a module.

Usage:
    python -m gaplens [command] [options]
"""

from gaplens.cli import main

if __name__ == "__main__":
    main()
