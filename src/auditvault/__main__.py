"""
Entry point for running auditvault as a module.

Usage:
    python -m auditvault [command] [options]
"""

from auditvault.cli import main

if __name__ == "__main__":
    main()
