"""CLI entry point for flockcount.cli module.

Enables execution via: python -m flockcount.cli
"""

from flockcount.cli.offline_client import main

if __name__ == "__main__":
    main()
