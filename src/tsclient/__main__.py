"""CLI entry point for tsclient."""

import sys


def main() -> int:
    """Main entry point for the tsclient CLI."""
    from tsclient.cli import run_cli

    return run_cli(sys.argv[1:])


if __name__ == "__main__":
    sys.exit(main())
