"""
Console script entrypoint for youtrack-worklog-importer.

Thin wrapper so `python -m youtrack_worklog_importer.cli` and the installed
script share core.main().
"""
from __future__ import annotations


def main() -> None:
    # Import inside function so importing the CLI module has no side effects
    # (argparse, network) for tools that only introspect it.
    from .core import main as _main

    _main()


if __name__ == "__main__":
    main()
