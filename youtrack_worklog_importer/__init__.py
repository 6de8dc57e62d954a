"""
youtrack_worklog_importer package

- Re-exports the public functions of youtrack_worklog_importer.core.
- Provides a package-level main() suitable for console_scripts entrypoints.
"""

from .core import *  # type: ignore  # noqa: F401,F403


def main() -> None:
    """Package entrypoint. Delegates to core.main()."""
    from .core import main as _main
    _main()
