"""Package entry point for ``python -m exiftool_catalog``.

WHY: Operators start the service as ``python -m exiftool_catalog``.
Python's ``-m`` flag looks for ``__main__.py`` inside the package.

HOW: Delegates to the CLI's main() function.
"""

from exiftool_catalog.cli import main

if __name__ == "__main__":
    main()
