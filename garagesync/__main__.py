"""Module entry point for ``python -m garagesync``."""

import sys

from .app import main

if __name__ == "__main__":
    sys.exit(main())
