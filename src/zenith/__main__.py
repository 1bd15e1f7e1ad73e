"""Run zenith with ``python -m zenith``."""

import sys

from zenith.cli import main

if __name__ == "__main__":
    sys.exit(main())
