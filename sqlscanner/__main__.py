"""
Entry point for running the scanner as a module.

Usage:
    python -m sqlscanner scan ./lib
    python -m sqlscanner --help
"""

import sys
from sqlscanner.cli import main

if __name__ == "__main__":
    sys.exit(main())
