"""
Entry point for running Marketing Spaces as a module.

Usage:
    python -m marketing_spaces
"""

import sys

from marketing_spaces.main import main

if __name__ == "__main__":
    sys.exit(main())
