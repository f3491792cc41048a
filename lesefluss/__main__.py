"""Main module for the lesefluss MCP server.

This module allows the server to be run as a Python module using:
python -m lesefluss
"""

import sys

from lesefluss.server.app import main

if __name__ == "__main__":
    sys.exit(main())
