"""Entry point for running PagePilot.

Usage:
    python -m pagepilot serve [--host HOST] [--port PORT]
    python -m pagepilot chat

Page contexts (browser tabs running the page agent) connect to
ws://HOST:PORT/pages/<context-id>.
"""

import sys

from pagepilot.cli import main

if __name__ == "__main__":
    sys.exit(main())
