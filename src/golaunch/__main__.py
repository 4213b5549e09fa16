"""
=============================================================================
GOLAUNCH CLI ENTRY POINT
=============================================================================

    # Run on the default port (8080)
    python -m golaunch

    # Custom port
    PORT=3000 python -m golaunch

    # Installed console script
    golaunch

Stop it with Ctrl+C or `kill <pid>`; in-flight requests get 5 seconds to
finish. The exit status tells a supervisor how it went:

    0  stopped gracefully
    1  could not bind the port
    2  shutdown deadline exceeded, connections were cut
    3  shutdown failed otherwise

=============================================================================
12-FACTOR APP: ENTRY POINT
=============================================================================

1. Configuration comes from the environment (PORT)
2. Logs go to stderr
3. SIGTERM means "finish what you're doing and exit"

=============================================================================
"""

import argparse
import sys

from . import __version__
from .config import ServerConfig
from .lifecycle import configure_logging, run


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="golaunch",
        description="Minimal HTTP server with graceful shutdown",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment:
  PORT    Port to listen on (default: 8080)

Routes:
  /        Welcome to the Go Web App!
  /health  OK
        """
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"golaunch {__version__}"
    )

    parser.parse_args()

    config = ServerConfig.from_env()
    configure_logging(config.log_level)

    sys.exit(int(run(config)))


# =============================================================================
# ENTRY POINT
# =============================================================================

if __name__ == "__main__":
    main()
