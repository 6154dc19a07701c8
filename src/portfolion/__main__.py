"""
Command line entry point.

    python -m portfolion serve                  # sample task app on :8080
    python -m portfolion serve --port 3000 --env local
    python -m portfolion routes                 # print the route table
"""

import argparse
import sys

from . import __version__
from .config import Config
from .errors import ConfigError
from .log import configure_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="portfolion",
        description="Run the Portfolion sample task application",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m portfolion serve                    # Run with defaults
  python -m portfolion serve --port 3000        # Custom port
  python -m portfolion serve --host 0.0.0.0     # Listen on all interfaces
  python -m portfolion routes                   # List registered routes
        """,
    )
    parser.add_argument(
        "--base-dir", "-d",
        default=".",
        help="Directory holding .env and config/ (default: current directory)",
    )
    parser.add_argument(
        "--env", "-e",
        default=None,
        help="Environment name, overrides APP_ENV (e.g. local, testing, production)",
    )
    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"Portfolion {__version__}",
    )

    commands = parser.add_subparsers(dest="command")

    serve = commands.add_parser("serve", help="Start the HTTP server")
    serve.add_argument("--host", "-H", default=None, help="Host to bind to (default: server.host)")
    serve.add_argument("--port", "-p", type=int, default=None, help="Port to listen on (default: server.port)")
    serve.add_argument("--workers", "-w", type=int, default=None, help="Worker threads (default: server.max_workers)")
    serve.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: logging.level)",
    )

    commands.add_parser("routes", help="Print the route table")
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    command = args.command or "serve"

    # The sample app lives in its own package on top of the framework
    from taskapp.main import create_app

    try:
        config = Config.load(base_dir=args.base_dir, env=args.env)
        if command == "serve":
            if args.workers:
                config.set("server.max_workers", args.workers)
            if args.log_level:
                config.set("logging.level", args.log_level)
        configure_logging(config.get("logging.level", "INFO"))
        app = create_app(config)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    if command == "routes":
        for line in app.router.describe():
            print(line)
        return 0

    app.serve(host=getattr(args, "host", None), port=getattr(args, "port", None))
    return 0


if __name__ == "__main__":
    sys.exit(main())
