"""Beruang CLI.

Modes:
  - HTTP server:     `beruang serve [--host H] [--port P] [--config FILE] [--debug]`
  - Routing preview: `beruang route "should i buy a car"` (prints JSON, no reply)
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Optional

from beruang.config import Settings
from beruang.errors import ConfigurationError

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="beruang",
        description="Beruang finance assistant: hybrid local/remote chat routing.",
    )
    parser.add_argument("--config", default=None, help="YAML settings file (default: $BERUANG_CONFIG)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    subs = parser.add_subparsers(dest="command")

    serve = subs.add_parser("serve", help="Start the HTTP API server")
    serve.add_argument("--host", default=None, help="Bind address (default from settings: 0.0.0.0)")
    serve.add_argument("--port", type=int, default=None, help="Port (default from settings: 3000)")

    route = subs.add_parser("route", help="Print the routing decision for a message")
    route.add_argument("message", help="User message")
    route.add_argument("--no-model", action="store_true", help="Skip loading the intent model")

    return parser


def _route(settings: Settings, message: str, *, load_model: bool = True) -> int:
    from beruang.search.places import is_place_query
    from beruang.server import BeruangServer

    server = BeruangServer.from_settings(settings)
    if load_model:
        server.load_model()
    decision = server.engine.decide(message)
    payload = {
        "message": message,
        "model": server.model_status,
        "place_query": is_place_query(message),
        "decision": decision.to_dict(),
    }
    print(json.dumps(payload, ensure_ascii=False, indent=2))
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 2

    try:
        settings = Settings.load(args.config)
    except ConfigurationError as e:
        print(f"❌ Configuration error: {e}", file=sys.stderr)
        return 1

    if args.command == "route":
        try:
            return _route(settings, args.message, load_model=not args.no_model)
        except ConfigurationError as e:
            print(f"❌ Configuration error: {e}", file=sys.stderr)
            return 1

    if args.command == "serve":
        from beruang.api.server import run_http_server

        run_http_server(
            settings,
            host=args.host,
            port=args.port,
            log_level="debug" if args.debug else None,
        )
        return 0

    parser.print_help()
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
