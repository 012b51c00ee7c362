#!/usr/bin/env python3
"""Run the webtmux bridge with explicit args (avoids shell interpolation).

Flags override the matching WEBTMUX_* environment variables; anything
not given here falls back to the environment.
"""
from __future__ import annotations

import argparse
import logging
import os
import shlex

import uvicorn

from webtmux.api.app import create_app
from webtmux.api.config import BridgeConfig, MultiplexerKind
from webtmux.observability import configure_logging


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8080)
    parser.add_argument(
        "--multiplexer",
        choices=[k.value for k in MultiplexerKind],
        default=None,
    )
    parser.add_argument("--session", default=None, help="multiplexer session name")
    parser.add_argument("--credential", default=None, help="user:pass for basic auth")
    parser.add_argument("--permit-write", action=argparse.BooleanOptionalAction, default=None)
    parser.add_argument("--permit-arguments", action=argparse.BooleanOptionalAction, default=None)
    parser.add_argument("--log-level", default=os.environ.get("LOG_LEVEL", "INFO"))
    parser.add_argument("command", nargs=argparse.REMAINDER, help="command to run")
    return parser.parse_args()


def build_config(args: argparse.Namespace) -> BridgeConfig:
    overrides = {}
    if args.multiplexer is not None:
        overrides["multiplexer"] = MultiplexerKind(args.multiplexer)
    if args.session is not None:
        overrides["session_name"] = args.session
    if args.credential is not None:
        overrides["credential"] = args.credential
    if args.permit_write is not None:
        overrides["permit_write"] = args.permit_write
    if args.permit_arguments is not None:
        overrides["permit_arguments"] = args.permit_arguments
    command = [part for part in args.command if part != "--"]
    if command:
        overrides["command"] = command
    elif "multiplexer" in overrides and not os.environ.get("WEBTMUX_COMMAND"):
        # Recompute the default for the flag's multiplexer, not the env's
        overrides["command"] = []
    return BridgeConfig(**overrides)


def main() -> int:
    args = parse_args()
    configure_logging(level=args.log_level)
    config = build_config(args)
    logging.getLogger(__name__).info(
        "Serving %s on %s:%d", shlex.join(config.command), args.host, args.port,
    )
    app = create_app(config)
    uvicorn.run(app, host=args.host, port=args.port, log_config=None)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
