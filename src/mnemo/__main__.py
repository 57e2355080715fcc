"""Entry point: python -m mnemo <mode> [key=value ...]

Runs one ``openmemory`` command against the current directory's scopes and
prints the JSON result. No mode prints the usage guide.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys

from mnemo.config import load_config
from mnemo.tools.memory_tool import MODES, TOOL_DESCRIPTION

_NUMERIC = {"limit": int, "boost": float}


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


def parse_args(argv: list[str]) -> tuple[str | None, dict]:
    """Split ``mode key=value ...`` into the mode and a kwargs dict."""
    mode = argv[0] if argv else None
    args: dict = {}
    for item in argv[1:]:
        key, sep, value = item.partition("=")
        if not sep:
            raise ValueError(f"Expected key=value, got: {item}")
        key = key.replace("-", "_")
        args[key] = _NUMERIC[key](value) if key in _NUMERIC else value
    return mode, args


async def _run(mode: str | None, args: dict) -> str:
    from mnemo.core import Mnemo

    config = load_config()
    _setup_logging(config.log_level)
    return await Mnemo(config, os.getcwd()).execute(mode, **args)


def main() -> None:
    try:
        mode, args = parse_args(sys.argv[1:])
    except ValueError as e:
        print(e, file=sys.stderr)
        print(f"Usage: python -m mnemo [{'|'.join(MODES)}] [key=value ...]", file=sys.stderr)
        print(TOOL_DESCRIPTION, file=sys.stderr)
        sys.exit(1)

    try:
        print(asyncio.run(_run(mode, args)))
    except TypeError as e:
        # Unknown keyword argument
        print(e, file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
