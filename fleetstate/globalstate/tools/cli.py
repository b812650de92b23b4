"""
Global state admin CLI.

Runs the five primitives from the command line against either a local
database file (the owner's storage, server stopped or not) or a remote
owner node. Keys and values are given and printed as hex.

Usage:
    globalstate-cli --db /var/lib/globalstate/global_state.db get 06ab...
    globalstate-cli --remote http://owner:17001 --secret s3cret put 0102 01
    globalstate-cli --db state.db seek --start 01 --limit 10 --reverse --values
    globalstate-cli --db state.db batch-get 0001 0002 --format json

Invariants:
    - Exactly one of --db or --remote is used
    - Output is stable for scripting (one "key value" pair per line, or JSON)
    - Errors print to stderr with a non-zero exit code

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep output format stable for scripts
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Optional, Sequence

from ..config import GlobalStateConfig
from ..dispatch import GlobalState
from ..engine import EngineError, KVEngine, SqliteEngine
from ..errors import GlobalStateError
from ..store import LocalStore

logger = logging.getLogger(__name__)


def parse_hex(value: str) -> bytes:
    """argparse type for hex byte strings ("" is the empty key)."""
    try:
        return bytes.fromhex(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"not a hex string: {value!r}") from e


class GlobalStateCLI:
    """Command implementations over an open GlobalState.

    Example:
        >>> cli = GlobalStateCLI(global_state)
        >>> await cli.put(b"\\x06" + pk, b"\\x01")
        >>> await cli.get(b"\\x06" + pk)
        '01'
    """

    def __init__(self, global_state: GlobalState, output_format: str = "text") -> None:
        self.global_state = global_state
        self.output_format = output_format

    def _render(self, data: Any, lines: list[str]) -> str:
        if self.output_format == "json":
            return json.dumps(data, indent=2, sort_keys=True)
        return "\n".join(lines)

    async def get(self, key: bytes) -> str:
        value = await self.global_state.get(key)
        return self._render({"key": key.hex(), "value": value.hex()}, [value.hex()])

    async def put(self, key: bytes, value: bytes) -> str:
        await self.global_state.put(key, value)
        return self._render({"key": key.hex(), "ok": True}, ["OK"])

    async def delete(self, key: bytes) -> str:
        await self.global_state.delete(key)
        return self._render({"key": key.hex(), "ok": True}, ["OK"])

    async def batch_get(self, keys: Sequence[bytes]) -> str:
        values = await self.global_state.batch_get(keys)
        pairs = [(k.hex(), v.hex()) for k, v in zip(keys, values)]
        return self._render(
            [{"key": k, "value": v} for k, v in pairs],
            [f"{k} {v}" for k, v in pairs],
        )

    async def seek(
        self,
        start_key: bytes,
        valid_prefix: bytes,
        max_key_len: int,
        limit: int,
        reverse: bool,
        fetch_values: bool,
    ) -> str:
        found, values = await self.global_state.seek(
            start_key, valid_prefix, max_key_len, limit, reverse, fetch_values
        )
        if fetch_values:
            rows = [{"key": k.hex(), "value": v.hex()} for k, v in zip(found, values)]
            lines = [f"{r['key']} {r['value']}" for r in rows]
        else:
            rows = [{"key": k.hex()} for k in found]
            lines = [r["key"] for r in rows]
        return self._render(rows, lines)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Global state admin tool")

    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--db", help="Path to a local global state SQLite database")
    target.add_argument("--remote", help="Base URL of the owner node, e.g. http://owner:17001")
    parser.add_argument(
        "--secret",
        default=os.getenv("GLOBAL_STATE_SHARED_SECRET", ""),
        help="Shared secret for --remote (default: $GLOBAL_STATE_SHARED_SECRET)",
    )
    parser.add_argument("--timeout", type=float, default=30.0, help="Remote timeout in seconds")
    parser.add_argument(
        "--format", choices=["text", "json"], default="text", help="Output format"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    get_parser = subparsers.add_parser("get", help="Get one value")
    get_parser.add_argument("key", type=parse_hex)

    put_parser = subparsers.add_parser("put", help="Store one value")
    put_parser.add_argument("key", type=parse_hex)
    put_parser.add_argument("value", type=parse_hex)

    delete_parser = subparsers.add_parser("delete", help="Delete one key")
    delete_parser.add_argument("key", type=parse_hex)

    batch_parser = subparsers.add_parser("batch-get", help="Get many values")
    batch_parser.add_argument("keys", type=parse_hex, nargs="+")

    seek_parser = subparsers.add_parser("seek", help="Prefix scan")
    seek_parser.add_argument("--start", type=parse_hex, required=True, help="Start key")
    seek_parser.add_argument(
        "--prefix", type=parse_hex, help="Prefix every result must match (default: --start)"
    )
    seek_parser.add_argument("--max-key-len", type=int, default=0)
    seek_parser.add_argument("--limit", type=int, default=100)
    seek_parser.add_argument("--reverse", action="store_true")
    seek_parser.add_argument("--values", action="store_true", help="Also print values")

    return parser


def open_global_state(args: argparse.Namespace) -> tuple[GlobalState, Optional[KVEngine]]:
    """Open the target named on the command line.

    Raises:
        ValueError: If the target is unusable
        EngineError: If the database file cannot be opened
    """
    if args.remote:
        config = GlobalStateConfig(
            remote_node=args.remote.rstrip("/"),
            shared_secret=args.secret,
            remote_timeout_seconds=args.timeout,
        )
        return GlobalState(config), None

    if not Path(args.db).exists():
        raise ValueError(f"Database file does not exist: {args.db}")
    engine = SqliteEngine(path=args.db)
    engine.open()
    return GlobalState(GlobalStateConfig(), local=LocalStore(engine)), engine


async def run(args: argparse.Namespace) -> str:
    global_state, engine = open_global_state(args)
    cli = GlobalStateCLI(global_state, args.format)
    try:
        if args.command == "get":
            return await cli.get(args.key)
        elif args.command == "put":
            return await cli.put(args.key, args.value)
        elif args.command == "delete":
            return await cli.delete(args.key)
        elif args.command == "batch-get":
            return await cli.batch_get(args.keys)
        elif args.command == "seek":
            prefix = args.prefix if args.prefix is not None else args.start
            return await cli.seek(
                args.start, prefix, args.max_key_len, args.limit, args.reverse, args.values
            )
        raise ValueError(f"Unknown command: {args.command}")
    finally:
        await global_state.close()
        if engine is not None:
            engine.close()


def main(argv: Optional[Sequence[str]] = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        output = asyncio.run(run(args))
    except (GlobalStateError, EngineError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    print(output)


if __name__ == "__main__":
    main()
