# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Checkpoint Inspector - inspect and prune persisted agent checkpoints.

This tool provides:
- List the checkpoint history of a thread
- Show the latest checkpoint of a thread, including its state
- Delete single checkpoints, clear threads, or prune thread history

Usage:
    python -m loomgraph.devtools.checkpoint_inspector --backend sqlite --path ~/.loomgraph/checkpoints.db list session-1
    python -m loomgraph.devtools.checkpoint_inspector --backend json --path ./checkpoints show session-1
    python -m loomgraph.devtools.checkpoint_inspector --backend sqlite --path cp.db clear-history session-1 --keep ckpt_x
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, List, Optional

from loomgraph.config.settings import CheckpointBackend
from loomgraph.core.errors import LoomGraphError
from loomgraph.core.logging_config import configure_logging_levels
from loomgraph.framework.checkpoint import BaseCheckpointer
from loomgraph.framework.checkpointer import JSONFileCheckpointer, SQLiteCheckpointer

logger = logging.getLogger(__name__)


def open_checkpointer(backend: str, path: str, table_name: Optional[str] = None) -> BaseCheckpointer:
    """Open a durable backend for inspection."""
    if backend == CheckpointBackend.SQLITE.value:
        if table_name:
            return SQLiteCheckpointer(db_path=path, table_name=table_name)
        return SQLiteCheckpointer(db_path=path)
    if backend == CheckpointBackend.JSON.value:
        return JSONFileCheckpointer(base_dir=path)
    raise ValueError(f"Unsupported backend for inspection: {backend}")


async def run_command(checkpointer: BaseCheckpointer, args: argparse.Namespace) -> Any:
    """Execute one inspector command and return a JSON-serializable result."""
    if args.command == "list":
        entries = await checkpointer.list(args.thread_id)
        return [m.to_dict() for m in entries]

    if args.command == "show":
        checkpoint = await checkpointer.load(args.thread_id)
        return checkpoint.to_dict() if checkpoint is not None else None

    if args.command == "delete":
        return {"deleted": await checkpointer.delete(args.checkpoint_id)}

    if args.command == "clear":
        return {"removed": await checkpointer.clear(args.thread_id)}

    if args.command == "clear-history":
        return {"removed": await checkpointer.clear_history(args.thread_id, keep_id=args.keep)}

    raise ValueError(f"Unknown command: {args.command}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Inspect persisted loomgraph checkpoints",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Checkpoint history of a thread, newest first
  python -m loomgraph.devtools.checkpoint_inspector --backend sqlite --path cp.db list session-1

  # Latest checkpoint with state
  python -m loomgraph.devtools.checkpoint_inspector --backend json --path ./checkpoints show session-1

  # Keep only the latest checkpoint
  python -m loomgraph.devtools.checkpoint_inspector --backend sqlite --path cp.db clear-history session-1
        """,
    )
    parser.add_argument(
        "-b",
        "--backend",
        choices=[CheckpointBackend.SQLITE.value, CheckpointBackend.JSON.value],
        required=True,
        help="Checkpoint backend",
    )
    parser.add_argument(
        "-p",
        "--path",
        required=True,
        metavar="PATH",
        help="SQLite database file or JSON checkpoint directory",
    )
    parser.add_argument("--table", metavar="NAME", help="SQLite table name")
    parser.add_argument("--log-level", default="WARNING", help="Log level (default: WARNING)")

    sub = parser.add_subparsers(dest="command", required=True)

    list_cmd = sub.add_parser("list", help="List checkpoints of a thread")
    list_cmd.add_argument("thread_id")

    show_cmd = sub.add_parser("show", help="Show the latest checkpoint of a thread")
    show_cmd.add_argument("thread_id")

    delete_cmd = sub.add_parser("delete", help="Delete one checkpoint")
    delete_cmd.add_argument("checkpoint_id")

    clear_cmd = sub.add_parser("clear", help="Delete every checkpoint of a thread")
    clear_cmd.add_argument("thread_id")

    history_cmd = sub.add_parser("clear-history", help="Delete all but one checkpoint of a thread")
    history_cmd.add_argument("thread_id")
    history_cmd.add_argument("--keep", metavar="ID", help="Checkpoint to keep (default: latest)")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    configure_logging_levels(args.log_level, file_logging_enabled=False)

    checkpointer = open_checkpointer(args.backend, args.path, args.table)
    try:
        result = asyncio.run(run_command(checkpointer, args))
    except (LoomGraphError, ValueError) as e:
        logger.error(f"Error running {args.command}: {e}")
        return 1
    finally:
        if isinstance(checkpointer, SQLiteCheckpointer):
            checkpointer.close()

    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
