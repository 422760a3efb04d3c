# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""CLI entry point for cortex-memory.

Usage:
    cortex-memory status                 # Tier counts, resilience and search stats
    cortex-memory promote                # Preview the next promotion pass
    cortex-memory promote --apply        # Apply it
    cortex-memory decay                  # Recompute stored decay scores
    cortex-memory search "sqlite wal"    # Hybrid search
    cortex-memory --config cfg.yaml ...  # Use a YAML config file
    cortex-memory --version              # Show version
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

from cortex_memory import __version__
from cortex_memory.config import load_config
from cortex_memory.core import MemoryCore, build_memory_core
from cortex_memory.errors import CortexError


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cortex-memory",
        description="Cortex Memory - retrieval and tier lifecycle for a long-lived knowledge store",
    )
    parser.add_argument(
        "--version",
        "-V",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to a YAML config file (default: built-in defaults)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("status", help="Show tier, search and resilience status")

    promote_parser = subparsers.add_parser("promote", help="Analyze or apply tier promotion")
    promote_parser.add_argument(
        "--apply",
        action="store_true",
        help="Perform the moves (default: dry run)",
    )

    subparsers.add_parser("decay", help="Recompute stored decay scores")

    search_parser = subparsers.add_parser("search", help="Search stored memories")
    search_parser.add_argument("query", help="Free-text query")
    search_parser.add_argument(
        "--mode",
        choices=["hybrid", "lexical", "vector"],
        default="hybrid",
        help="Retrieval mode (default: hybrid)",
    )
    search_parser.add_argument("--limit", type=int, default=None, help="Maximum results")
    search_parser.add_argument("--project", default=None, help="Project hash to scope to")
    search_parser.add_argument(
        "--embeddings",
        action="store_true",
        help="Embed the query with sentence-transformers (requires [embeddings] extra)",
    )
    return parser


def _load_embedder(enabled: bool):
    if not enabled:
        return None
    from cortex_memory.retrieval.embedding import SentenceTransformerEmbedder

    return SentenceTransformerEmbedder()


async def run_search(core: MemoryCore, args: argparse.Namespace) -> list[dict[str, Any]]:
    options: dict[str, Any] = {
        "mode": args.mode,
        "limit": args.limit or core.config.search.default_limit,
    }
    if args.project:
        options["project_hash"] = args.project
    results = await core.search(args.query, options)
    return [
        {
            "id": r.record_id,
            "score": round(r.score, 6),
            "sources": list(r.sources),
            "lexical_rank": r.lexical_rank,
            "vector_rank": r.vector_rank,
            "decay": round(r.decay, 4),
            "summary": r.record.summary or r.record.content[:120] if r.record else None,
        }
        for r in results
    ]


def main(argv: Optional[list[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    config = load_config(args.config)
    embedder = _load_embedder(getattr(args, "embeddings", False))
    core = build_memory_core(config, embedder=embedder)
    try:
        if args.command == "status":
            _print_json(core.get_stats())
        elif args.command == "promote":
            report = asyncio.run(core.apply_lifecycle(dry_run=not args.apply))
            _print_json(report.to_dict())
        elif args.command == "decay":
            _print_json(core.lifecycle.recompute_decay().to_dict())
        elif args.command == "search":
            _print_json(asyncio.run(run_search(core, args)))
    except CortexError as e:
        print(f"Error [{e.code}]: {e}", file=sys.stderr)
        return 1
    finally:
        core.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
