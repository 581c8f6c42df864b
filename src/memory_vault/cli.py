"""
Command-line interface for memory-vault.

Sub-commands
------------
save        – Save a piece of text as a memory.
list        – List active memories.
search      – Recall the most relevant memories for a query.
stats       – Show memory counts.
consolidate – Merge aged near-duplicate memories now.
export      – Print every memory as JSON.
import      – Import memories from a JSON file.
forget      – Delete a memory by its ID.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from datetime import datetime

from .config import VaultConfig
from .errors import MemoryVaultError
from .models import CATEGORIES
from .vault import Vault


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="memory-vault",
        description="Long-term semantic memory with recency-weighted recall.",
    )
    parser.add_argument(
        "--db",
        default=None,
        metavar="PATH",
        help="Path to the ChromaDB persistent store (default: $MEMORY_VAULT_DB_PATH or ~/.cache/memory-vault).",
    )
    parser.add_argument(
        "--collection",
        default=None,
        metavar="NAME",
        help="ChromaDB collection name (default: memories).",
    )
    parser.add_argument(
        "--model",
        default=None,
        metavar="NAME",
        help="sentence-transformers model used for embeddings.",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    # save
    p_save = sub.add_parser("save", help="Save text as a memory.")
    p_save.add_argument("text", nargs="?", help="Text to save (reads stdin if omitted).")
    p_save.add_argument("--category", choices=CATEGORIES, default=None)
    p_save.add_argument("--importance", type=float, default=None, metavar="SCORE")

    # list
    p_list = sub.add_parser("list", help="List memories.")
    p_list.add_argument("--category", choices=CATEGORIES, default=None)
    p_list.add_argument(
        "--limit",
        type=int,
        default=20,
        metavar="N",
        help="Maximum number of memories to show (default: 20).",
    )
    p_list.add_argument("--json", action="store_true", dest="as_json", help="Output as JSON.")

    # search
    p_search = sub.add_parser("search", help="Search memories.")
    p_search.add_argument("query", help="Natural-language query.")
    p_search.add_argument(
        "--limit",
        type=int,
        default=5,
        metavar="N",
        help="Number of results to return (default: 5).",
    )
    p_search.add_argument("--category", choices=CATEGORIES, default=None)
    p_search.add_argument(
        "--json",
        action="store_true",
        dest="as_json",
        help="Output results as JSON.",
    )

    sub.add_parser("stats", help="Show memory stats.")
    sub.add_parser("consolidate", help="Run memory consolidation now.")
    sub.add_parser("export", help="Export all memories as JSON.")

    # import
    p_import = sub.add_parser("import", help="Import memories from a JSON file.")
    p_import.add_argument("file", help="JSON file with a list of memory objects.")

    # forget
    p_forget = sub.add_parser("forget", help="Delete a memory by ID.")
    p_forget.add_argument("id", help="Memory ID to delete.")

    return parser


def _open_vault(args: argparse.Namespace) -> Vault:
    overrides = {
        "db_path": args.db,
        "collection": args.collection,
        "embedding_model": args.model,
    }
    config = replace(
        VaultConfig.from_env(), **{k: v for k, v in overrides.items() if v is not None}
    )
    return Vault.from_config(config)


def _run(vault: Vault, args: argparse.Namespace) -> int:
    if args.command == "save":
        text = args.text
        if text is None:
            text = sys.stdin.read()
        if not text.strip():
            print("Error: no text provided.", file=sys.stderr)
            return 1
        result = asyncio.run(
            vault.save(text.strip(), category=args.category, importance=args.importance)
        )
        if result.status == "saved":
            print(f"Saved [{result.record.category}] {result.record.id}")
        elif result.status == "duplicate":
            match = result.match
            print(f'Memory already exists ({match.similarity * 100:.0f}% match): "{match.text[:100]}"')
        else:
            print(f"Memory rejected: {result.reason}.")
            return 1

    elif args.command == "list":
        records = vault.list_records(limit=args.limit, category=args.category)
        if not records:
            print("No memories found.")
            return 0
        if args.as_json:
            print(json.dumps([r.to_dict() for r in records], indent=2))
        else:
            for r in records:
                date = datetime.fromtimestamp(r.created_at).date().isoformat()
                print(f"[{r.id[:8]}] [{r.category}] {r.text[:80]} ({date})")

    elif args.command == "search":
        results = asyncio.run(vault.recall(args.query, limit=args.limit, category=args.category))
        if not results:
            print("No matches.")
            return 0
        if args.as_json:
            print(json.dumps([r.to_dict() for r in results], indent=2))
        else:
            for r in results:
                print(f"[{r.id[:8]}] [{r.category}] {r.score * 100:.0f}% {r.text[:80]}")

    elif args.command == "stats":
        stats = vault.stats()
        print(f"Total: {stats.total}  Active: {stats.active}  Consolidated: {stats.consolidated}")
        for category, count in sorted(stats.categories.items()):
            print(f"  {category}: {count}")

    elif args.command == "consolidate":
        print("Running consolidation...")
        merged = asyncio.run(vault.consolidate())
        print(f"Done. Merged {merged} cluster(s).")

    elif args.command == "export":
        print(json.dumps(vault.export_records(), indent=2))

    elif args.command == "import":
        with open(args.file, encoding="utf-8") as fh:
            rows = json.load(fh)
        if not isinstance(rows, list):
            print("Error: expected a JSON list of memories.", file=sys.stderr)
            return 1
        count = asyncio.run(vault.import_records(rows))
        print(f"Imported {count} memories.")

    elif args.command == "forget":
        deleted = asyncio.run(vault.forget(memory_id=args.id))
        print("Deleted." if deleted else "Not found.")

    return 0


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=VaultConfig.from_env().log_level.upper(),
        stream=sys.stderr,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    vault = _open_vault(args)
    try:
        return _run(vault, args)
    except (MemoryVaultError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        vault.close()


if __name__ == "__main__":
    sys.exit(main())
