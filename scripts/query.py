#!/usr/bin/env python3
"""
CLI Script for Query Context Assembly.

Usage:
    python scripts/query.py "Who does Alice work with?"
    python scripts/query.py "Who does Alice work with?" --doc <document-id> --top-k 20
"""

import argparse
import asyncio
from uuid import UUID

from rich.console import Console
from rich.panel import Panel

from pathrag.config import get_settings
from pathrag.engine import PathRAG
from pathrag.utils.logger import setup_logging

console = Console()


async def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Print the PathRAG context assembled for a question"
    )
    parser.add_argument("query", help="Question to build context for")
    parser.add_argument(
        "--doc",
        type=UUID,
        action="append",
        dest="document_ids",
        help="Restrict retrieval to a document (repeatable)",
    )
    parser.add_argument("--top-k", type=int, help="Vector search breadth")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )

    args = parser.parse_args()
    setup_logging(args.log_level)

    rag = PathRAG.from_settings(get_settings())

    overrides = {"document_ids": args.document_ids}
    if args.top_k:
        overrides["top_k"] = args.top_k

    with console.status("[bold green]Retrieving..."):
        context = await rag.build_query_context(
            args.query, rag.default_query_params(**overrides)
        )

    console.print(Panel(context.format(), title=f"Context for: {args.query}", expand=False))


if __name__ == "__main__":
    asyncio.run(main())
