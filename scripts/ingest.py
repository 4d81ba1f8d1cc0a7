#!/usr/bin/env python3
"""
CLI Script for Document Ingestion.

Usage:
    python scripts/ingest.py --file path/to/document.txt
    python scripts/ingest.py --dir path/to/documents/
    python scripts/ingest.py --delete 3f1c...-document-id
"""

import argparse
import asyncio
import sys
from pathlib import Path
from uuid import UUID

from rich.console import Console
from rich.table import Table

from pathrag.config import get_settings
from pathrag.engine import PathRAG
from pathrag.ingestion.pipeline import IngestionResult
from pathrag.utils.logger import get_logger, setup_logging

console = Console()
logger = get_logger(__name__)


async def ingest_file(rag: PathRAG, file_path: Path) -> IngestionResult | None:
    """
    Ingest a single text file.

    Args:
        rag: Engine to ingest into
        file_path: Path to a UTF-8 text file
    """
    console.print(f"\n[bold blue]Processing:[/] {file_path.name}")

    try:
        text = file_path.read_text(encoding="utf-8")
        with console.status("[bold green]Extracting knowledge graph..."):
            result = await rag.ingest_document(text)
    except Exception as e:
        console.print(f"\n[bold red]✗[/] Failed to process {file_path.name}: {e}")
        logger.exception(f"Processing failed for {file_path}")
        return None

    console.print(f"[bold green]✓[/] {file_path.name} -> document [cyan]{result.document_id}[/]")
    return result


def _display_results(results: list[tuple[Path, IngestionResult]], rag: PathRAG) -> None:
    """Display ingestion results in a table."""
    table = Table(title="Ingested Documents")
    table.add_column("File", style="cyan")
    table.add_column("Document ID", style="dim")
    table.add_column("Chunks", style="green")
    table.add_column("Entities", style="yellow")
    table.add_column("Relationships", style="yellow")
    table.add_column("Orphans (repaired)", style="magenta")
    table.add_column("Duration", style="green")

    for path, result in results:
        table.add_row(
            path.name,
            str(result.document_id),
            str(result.chunk_count),
            str(result.entity_count),
            str(result.relationship_count),
            f"{result.orphan_count} ({result.repaired_relationships})",
            f"{result.elapsed_seconds:.2f}s",
        )

    console.print(table)
    console.print(
        f"Graph: {rag.graph_store.node_count()} nodes, {rag.graph_store.edge_count()} edges"
    )


async def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Ingest text documents into the PathRAG knowledge graph"
    )
    parser.add_argument(
        "--file", "-f",
        type=Path,
        help="Path to a single text file",
    )
    parser.add_argument(
        "--dir", "-d",
        type=Path,
        help="Path to directory of text files",
    )
    parser.add_argument(
        "--pattern",
        default="*.txt",
        help="Glob pattern used with --dir",
    )
    parser.add_argument(
        "--delete",
        type=UUID,
        help="Delete a previously ingested document by ID",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )

    args = parser.parse_args()

    setup_logging(args.log_level)

    if not args.file and not args.dir and not args.delete:
        parser.error("Must specify --file, --dir or --delete")

    console.print("[bold]PathRAG - Ingestion[/]")
    console.print("=" * 50)

    rag = PathRAG.from_settings(get_settings())

    if args.delete:
        result = await rag.delete_document(args.delete)
        console.print(
            f"Deleted document {result.document_id}: {result.entities} entities, "
            f"{result.relationships} relationships, vectors {result.vectors}"
        )
        return

    if args.file:
        if not args.file.exists():
            console.print(f"[red]File not found: {args.file}[/red]")
            sys.exit(1)
        files = [args.file]
    else:
        if not args.dir.is_dir():
            console.print(f"[red]Directory not found: {args.dir}[/red]")
            sys.exit(1)
        files = sorted(args.dir.glob(args.pattern))
        console.print(f"Found {len(files)} files")

    results: list[tuple[Path, IngestionResult]] = []
    for path in files:
        result = await ingest_file(rag, path)
        if result is not None:
            results.append((path, result))

    if results:
        _display_results(results, rag)


if __name__ == "__main__":
    asyncio.run(main())
