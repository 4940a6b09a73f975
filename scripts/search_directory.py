"""Directory search entrypoint.

This script indexes the files under a directory with the configured chunker
and reference drivers, then runs one or more queries against them and prints
the ranked hits with their chunk provenance.

Documents are keyed by their path relative to the directory, so code files
are routed to the code chunker by extension. With ``--categorize`` every file
is tagged with its content type (``code`` or ``text``) and the two categories
are searched separately and fused.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import List

# Make `src/lodestar` importable when running from a repo checkout.
REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = REPO_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from lodestar.common.schemas import Document, SearchOptions
from lodestar.config import GlobalConfig
from lodestar.retrieval.auto_chunker import detect_content_type
from lodestar.retrieval.retriever_factory import DRIVER_KINDS, create_driver, create_orchestrator

DEFAULT_CONFIG = {
    "chunking": {"type": "auto"},
    "embedder": {"kind": "mock", "dimensions": 8},
}


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Index a directory and search it")

    parser.add_argument(
        "directory",
        type=str,
        help="Directory whose files are indexed.",
    )

    parser.add_argument(
        "--query",
        "-q",
        required=True,
        action="append",
        help="Query to run (repeatable).",
    )

    parser.add_argument(
        "--config-file",
        "-c",
        required=False,
        type=str,
        default=None,
        help="Path to the YAML configuration file (default: auto chunking, mock embedder).",
    )

    parser.add_argument(
        "--glob",
        "-g",
        required=False,
        type=str,
        default="**/*",
        help="Glob pattern selecting files under the directory (default: '**/*').",
    )

    parser.add_argument(
        "--driver",
        "-d",
        required=False,
        choices=DRIVER_KINDS,
        default="hybrid",
        help="Reference driver to use (default: hybrid).",
    )

    parser.add_argument(
        "--limit",
        "-k",
        required=False,
        type=int,
        default=5,
        help="Number of results per query (default: 5).",
    )

    parser.add_argument(
        "--categorize",
        action="store_true",
        help="Tag files as code or text and search each category separately.",
    )

    return parser.parse_args()


def load_documents(directory: Path, pattern: str) -> List[Document]:
    docs: List[Document] = []
    for path in sorted(directory.glob(pattern)):
        if not path.is_file():
            continue
        try:
            content = path.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            print(f"Skipping non-UTF-8 file: {path}")
            continue
        if not content.strip():
            continue
        rel = path.relative_to(directory).as_posix()
        docs.append(Document(id=rel, content=content, metadata={"path": rel}))
    return docs


def _format_location(result) -> str:
    if result.chunk is None:
        return result.id
    chunk = result.chunk
    if chunk.line_range is not None:
        return f"{chunk.parent_id}:{chunk.line_range[0]}-{chunk.line_range[1]}"
    return chunk.display_id


async def run(args: argparse.Namespace) -> None:
    if args.limit < 1:
        raise ValueError("--limit must be >= 1.")

    directory = Path(args.directory).expanduser().resolve()
    if not directory.is_dir():
        raise NotADirectoryError(f"Not a directory: {directory}")

    cfg = GlobalConfig.load(args.config_file) if args.config_file else GlobalConfig.from_dict(DEFAULT_CONFIG)
    categorize = (lambda doc: detect_content_type(doc.id)) if args.categorize else None
    orchestrator = create_orchestrator(cfg, create_driver(cfg, args.driver), categorize=categorize)

    docs = load_documents(directory, args.glob)
    print(f"Indexing {len(docs)} file(s) from {directory} (driver: {args.driver})...")
    indexed = await orchestrator.index(docs)
    print(f"Indexed {indexed} document(s); {len(orchestrator.parent_documents)} file(s) were chunked.")

    options = SearchOptions(limit=args.limit, return_content=True, return_meta=True)
    try:
        for query in args.query:
            print(f"\n=== {query} ===")
            results = await orchestrator.search(query, options)
            if not results:
                print("(no results)")
            for rank, result in enumerate(results, start=1):
                print(f"{rank}. [{result.score:.4f}] {_format_location(result)}")
                if result.chunk is not None and result.chunk.entities:
                    print("   entities: " + ", ".join(f"{e.type} {e.name}" for e in result.chunk.entities))
                highlights = (result.meta or {}).get("highlights")
                if highlights:
                    print("   highlights: " + ", ".join(highlights))
                for line in (result.content or "").splitlines()[:5]:
                    print(f"   | {line}")
    finally:
        await orchestrator.close()


def main() -> None:
    args = parse_args()
    asyncio.run(run(args))


if __name__ == "__main__":
    main()
