"""
CLI entry point.

Commands:
- init: Initialize data directory and database
- worker: Run the memory extraction queue
- ask [--deep] <question>: Answer a question from the document index
- ingest <file>...: Index text files into the document collection
- cleanup: Remove expired memories and cache entries

Flags:
- --debug: Enable debug logging to file
"""

import asyncio
import logging
import signal
import sys
from pathlib import Path

from recall.core.config import Settings, get_settings
from recall.core.logging import get_logger, setup_logging

USAGE = """Usage: recall [--debug] <command> [args]
Commands:
  init                      Create the data directory and database
  worker                    Run the memory extraction worker
  ask [--deep] <question>   Answer a question from indexed documents
  ingest <file>...          Index text files
  cleanup                   Remove expired memories
Flags: --debug (enable debug logging to data/recall.log)"""


def main() -> int:
    """Main entry point."""
    settings = get_settings()

    debug_mode = "--debug" in sys.argv
    if debug_mode:
        sys.argv.remove("--debug")

    log_level = logging.DEBUG if debug_mode else logging.INFO
    log_file = settings.data_dir / "recall.log"
    setup_logging(level=log_level, log_file=log_file)
    logger = get_logger("cli")

    logger.info(f"Logging to {log_file}" + (" (debug mode)" if debug_mode else ""))

    if len(sys.argv) < 2:
        print(USAGE)
        return 1

    command, args = sys.argv[1], sys.argv[2:]

    if command == "init":
        return asyncio.run(_init(settings))

    if command == "worker":
        logger.info("Starting extraction worker")
        return asyncio.run(_run_worker(settings))

    if command == "ask":
        deep = "--deep" in args
        words = [a for a in args if a != "--deep"]
        if not words:
            print("Usage: recall ask [--deep] <question>")
            return 1
        return asyncio.run(_ask(settings, " ".join(words), deep))

    if command == "ingest":
        if not args:
            print("Usage: recall ingest <file>...")
            return 1
        return asyncio.run(_ingest(settings, [Path(a) for a in args]))

    if command == "cleanup":
        return asyncio.run(_cleanup(settings))

    print(f"Unknown command: {command}")
    return 1


def _create_engine(settings: Settings):
    from recall.engine import RecallEngine

    return RecallEngine(settings)


async def _init(settings: Settings) -> int:
    from recall.storage.database import Database

    db = Database(settings.db_path)
    await db.connect()
    await db.close()
    print(f"Created: {settings.db_path}")
    return 0


async def _run_worker(settings: Settings) -> int:
    """Run the queue loop until SIGINT/SIGTERM."""
    logger = get_logger("cli.worker")
    engine = _create_engine(settings)
    shutdown = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.set)

    try:
        await engine.start(run_worker=True)
        print("Extraction worker running. Press Ctrl+C to stop.")
        await shutdown.wait()
        logger.info("Shutdown signal received, stopping worker")
        print("\nShutting down gracefully...")
    except Exception as e:
        logger.error(f"Worker error: {e}", exc_info=True)
        print(f"Error: {e}")
        return 1
    finally:
        await engine.close()
    return 0


async def _ask(settings: Settings, question: str, deep: bool) -> int:
    engine = _create_engine(settings)
    await engine.start()
    try:
        if deep:
            result = await engine.rag.research_query(question, settings.rag_collection)
        else:
            result = await engine.rag.query(question, settings.rag_collection)
    except Exception as e:
        get_logger("cli.ask").error(f"Query failed: {e}", exc_info=True)
        print(f"Error: {e}")
        return 1
    finally:
        await engine.close()

    print(result.answer)
    if result.sources:
        print("\nSources:")
        for doc, score in zip(result.sources, result.relevance_scores):
            source = doc.metadata.get("source") or doc.metadata.get("uuid") or doc.id
            print(f"  [{score:.2f}] {source}")
    return 0


async def _ingest(settings: Settings, paths: list[Path]) -> int:
    from recall.vector.documents import Document

    missing = [p for p in paths if not p.is_file()]
    if missing:
        print(f"Not found: {', '.join(str(p) for p in missing)}")
        return 1

    docs = [
        Document(
            page_content=p.read_text(encoding="utf-8"),
            metadata={"source": str(p), "title": p.stem},
            id=str(p.resolve()),
        )
        for p in paths
    ]

    engine = _create_engine(settings)
    await engine.start()
    try:
        results = await engine.rag.add_documents(docs, settings.rag_collection)
    finally:
        await engine.close()

    for path, result in zip(paths, results):
        print(f"{result.action.value:>9}  {path}")
    return 0


async def _cleanup(settings: Settings) -> int:
    engine = _create_engine(settings)
    await engine.start()
    try:
        removed = await engine.cleanup()
    finally:
        await engine.close()

    print(", ".join(f"{name}: {count}" for name, count in removed.items()))
    return 0


if __name__ == "__main__":
    sys.exit(main())
