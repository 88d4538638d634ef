"""Command-line entry point.

Usage:
    python -m baton [-v] [-c CONFIG] [-m KEY=VALUE ...] SCHEMA_FILE [PROMPT ... | -f FILE]

Loads a workflow schema JSON file, validates it, initialises one task
executor per node, saves the run state and runs the workflow, printing the
final answer. Exits with status 1 when the run ends with an error.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import uuid
from typing import Any, Dict, List, Optional

from .config import BatonConfig, load_config
from .engine.executor import WorkflowEngine
from .engine.schema import SchemaInput
from .engine.state import ExecutionResult
from .errors import BatonError
from .logging_config import setup_logging
from .runs import save_run_state

logger = logging.getLogger("baton.cli")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="baton",
        description="Run a workflow schema with CLI task executors",
    )
    parser.add_argument("schema", help="Path to the workflow schema JSON file")
    parser.add_argument("prompt", nargs="*", help="Prompt text passed to the run")
    parser.add_argument("-f", "--file", help="Read the prompt from a file")
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Log node banners and full outputs"
    )
    parser.add_argument("-c", "--config", help="Config file (default: ./baton.config.yaml)")
    parser.add_argument(
        "-m",
        "--metadata",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Initial metadata entry; VALUE is parsed as JSON when possible",
    )
    parser.add_argument(
        "--no-save", action="store_true", help="Do not write run state to the runs directory"
    )
    return parser.parse_args(argv)


def parse_metadata(entries: List[str]) -> Dict[str, Any]:
    """Parse ``KEY=VALUE`` entries into a mapping.

    Raises:
        ValueError: If an entry has no ``=`` or an empty key
    """
    metadata: Dict[str, Any] = {}
    for entry in entries:
        key, sep, raw = entry.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ValueError(f"Invalid metadata entry '{entry}', expected KEY=VALUE")
        try:
            metadata[key] = json.loads(raw)
        except json.JSONDecodeError:
            metadata[key] = raw
    return metadata


async def orchestrate(
    schema: SchemaInput,
    prompt: str,
    config: BatonConfig,
    initial_metadata: Optional[Dict[str, Any]] = None,
    save: bool = True,
) -> ExecutionResult:
    """Prepare executors, persist run state and run the workflow.

    Raises:
        SchemaValidationError: If the schema is invalid
        TaskExecutionError: If an executor fails to initialise
    """
    engine = WorkflowEngine(config)

    logger.info("Creating and initializing executor pool...")
    validated, pool = await engine.prepare(schema)

    run_id = str(uuid.uuid4())
    if save:
        save_run_state(run_id, prompt, validated, pool, config.runs_dir)

    return await engine.run(
        validated,
        prompt=prompt,
        initial_metadata=initial_metadata,
        executors=pool,
        run_id=run_id,
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    prompt = " ".join(args.prompt).strip()

    if args.file and prompt:
        print("Error: Cannot use both --file and prompt argument", file=sys.stderr)
        return 1

    try:
        config = load_config(args.config, verbose=True if args.verbose else None)
    except (TypeError, ValueError) as e:
        print(f"Error: Invalid configuration: {e}", file=sys.stderr)
        return 1
    setup_logging(config.verbose)

    try:
        if args.file:
            with open(args.file, encoding="utf-8") as f:
                prompt = f.read().strip()
        with open(args.schema, encoding="utf-8") as f:
            schema = json.load(f)
        metadata = parse_metadata(args.metadata)
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        result = asyncio.run(orchestrate(schema, prompt, config, metadata, save=not args.no_save))
    except BatonError as e:
        print(f"Orchestration failed: {e.message}", file=sys.stderr)
        return 1

    if result.error:
        print(f"Execution error: {result.error}", file=sys.stderr)

    print("\n=== Final Answer ===\n")
    print(result.final_answer)
    return 1 if result.error else 0


if __name__ == "__main__":
    sys.exit(main())
