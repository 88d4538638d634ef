"""Run state persistence.

Each run gets a directory ``<runs_dir>/<run_id>/`` holding ``state.json``:
the prompt, the schema in wire form and the session id of every node's task
executor, so a run's backend conversations can be found again later.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Mapping, Union

from .agents.base import TaskExecutor
from .engine.schema import WorkflowSchema

logger = logging.getLogger(__name__)

STATE_FILENAME = "state.json"


def save_run_state(
    run_id: str,
    prompt: str,
    schema: WorkflowSchema,
    pool: Mapping[str, TaskExecutor],
    runs_dir: Union[str, Path] = ".baton",
) -> Path:
    """Write ``state.json`` for a run.

    Returns:
        The run directory
    """
    run_dir = Path(runs_dir) / run_id
    run_dir.mkdir(parents=True, exist_ok=True)

    state = {
        "runId": run_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "prompt": prompt,
        "schema": schema.to_wire(),
        "agents": [
            {
                "nodeId": node_id,
                "type": executor.task_type,
                "sessionId": executor.session_id,
            }
            for node_id, executor in pool.items()
        ],
    }

    path = run_dir / STATE_FILENAME
    path.write_text(json.dumps(state, indent=2, ensure_ascii=False), encoding="utf-8")
    logger.info(f"Run state saved to: {run_dir}")
    return run_dir


def load_run_state(run_id: str, runs_dir: Union[str, Path] = ".baton") -> Dict[str, Any]:
    """Read a run's ``state.json``.

    Raises:
        FileNotFoundError: If the run has no saved state
    """
    path = Path(runs_dir) / run_id / STATE_FILENAME
    return json.loads(path.read_text(encoding="utf-8"))
