"""Audit record: run inputs plus finalized outputs, written as JSON."""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any

from sdlcai.schemas.pipeline import PipelineInputs, TaskOutput

logger = logging.getLogger(__name__)


def build_audit_record(
    run_id: str, inputs: PipelineInputs, outputs: dict[str, TaskOutput],
) -> dict[str, Any]:
    return {
        "run_id": run_id,
        "saved_at": time.strftime("%Y-%m-%dT%H:%M:%S%z"),
        "inputs": inputs.model_dump(mode="json"),
        "outputs": outputs,
    }


def write_audit_record(
    directory: str | Path,
    run_id: str,
    inputs: PipelineInputs,
    outputs: dict[str, TaskOutput],
) -> Path:
    """Write the audit record for a run and return its path.

    An existing record for the same run is overwritten.
    """
    out_dir = Path(directory)
    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / f"run_{run_id}.json"

    record = build_audit_record(run_id, inputs, outputs)
    path.write_text(json.dumps(record, indent=2, ensure_ascii=False), encoding="utf-8")

    logger.info("Audit record for run %s written to %s (%d agents)", run_id, path, len(outputs))
    return path
