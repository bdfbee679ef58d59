"""Result extraction from a finished unit.

Called only after the unit reached Succeeded. The unit itself carries
everything needed to find its result: the ``operation`` label selects the
strategy and the ``original-run-id`` annotation gives the untruncated run
identity (the unit name may be lossy).

.. code-block:: text

    extract(unit)
      ├── operation label      → OperationKind (missing/unknown: error)
      ├── original-run-id      → identity       (missing: MissingIdentityError)
      │
      ├── discover: run_dir(kind, identity)/streams.json → JSON object
      │
      └── check/sync: console output → parse_console_output()
            ├── empty                 → ResultExtractionError("empty output")
            ├── has "connectionStatus" → last line, JSON from first "{"
            │                            → {"status", "message"}
            └── otherwise             → merge every JSON-object line,
                                        else {"raw_output", "status": "completed"}
"""

from __future__ import annotations

import json
from typing import Any

from podrun.core.errors import MissingIdentityError, ResultExtractionError
from podrun.core.logging import get_logger
from podrun.execution._types import ExecutionUnit, OperationKind
from podrun.execution.materializer import ConfigMaterializer
from podrun.execution.operations import ResultSource, profile_for
from podrun.execution.scheduler import SchedulerClient

logger = get_logger(__name__)

CONNECTION_STATUS_TOKEN = "connectionStatus"


# ---------------------------------------------------------------------------
# Log-scan algorithm
# ---------------------------------------------------------------------------

def _loads_object(text: str) -> dict[str, Any] | None:
    try:
        value = json.loads(text)
    except ValueError:
        return None
    return value if isinstance(value, dict) else None


def parse_connection_status(output: str) -> dict[str, Any]:
    """Parse the connection-test payload from the last non-empty line.

    Example:
        >>> parse_connection_status('INFO x {"connectionStatus":{"status":"SUCCEEDED","message":"ok"}}')
        {'status': 'SUCCEEDED', 'message': 'ok'}
    """
    lines = [line.strip() for line in output.strip().split("\n") if line.strip()]
    if not lines:
        raise ResultExtractionError("empty output")
    last_line = lines[-1]

    start = last_line.find("{")
    if start == -1:
        raise ResultExtractionError("no JSON found in last log line")
    try:
        payload = json.loads(last_line[start:])
    except ValueError as exc:
        raise ResultExtractionError(f"failed to parse connection status JSON: {exc}", cause=exc) from exc

    status = payload.get(CONNECTION_STATUS_TOKEN) if isinstance(payload, dict) else None
    if not isinstance(status, dict):
        raise ResultExtractionError("connection status not found")

    message = status.get("message") or ""
    state = status.get("status") or ""
    if not isinstance(message, str) or not isinstance(state, str):
        raise ResultExtractionError("connection status fields must be strings")
    return {"status": state, "message": message}


def merge_json_lines(output: str) -> dict[str, Any]:
    """Merge every JSON object found in ``output``, later keys winning.

    Each line is parsed whole first, then from its first ``{``. Lines that
    yield no JSON object are skipped. Returns ``{}`` when nothing parsed.
    """
    merged: dict[str, Any] = {}
    for line in output.split("\n"):
        line = line.strip()
        if not line:
            continue
        parsed = _loads_object(line)
        if parsed is None:
            start = line.find("{")
            if start != -1:
                parsed = _loads_object(line[start:])
        if parsed is not None:
            merged.update(parsed)
    return merged


def parse_console_output(output: str) -> dict[str, Any]:
    """Turn a unit's console output into a result mapping.

    Example:
        >>> parse_console_output('{"a":1}\\nnot json\\nprefix {"b":2}')
        {'a': 1, 'b': 2}
        >>> parse_console_output("all done")
        {'raw_output': 'all done', 'status': 'completed'}
    """
    trimmed = output.strip()
    if not trimmed:
        raise ResultExtractionError("empty output")

    if CONNECTION_STATUS_TOKEN in trimmed:
        return parse_connection_status(trimmed)

    merged = merge_json_lines(trimmed)
    if not merged:
        return {"raw_output": trimmed, "status": "completed"}
    return merged


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------

class ResultExtractor:
    """Reads the result of a succeeded unit.

    Parameters
    ----------
    client
        Scheduler client used to fetch console output.
    materializer
        Resolves run directories with the same naming rule used to write them.
    """

    def __init__(self, client: SchedulerClient, materializer: ConfigMaterializer) -> None:
        self.client = client
        self.materializer = materializer

    def extract(self, unit: ExecutionUnit) -> dict[str, Any]:
        identity = unit.original_identity
        if identity is None:
            raise MissingIdentityError(
                f"unit {unit.name} has no original run identity annotation"
            ).with_context(unit_name=unit.name)

        try:
            kind = OperationKind(unit.operation)
        except ValueError as exc:
            raise ResultExtractionError(
                f"unit {unit.name} has unknown operation label {unit.operation!r}"
            ).with_context(unit_name=unit.name, run_id=identity) from exc

        profile = profile_for(kind)
        if profile.result_source is ResultSource.FILE:
            run_dir = self.materializer.run_directory(kind, identity)
            try:
                result = self.materializer.read_json(run_dir, profile.result_file)
            except ResultExtractionError as exc:
                exc.with_context(unit_name=unit.name, run_id=identity, operation=kind.value)
                raise
            logger.info("result_read", unit=unit.name, file=profile.result_file, keys=len(result))
            return result

        output = self.client.get_console_output(unit.name)
        try:
            result = parse_console_output(output)
        except ResultExtractionError as exc:
            exc.with_context(unit_name=unit.name, run_id=identity, operation=kind.value)
            raise
        logger.info("result_parsed", unit=unit.name, keys=sorted(result))
        return result
