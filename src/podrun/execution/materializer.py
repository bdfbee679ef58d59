"""Run directory management on the shared claim.

Every run gets a directory under ``storage_base_path``; the same claim is
mounted into the execution unit with that directory as its sub-path, so a
file written here appears at ``/mnt/config/<name>`` inside the unit.

Directories are never deleted by the orchestrator: they outlive the unit so
results and state stay inspectable after the run.

.. code-block:: text

    /data/podrun-jobs/
    ├── wf-discover-1/                 discover / check: identity verbatim
    │   ├── config.json
    │   └── streams.json               written by the connector
    └── 4f2a...e9 (sha256 of identity) sync
        ├── config.json
        ├── streams.json
        ├── writer.json
        └── state.json                 updated by the connector

Writes are not atomic and a failure mid-way leaves earlier files in place;
the next invocation for the same identity overwrites them.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from podrun.core.errors import ConfigWriteError, ResultFileError
from podrun.execution._types import ConfigFile, OperationKind, run_directory_name

logger = logging.getLogger(__name__)

DIR_MODE = 0o755
FILE_MODE = 0o644


def _check_component(value: str, what: str) -> None:
    """Reject anything that is not a single, plain path component."""
    if not value or value in (".", "..") or "/" in value or "\\" in value or "\x00" in value:
        raise ConfigWriteError(f"{what} {value!r} is not a valid path component")


class ConfigMaterializer:
    """Writes run configuration files to shared storage.

    Parameters
    ----------
    base_path
        Local mount point of the shared claim.

    Example::

        materializer = ConfigMaterializer(Path("/data/podrun-jobs"))
        run_dir = materializer.run_directory(OperationKind.DISCOVER, "wf-1")
        materializer.materialize(run_dir, [ConfigFile("config.json", "{}")])
    """

    def __init__(self, base_path: Path | str) -> None:
        self.base_path = Path(base_path)

    def run_directory(self, kind: OperationKind, identity: str) -> Path:
        """Absolute run directory for ``identity`` (no I/O)."""
        name = run_directory_name(kind, identity)
        _check_component(name, "run identity")
        return self.base_path / name

    def materialize(self, run_dir: Path, files: list[ConfigFile]) -> Path:
        """Create ``run_dir`` if needed and write every file into it.

        Idempotent: the directory may already exist and files are
        overwritten. Any I/O failure raises ConfigWriteError.
        """
        for config in files:
            _check_component(config.name, "config file name")

        try:
            run_dir.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
        except OSError as exc:
            raise ConfigWriteError(
                f"failed to create run directory {run_dir}: {exc}", cause=exc
            ) from exc

        for config in files:
            path = run_dir / config.name
            try:
                path.write_text(config.content, encoding="utf-8")
                os.chmod(path, FILE_MODE)
            except OSError as exc:
                raise ConfigWriteError(
                    f"failed to write {config.name}: {exc}", cause=exc
                ).with_context(path=str(path)) from exc
            logger.debug("Wrote %s (%d bytes)", path, len(config.content))

        logger.info("Materialized %d file(s) into %s", len(files), run_dir)
        return run_dir

    def read_json(self, run_dir: Path, name: str) -> dict[str, Any]:
        """Read a JSON object written into ``run_dir`` (by us or the connector).

        Raises ResultFileError if the file is missing, unreadable, not JSON
        or not an object.
        """
        path = run_dir / name
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise ResultFileError(f"{name} not found in {run_dir}", cause=exc) from exc
        except OSError as exc:
            raise ResultFileError(f"failed to read {path}: {exc}", cause=exc) from exc

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ResultFileError(f"{name} is not valid JSON: {exc}", cause=exc) from exc
        if not isinstance(data, dict):
            raise ResultFileError(
                f"{name} must contain a JSON object, got {type(data).__name__}"
            )
        return data
