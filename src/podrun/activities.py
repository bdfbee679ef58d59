"""Connector activities: the entry points the workflow engine calls.

Each activity turns engine parameters into a ``RunRequest`` (image from
source type and version, connector arguments from the operation table,
config files from the parameters), reports a first heartbeat and hands the
request to the ``LifecycleCoordinator``.

.. code-block:: text

    discover_catalog(ActivityParams) ─┐
    test_connection(ActivityParams)  ─┼──► RunRequest ──► coordinator.run()
    sync(SyncParams)                 ─┘

The engine owns retries and job storage: sync parameters arrive complete
(configs and prior state), and nothing is written back here.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, Field

from podrun.core.logging import get_logger
from podrun.core.settings import PodrunSettings
from podrun.execution._types import ConfigFile, OperationKind
from podrun.execution.coordinator import LifecycleCoordinator, RunRequest
from podrun.execution.operations import connector_image, profile_for

logger = get_logger(__name__)

HeartbeatFn = Callable[[str], None]

_EMPTY_STATES = ("", "null", "NULL")


class ActivityParams(BaseModel):
    """Parameters for discover and connection-test activities."""

    workflow_id: str = Field(..., min_length=1, description="Run identity")
    source_type: str = Field(..., min_length=1, description="Connector type, e.g. postgres")
    version: str = Field(default="", description="Connector image tag (required)")
    config: str = Field(default="{}", description="Contents of config.json")
    flag: str = Field(default="config", description="check flag: config or destination")
    job_id: int | None = Field(default=None)
    timeout_seconds: float | None = Field(default=None, gt=0)


class SyncParams(BaseModel):
    """Parameters for the sync activity, including the prior state."""

    workflow_id: str = Field(..., min_length=1, description="Run identity")
    job_id: int | None = Field(default=None)
    source_type: str = Field(..., min_length=1)
    version: str = Field(default="")
    source_config: str = Field(default="{}", description="Contents of config.json")
    streams_config: str = Field(default="{}", description="Contents of streams.json")
    dest_config: str = Field(default="{}", description="Contents of writer.json")
    state: str | None = Field(default=None, description="Prior state.json, may be empty")
    timeout_seconds: float | None = Field(default=None, gt=0)


def normalize_state(state: str | None) -> str:
    """Empty, ``null`` and ``NULL`` prior state becomes ``{}``."""
    if state is None or state.strip() in _EMPTY_STATES:
        return "{}"
    return state


class ConnectorActivities:
    """Activity implementations bound to one coordinator.

    Example::

        activities = ConnectorActivities(LifecycleCoordinator.from_settings(settings))
        activities.discover_catalog(
            {"workflow_id": "wf-1", "source_type": "postgres", "version": "v1.2.0"},
            heartbeat=engine.record_heartbeat,
        )
    """

    def __init__(self, coordinator: LifecycleCoordinator) -> None:
        self.coordinator = coordinator

    @property
    def settings(self) -> PodrunSettings:
        return self.coordinator.settings

    def discover_catalog(
        self,
        params: ActivityParams | dict[str, Any],
        *,
        heartbeat: HeartbeatFn | None = None,
        cancel: threading.Event | None = None,
    ) -> dict[str, Any]:
        """Discover the source catalog; the result is the connector's streams.json."""
        params = ActivityParams.model_validate(params)
        logger.debug("discover_catalog", workflow_id=params.workflow_id, source_type=params.source_type)
        request = self._request(
            OperationKind.DISCOVER,
            params.workflow_id,
            params.source_type,
            params.version,
            files=[ConfigFile("config.json", params.config)],
            timeout=params.timeout_seconds,
            job_id=params.job_id,
        )
        return self._run(request, heartbeat, cancel)

    def test_connection(
        self,
        params: ActivityParams | dict[str, Any],
        *,
        heartbeat: HeartbeatFn | None = None,
        cancel: threading.Event | None = None,
    ) -> dict[str, Any]:
        """Test a connection; the result is ``{"status", "message"}``."""
        params = ActivityParams.model_validate(params)
        logger.debug(
            "test_connection", workflow_id=params.workflow_id,
            source_type=params.source_type, version=params.version,
        )
        request = self._request(
            OperationKind.CHECK,
            params.workflow_id,
            params.source_type,
            params.version,
            files=[ConfigFile("config.json", params.config)],
            timeout=params.timeout_seconds,
            job_id=params.job_id,
            flag=params.flag,
        )
        return self._run(request, heartbeat, cancel)

    def sync(
        self,
        params: SyncParams | dict[str, Any],
        *,
        heartbeat: HeartbeatFn | None = None,
        cancel: threading.Event | None = None,
    ) -> dict[str, Any]:
        """Run a sync; the result is merged from the connector's console output."""
        params = SyncParams.model_validate(params)
        state = normalize_state(params.state)
        if state != params.state:
            logger.info("empty_state_defaulted", workflow_id=params.workflow_id, job_id=params.job_id)
        request = self._request(
            OperationKind.SYNC,
            params.workflow_id,
            params.source_type,
            params.version,
            files=[
                ConfigFile("config.json", params.source_config),
                ConfigFile("streams.json", params.streams_config),
                ConfigFile("writer.json", params.dest_config),
                ConfigFile("state.json", state),
            ],
            timeout=params.timeout_seconds,
            job_id=params.job_id,
        )
        return self._run(request, heartbeat, cancel)

    # ------------------------------------------------------------------

    def _request(
        self,
        kind: OperationKind,
        identity: str,
        source_type: str,
        version: str,
        *,
        files: list[ConfigFile],
        timeout: float | None,
        job_id: int | None,
        flag: str | None = None,
    ) -> RunRequest:
        profile = profile_for(kind)
        args = profile.build_args() if flag is None else profile.build_args(flag=flag)
        return RunRequest(
            kind=kind,
            identity=identity,
            image=connector_image(self.settings.image_registry, source_type, version),
            args=args,
            config_files=files,
            timeout=timeout,
            connector=source_type,
            job_id=job_id,
        )

    def _run(
        self,
        request: RunRequest,
        heartbeat: HeartbeatFn | None,
        cancel: threading.Event | None,
    ) -> dict[str, Any]:
        if heartbeat is not None:
            heartbeat(profile_for(request.kind).heartbeat)
        return self.coordinator.run(request, heartbeat=heartbeat, cancel=cancel)
