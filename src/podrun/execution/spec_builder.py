"""Build the ExecutionUnitSpec for one run.

Pure: the same inputs produce the same spec except for the created-at
annotation, which comes from ``now`` (defaults to the current UTC time).

.. code-block:: text

    build_spec(kind, image, args, identity, settings)
      ├── name          = sanitize_name(identity)
      ├── labels        = app, type=<kind>-pod, operation, run-id,
      │                   autoscaling, [connector], [job-id]
      ├── annotations   = created-by, created-at (RFC3339), original-run-id
      ├── mount         = claim + run directory sub-path at /mnt/config
      ├── env           = PODRUN_RUN_ID, PODRUN_OPERATION, [PODRUN_SECRET_KEY]
      └── scheduling    = node selector per kind, sync anti-affinity,
                          preferred nodes per job, service account
"""

from __future__ import annotations

from datetime import datetime

from podrun.core.settings import PodrunSettings
from podrun.execution._types import (
    ANNOTATION_CREATED_AT,
    ANNOTATION_CREATED_BY,
    ANNOTATION_ORIGINAL_RUN_ID,
    ENV_OPERATION,
    ENV_RUN_ID,
    ENV_SECRET_KEY,
    LABEL_APP,
    LABEL_AUTOSCALING,
    LABEL_CONNECTOR,
    LABEL_JOB_ID,
    LABEL_OPERATION,
    LABEL_RUN_ID,
    LABEL_TYPE,
    ConfigMount,
    ExecutionUnitSpec,
    OperationKind,
    ResourceRequests,
    _utcnow,
    run_directory_name,
    sanitize_name,
)


def build_spec(
    kind: OperationKind,
    image: str,
    args: list[str],
    identity: str,
    *,
    settings: PodrunSettings,
    connector: str | None = None,
    job_id: int | None = None,
    now: datetime | None = None,
) -> ExecutionUnitSpec:
    """Derive the unit spec for a run of ``kind`` with ``identity``."""
    kind = OperationKind(kind)
    name = sanitize_name(identity)
    created_at = (now or _utcnow()).replace(microsecond=0).isoformat().replace("+00:00", "Z")

    labels = {
        LABEL_APP: settings.app_label,
        LABEL_TYPE: f"{kind.value}-pod",
        LABEL_OPERATION: kind.value,
        LABEL_RUN_ID: name,
        LABEL_AUTOSCALING: "enabled",
    }
    if connector:
        labels[LABEL_CONNECTOR] = sanitize_name(connector)
    if job_id is not None:
        labels[LABEL_JOB_ID] = str(job_id)

    annotations = {
        ANNOTATION_CREATED_BY: f"podrun/{settings.worker_identity}",
        ANNOTATION_CREATED_AT: created_at,
        ANNOTATION_ORIGINAL_RUN_ID: identity,
    }

    env = {ENV_RUN_ID: identity, ENV_OPERATION: kind.value}
    if settings.secret_key:
        env[ENV_SECRET_KEY] = settings.secret_key

    anti_affinity: dict[str, str] = {}
    preferred_nodes: dict[str, str] = {}
    if kind is OperationKind.SYNC:
        if settings.sync_anti_affinity:
            anti_affinity = {LABEL_APP: settings.app_label, LABEL_OPERATION: kind.value}
        if job_id is not None:
            preferred_nodes = dict(settings.job_node_mapping.get(job_id, {}))

    service_account = settings.job_service_account
    if service_account == "default":
        service_account = None

    return ExecutionUnitSpec(
        name=name,
        namespace=settings.namespace,
        image=image,
        kind=kind,
        mount=ConfigMount(
            claim_name=settings.storage_claim_name,
            sub_path=run_directory_name(kind, identity),
        ),
        args=tuple(args),
        env=env,
        resources=ResourceRequests(cpu=settings.cpu_request, memory=settings.memory_request),
        labels=labels,
        annotations=annotations,
        service_account=service_account,
        node_selector=settings.node_selector_for(kind),
        preferred_nodes=preferred_nodes,
        anti_affinity_labels=anti_affinity,
    )
