"""Execution types shared by the orchestrator components.

This module defines the vocabulary every other execution module speaks:

- OperationKind: the three connector operations (discover, check, sync)
- Phase: lifecycle phase of an execution unit, ranked for monotonicity
- ConfigFile: one (name, content) pair written into a run directory
- ExecutionUnitSpec: everything needed to create one execution unit
- ExecutionUnit: the live unit as reported by the scheduling API
- sanitize_name / run_directory_name: identity derivations

Architecture:

    .. code-block:: text

        ┌─────────────────────────────────────────────────────────────┐
        │                    _types.py Module Map                      │
        ├─────────────────────────────────────────────────────────────┤
        │                                                              │
        │  OperationKind ──► run_directory_name(kind, identity)        │
        │   discover             sync  → sha256(identity).hexdigest()  │
        │   check                other → identity                      │
        │   sync                                                       │
        │                                                              │
        │  identity ──► sanitize_name() ──► unit name + run-id label   │
        │           └─────────────────────► original-run-id annotation │
        │                                                              │
        │  ExecutionUnitSpec ── to_manifest() ──► Pod (dict)           │
        │  ExecutionUnit  ◄──── from_manifest() ── Pod (dict)          │
        │                                                              │
        │  Phase: Pending(0) < Running(1) < Succeeded(2) | Failed(2)   │
        └─────────────────────────────────────────────────────────────┘

See Also:
    spec_builder.py -- builds ExecutionUnitSpec from a run
    scheduler.py -- SchedulerClient protocol that consumes it
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Well-known names
# ---------------------------------------------------------------------------

MOUNT_PATH = "/mnt/config"
CONTAINER_NAME = "connector"
VOLUME_NAME = "job-storage"
MAX_NAME_LENGTH = 63

LABEL_APP = "app"
LABEL_TYPE = "type"
LABEL_OPERATION = "operation"
LABEL_RUN_ID = "podrun.io/run-id"
LABEL_AUTOSCALING = "podrun.io/autoscaling"
LABEL_CONNECTOR = "podrun.io/connector"
LABEL_JOB_ID = "podrun.io/job-id"

ANNOTATION_CREATED_BY = "podrun.io/created-by"
ANNOTATION_CREATED_AT = "podrun.io/created-at"
ANNOTATION_ORIGINAL_RUN_ID = "podrun.io/original-run-id"

ENV_RUN_ID = "PODRUN_RUN_ID"
ENV_OPERATION = "PODRUN_OPERATION"
ENV_SECRET_KEY = "PODRUN_SECRET_KEY"


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class OperationKind(str, Enum):
    """Connector operation executed by a unit."""

    DISCOVER = "discover"
    CHECK = "check"
    SYNC = "sync"


class Phase(str, Enum):
    """Lifecycle phase of an execution unit.

    Only the four phases below are meaningful. ``Phase.parse`` rejects
    anything else (including ``Unknown``) so callers can turn it into an
    infrastructure error instead of guessing.
    """

    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (Phase.SUCCEEDED, Phase.FAILED)

    @property
    def rank(self) -> int:
        return _PHASE_RANK[self]

    @classmethod
    def parse(cls, raw: str | None) -> Phase:
        """Map an API phase string to a Phase. Raises ValueError otherwise."""
        for phase in cls:
            if phase.value == raw:
                return phase
        raise ValueError(f"unrecognised phase {raw!r}")


_PHASE_RANK = {
    Phase.PENDING: 0,
    Phase.RUNNING: 1,
    Phase.SUCCEEDED: 2,
    Phase.FAILED: 2,
}


# ---------------------------------------------------------------------------
# Identity derivations
# ---------------------------------------------------------------------------

_SLUG_PATTERN = re.compile(r"[^a-z0-9-]")


def sanitize_name(identity: str) -> str:
    """Derive a valid unit name (DNS-1123 label) from a run identity.

    Lowercase, replace every character outside ``[a-z0-9-]`` with ``-``,
    strip leading/trailing ``-``, truncate to 63 and strip trailing ``-``
    again. Identities that sanitize to nothing fall back to a digest so the
    name stays deterministic.

    Example:
        >>> sanitize_name("Workflow_ABC.123")
        'workflow-abc-123'
        >>> sanitize_name("sync:job/42::")
        'sync-job-42'
    """
    slug = _SLUG_PATTERN.sub("-", identity.lower()).strip("-")
    slug = slug[:MAX_NAME_LENGTH].rstrip("-")
    if not slug:
        digest = hashlib.sha256(identity.encode("utf-8")).hexdigest()
        slug = f"run-{digest[:12]}"
    return slug


def run_directory_name(kind: OperationKind, identity: str) -> str:
    """Name of the run directory for ``identity`` under the storage base path.

    sync runs use the sha256 hex digest of the identity; discover and check
    use the identity verbatim.
    """
    if kind is OperationKind.SYNC:
        return hashlib.sha256(identity.encode("utf-8")).hexdigest()
    return identity


# ---------------------------------------------------------------------------
# Specs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ConfigFile:
    """One file written into the run directory."""

    name: str
    content: str


@dataclass(frozen=True)
class ResourceRequests:
    """Resource requests for the connector container. No limits are set."""

    cpu: str = "100m"
    memory: str = "256Mi"

    def to_dict(self) -> dict[str, Any]:
        return {"cpu": self.cpu, "memory": self.memory}


@dataclass(frozen=True)
class ConfigMount:
    """Shared claim mounted at ``mount_path`` with the run directory as sub-path."""

    claim_name: str
    sub_path: str
    mount_path: str = MOUNT_PATH


@dataclass(frozen=True)
class ExecutionUnitSpec:
    """Full specification for one execution unit.

    .. code-block:: text

        ExecutionUnitSpec
        ├── Identity: name, namespace, labels, annotations
        ├── What: image, command, args, env
        ├── Resources: requests only
        ├── Storage: claim + sub-path at /mnt/config
        └── Scheduling: node_selector, preferred_nodes, anti_affinity,
                        service_account, restart_policy=Never
    """

    name: str
    namespace: str
    image: str
    kind: OperationKind
    mount: ConfigMount
    command: tuple[str, ...] = ()
    args: tuple[str, ...] = ()
    env: dict[str, str] = field(default_factory=dict)
    resources: ResourceRequests = field(default_factory=ResourceRequests)
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    restart_policy: str = "Never"
    service_account: str | None = None
    node_selector: dict[str, str] = field(default_factory=dict)
    preferred_nodes: dict[str, str] = field(default_factory=dict)
    anti_affinity_labels: dict[str, str] = field(default_factory=dict)

    @property
    def original_identity(self) -> str | None:
        return self.annotations.get(ANNOTATION_ORIGINAL_RUN_ID)

    def _affinity(self) -> dict[str, Any] | None:
        affinity: dict[str, Any] = {}
        if self.anti_affinity_labels:
            affinity["podAntiAffinity"] = {
                "requiredDuringSchedulingIgnoredDuringExecution": [
                    {
                        "labelSelector": {"matchLabels": dict(self.anti_affinity_labels)},
                        "topologyKey": "kubernetes.io/hostname",
                    }
                ]
            }
        if self.preferred_nodes:
            affinity["nodeAffinity"] = {
                "preferredDuringSchedulingIgnoredDuringExecution": [
                    {
                        "weight": 100,
                        "preference": {
                            "matchExpressions": [
                                {"key": key, "operator": "In", "values": [value]}
                                for key, value in sorted(self.preferred_nodes.items())
                            ]
                        },
                    }
                ]
            }
        return affinity or None

    def to_manifest(self) -> dict[str, Any]:
        """Render the Pod manifest submitted to the scheduling API."""
        container: dict[str, Any] = {
            "name": CONTAINER_NAME,
            "image": self.image,
            "volumeMounts": [
                {
                    "name": VOLUME_NAME,
                    "mountPath": self.mount.mount_path,
                    "subPath": self.mount.sub_path,
                }
            ],
            "resources": {"requests": self.resources.to_dict()},
            "env": [{"name": k, "value": v} for k, v in self.env.items()],
        }
        if self.command:
            container["command"] = list(self.command)
        if self.args:
            container["args"] = list(self.args)

        pod_spec: dict[str, Any] = {
            "restartPolicy": self.restart_policy,
            "containers": [container],
            "volumes": [
                {
                    "name": VOLUME_NAME,
                    "persistentVolumeClaim": {"claimName": self.mount.claim_name},
                }
            ],
        }
        if self.node_selector:
            pod_spec["nodeSelector"] = dict(self.node_selector)
        affinity = self._affinity()
        if affinity:
            pod_spec["affinity"] = affinity
        if self.service_account:
            pod_spec["serviceAccountName"] = self.service_account

        return {
            "apiVersion": "v1",
            "kind": "Pod",
            "metadata": {
                "name": self.name,
                "namespace": self.namespace,
                "labels": dict(self.labels),
                "annotations": dict(self.annotations),
            },
            "spec": pod_spec,
        }


@dataclass
class ExecutionUnit:
    """A live execution unit as reported by the scheduling API.

    ``phase`` is None when the API reported no phase or one we do not model;
    the poller always asks for the phase explicitly via ``get_phase``.
    """

    name: str
    namespace: str
    phase: Phase | None = None
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    created_at: str | None = None

    @property
    def operation(self) -> str | None:
        return self.labels.get(LABEL_OPERATION)

    @property
    def original_identity(self) -> str | None:
        return self.annotations.get(ANNOTATION_ORIGINAL_RUN_ID)

    @classmethod
    def from_manifest(cls, obj: dict[str, Any]) -> ExecutionUnit:
        """Build from a Pod object as returned by the API (``-o json``)."""
        metadata = obj.get("metadata") or {}
        raw_phase = (obj.get("status") or {}).get("phase")
        try:
            phase: Phase | None = Phase.parse(raw_phase)
        except ValueError:
            phase = None
        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", ""),
            phase=phase,
            labels=dict(metadata.get("labels") or {}),
            annotations=dict(metadata.get("annotations") or {}),
            created_at=metadata.get("creationTimestamp"),
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "name": self.name,
            "namespace": self.namespace,
            "phase": self.phase.value if self.phase else None,
            "operation": self.operation,
            "run_id": self.original_identity,
        }
        if self.created_at:
            d["created_at"] = self.created_at
        return d
