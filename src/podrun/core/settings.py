"""Orchestrator settings.

``PodrunSettings`` holds everything the orchestrator needs to know about its
environment: namespace, storage, image registry, per-operation timeouts,
scheduling hints and the kubectl transport. An instance is built once at
startup and passed explicitly to every component; nothing reads process-wide
timeout globals.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.

    - **Pydantic validation:** Type-checked at startup, not mid-run
    - **Environment-driven:** ``PODRUN_*`` env vars and ``.env`` files
    - **Per-invocation:** Tests build their own instance with overrides

Examples:
    >>> settings = PodrunSettings(namespace="jobs", sync_timeout_seconds=60)
    >>> settings.timeout_for("sync")
    60.0
    >>> PodrunSettings(sync_node_selector="pool=sync,zone=a").node_selector_for("sync")
    {'pool': 'sync', 'zone': 'a'}

Tags:
    settings, configuration, pydantic, environment, podrun
"""

from __future__ import annotations

import logging
import os
import re
import socket
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

_LABEL_NAME = re.compile(r"([A-Za-z0-9][-A-Za-z0-9_.]*)?[A-Za-z0-9]")
_DNS_SUBDOMAIN = re.compile(r"[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*")


def _default_worker_identity() -> str:
    return os.environ.get("POD_NAME") or socket.gethostname() or "podrun-worker"


def parse_selector(raw: str) -> dict[str, str]:
    """Parse ``"k1=v1,k2=v2"`` into a dict. Empty input gives ``{}``."""
    result: dict[str, str] = {}
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"invalid selector entry {item!r}, expected key=value")
        result[key.strip()] = value.strip()
    return result


def is_label_key(key: str) -> bool:
    """Kubernetes qualified name: ``[prefix/]name``, prefix a DNS subdomain."""
    prefix, sep, name = key.rpartition("/")
    if sep and (len(prefix) > 253 or not _DNS_SUBDOMAIN.fullmatch(prefix)):
        return False
    return len(name) <= 63 and _LABEL_NAME.fullmatch(name) is not None


def is_label_value(value: str) -> bool:
    return len(value) <= 63 and _LABEL_NAME.fullmatch(value) is not None


def _label_problem(labels: dict[Any, Any]) -> str | None:
    for key, value in labels.items():
        if not isinstance(key, str) or not isinstance(value, str):
            return "label keys and values must be strings"
        key, value = key.strip(), value.strip()
        if not key:
            return "empty label key"
        if not value:
            return f"empty label value for key {key!r}"
        if not is_label_key(key):
            return f"invalid label key {key!r}"
        if not is_label_value(value):
            return f"invalid label value {value!r} for key {key!r}"
    return None


class PodrunSettings(BaseSettings):
    """Orchestrator configuration.

    Fields
    ──────
    namespace              : Namespace every execution unit is created in
    storage_base_path      : Local mount of the shared claim (run directories)
    storage_claim_name     : PersistentVolumeClaim mounted into every unit
    image_registry         : Registry prefix for connector images
    poll_interval_seconds  : Wait between two phase polls
    *_timeout_seconds      : Default deadline per operation kind
    *_node_selector        : ``k=v,k=v`` node selector per operation kind
    kubectl_*              : Transport used by ``KubectlSchedulerClient``
    """

    model_config = SettingsConfigDict(
        env_prefix="PODRUN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Cluster ──────────────────────────────────────────────────
    namespace: str = Field(default="podrun", description="Namespace for execution units")
    worker_identity: str = Field(
        default_factory=_default_worker_identity,
        description="Recorded in the created-by annotation of every unit",
    )
    app_label: str = Field(default="podrun-connector")
    job_service_account: str | None = Field(default=None)
    secret_key: str | None = Field(
        default=None,
        description="Injected into units as PODRUN_SECRET_KEY when set",
    )

    # ── Storage ──────────────────────────────────────────────────
    storage_base_path: Path = Field(default=Path("/data/podrun-jobs"))
    storage_claim_name: str = Field(default="podrun-jobs-pvc")

    # ── Images & resources ───────────────────────────────────────
    image_registry: str = Field(default="podrun")
    cpu_request: str = Field(default="100m")
    memory_request: str = Field(default="256Mi")

    # ── Polling & timeouts ───────────────────────────────────────
    poll_interval_seconds: float = Field(default=5.0, gt=0)
    discover_timeout_seconds: float = Field(default=30 * 60, gt=0)
    check_timeout_seconds: float = Field(default=30 * 60, gt=0)
    sync_timeout_seconds: float = Field(default=4 * 60 * 60, gt=0)

    # ── Scheduling hints ─────────────────────────────────────────
    discover_node_selector: str = Field(default="")
    check_node_selector: str = Field(default="")
    sync_node_selector: str = Field(default="")
    sync_anti_affinity: bool = Field(
        default=True,
        description="Keep sync units of this app on distinct nodes",
    )
    job_node_mapping: dict[int, dict[str, str]] = Field(
        default_factory=dict,
        description="Preferred node labels per job id for sync units (JSON)",
    )

    # ── kubectl transport ────────────────────────────────────────
    kubectl_path: str = Field(default="kubectl")
    kubeconfig: str | None = Field(default=None)
    kube_context: str | None = Field(default=None)
    kubectl_timeout_seconds: float = Field(default=60.0, gt=0)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console", description="console or json")

    @field_validator("job_node_mapping", mode="before")
    @classmethod
    def _filter_job_node_mapping(cls, raw: Any) -> Any:
        """Drop entries with a non-positive job id or any invalid node label.

        An entry is kept or dropped as a whole; dropped entries are logged.
        """
        if not isinstance(raw, dict):
            return raw
        valid: dict[int, dict[str, str]] = {}
        for job_key, labels in raw.items():
            try:
                job_id = int(job_key)
            except (TypeError, ValueError):
                logger.error("Invalid job id %r in job_node_mapping (must be an integer)", job_key)
                continue
            if job_id <= 0:
                logger.error("Job id must be positive in job_node_mapping, got %d", job_id)
                continue
            if not isinstance(labels, dict):
                logger.error("Job %d has no node label mapping", job_id)
                continue
            problem = _label_problem(labels)
            if problem:
                logger.error("Dropping job_node_mapping entry for job %d: %s", job_id, problem)
                continue
            if not labels:
                logger.warning("Job %d has an empty node mapping, default scheduling applies", job_id)
            valid[job_id] = {k.strip(): v.strip() for k, v in labels.items()}
        if len(valid) != len(raw):
            logger.info("job_node_mapping: %d valid entries out of %d", len(valid), len(raw))
        return valid

    @model_validator(mode="after")
    def _validate(self) -> PodrunSettings:
        if self.log_format not in ("console", "json"):
            raise ValueError(f"log_format must be 'console' or 'json', got {self.log_format!r}")
        for kind in ("discover", "check", "sync"):
            parse_selector(getattr(self, f"{kind}_node_selector"))
        return self

    # ── Derived ──────────────────────────────────────────────────

    def timeout_for(self, kind: str | Enum) -> float:
        """Default deadline (seconds) for an operation kind."""
        name = kind.value if isinstance(kind, Enum) else kind
        return getattr(self, f"{name}_timeout_seconds")

    def node_selector_for(self, kind: str | Enum) -> dict[str, str]:
        name = kind.value if isinstance(kind, Enum) else kind
        return parse_selector(getattr(self, f"{name}_node_selector"))
