"""Scheduler client backed by the ``kubectl`` CLI.

Drives the Kubernetes API through ``kubectl`` subprocess calls with JSON
input and output, so the orchestrator needs no Kubernetes client library
and picks up whatever credentials the process already has (in-cluster
service account, ``KUBECONFIG``, or an explicit ``--kubeconfig``).

.. code-block:: text

    create              kubectl create -f - -o json      (manifest on stdin)
    get_phase           kubectl get pod <name> -o json   → .status.phase
    get_console_output  kubectl logs <name>
    delete              kubectl delete pod <name> --ignore-not-found=true --wait=false
    list_units          kubectl get pods -l k=v,... -o json

Every call carries ``--namespace`` (and ``--kubeconfig`` / ``--context``
when configured) and is bounded by ``kubectl_timeout_seconds``.
"""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
from typing import Any

from podrun.core.errors import (
    InfraError,
    UnitAlreadyExistsError,
    UnitCreateError,
    UnitNotFoundError,
)
from podrun.core.settings import PodrunSettings
from podrun.execution._types import ExecutionUnit, ExecutionUnitSpec
from podrun.execution.scheduler import BaseSchedulerClient

logger = logging.getLogger(__name__)


def _failure_message(completed: subprocess.CompletedProcess[str]) -> str:
    return (completed.stderr or completed.stdout or "").strip()


def _is_not_found(message: str) -> bool:
    lowered = message.lower()
    return "notfound" in lowered or "not found" in lowered


def _is_already_exists(message: str) -> bool:
    lowered = message.lower()
    return "alreadyexists" in lowered or "already exists" in lowered


def _is_permanent_create_failure(message: str) -> bool:
    lowered = message.lower()
    return "invalid" in lowered or "forbidden" in lowered or "unauthorized" in lowered


class KubectlSchedulerClient(BaseSchedulerClient):
    """Scheduler client that shells out to ``kubectl``.

    Parameters
    ----------
    namespace
        Namespace every unit lives in.
    kubectl_path
        kubectl binary (name on PATH or absolute path).
    kubeconfig, context
        Optional explicit credentials; in-cluster config is used otherwise.
    timeout
        Upper bound in seconds for one kubectl call.

    Example::

        client = KubectlSchedulerClient.from_settings(settings)
        unit = client.create(spec)
        client.get_phase(unit.name)   # Phase.PENDING
    """

    client_name = "kubectl"

    def __init__(
        self,
        namespace: str,
        *,
        kubectl_path: str = "kubectl",
        kubeconfig: str | None = None,
        context: str | None = None,
        timeout: float = 60.0,
    ) -> None:
        super().__init__(namespace)
        self.kubectl_path = kubectl_path
        self.kubeconfig = kubeconfig
        self.context = context
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: PodrunSettings) -> KubectlSchedulerClient:
        return cls(
            settings.namespace,
            kubectl_path=settings.kubectl_path,
            kubeconfig=settings.kubeconfig,
            context=settings.kube_context,
            timeout=settings.kubectl_timeout_seconds,
        )

    def is_available(self) -> bool:
        """Check that the kubectl binary can be found."""
        return shutil.which(self.kubectl_path) is not None

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def _do_create(self, spec: ExecutionUnitSpec) -> ExecutionUnit:
        try:
            completed = self._run_kubectl(
                ["create", "-f", "-", "-o", "json"],
                input=json.dumps(spec.to_manifest()),
            )
        except InfraError as exc:
            raise UnitCreateError(exc.message, cause=exc).with_context(
                unit_name=spec.name, namespace=self.namespace,
            ) from exc

        if completed.returncode != 0:
            message = _failure_message(completed)
            if _is_already_exists(message):
                raise UnitAlreadyExistsError(
                    f"unit {spec.name} already exists: {message}"
                ).with_context(unit_name=spec.name, namespace=self.namespace)
            raise UnitCreateError(
                f"kubectl create failed (exit {completed.returncode}): {message}",
                retryable=not _is_permanent_create_failure(message),
            ).with_context(unit_name=spec.name, namespace=self.namespace)

        try:
            return ExecutionUnit.from_manifest(json.loads(completed.stdout))
        except (json.JSONDecodeError, TypeError):
            logger.warning("Unparseable create output for %s, using submitted spec", spec.name)
            return ExecutionUnit(
                name=spec.name,
                namespace=spec.namespace,
                labels=dict(spec.labels),
                annotations=dict(spec.annotations),
            )

    def _do_get_phase(self, name: str) -> str | None:
        pod = self._kubectl_json(["get", "pod", name], unit_name=name)
        return (pod.get("status") or {}).get("phase")

    def _do_console_output(self, name: str) -> str:
        completed = self._run_kubectl(["logs", name])
        if completed.returncode != 0:
            message = _failure_message(completed)
            error_cls = UnitNotFoundError if _is_not_found(message) else InfraError
            raise error_cls(f"kubectl logs failed: {message}").with_context(
                unit_name=name, namespace=self.namespace,
            )
        return completed.stdout or ""

    def _do_delete(self, name: str) -> bool:
        completed = self._run_kubectl(
            ["delete", "pod", name, "--ignore-not-found=true", "--wait=false"],
        )
        if completed.returncode != 0:
            raise InfraError(
                f"kubectl delete failed: {_failure_message(completed)}"
            ).with_context(unit_name=name, namespace=self.namespace)
        # kubectl prints nothing when the pod was already absent
        return bool(completed.stdout.strip())

    def _do_list(self, selector: dict[str, str]) -> list[ExecutionUnit]:
        command = ["get", "pods"]
        if selector:
            command.extend(["-l", ",".join(f"{k}={v}" for k, v in sorted(selector.items()))])
        payload = self._kubectl_json(command)
        return [ExecutionUnit.from_manifest(item) for item in payload.get("items") or []]

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _base_args(self) -> list[str]:
        args = [self.kubectl_path, "--namespace", self.namespace]
        if self.kubeconfig:
            args.extend(["--kubeconfig", self.kubeconfig])
        if self.context:
            args.extend(["--context", self.context])
        return args

    def _run_kubectl(
        self,
        args: list[str],
        *,
        input: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run one kubectl command. Transport failures raise InfraError."""
        cmd = [*self._base_args(), *args]
        logger.debug("kubectl.exec %s", " ".join(cmd))
        try:
            return subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                input=input,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise InfraError(
                f"kubectl timed out after {self.timeout}s: {' '.join(args)}", cause=exc
            ).with_context(namespace=self.namespace) from exc
        except OSError as exc:
            raise InfraError(
                f"kubectl could not be executed ({self.kubectl_path}): {exc}", cause=exc
            ).with_context(namespace=self.namespace) from exc

    def _kubectl_json(self, command: list[str], *, unit_name: str | None = None) -> dict[str, Any]:
        completed = self._run_kubectl([*command, "-o", "json"])
        if completed.returncode != 0:
            message = _failure_message(completed)
            if unit_name and _is_not_found(message):
                raise UnitNotFoundError(f"unit {unit_name} not found").with_context(
                    unit_name=unit_name, namespace=self.namespace,
                )
            raise InfraError(f"Kubernetes API query failed: {message}").with_context(
                unit_name=unit_name, namespace=self.namespace,
            )
        try:
            payload = json.loads(completed.stdout or "{}")
        except json.JSONDecodeError as exc:
            raise InfraError(f"kubectl returned invalid JSON: {exc}", cause=exc) from exc
        if not isinstance(payload, dict):
            raise InfraError("kubectl returned a non-object JSON payload")
        return payload
