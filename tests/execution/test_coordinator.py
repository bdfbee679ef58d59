"""Tests for LifecycleCoordinator -- end-to-end runs against the stub client."""

from __future__ import annotations

import hashlib
import json
import threading

import pytest

from podrun.core.errors import (
    ConfigWriteError,
    InfraError,
    PodrunError,
    PollTimeoutError,
    ResultFileError,
    RunCancelledError,
    UnitAlreadyExistsError,
    UnitCreateError,
    UnitFailedError,
)
from podrun.execution._types import ConfigFile, OperationKind, Phase
from podrun.execution.coordinator import LifecycleCoordinator, RunRequest, cleanup_units
from podrun.execution.materializer import ConfigMaterializer
from podrun.execution.operations import profile_for
from podrun.execution.spec_builder import build_spec


# ── Helpers ──────────────────────────────────────────────────────────────

_SYNC_FILES = [
    ConfigFile("config.json", '{"host":"db"}'),
    ConfigFile("streams.json", '{"streams":[]}'),
    ConfigFile("writer.json", '{"type":"parquet"}'),
    ConfigFile("state.json", "{}"),
]


def _request(kind: OperationKind, identity: str, files=None, **kwargs) -> RunRequest:
    if files is None:
        files = _SYNC_FILES if kind is OperationKind.SYNC else [ConfigFile("config.json", "{}")]
    return RunRequest(
        kind=kind,
        identity=identity,
        image="podrun/source-postgres:v1.2.0",
        args=profile_for(kind).build_args(),
        config_files=files,
        **kwargs,
    )


def _write_streams(settings, identity: str, payload: dict) -> None:
    run_dir = settings.storage_base_path / identity
    run_dir.mkdir(parents=True, exist_ok=True)
    (run_dir / "streams.json").write_text(json.dumps(payload))


# ── Happy paths ──────────────────────────────────────────────────────────


class TestDiscover:
    def test_end_to_end(self, coordinator, stub_client, settings):
        _write_streams(settings, "wf-1", {"streams": []})
        stub_client.script("wf-1", ["Pending", "Running", "Succeeded"])
        beats: list[str] = []

        result = coordinator.run(_request(OperationKind.DISCOVER, "wf-1"), heartbeat=beats.append)

        assert result == {"streams": []}
        assert (settings.storage_base_path / "wf-1" / "config.json").read_text() == "{}"
        assert stub_client.create_count == 1
        assert stub_client.poll_count == 3
        assert stub_client.delete_calls == ["wf-1"]
        assert stub_client.units == {}
        assert beats[0] == "Unit wf-1 created, waiting for completion"
        assert beats[-1] == "Unit wf-1 is Succeeded (poll 3)"

    def test_created_spec(self, coordinator, stub_client, settings):
        _write_streams(settings, "Workflow_ABC.123", {"streams": []})
        specs = []
        original_create = stub_client._do_create

        def _capture(spec):
            specs.append(spec)
            return original_create(spec)

        stub_client._do_create = _capture
        coordinator.run(_request(OperationKind.DISCOVER, "Workflow_ABC.123", connector="postgres"))

        spec = specs[0]
        assert spec.name == "workflow-abc-123"
        assert spec.original_identity == "Workflow_ABC.123"
        assert spec.mount.sub_path == "Workflow_ABC.123"
        assert spec.labels["operation"] == "discover"
        assert spec.labels["podrun.io/connector"] == "postgres"
        assert stub_client.delete_calls == ["workflow-abc-123"]


class TestCheck:
    def test_connection_status(self, coordinator, stub_client):
        stub_client.script(
            "wf-3", ["Running", "Succeeded"],
            console_output='INFO {"connectionStatus":{"status":"SUCCEEDED","message":"ok"}}',
        )
        result = coordinator.run(_request(OperationKind.CHECK, "wf-3"))
        assert result == {"status": "SUCCEEDED", "message": "ok"}
        assert stub_client.delete_count == 1


class TestSync:
    def test_writes_all_files_under_digest(self, coordinator, stub_client, settings):
        stub_client.script("wf-2", ["Succeeded"], console_output='{"records": 3}')

        assert coordinator.run(_request(OperationKind.SYNC, "wf-2")) == {"records": 3}

        run_dir = settings.storage_base_path / hashlib.sha256(b"wf-2").hexdigest()
        assert sorted(p.name for p in run_dir.iterdir()) == [
            "config.json", "state.json", "streams.json", "writer.json",
        ]

    def test_failed_unit(self, coordinator, stub_client):
        stub_client.script("wf-2", ["Running", "Failed"], console_output="Error: connection refused")

        with pytest.raises(UnitFailedError) as exc_info:
            coordinator.run(_request(OperationKind.SYNC, "wf-2"))

        err = exc_info.value
        assert err.console_output == "Error: connection refused"
        assert err.context.run_id == "wf-2"
        assert "connection refused" in str(err)
        assert err.context.unit_name == "wf-2"
        assert err.context.operation == "sync"
        assert err.context.namespace == "podrun-test"
        assert stub_client.delete_calls == ["wf-2"]
        assert "wf-2" not in stub_client.units

    def test_missing_required_file(self, coordinator, stub_client):
        with pytest.raises(ConfigWriteError, match="writer.json"):
            coordinator.run(_request(OperationKind.SYNC, "wf-2", files=_SYNC_FILES[:2] + _SYNC_FILES[3:]))
        assert stub_client.create_count == 0
        assert stub_client.delete_calls == ["wf-2"]


# ── Cleanup guarantees ───────────────────────────────────────────────────


def _fail_materialize(coordinator, stub_client, settings, tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("")
    coordinator.materializer = ConfigMaterializer(blocker)
    return ConfigWriteError


def _fail_create(coordinator, stub_client, settings, tmp_path):
    stub_client.fail_create = UnitCreateError("quota exceeded")
    return UnitCreateError


def _fail_poll(coordinator, stub_client, settings, tmp_path):
    stub_client.script("wf-9", ["Pending", InfraError("api unreachable")])
    return InfraError


def _fail_timeout(coordinator, stub_client, settings, tmp_path):
    stub_client.script("wf-9", ["Running"])
    coordinator.settings = settings.model_copy(update={"check_timeout_seconds": 10.0})
    return PollTimeoutError


def _fail_extract(coordinator, stub_client, settings, tmp_path):
    stub_client.script("wf-9", ["Succeeded"], console_output="   ")
    return PodrunError


class TestCleanup:
    @pytest.mark.parametrize(
        "inject",
        [_fail_materialize, _fail_create, _fail_poll, _fail_timeout, _fail_extract],
        ids=["materialize", "create", "poll", "timeout", "extract"],
    )
    def test_delete_exactly_once(self, coordinator, stub_client, settings, tmp_path, inject):
        expected = inject(coordinator, stub_client, settings, tmp_path)

        with pytest.raises(expected):
            coordinator.run(_request(OperationKind.CHECK, "wf-9"))

        assert stub_client.delete_calls == ["wf-9"]
        assert stub_client.units == {}

    def test_timeout_uses_kind_default(self, stub_client, poller, tmp_path):
        from podrun.core.settings import PodrunSettings

        settings = PodrunSettings(_env_file=None, storage_base_path=tmp_path, check_timeout_seconds=10)
        coordinator = LifecycleCoordinator(settings, stub_client, poller=poller)
        stub_client.script("wf-9", ["Pending"])
        with pytest.raises(PollTimeoutError, match="timed out after 10s"):
            coordinator.run(_request(OperationKind.CHECK, "wf-9"))

    def test_request_timeout_overrides_default(self, coordinator, stub_client):
        stub_client.script("wf-9", ["Pending"])
        with pytest.raises(PollTimeoutError, match="timed out after 7s"):
            coordinator.run(_request(OperationKind.CHECK, "wf-9", timeout=7))
        assert stub_client.delete_count == 1

    def test_extract_error_after_success(self, coordinator, stub_client):
        with pytest.raises(ResultFileError):
            coordinator.run(_request(OperationKind.DISCOVER, "wf-4"))
        assert stub_client.delete_calls == ["wf-4"]

    def test_unexpected_exception_still_deletes(self, coordinator, stub_client):
        def _boom(message: str) -> None:
            raise RuntimeError("heartbeat sink closed")

        with pytest.raises(RuntimeError):
            coordinator.run(_request(OperationKind.CHECK, "wf-5"), heartbeat=_boom)
        assert stub_client.delete_calls == ["wf-5"]

    def test_cancel(self, coordinator, stub_client):
        stub_client.script("wf-6", ["Running"])
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(RunCancelledError):
            coordinator.run(_request(OperationKind.CHECK, "wf-6"), cancel=cancel)
        assert stub_client.delete_calls == ["wf-6"]

    def test_already_exists_skips_delete(self, coordinator, stub_client, settings):
        existing = build_spec(
            OperationKind.CHECK, "podrun/source-postgres:v1", [], "wf-7", settings=settings,
        )
        stub_client.add_unit(existing, Phase.RUNNING)

        with pytest.raises(UnitAlreadyExistsError):
            coordinator.run(_request(OperationKind.CHECK, "wf-7"))

        assert stub_client.delete_calls == []
        assert "wf-7" in stub_client.units

    def test_cleanup_failure_does_not_mask_result(self, coordinator, stub_client):
        stub_client.script("wf-8", ["Succeeded"], console_output='{"ok": true}')
        stub_client.fail_delete = True
        assert coordinator.run(_request(OperationKind.CHECK, "wf-8")) == {"ok": True}
        assert stub_client.delete_count == 1

    def test_cleanup_failure_does_not_mask_error(self, coordinator, stub_client):
        stub_client.script("wf-8", ["Failed"], console_output="boom")
        stub_client.fail_delete = True
        with pytest.raises(UnitFailedError):
            coordinator.run(_request(OperationKind.CHECK, "wf-8"))
        assert stub_client.delete_count == 1


# ── Concurrency ──────────────────────────────────────────────────────────


class TestConcurrentRuns:
    def test_independent_identities(self, settings, stub_client, fake_clock):
        from podrun.execution.poller import CompletionPoller

        poller = CompletionPoller(stub_client, interval=5, clock=fake_clock, sleep=lambda s: None)
        coordinator = LifecycleCoordinator(settings, stub_client, poller=poller)
        for i in range(4):
            stub_client.script(f"wf-{i}", ["Succeeded"], console_output=f'{{"n": {i}}}')

        results: dict[int, dict] = {}

        def _run(i: int) -> None:
            results[i] = coordinator.run(_request(OperationKind.CHECK, f"wf-{i}"))

        threads = [threading.Thread(target=_run, args=(i,)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results == {i: {"n": i} for i in range(4)}
        assert sorted(stub_client.delete_calls) == [f"wf-{i}" for i in range(4)]


# ── cleanup_units ────────────────────────────────────────────────────────


class TestCleanupUnits:
    def _add(self, stub_client, settings, kind, identity):
        stub_client.add_unit(build_spec(kind, "img:v1", [], identity, settings=settings))

    def test_removes_own_units(self, stub_client, settings):
        self._add(stub_client, settings, OperationKind.SYNC, "old-1")
        self._add(stub_client, settings, OperationKind.CHECK, "old-2")
        other = settings.model_copy(update={"app_label": "someone-else"})
        self._add(stub_client, other, OperationKind.SYNC, "foreign")

        removed = cleanup_units(stub_client, settings)

        assert sorted(removed) == ["old-1", "old-2"]
        assert list(stub_client.units) == ["foreign"]

    def test_operation_filter(self, stub_client, settings):
        self._add(stub_client, settings, OperationKind.SYNC, "old-1")
        self._add(stub_client, settings, OperationKind.CHECK, "old-2")
        assert cleanup_units(stub_client, settings, operation=OperationKind.SYNC) == ["old-1"]

    def test_delete_failure_is_skipped(self, stub_client, settings):
        self._add(stub_client, settings, OperationKind.SYNC, "old-1")
        stub_client.fail_delete = True
        assert cleanup_units(stub_client, settings) == []
        assert stub_client.delete_calls == ["old-1"]
