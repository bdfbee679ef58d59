"""Tests for ConfigMaterializer -- run directories on shared storage."""

from __future__ import annotations

import hashlib
import json
import stat

import pytest

from podrun.core.errors import ConfigWriteError, ResultFileError
from podrun.execution._types import ConfigFile, OperationKind
from podrun.execution.materializer import ConfigMaterializer


@pytest.fixture()
def materializer(tmp_path) -> ConfigMaterializer:
    return ConfigMaterializer(tmp_path / "jobs")


class TestRunDirectory:
    def test_discover_uses_identity(self, materializer, tmp_path):
        assert materializer.run_directory(OperationKind.DISCOVER, "wf-1") == tmp_path / "jobs" / "wf-1"

    def test_sync_uses_digest(self, materializer, tmp_path):
        digest = hashlib.sha256(b"wf-2").hexdigest()
        assert materializer.run_directory(OperationKind.SYNC, "wf-2") == tmp_path / "jobs" / digest

    def test_sync_accepts_any_identity(self, materializer):
        run_dir = materializer.run_directory(OperationKind.SYNC, "../../etc")
        assert ".." not in run_dir.name

    @pytest.mark.parametrize("identity", ["", ".", "..", "a/b", "a\\b"])
    def test_rejects_unsafe_identity(self, materializer, identity):
        with pytest.raises(ConfigWriteError):
            materializer.run_directory(OperationKind.CHECK, identity)

    def test_no_io(self, materializer, tmp_path):
        materializer.run_directory(OperationKind.DISCOVER, "wf-1")
        assert not (tmp_path / "jobs").exists()


class TestMaterialize:
    def test_writes_files(self, materializer):
        run_dir = materializer.run_directory(OperationKind.DISCOVER, "wf-1")
        result = materializer.materialize(run_dir, [ConfigFile("config.json", '{"host":"db"}')])
        assert result == run_dir
        assert (run_dir / "config.json").read_text() == '{"host":"db"}'

    def test_permissions(self, materializer):
        run_dir = materializer.run_directory(OperationKind.DISCOVER, "wf-1")
        materializer.materialize(run_dir, [ConfigFile("config.json", "{}")])
        assert stat.S_IMODE((run_dir / "config.json").stat().st_mode) == 0o644

    def test_idempotent_overwrite(self, materializer):
        run_dir = materializer.run_directory(OperationKind.CHECK, "wf-1")
        materializer.materialize(run_dir, [ConfigFile("config.json", "old")])
        materializer.materialize(run_dir, [ConfigFile("config.json", "new")])
        assert (run_dir / "config.json").read_text() == "new"

    def test_keeps_other_files(self, materializer):
        run_dir = materializer.run_directory(OperationKind.CHECK, "wf-1")
        materializer.materialize(run_dir, [ConfigFile("config.json", "{}")])
        (run_dir / "streams.json").write_text("{}")
        materializer.materialize(run_dir, [ConfigFile("config.json", "{}")])
        assert (run_dir / "streams.json").exists()

    @pytest.mark.parametrize("name", ["", "../x.json", "sub/x.json", ".."])
    def test_rejects_unsafe_file_names(self, materializer, name):
        run_dir = materializer.run_directory(OperationKind.CHECK, "wf-1")
        with pytest.raises(ConfigWriteError):
            materializer.materialize(run_dir, [ConfigFile(name, "{}")])
        assert not run_dir.exists()

    def test_unwritable_base_raises(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        materializer = ConfigMaterializer(blocker)
        run_dir = materializer.run_directory(OperationKind.DISCOVER, "wf-1")
        with pytest.raises(ConfigWriteError, match="failed to create run directory") as exc_info:
            materializer.materialize(run_dir, [ConfigFile("config.json", "{}")])
        assert isinstance(exc_info.value.cause, OSError)


class TestReadJson:
    def _run_dir(self, materializer):
        run_dir = materializer.run_directory(OperationKind.DISCOVER, "wf-1")
        run_dir.mkdir(parents=True)
        return run_dir

    def test_reads_object(self, materializer):
        run_dir = self._run_dir(materializer)
        (run_dir / "streams.json").write_text(json.dumps({"streams": []}))
        assert materializer.read_json(run_dir, "streams.json") == {"streams": []}

    def test_missing(self, materializer):
        run_dir = self._run_dir(materializer)
        with pytest.raises(ResultFileError, match="not found"):
            materializer.read_json(run_dir, "streams.json")

    def test_invalid_json(self, materializer):
        run_dir = self._run_dir(materializer)
        (run_dir / "streams.json").write_text("{nope")
        with pytest.raises(ResultFileError, match="not valid JSON"):
            materializer.read_json(run_dir, "streams.json")

    def test_not_an_object(self, materializer):
        run_dir = self._run_dir(materializer)
        (run_dir / "streams.json").write_text("[1, 2]")
        with pytest.raises(ResultFileError, match="JSON object"):
            materializer.read_json(run_dir, "streams.json")
