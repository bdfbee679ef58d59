"""Tests for result extraction -- console parsing and result files."""

from __future__ import annotations

import json

import pytest

from podrun.core.errors import MissingIdentityError, ResultExtractionError, ResultFileError
from podrun.execution._types import (
    ANNOTATION_ORIGINAL_RUN_ID,
    LABEL_OPERATION,
    ExecutionUnit,
    OperationKind,
)
from podrun.execution.extractor import (
    ResultExtractor,
    merge_json_lines,
    parse_connection_status,
    parse_console_output,
)
from podrun.execution.materializer import ConfigMaterializer
from podrun.execution.scheduler import StubSchedulerClient


# ── Helpers ──────────────────────────────────────────────────────────────


def _unit(name: str = "wf-1", operation: str | None = "check", identity: str | None = "wf-1") -> ExecutionUnit:
    labels = {LABEL_OPERATION: operation} if operation else {}
    annotations = {ANNOTATION_ORIGINAL_RUN_ID: identity} if identity else {}
    return ExecutionUnit(name=name, namespace="podrun-test", labels=labels, annotations=annotations)


class _Logs(StubSchedulerClient):
    """Stub client returning fixed console output for any unit."""

    def __init__(self, output: str) -> None:
        super().__init__(namespace="podrun-test")
        self.output = output

    def _do_console_output(self, name: str) -> str:
        return self.output


# ── parse_console_output ─────────────────────────────────────────────────


class TestParseConsoleOutput:
    def test_merges_json_lines(self):
        output = '{"a":1}\nnot json\nprefix {"b":2}'
        assert parse_console_output(output) == {"a": 1, "b": 2}

    def test_later_keys_win(self):
        assert parse_console_output('{"a":1}\n{"a":2,"c":3}') == {"a": 2, "c": 3}

    def test_plain_text(self):
        assert parse_console_output("all done") == {"raw_output": "all done", "status": "completed"}

    def test_plain_text_trimmed(self):
        assert parse_console_output("\n  done \n")["raw_output"] == "done"

    @pytest.mark.parametrize("output", ["", "   \n\t\n"])
    def test_empty(self, output):
        with pytest.raises(ResultExtractionError, match="empty output"):
            parse_console_output(output)

    def test_line_separator_in_json_string(self):
        output = '{"note": "a\u2028b", "rows": 3}'
        assert parse_console_output(output) == {"note": "a\u2028b", "rows": 3}

    def test_non_object_json_ignored(self):
        assert parse_console_output('[1,2]\n"x"\n{"ok":true}') == {"ok": True}

    def test_connection_status(self):
        output = (
            "INFO starting check\n"
            'INFO {"connectionStatus":{"status":"SUCCEEDED","message":"ok"}}'
        )
        assert parse_console_output(output) == {"status": "SUCCEEDED", "message": "ok"}

    def test_connection_status_failed(self):
        output = '2026-01-01 INFO {"type":"CONNECTION_STATUS","connectionStatus":{"status":"FAILED","message":"auth"}}'
        assert parse_console_output(output) == {"status": "FAILED", "message": "auth"}

    def test_connection_status_missing_fields_default_empty(self):
        assert parse_console_output('{"connectionStatus":{}}') == {"status": "", "message": ""}


class TestParseConnectionStatus:
    def test_uses_last_non_empty_line(self):
        output = '{"connectionStatus":{"status":"FAILED","message":"old"}}\n{"connectionStatus":{"status":"SUCCEEDED","message":"new"}}\n\n'
        assert parse_connection_status(output)["message"] == "new"

    def test_line_separator_in_message(self):
        output = 'INFO {"connectionStatus":{"status":"FAILED","message":"bad\u2029host"}}'
        assert parse_connection_status(output) == {"status": "FAILED", "message": "bad\u2029host"}

    def test_no_json_on_last_line(self):
        output = '{"connectionStatus":{"status":"SUCCEEDED"}}\ncheck finished'
        with pytest.raises(ResultExtractionError, match="no JSON found in last log line"):
            parse_connection_status(output)

    def test_unparseable(self):
        with pytest.raises(ResultExtractionError, match="failed to parse"):
            parse_connection_status('INFO {"connectionStatus": {')

    def test_status_not_an_object(self):
        with pytest.raises(ResultExtractionError, match="connection status not found"):
            parse_connection_status('{"connectionStatus":"SUCCEEDED"}')

    def test_non_string_fields(self):
        with pytest.raises(ResultExtractionError, match="must be strings"):
            parse_connection_status('{"connectionStatus":{"status":1,"message":"x"}}')


class TestMergeJsonLines:
    def test_nothing_parsed(self):
        assert merge_json_lines("a\nb {oops\n") == {}

    @pytest.mark.parametrize("separator", ["\u2028", "\u2029", "\x85"])
    def test_unicode_line_separator_inside_string(self, separator):
        output = '{"note": "a' + separator + 'b", "rows": 3}'
        assert merge_json_lines(output) == {"note": "a" + separator + "b", "rows": 3}

    def test_crlf_lines(self):
        assert merge_json_lines('{"a":1}\r\n{"b":2}\r\n') == {"a": 1, "b": 2}


# ── ResultExtractor ──────────────────────────────────────────────────────


class TestResultExtractor:
    def _extractor(self, tmp_path, output: str = "") -> ResultExtractor:
        return ResultExtractor(_Logs(output), ConfigMaterializer(tmp_path))

    def test_discover_reads_streams_file(self, tmp_path):
        run_dir = tmp_path / "wf-1"
        run_dir.mkdir()
        (run_dir / "streams.json").write_text(json.dumps({"streams": []}))

        result = self._extractor(tmp_path).extract(_unit(operation="discover"))

        assert result == {"streams": []}

    def test_discover_uses_original_identity(self, tmp_path):
        run_dir = tmp_path / "Workflow_ABC.123"
        run_dir.mkdir()
        (run_dir / "streams.json").write_text('{"streams":[{"name":"users"}]}')

        unit = _unit(name="workflow-abc-123", operation="discover", identity="Workflow_ABC.123")
        assert self._extractor(tmp_path).extract(unit) == {"streams": [{"name": "users"}]}

    def test_discover_missing_file(self, tmp_path):
        with pytest.raises(ResultFileError) as exc_info:
            self._extractor(tmp_path).extract(_unit(operation="discover"))
        assert exc_info.value.context.unit_name == "wf-1"
        assert exc_info.value.context.operation == "discover"

    def test_check_parses_console(self, tmp_path):
        extractor = self._extractor(
            tmp_path, 'INFO {"connectionStatus":{"status":"SUCCEEDED","message":"ok"}}'
        )
        assert extractor.extract(_unit()) == {"status": "SUCCEEDED", "message": "ok"}

    def test_sync_merges_console(self, tmp_path):
        extractor = self._extractor(tmp_path, 'sync started\n{"records": 10}\n{"state": {"cursor": 5}}')
        result = extractor.extract(_unit(operation=OperationKind.SYNC.value))
        assert result == {"records": 10, "state": {"cursor": 5}}

    def test_empty_console_output(self, tmp_path):
        with pytest.raises(ResultExtractionError, match="empty output") as exc_info:
            self._extractor(tmp_path, "").extract(_unit())
        assert exc_info.value.context.run_id == "wf-1"

    def test_missing_identity(self, tmp_path):
        with pytest.raises(MissingIdentityError):
            self._extractor(tmp_path, "{}").extract(_unit(identity=None))

    @pytest.mark.parametrize("operation", [None, "backfill"])
    def test_unknown_operation(self, tmp_path, operation):
        with pytest.raises(ResultExtractionError, match="unknown operation label"):
            self._extractor(tmp_path, "{}").extract(_unit(operation=operation))
