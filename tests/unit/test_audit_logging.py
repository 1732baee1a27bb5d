import json

from govsql.common.event_logger import EventLogger


class TestAuditLogging:

    def _records(self, path):
        return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]

    def test_event_logger_writes_json(self, tmp_path):
        """Verifies EventLogger writes one JSON object per event."""
        path = tmp_path / "audit" / "events.log"
        EventLogger(log_path=str(path)).log_event(
            "authorization_denied",
            {"requested_modules": ["AP", "AR"], "missing_modules": ["AP"]},
            trace_id="trace-1",
        )

        record = self._records(path)[-1]
        assert record["event_type"] == "authorization_denied"
        assert record["trace_id"] == "trace-1"
        assert record["data"]["missing_modules"] == ["AP"]

    def test_event_logger_redacts_secrets(self, tmp_path):
        """Verifies sensitive keys are masked at any depth."""
        path = tmp_path / "events.log"
        EventLogger(log_path=str(path)).log_event(
            "internal_error",
            {"token": "abc", "errors": [{"node": "authorizer", "Password": "hunter2"}]},
        )

        data = self._records(path)[-1]["data"]
        assert data["token"] == "***REDACTED***"
        assert data["errors"][0]["Password"] == "***REDACTED***"
        assert data["errors"][0]["node"] == "authorizer"

    def test_event_logger_uses_settings_path(self, tmp_path, monkeypatch):
        path = tmp_path / "from_settings.log"
        monkeypatch.setattr("govsql.common.event_logger.settings.audit_log_path", str(path))

        EventLogger().log_event("artifact_emitted", {"report_type": "AR_AGING"})

        assert self._records(path)[-1]["data"]["report_type"] == "AR_AGING"

    def test_instances_with_different_paths_keep_separate_files(self, tmp_path):
        # Validates per-path handlers because an audit event written to another
        # instance's file is lost to whoever reads the configured one.
        first_path, second_path = tmp_path / "first.log", tmp_path / "second.log"
        first, second = EventLogger(log_path=str(first_path)), EventLogger(log_path=str(second_path))

        first.log_event("artifact_emitted", {"report_type": "AR_AGING"})
        second.log_event("authorization_denied", {"report_type": "AP_SUPPLIER_BALANCE"})

        assert [r["event_type"] for r in self._records(first_path)] == ["artifact_emitted"]
        assert [r["event_type"] for r in self._records(second_path)] == ["authorization_denied"]

    def test_same_path_reuses_one_handler(self, tmp_path):
        # Validates handler reuse because a second handler on one file would duplicate every event.
        path = tmp_path / "shared.log"

        EventLogger(log_path=str(path)).log_event("artifact_emitted", {"n": 1})
        EventLogger(log_path=str(path)).log_event("artifact_emitted", {"n": 2})

        assert [r["data"]["n"] for r in self._records(path)] == [1, 2]
