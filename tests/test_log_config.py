"""Unit tests for structured logging."""

import json
import logging

from livepreview.log_config import JSONFormatter, get_logger


class TestStructuredLogger:
    def test_fields_and_context_are_attached(self, caplog):
        log = get_logger("devserver", session_id="s-1")

        with caplog.at_level(logging.INFO, logger="livepreview"):
            log.info("devserver.start", command="npm run dev")

        record = caplog.records[-1]
        assert record.name == "livepreview.devserver"
        assert record.event == "devserver.start"
        assert record.fields == {"session_id": "s-1", "command": "npm run dev"}

    def test_exc_adds_type_and_message(self, caplog):
        log = get_logger("files")

        with caplog.at_level(logging.INFO, logger="livepreview"):
            log.error("files.sync_error", exc=OSError("disk full"), file_count=3)

        fields = caplog.records[-1].fields
        assert fields["exc_type"] == "OSError"
        assert fields["exc_message"] == "disk full"
        assert fields["file_count"] == 3

    def test_bind_merges_context(self, caplog):
        log = get_logger("preview", session_id="s-1").bind(generation=2)

        with caplog.at_level(logging.INFO, logger="livepreview"):
            log.info("preview.target")

        assert caplog.records[-1].fields == {"session_id": "s-1", "generation": 2}

    def test_debug_is_filtered_below_level(self, caplog):
        log = get_logger("files")

        with caplog.at_level(logging.INFO, logger="livepreview"):
            log.debug("files.sync_skipped")

        assert not [r for r in caplog.records if getattr(r, "event", None) == "files.sync_skipped"]


class TestJSONFormatter:
    def test_renders_one_json_object(self):
        record = logging.LogRecord(
            name="livepreview.installer",
            level=logging.INFO,
            pathname=__file__,
            lineno=1,
            msg="install.complete",
            args=(),
            exc_info=None,
        )
        record.component = "installer"
        record.event = "install.complete"
        record.fields = {"exit_code": 0, "duration_ms": 1200}

        payload = json.loads(JSONFormatter().format(record))

        assert payload["level"] == "info"
        assert payload["component"] == "installer"
        assert payload["event"] == "install.complete"
        assert payload["exit_code"] == 0
        assert payload["duration_ms"] == 1200
        assert isinstance(payload["ts"], int)
