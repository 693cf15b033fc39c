"""Tests for the structured log formatter."""

import json
import logging

from bizadvisor.shared.logging import StructuredFormatter, correlation_id_var, session_id_var


def _format(**extra: object) -> dict:
    record = logging.makeLogRecord(
        {"name": "bizadvisor.test", "levelname": "INFO", "levelno": logging.INFO, "msg": "Turn processed"}
    )
    record.__dict__.update(extra)
    return json.loads(StructuredFormatter().format(record))


class TestStructuredFormatter:
    def test_extra_fields_are_flattened(self) -> None:
        data = _format(item_id="abc", attempt=2)

        assert data["message"] == "Turn processed"
        assert data["logger"] == "bizadvisor.test"
        assert data["item_id"] == "abc"
        assert data["attempt"] == 2

    def test_utterance_text_is_replaced_by_length(self) -> None:
        data = _format(text="I sell tea near the station")

        assert "text" not in data
        assert data["text_length"] == 27

    def test_base_keys_are_not_overwritten(self) -> None:
        data = _format(level="custom")

        assert data["level"] == "INFO"
        assert data["extra_level"] == "custom"

    def test_context_variables(self) -> None:
        correlation_token = correlation_id_var.set("corr-1")
        session_token = session_id_var.set("loc-1")
        try:
            data = _format()
        finally:
            session_id_var.reset(session_token)
            correlation_id_var.reset(correlation_token)

        assert data["correlation_id"] == "corr-1"
        assert data["session_id"] == "loc-1"
        assert "correlation_id" not in _format()

    def test_non_ascii_is_kept_readable(self) -> None:
        record = logging.makeLogRecord({"msg": "सत्र शुरू", "levelname": "INFO"})
        output = StructuredFormatter().format(record)

        assert "सत्र शुरू" in output
