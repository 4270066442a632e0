"""Tests for the logging setup."""

import json
import logging
import sys

from bankcards.logging_config import JSONFormatter, setup_logging


class TestJSONFormatter:
    def test_formats_extras_as_json(self):
        record = logging.LogRecord("bankcards.services.card_service", logging.INFO, __file__, 1,
                                   "Card with id=%s created", ("abc",), None)
        record.card_id = "abc"
        record.owner = "alice"

        payload = json.loads(JSONFormatter().format(record))
        assert payload["level"] == "INFO"
        assert payload["logger"] == "bankcards.services.card_service"
        assert payload["message"] == "Card with id=abc created"
        assert payload["card_id"] == "abc"
        assert payload["owner"] == "alice"
        assert "attempt" not in payload

    def test_includes_exception(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())

        payload = json.loads(JSONFormatter().format(record))
        assert "RuntimeError: boom" in payload["exception"]


class TestSetupLogging:
    def test_repeated_setup_keeps_one_handler(self):
        root = logging.getLogger()
        setup_logging("DEBUG", "json")
        setup_logging("WARNING", "text")

        ours = [h for h in root.handlers if getattr(h, "_bankcards_handler", False)]
        assert len(ours) == 1
        assert not isinstance(ours[0].formatter, JSONFormatter)
        assert root.level == logging.WARNING
        setup_logging("INFO", "text")
