"""
Tests for neurobridge.logging_config -- text and structured JSON logging.
"""

from __future__ import annotations

import json
import logging
import sys

import pytest

from neurobridge.logging_config import StructuredJsonFormatter, setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


class TestSetupLogging:
    def test_text_mode_by_default(self, monkeypatch, restore_root_logger):
        monkeypatch.delenv("NB_LOG_FORMAT", raising=False)
        monkeypatch.delenv("NB_LOG_LEVEL", raising=False)
        setup_logging()
        root = restore_root_logger
        assert len(root.handlers) == 1
        assert not isinstance(root.handlers[0].formatter, StructuredJsonFormatter)
        assert root.level == logging.INFO

    def test_json_mode(self, monkeypatch, restore_root_logger):
        monkeypatch.setenv("NB_LOG_FORMAT", "JSON")
        monkeypatch.setenv("NB_LOG_LEVEL", "debug")
        setup_logging()
        root = restore_root_logger
        assert isinstance(root.handlers[0].formatter, StructuredJsonFormatter)
        assert root.level == logging.DEBUG

    def test_unknown_level_falls_back_to_info(self, monkeypatch, restore_root_logger):
        monkeypatch.setenv("NB_LOG_LEVEL", "chatty")
        setup_logging()
        assert restore_root_logger.level == logging.INFO


class TestStructuredJsonFormatter:
    def test_decision_fields_promoted(self):
        record = logging.makeLogRecord({
            "name": "neurobridge.engine",
            "levelno": logging.WARNING,
            "levelname": "WARNING",
            "msg": "Cross-tenant access denied: user %s",
            "args": ("u1",),
            "user_id": "u1",
            "organization_id": "org_a",
            "action": "sessions.view",
            "outcome": "deny",
            "reason": "out_of_scope",
            "cause": "tenant_mismatch",
        })
        payload = json.loads(StructuredJsonFormatter().format(record))
        assert payload["message"] == "Cross-tenant access denied: user u1"
        assert payload["levelname"] == "WARNING"
        assert payload["cause"] == "tenant_mismatch"
        assert payload["organization_id"] == "org_a"

    def test_traceback_captured(self):
        try:
            raise RuntimeError("audit store unreachable")
        except RuntimeError:
            exc_info = sys.exc_info()
        record = logging.makeLogRecord({
            "name": "neurobridge.engine",
            "levelno": logging.ERROR,
            "levelname": "ERROR",
            "msg": "Background audit delivery failed",
            "exc_info": exc_info,
        })
        payload = json.loads(StructuredJsonFormatter().format(record))
        assert any("audit store unreachable" in line for line in payload["traceback"])
        assert "exc_info" not in payload

    def test_record_left_intact_for_other_handlers(self):
        try:
            raise RuntimeError("audit store unreachable")
        except RuntimeError:
            exc_info = sys.exc_info()
        record = logging.makeLogRecord({
            "name": "neurobridge.engine",
            "levelno": logging.ERROR,
            "levelname": "ERROR",
            "msg": "Audit sink failed",
            "exc_info": exc_info,
        })
        StructuredJsonFormatter().format(record)
        assert record.exc_info is exc_info
        text = logging.Formatter("%(message)s").format(record)
        assert "RuntimeError: audit store unreachable" in text

    def test_empty_decision_fields_dropped(self):
        record = logging.makeLogRecord({
            "name": "neurobridge.engine",
            "levelno": logging.DEBUG,
            "levelname": "DEBUG",
            "msg": "Authorization allowed",
            "outcome": "allow",
            "reason": None,
        })
        payload = json.loads(StructuredJsonFormatter().format(record))
        assert payload["outcome"] == "allow"
        assert "reason" not in payload
