import json
import logging

from pythonjsonlogger import jsonlogger

from pvesync.utils.logging import redact, setup_logging


def test_json_format(monkeypatch):
    monkeypatch.setenv("PVESYNC_LOG_FORMAT", "json")
    logger = logging.getLogger("pvesync.test.json")
    logger.propagate = False

    setup_logging(force=True, level=logging.INFO, logger=logger)

    handler = logger.handlers[0]
    assert isinstance(handler.formatter, jsonlogger.JsonFormatter)
    record = logger.makeRecord(logger.name, logging.INFO, __file__, 1, "probe done", None, None)
    payload = json.loads(handler.formatter.format(record))
    assert payload["message"] == "probe done"
    assert payload["level"] == "INFO"


def test_level_from_environment(monkeypatch):
    monkeypatch.setenv("PVESYNC_LOG_LEVEL", "warning")
    monkeypatch.setenv("PVESYNC_LOG_FORMAT", "text")
    logger = logging.getLogger("pvesync.test.level")
    logger.propagate = False

    setup_logging(force=True, logger=logger)

    assert logger.level == logging.WARNING
    assert not isinstance(logger.handlers[0].formatter, jsonlogger.JsonFormatter)


def test_existing_handlers_left_alone():
    logger = logging.getLogger("pvesync.test.noop")
    logger.propagate = False
    sentinel = logging.NullHandler()
    logger.addHandler(sentinel)

    setup_logging(logger=logger)

    assert logger.handlers == [sentinel]


def test_registered_secrets_are_masked(monkeypatch):
    monkeypatch.setenv("PVESYNC_LOG_FORMAT", "text")
    logger = logging.getLogger("pvesync.test.redact")
    logger.propagate = False
    setup_logging(force=True, level=logging.INFO, logger=logger)
    redact("/srv/keys/cluster_ed25519", None)

    handler = logger.handlers[0]
    record = logger.makeRecord(
        logger.name, logging.INFO, __file__, 1, "using key %s", ("/srv/keys/cluster_ed25519",), None
    )
    handler.filter(record)

    assert "/srv/keys/cluster_ed25519" not in handler.format(record)
    assert "***" in record.getMessage()
