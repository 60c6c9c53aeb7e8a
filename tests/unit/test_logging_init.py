from __future__ import annotations

import logging

from salaryimport.logging.init import (
    LOGGER_NAME,
    LabeledFormatter,
    enable_debug,
    log_summary,
    setup_logging,
)


def test_labels(capsys):
    logger = setup_logging()
    logger.info("reading file")
    logger.warning("slow")
    logger.error("broken")
    log_summary("SUMMARY mode=import")
    lines = capsys.readouterr().out.splitlines()
    assert lines == [
        "INFO reading file",
        "WARN slow",
        "ERROR broken",
        "SUMMARY SUMMARY mode=import",
    ]


def test_setup_is_idempotent(capsys):
    first = setup_logging()
    second = setup_logging()
    assert first is second
    first.info("once")
    assert capsys.readouterr().out.count("once") == 1


def test_module_loggers_propagate(capsys):
    setup_logging()
    logging.getLogger(f"{LOGGER_NAME}.db.persister").info("persisted=3 failed=0")
    assert capsys.readouterr().out == "INFO persisted=3 failed=0\n"


def test_debug_hidden_until_enabled(capsys):
    logger = setup_logging()
    logger.debug("hidden")
    enable_debug()
    logger.debug("shown")
    assert capsys.readouterr().out == "DEBUG shown\n"


def test_formatter_unknown_level():
    record = logging.LogRecord("x", 15, __file__, 1, "msg", None, None)
    record.levelname = "CUSTOM"
    assert LabeledFormatter().format(record) == "CUSTOM msg"
